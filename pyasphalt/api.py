"""API client for the Roblox Open Cloud asset service."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Any

import httpx

from .asset import Asset
from .auth import Auth
from .config import TEST_MODE_ENV, Creator
from .exceptions import (
    AsphaltFatalError,
    AsphaltNetworkError,
    AsphaltPollError,
    AsphaltRateLimitError,
    AsphaltUploadError,
)
from .utils import (
    ASSET_DESCRIPTION,
    DEFAULT_MAX_POLLS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_DELAY,
    DEFAULT_TIMEOUT,
    TEST_ASSET_ID,
    trim_display_name,
)

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://apis.roblox.com/assets/v1/assets"
ANIMATION_UPLOAD_URL = "https://apis.roblox.com/assets/user-auth/v1/assets"
OPERATION_URL = "https://apis.roblox.com/assets/v1/operations"

COOKIE_NAME = ".ROBLOSECURITY"
COOKIE_DOMAIN = ".roblox.com"

RATE_LIMIT_RESET_HEADER = "x-ratelimit-reset"
CSRF_HEADER = "x-csrf-token"

FATAL_MESSAGE = "previous request failed due to a fatal error"


class AssetClient:
    """Client for the two-phase (submit, then poll) asset upload API.

    One instance is shared by every sync worker. It holds the process-wide
    rate limit state: requests never start before the last reported reset
    instant, and the first non-retryable error response poisons the client
    so every later request fails immediately.
    """

    def __init__(
        self,
        auth: Auth,
        creator: Creator,
        expected_price: int | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_polls: int = DEFAULT_MAX_POLLS,
        poll_delay: float = DEFAULT_POLL_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        test_mode: bool | None = None,
    ):
        """Initialize the asset client.

        Args:
            auth: API key and optional cookie
            creator: Owner of uploaded assets
            expected_price: Price the caller agrees to pay for an upload, if any
            max_retries: Retries for a rate limited or failed request (default: 5)
            max_polls: Operation status polls per upload (default: 10)
            poll_delay: Delay before the second poll, doubled after each poll
            timeout: Request timeout in seconds (default: 30.0)
            test_mode: Return a fixed asset id without network traffic
                (defaults to whether ASPHALT_TEST is set)
        """
        self.auth = auth
        self.creator = creator
        self.expected_price = expected_price
        self.max_retries = max_retries
        self.max_polls = max_polls
        self.poll_delay = poll_delay
        self.timeout = timeout
        self.test_mode = (
            bool(os.environ.get(TEST_MODE_ENV)) if test_mode is None else test_mode
        )

        self._client: httpx.Client | None = None
        self._lock = threading.Lock()
        self._rate_limit_reset: float | None = None
        self._csrf_token: str | None = None
        self._fatal = threading.Event()

    @property
    def fatally_failed(self) -> bool:
        """Whether a non-retryable error response has been received."""
        return self._fatal.is_set()

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        with self._lock:
            if self._client is None or self._client.is_closed:
                cookies = httpx.Cookies()
                if self.auth.cookie:
                    cookies.set(COOKIE_NAME, self.auth.cookie, domain=COOKIE_DOMAIN)
                self._client = httpx.Client(
                    cookies=cookies,
                    timeout=httpx.Timeout(self.timeout),
                    follow_redirects=True,
                )
            return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        with self._lock:
            if self._client is not None and not self._client.is_closed:
                self._client.close()
            self._client = None

    # =========================
    # Shared request state
    # =========================

    def _wait_for_rate_limit(self) -> None:
        # Another thread may push the reset back while this one sleeps
        while True:
            with self._lock:
                reset = self._rate_limit_reset
            if reset is None:
                return
            delay = reset - time.monotonic()
            if delay <= 0:
                return
            logger.debug(f"Waiting {delay:.1f}s for rate limit reset")
            time.sleep(delay)

    def _set_rate_limit_reset(self, delay: float) -> None:
        reset = time.monotonic() + delay
        with self._lock:
            if self._rate_limit_reset is None or reset > self._rate_limit_reset:
                self._rate_limit_reset = reset

    def _rate_limit_delay(self, response: httpx.Response, attempt: int) -> float:
        """Seconds to wait after a 429, from the reset header or exponential backoff."""
        header = response.headers.get(RATE_LIMIT_RESET_HEADER)
        if header:
            try:
                return max(float(header), 0.0)
            except ValueError:
                logger.debug(f"Ignoring malformed {RATE_LIMIT_RESET_HEADER}: {header}")
        return float(2**attempt)

    def _capture_csrf_token(self, response: httpx.Response) -> bool:
        """Remember a CSRF token sent by the server.

        Returns:
            True if the token differs from the one already held
        """
        token = response.headers.get(CSRF_HEADER)
        if not token:
            return False
        with self._lock:
            changed = token != self._csrf_token
            self._csrf_token = token
        return changed

    def _fail(self, url: str, response: httpx.Response) -> AsphaltFatalError:
        self._fatal.set()
        body = response.text
        logger.error(
            f"Request to {url} failed with status {response.status_code}: {body}"
        )
        return AsphaltFatalError(
            f"Request failed with status {response.status_code}: {body}",
            status_code=response.status_code,
            body=body,
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Make a request, honouring the shared rate limit and fatal state.

        Args:
            method: HTTP method
            url: Absolute URL
            **kwargs: Additional arguments passed to httpx

        Returns:
            The successful (200) response

        Raises:
            AsphaltFatalError: If this or an earlier request got an error response
            AsphaltRateLimitError: If still rate limited after all retries
            AsphaltNetworkError: If the service cannot be reached after all retries
        """
        client = self._get_client()
        base_headers = dict(kwargs.pop("headers", None) or {})
        csrf_retried = False
        attempt = 0

        while True:
            if self._fatal.is_set():
                raise AsphaltFatalError(FATAL_MESSAGE)

            self._wait_for_rate_limit()

            headers = dict(base_headers)
            with self._lock:
                if self._csrf_token:
                    headers["X-CSRF-Token"] = self._csrf_token

            try:
                response = client.request(method, url, headers=headers, **kwargs)
            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    delay = float(2**attempt)
                    attempt += 1
                    logger.debug(f"Network error ({e}), retrying in {delay:.0f}s")
                    time.sleep(delay)
                    continue
                raise AsphaltNetworkError(f"Network error: {e}") from e

            token_changed = self._capture_csrf_token(response)

            if response.status_code == 200:
                return response

            if response.status_code == 429:
                if attempt >= self.max_retries:
                    raise AsphaltRateLimitError(
                        f"Still rate limited after {self.max_retries} retries"
                    )
                delay = self._rate_limit_delay(response, attempt)
                self._set_rate_limit_reset(delay)
                attempt += 1
                logger.warning(f"Rate limited, retrying in {delay:.0f} seconds")
                continue

            if response.status_code == 403 and token_changed and not csrf_retried:
                csrf_retried = True
                logger.debug("Received new CSRF token, retrying request")
                continue

            raise self._fail(url, response)

    # =========================
    # Upload Operations
    # =========================

    def _build_request(self, asset: Asset) -> dict[str, Any]:
        creation_context: dict[str, Any] = {"creator": self.creator.to_request()}
        if self.expected_price is not None:
            creation_context["expectedPrice"] = self.expected_price
        return {
            "assetType": asset.kind.asset_type,
            "displayName": trim_display_name(asset.file_name),
            "description": ASSET_DESCRIPTION,
            "creationContext": creation_context,
        }

    def upload(self, asset: Asset) -> int:
        """Upload an asset and wait for its id.

        Animations go through the cookie-authenticated endpoint, everything
        else through the API key endpoint.

        Args:
            asset: Preprocessed asset

        Returns:
            The new asset id

        Raises:
            AsphaltUploadError: If the cookie is missing for an animation or the
                submit response is malformed
            AsphaltPollError: If the operation never yields an asset id
            AsphaltAPIError: For any other request failure
        """
        if self.test_mode:
            logger.debug(f"Test mode, not uploading {asset.rel_path}")
            return TEST_ASSET_ID

        if asset.kind.is_animation:
            if not self.auth.cookie:
                raise AsphaltUploadError(
                    "A cookie is required to upload animations. Pass --cookie or "
                    "set ASPHALT_COOKIE."
                )
            url = ANIMATION_UPLOAD_URL
            headers = {}
        else:
            url = UPLOAD_URL
            headers = {"x-api-key": self.auth.api_key or ""}

        payload = json.dumps(self._build_request(asset))
        response = self._request(
            "POST",
            url,
            headers=headers,
            data={"request": payload},
            files={"fileContent": (asset.file_name, asset.data, asset.kind.mime_type)},
        )

        try:
            operation_id = response.json()["operationId"]
        except (ValueError, KeyError, TypeError) as e:
            raise AsphaltUploadError(
                f"Unexpected upload response: {response.text}"
            ) from e

        logger.debug(f"Submitted {asset.rel_path}, operation {operation_id}")
        return self.poll_operation(operation_id)

    def poll_operation(self, operation_id: str) -> int:
        """Poll an upload operation until it reports the asset id.

        Args:
            operation_id: Id returned by the submit request

        Returns:
            The asset id

        Raises:
            AsphaltPollError: If the operation completes without a response or
                does not complete within max_polls polls
        """
        delay = self.poll_delay
        url = f"{OPERATION_URL}/{operation_id}"

        for attempt in range(self.max_polls):
            response = self._request(
                "GET", url, headers={"x-api-key": self.auth.api_key or ""}
            )
            try:
                operation = response.json()
            except ValueError as e:
                raise AsphaltPollError(
                    f"Unexpected operation response: {response.text}"
                ) from e
            if not isinstance(operation, dict):
                raise AsphaltPollError(
                    f"Unexpected operation response: {response.text}"
                )

            if operation.get("done"):
                result = operation.get("response")
                if not result:
                    raise AsphaltPollError("Operation completed but no response provided")
                try:
                    return int(result["assetId"])
                except (KeyError, TypeError, ValueError) as e:
                    raise AsphaltPollError(
                        f"Operation response has no valid asset id: {result}"
                    ) from e

            logger.debug(f"Operation {operation_id} not done yet")
            if attempt < self.max_polls - 1:
                time.sleep(delay)
                delay *= 2

        raise AsphaltPollError("Operation polling exceeded maximum retries")
