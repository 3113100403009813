"""Credential resolution for the asset service."""

import os
from dataclasses import dataclass
from typing import Optional

from .config import API_KEY_ENV, COOKIE_ENV
from .exceptions import AsphaltConfigError

AUTH_HELP_URL = (
    "https://github.com/jackTabsCode/asphalt?tab=readme-ov-file#authentication"
)


@dataclass
class Auth:
    """Credentials used by the asset client."""

    api_key: Optional[str] = None
    """Open Cloud API key"""

    cookie: Optional[str] = None
    """.ROBLOSECURITY cookie value, only needed for animations"""


def resolve_auth(
    api_key: Optional[str] = None,
    cookie: Optional[str] = None,
    key_required: bool = False,
) -> Auth:
    """Resolve credentials from explicit values, falling back to the environment.

    Args:
        api_key: API key passed on the command line
        cookie: Cookie passed on the command line
        key_required: Raise if no API key can be found

    Returns:
        Resolved credentials

    Raises:
        AsphaltConfigError: If key_required and no API key is available
    """
    resolved_key = api_key or os.environ.get(API_KEY_ENV) or None
    resolved_cookie = cookie or os.environ.get(COOKIE_ENV) or None

    if key_required and not resolved_key:
        raise AsphaltConfigError(
            "An API key is required to use Asphalt. Pass --api-key or set "
            f"{API_KEY_ENV}. See the README for more information:\n{AUTH_HELP_URL}"
        )

    return Auth(api_key=resolved_key, cookie=resolved_cookie)
