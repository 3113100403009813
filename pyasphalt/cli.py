"""CLI interface for Asphalt."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from .api import AssetClient
from .auth import resolve_auth
from .cli_progress import run_sync_with_progress
from .config import API_KEY_ENV, COOKIE_ENV, Creator, CreatorType, load_config
from .exceptions import AsphaltError
from .output import OutputFormatter
from .preprocess import process_asset
from .sync.backends import CloudBackend, DebugBackend, StudioBackend, SyncBackend
from .sync.engine import SyncEngine, SyncResult, SyncTarget
from .sync.lockfile import migrate_lockfile, read_lockfile
from .utils import format_size

logger = logging.getLogger(__name__)

STORE_URL = "https://create.roblox.com/store/asset"

TARGET_CHOICES = [target.value for target in SyncTarget]


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pyasphalt")
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """Asphalt - Sync Roblox assets and generate code to reference them."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyasphalt").setLevel(logging.DEBUG)
    else:
        # Warnings still reach the user: failed files, duplicates, rate limits
        logging.basicConfig(level=logging.WARNING)


def _create_backend(
    target: SyncTarget, client: Optional[AssetClient], dry_run: bool
) -> Optional[SyncBackend]:
    if target == SyncTarget.CLOUD:
        return None if dry_run or client is None else CloudBackend(client)
    if target == SyncTarget.STUDIO:
        return StudioBackend()
    return DebugBackend()


def _result_to_dict(result: SyncResult) -> dict:
    return {
        "target": result.target.value,
        "dry_run": result.dry_run,
        "discovered": result.discovered,
        "new": result.new,
        "noop": result.noop,
        "duplicates": result.dupes,
        "failed": result.failed,
        "fatal": result.fatal,
        "success": result.success,
    }


@main.command()
@click.argument(
    "target_arg",
    metavar="[TARGET]",
    required=False,
    type=click.Choice(TARGET_CHOICES),
)
@click.option(
    "--target",
    "-t",
    type=click.Choice(TARGET_CHOICES),
    default=None,
    help="Where to sync new assets (default: cloud)",
)
@click.option("--api-key", "-k", envvar=API_KEY_ENV, help="Open Cloud API key")
@click.option(
    "--cookie",
    envvar=COOKIE_ENV,
    help=".ROBLOSECURITY cookie, required to upload animations",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Report new assets without uploading them (cloud only)",
)
@click.option(
    "--expected-price",
    type=click.IntRange(min=0),
    default=None,
    help="Price you agree to pay per upload, if uploads cost Robux",
)
@click.option("--no-progress", is_flag=True, help="Disable progress display")
@click.pass_context
def sync(
    ctx: Any,
    target_arg: Optional[str],
    target: Optional[str],
    api_key: Optional[str],
    cookie: Optional[str],
    dry_run: bool,
    expected_price: Optional[int],
    no_progress: bool,
) -> None:
    """Sync every input in asphalt.toml and generate code.

    TARGET is cloud (upload to Roblox), studio (copy into the local Studio
    content folder) or debug (copy into .asphalt-debug).

    Examples:
        asphalt sync                   # Upload new assets
        asphalt sync --dry-run         # Count assets that would be uploaded
        asphalt sync studio            # Test assets in Studio without uploading
    """
    out: OutputFormatter = ctx.obj["out"]

    if target_arg and target and target_arg != target:
        out.error(f"Conflicting targets: {target_arg} and {target}")
        ctx.exit(1)
    sync_target = SyncTarget(target_arg or target or SyncTarget.CLOUD.value)

    if dry_run and sync_target != SyncTarget.CLOUD:
        out.error("A dry run doesn't make sense in this context")
        ctx.exit(1)

    client: Optional[AssetClient] = None
    try:
        config = load_config()
        lockfile = read_lockfile()

        key_required = sync_target == SyncTarget.CLOUD and not dry_run
        auth = resolve_auth(api_key, cookie, key_required=key_required)

        if sync_target == SyncTarget.CLOUD:
            client = AssetClient(auth, config.creator, expected_price=expected_price)

        if dry_run:
            out.info("Dry run: no assets will be uploaded")

        engine = SyncEngine(
            config,
            sync_target,
            backend=_create_backend(sync_target, client, dry_run),
            existing_lockfile=lockfile,
            client=client,
            dry_run=dry_run,
            output=out,
        )
        show_progress = not (no_progress or out.quiet or out.json_output)
        result = run_sync_with_progress(engine, show_progress=show_progress)

    except AsphaltError as e:
        out.error(str(e))
        ctx.exit(1)
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)
    finally:
        if client is not None:
            client.close()

    if out.json_output:
        out.output_json(_result_to_dict(result))

    if not result.success:
        ctx.exit(1)


@main.command()
@click.argument(
    "path", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option(
    "--creator-type",
    type=click.Choice([creator.value for creator in CreatorType]),
    required=True,
    help="Whether the asset is owned by a user or a group",
)
@click.option("--creator-id", type=int, required=True, help="User or group id")
@click.option("--api-key", "-k", envvar=API_KEY_ENV, help="Open Cloud API key")
@click.option(
    "--cookie",
    envvar=COOKIE_ENV,
    help=".ROBLOSECURITY cookie, required to upload animations",
)
@click.option(
    "--bleed/--no-bleed",
    default=True,
    help="Alpha bleed images before uploading (default: on)",
)
@click.option(
    "--expected-price",
    type=click.IntRange(min=0),
    default=None,
    help="Price you agree to pay for the upload, if it costs Robux",
)
@click.option("--link", is_flag=True, help="Print a link to the asset instead of its id")
@click.pass_context
def upload(
    ctx: Any,
    path: Path,
    creator_type: str,
    creator_id: int,
    api_key: Optional[str],
    cookie: Optional[str],
    bleed: bool,
    expected_price: Optional[int],
    link: bool,
) -> None:
    """Upload a single file and print its asset id.

    The file goes through the same processing as during a sync (SVG
    rasterization, alpha bleed, animation extraction) but is not recorded in
    the lockfile.

    Examples:
        asphalt upload icon.png --creator-type user --creator-id 1234
        asphalt upload icon.png --creator-type group --creator-id 99 --link
    """
    out: OutputFormatter = ctx.obj["out"]
    client: Optional[AssetClient] = None

    try:
        asset = process_asset(path.name, path.read_bytes(), bleed=bleed)
        auth = resolve_auth(
            api_key, cookie, key_required=not asset.kind.is_animation
        )
        client = AssetClient(
            auth,
            Creator(type=CreatorType(creator_type), id=creator_id),
            expected_price=expected_price,
        )

        out.progress_message(
            f"Uploading {path.name} ({format_size(len(asset.data))})"
        )
        asset_id = client.upload(asset)

    except (AsphaltError, OSError) as e:
        out.error(f"Upload failed: {e}")
        ctx.exit(1)
    except KeyboardInterrupt:
        out.warning("\nUpload cancelled by user")
        ctx.exit(130)
    finally:
        if client is not None:
            client.close()

    url = f"{STORE_URL}/{asset_id}"
    if out.json_output:
        out.output_json({"asset_id": asset_id, "hash": asset.hash, "url": url})
    elif link:
        out.print(url)
    else:
        out.print(str(asset_id))


@main.command("list")
@click.pass_context
def list_assets(ctx: Any) -> None:
    """List every asset recorded in the lockfile."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        lockfile = read_lockfile()
    except AsphaltError as e:
        out.error(str(e))
        ctx.exit(1)

    rows = [
        {"input": input_name, "hash": hash, "asset_id": entry.asset_id}
        for input_name, hash, entry in lockfile.entries()
    ]

    if out.json_output:
        out.output_json(rows)
        return

    if not rows:
        out.info("No assets in the lockfile")
        return

    for row in rows:
        out.print(f"{row['input']} \"{row['hash']}\": {row['asset_id']}")


@main.command("migrate-lockfile")
@click.option(
    "--input-name",
    "-i",
    default=None,
    help="Input receiving the entries of a lockfile that predates inputs",
)
@click.pass_context
def migrate_lockfile_command(ctx: Any, input_name: Optional[str]) -> None:
    """Upgrade asphalt.lock.toml to the current format."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        lockfile = migrate_lockfile(input_name=input_name)
    except AsphaltError as e:
        out.error(str(e))
        ctx.exit(1)

    out.success(f"Migrated lockfile ({len(lockfile)} entries)")


if __name__ == "__main__":
    main()
