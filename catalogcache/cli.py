"""CLI interface for the catalog cache."""

import logging
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Optional

import click
from rich.progress import Progress, SpinnerColumn, TextColumn

from .api import CatalogClient
from .config import CacheSettings, config
from .exceptions import CatalogCacheError, ConfigError, RemoteError, SerializationError
from .index import CacheIndex
from .output import OutputFormatter
from .retry import RetryPolicy
from .store import RecordStore
from .sync import SyncEngine, SyncMode
from .utils import (
    DEFAULT_MAX_TRIES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_RETRY_DELAY,
    format_timestamp,
)

logger = logging.getLogger(__name__)


def fail(ctx: Any, out: OutputFormatter, message: str, show_usage: bool = True) -> None:
    """Report a fatal error, optionally with the usage line, and exit 1."""
    out.error(message)
    if show_usage:
        click.echo(ctx.get_usage(), err=True)
        click.echo(f"Try '{ctx.command_path} --help' for help.", err=True)
    ctx.exit(1)


def resolve_cache_file(ctx: Any) -> Path:
    cache_file = ctx.obj.get("cache_file")
    return Path(cache_file) if cache_file else config.cache_file


def require_token(ctx: Any, out: OutputFormatter) -> str:
    """Return the configured read token or exit with usage."""
    token = ctx.obj.get("token") or config.token
    if not token:
        fail(
            ctx,
            out,
            "No read token configured. Use --token, set CATALOGCACHE_TOKEN "
            "or run 'catalogcache init'.",
        )
    return token


def sync_options(func: Callable) -> Callable:
    """Options shared by the sync commands."""
    options = [
        click.option(
            "--include-deleted",
            is_flag=True,
            help="Keep deleted records in the cache instead of discarding them",
        ),
        click.option(
            "--page-size",
            type=click.IntRange(1, 100),
            default=DEFAULT_PAGE_SIZE,
            show_default=True,
            help="Records requested per page",
        ),
        click.option(
            "--max-tries",
            type=click.IntRange(min=1),
            default=DEFAULT_MAX_TRIES,
            show_default=True,
            help="Consecutive failed requests tolerated before giving up",
        ),
        click.option(
            "--retry-delay",
            type=click.FloatRange(min=0),
            default=DEFAULT_RETRY_DELAY,
            show_default=True,
            help="Seconds to wait between retries",
        ),
        click.option(
            "--lenient",
            is_flag=True,
            help="Skip records that can't be merged instead of aborting",
        ),
        click.option("--no-progress", is_flag=True, help="Disable progress display"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option(
    "--token", "-t", envvar="CATALOGCACHE_TOKEN", help="Read token of the account"
)
@click.option(
    "--cache-file",
    "-c",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path of the cache snapshot file",
)
@click.option("--api-url", help="Base URL of the catalog API")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="catalogcache")
@click.pass_context
def main(
    ctx: Any,
    token: Optional[str],
    cache_file: Optional[Path],
    api_url: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """Catalog Cache - keep a local mirror of a remote catalog up to date."""
    ctx.ensure_object(dict)
    ctx.obj["token"] = token
    ctx.obj["cache_file"] = cache_file
    ctx.obj["api_url"] = api_url
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("catalogcache").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option(
    "--token",
    "-t",
    prompt="Enter the read token of your account",
    help="Read token of the account",
)
@click.option(
    "--cache-file",
    "-c",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Default cache snapshot file",
)
@click.pass_context
def init(ctx: Any, token: str, cache_file: Optional[Path]) -> None:
    """Store a read token (and optionally a cache file) in the user config.

    The configuration lives in ~/.config/catalogcache/config.
    """
    out: OutputFormatter = ctx.obj["out"]

    out.info("Validating token...")
    client = CatalogClient(ctx.obj.get("api_url") or config.api_url)
    try:
        client.fetch_page(token, page_size=1, page_number=0)
        out.success("Token is valid")
    except CatalogCacheError as e:
        out.error(f"Token validation failed: {e}")
        if not click.confirm("Save token anyway?", default=False):
            out.warning("Configuration cancelled.")
            ctx.exit(1)
    finally:
        client.close()

    try:
        config.save_token(token)
        if cache_file is not None:
            config.save_cache_file(cache_file)
    except OSError as e:
        fail(ctx, out, f"Couldn't save configuration: {e}", show_usage=False)

    out.print_summary(
        "Initialization Complete",
        [
            ("Status", "Configuration saved successfully"),
            ("Config file", str(config.get_config_path())),
        ],
    )


def _run_sync(ctx: Any, mode: SyncMode, **options: Any) -> None:
    out: OutputFormatter = ctx.obj["out"]
    token = require_token(ctx, out)
    cache_file = resolve_cache_file(ctx)

    settings = CacheSettings(
        page_size=options["page_size"],
        include_deleted=options["include_deleted"],
        strict=not options["lenient"],
        max_tries=options["max_tries"],
        retry_delay=options["retry_delay"],
    )
    client = CatalogClient(ctx.obj.get("api_url") or config.api_url)
    engine = SyncEngine.open(
        client,
        token,
        cache_file,
        settings=settings,
        retry_policy=RetryPolicy(settings.max_tries, settings.retry_delay),
    )

    out.info(f"Cache file: {cache_file}")
    out.info(f"Mode: {mode.value}")

    try:
        if options["no_progress"] or out.quiet or out.json_output:
            stats = engine.sync(mode)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                transient=True,
            ) as progress:
                task = progress.add_task("Reading remote catalog...", total=None)
                merged = {"records": 0}

                def on_page(page_number: int, record_count: int) -> None:
                    merged["records"] += record_count
                    progress.update(
                        task,
                        description=(
                            f"Read page {page_number + 1} "
                            f"({merged['records']} record(s))"
                        ),
                    )

                stats = engine.sync(mode, progress_callback=on_page)
    except (ConfigError, SerializationError) as e:
        fail(ctx, out, str(e))
        return
    except RemoteError as e:
        fail(ctx, out, f"Sync failed, merged pages were kept: {e}", show_usage=False)
        return
    except CatalogCacheError as e:
        fail(ctx, out, f"Sync failed: {e}", show_usage=False)
        return
    finally:
        client.close()

    _display_summary(out, stats, len(engine.index))


def _display_summary(out: OutputFormatter, stats: dict, cached: int) -> None:
    if out.json_output:
        out.output_json({**stats, "cached": cached})
        return

    out.print("")
    out.success("Sync complete!")
    out.print_summary(
        "Sync Summary",
        [
            ("Pages read", stats["pages"]),
            ("Records read", stats["records"]),
            ("Inserted", stats["inserted"]),
            ("Replaced", stats["replaced"]),
            ("Removed", stats["removed"]),
            ("Skipped (cached newer)", stats["skipped_older"]),
            ("Skipped (deleted)", stats["skipped_deleted"]),
            ("Errors", stats["errors"]),
            ("Previous high-water mark", format_timestamp(stats["high_water_mark"])),
            ("Records cached", cached),
        ],
    )


@main.command()
@sync_options
@click.pass_context
def update(ctx: Any, **options: Any) -> None:
    """Fetch records modified since the newest cached record.

    Examples:
        catalogcache -t TOKEN -c cache.json update
        catalogcache update --include-deleted --retry-delay 10
    """
    _run_sync(ctx, SyncMode.INCREMENTAL, **options)


@main.command(name="full-read")
@sync_options
@click.pass_context
def full_read(ctx: Any, **options: Any) -> None:
    """Discard the cache and read the whole remote catalog."""
    _run_sync(ctx, SyncMode.FULL_READ, **options)


@main.command()
@click.argument("record_id", type=int, required=False)
@click.option("--reference-id", "-r", help="Look the record up by reference id")
@click.option(
    "--all-states", "-a", is_flag=True, help="Also show inactive and deleted records"
)
@click.pass_context
def show(
    ctx: Any, record_id: Optional[int], reference_id: Optional[str], all_states: bool
) -> None:
    """Show a cached record by id or reference id."""
    out: OutputFormatter = ctx.obj["out"]
    if record_id is not None and reference_id is None:
        engine = SyncEngine.open(None, None, resolve_cache_file(ctx))
        record = engine.get_record(record_id, active_only=not all_states)
        label = str(record_id)
    elif reference_id is not None and record_id is None:
        engine = SyncEngine.open(None, None, resolve_cache_file(ctx))
        record = engine.get_record_by_reference_id(
            reference_id, active_only=not all_states
        )
        label = f"reference id '{reference_id}'"
    else:
        fail(ctx, out, "Give exactly one of RECORD_ID or --reference-id.")
        return

    if record is None:
        out.error(f"Record {label} not found in cache")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(record.to_dict())
        return
    out.print_summary(
        f"Record {record.id}",
        [
            ("Reference id", record.reference_id),
            ("State", record.state.value),
            ("Last modified", format_timestamp(record.last_modified)),
            ("Name", record.payload.get("name")),
        ],
    )


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show what the cache currently holds."""
    out: OutputFormatter = ctx.obj["out"]
    cache_file = resolve_cache_file(ctx)
    index: CacheIndex = RecordStore(cache_file).deserialize()

    states = Counter(state.value for state in index.state_by_id.values())
    out.print_summary(
        "Cache Status",
        [
            ("Cache file", str(cache_file)),
            ("Exists", cache_file.exists()),
            ("Records", len(index)),
            ("Active", states.get("ACTIVE", 0)),
            ("Inactive", states.get("INACTIVE", 0)),
            ("Deleted", states.get("DELETED", 0)),
            ("Reference ids", len(index.id_by_reference_id)),
            ("Latest modified", format_timestamp(index.high_water_mark())),
            ("Missing timestamps", len(index.missing_timestamps())),
        ],
    )


if __name__ == "__main__":
    main()
