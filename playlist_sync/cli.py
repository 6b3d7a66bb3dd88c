"""
Command-line interface for playlist-sync.

This module implements the CLI using Click, providing the commands to
configure the remote, run a sync and inspect the local sync state.
rich-click is used for the output colors.

Commands:
    psync configure --token <t> --repo <owner/name>   Store credentials
    psync sync                                        Run one sync
    psync sync --retries 3 --retry-delay 10           Retry transient failures
    psync status                                      Show sync state
    psync logout                                      Forget the token
    psync size                                        Snapshot size per format

Options:
    --config <config.yaml>     Configuration file (default ./config.yaml)
    --verbose                  Show debug messages on the console

Environment:
    PLAYLIST_SYNC_TOKEN and PLAYLIST_SYNC_REPO provide defaults for
    `psync configure`. A .env file in the current directory is loaded.

Exit Codes:
    0    success, nothing to do, or another sync already running
    1    configuration error
    2    credential expired, run `psync configure` again
    3    sync failed
    130  interrupted
"""

import re
import sys
import time
from collections.abc import Callable
from pathlib import Path

import rich_click as click
from dotenv import load_dotenv
from tqdm import tqdm

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100

from playlist_sync import __version__
from playlist_sync.core import (
    Config,
    ConfigError,
    CredentialExpiredError,
    Database,
    DatabaseError,
    NotConfiguredError,
    PlaylistSyncError,
    RemoteError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from playlist_sync.core.logger import format_report_line
from playlist_sync.library import CoverUrlMapper
from playlist_sync.remote import GitHubContentsStore
from playlist_sync.sync import LocalSnapshotBuilder, SyncOrchestrator, SyncResult, SyncStatus
from playlist_sync.sync import codec
from playlist_sync.utils import format_size, format_timestamp

logger = get_logger(__name__)


EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_NEEDS_REAUTH = 2
EXIT_FAILURE = 3
EXIT_INTERRUPTED = 130

_REPOSITORY_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Show debug messages on the console"
)
@click.version_option(__version__, prog_name="playlist-sync")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """
    playlist-sync: Keep playlists, favorites and play history in sync.

    Snapshots of the local library are merged with the snapshot stored in a
    GitHub repository; the merged result is written back locally and
    uploaded when the remote is behind.

    \b
    FIRST RUN:
        psync configure --token ghp_... --repo you/music-backup --create
        psync sync

    \b
    AFTERWARDS:
        psync sync                  # One sync
        psync status                # Last sync, version tokens
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _run_command(ctx: click.Context, action: Callable[[Config, Database], int]) -> None:
    """
    Load configuration, set up logging and the database, then run action.

    Maps errors to messages and exit codes the same way for every command.

    Raises:
        SystemExit: With the action's exit code, or the code of the error.
    """
    database: Database | None = None
    exit_code = EXIT_OK

    try:
        config = load_config(ctx.obj["config_path"])
        setup_logging(config.storage.logs_directory, verbose=ctx.obj["verbose"])

        config.storage.database.parent.mkdir(parents=True, exist_ok=True)
        database = Database(config.storage.database)

        exit_code = action(config, database)

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    except DatabaseError as e:
        click.echo(f"Database error: {e.message}", err=True)
        logger.error(f"Database error: {e.message}", exc_info=True)
        sys.exit(EXIT_FAILURE)

    except CredentialExpiredError as e:
        click.echo(f"GitHub rejected the token: {e.message}", err=True)
        logger.error(f"Credential rejected: {e.message}")
        sys.exit(EXIT_NEEDS_REAUTH)

    except NotConfiguredError as e:
        click.echo(f"Sync is not configured: {e.message}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    except PlaylistSyncError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(EXIT_FAILURE)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(EXIT_INTERRUPTED)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(EXIT_FAILURE)

    finally:
        if database is not None:
            database.close()
        shutdown_logging()

    if exit_code != EXIT_OK:
        sys.exit(exit_code)


def _build_store(config: Config, token: str, repository: str) -> GitHubContentsStore:
    return GitHubContentsStore(
        token,
        repository,
        branch=config.remote.branch,
        api_url=config.remote.api_url,
        timeout=config.remote.timeout,
    )


def _stored_store(config: Config, database: Database) -> GitHubContentsStore:
    """Store for the saved credential and repository."""
    token = database.get_token()
    repository = database.get_remote_location()
    if not token or not repository:
        raise NotConfiguredError(
            "No stored token or repository",
            details={"token": bool(token), "repository": repository}
        )
    return _build_store(config, token, repository)


def _build_builder(config: Config, database: Database) -> LocalSnapshotBuilder:
    return LocalSnapshotBuilder(
        database,
        database,
        CoverUrlMapper(database.get_cover_mappings()),
        config.sync.device_name,
        history_limit=config.sync.history_limit,
    )


def _validate_repository(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    if value is not None and not _REPOSITORY_PATTERN.match(value):
        raise click.BadParameter("must be of the form owner/name")
    return value


# =============================================================================
# configure
# =============================================================================

@cli.command()
@click.option(
    "--token",
    envvar="PLAYLIST_SYNC_TOKEN",
    required=True,
    metavar="<token>",
    help="GitHub personal access token (env: PLAYLIST_SYNC_TOKEN)"
)
@click.option(
    "--repo", "repository",
    envvar="PLAYLIST_SYNC_REPO",
    required=True,
    callback=_validate_repository,
    metavar="<owner/name>",
    help="Backup repository (env: PLAYLIST_SYNC_REPO)"
)
@click.option(
    "--create",
    is_flag=True,
    help="Create the repository (private) if it does not exist"
)
@click.option(
    "--no-verify",
    is_flag=True,
    help="Store the credentials without contacting GitHub"
)
@click.pass_context
def configure(ctx: click.Context, token: str, repository: str, create: bool, no_verify: bool) -> None:
    """Store the GitHub token and backup repository."""

    def action(config: Config, database: Database) -> int:
        if not no_verify:
            store = _build_store(config, token, repository)
            login = store.validate_token()
            click.echo(f"Token belongs to {login}")
            try:
                info = store.check_repository()
            except RemoteError as e:
                if e.status_code != 404 or not create:
                    raise
                info = store.create_repository(private=True)
                click.echo(f"Created private repository {repository}")
            if not info.get("private", True):
                logger.warning(f"Repository {repository} is public, your library will be visible")

        database.save_credentials(token, repository)
        logger.info(f"Sync configured for {repository}")
        click.echo(f"Configured sync with {repository}")
        return EXIT_OK

    _run_command(ctx, action)


# =============================================================================
# sync
# =============================================================================

def _wait_before_retry(delay: int, attempt: int, retries: int) -> None:
    for _ in tqdm(range(delay), desc=f"Retry {attempt}/{retries} in", unit="s", leave=False):
        time.sleep(1)


def _exit_code(result: SyncResult) -> int:
    if result.status is SyncStatus.NEEDS_REAUTH:
        return EXIT_NEEDS_REAUTH
    if result.succeeded:
        return EXIT_OK
    return EXIT_FAILURE


def _print_result(result: SyncResult) -> None:
    if result.succeeded:
        click.echo(result.message)
    else:
        click.echo(result.message, err=True)

    report = result.report
    if report is None or report.is_empty:
        return

    click.echo(format_report_line("Playlists added", report.playlists_added))
    click.echo(format_report_line("Playlists updated", report.playlists_updated))
    click.echo(format_report_line("Playlists deleted", report.playlists_deleted))
    click.echo(format_report_line("Songs added", report.songs_added))
    click.echo(format_report_line("Songs removed", report.songs_removed))
    for conflict in report.conflicts:
        click.echo(f"  Conflict: {conflict.description} ({conflict.resolution.name})")


@cli.command()
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Retries after a transient remote failure"
)
@click.option(
    "--retry-delay",
    type=click.IntRange(min=0),
    default=10,
    show_default=True,
    metavar="<seconds>",
    help="Wait between retries"
)
@click.pass_context
def sync(ctx: click.Context, retries: int, retry_delay: int) -> None:
    """Merge the local library with the remote and upload the result."""

    def action(config: Config, database: Database) -> int:
        if not database.is_configured():
            click.echo("Sync is not configured. Run `psync configure` first.")
            return EXIT_OK

        orchestrator = SyncOrchestrator(
            database,
            database,
            _stored_store(config, database),
            _build_builder(config, database),
            data_saver=config.sync.data_saver,
            conflict_retries=config.sync.conflict_retries,
        )

        result = orchestrator.sync()
        attempt = 0
        while result.should_retry and attempt < retries:
            attempt += 1
            logger.info(f"{result.message}, retrying ({attempt}/{retries})")
            _wait_before_retry(retry_delay, attempt, retries)
            result = orchestrator.sync()

        _print_result(result)
        if result.status is SyncStatus.NEEDS_REAUTH:
            click.echo("Run `psync configure` with a new token.", err=True)
        return _exit_code(result)

    _run_command(ctx, action)


# =============================================================================
# status / logout / size
# =============================================================================

@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show configuration and sync bookkeeping."""

    def action(config: Config, database: Database) -> int:
        repository = database.get_remote_location()
        click.echo(f"Repository:      {repository or 'not set'}")
        click.echo(f"Token:           {'stored' if database.get_token() else 'missing'}")
        click.echo(f"Device:          {config.sync.device_name} ({database.get_device_id()})")
        click.echo(f"Format:          {codec.file_name(config.sync.data_saver)}")
        click.echo(f"Last sync:       {format_timestamp(database.get_last_sync_time())}")
        click.echo(f"Playlists:       {len(database.current_playlists())}")
        click.echo(f"Favorites:       {len(database.current_favorites())}")

        versions = database.get_remote_versions()
        if versions:
            click.echo("Version tokens:")
            for path, version in versions.items():
                click.echo(f"  {path}: {version}")

        tombstones = database.pending_tombstones()
        if tombstones:
            click.echo(f"Pending deletions: {len(tombstones)}")
            for playlist_id, deleted_at in tombstones:
                click.echo(f"  {playlist_id} (deleted {format_timestamp(deleted_at)})")
        return EXIT_OK

    _run_command(ctx, action)


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Forget the stored token (the repository setting is kept)."""

    def action(config: Config, database: Database) -> int:
        database.invalidate_credential()
        click.echo("Token removed. Run `psync configure` to sync again.")
        return EXIT_OK

    _run_command(ctx, action)


@cli.command()
@click.pass_context
def size(ctx: click.Context) -> None:
    """Show the size of the local snapshot in both wire formats."""

    def action(config: Config, database: Database) -> int:
        snapshot = _build_builder(config, database).build()
        json_size = codec.payload_size(snapshot, binary=False)
        binary_size = codec.payload_size(snapshot, binary=True)

        click.echo(f"{codec.JSON_FILE_NAME}:  {format_size(json_size)}")
        click.echo(f"{codec.BINARY_FILE_NAME}:   {format_size(binary_size)}")
        click.echo(f"Saved by data saver: {codec.compression_ratio(snapshot):.1f}%")
        return EXIT_OK

    _run_command(ctx, action)


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `psync` from the command line.
    Loads .env before Click reads the environment.
    """
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()
