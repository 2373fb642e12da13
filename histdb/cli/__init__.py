"""
histdb CLI - Command line entry point.

Shell hooks call ``start`` and ``finish``; everything else is for
people: listing history, managing the daemon and importing old history.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID

import click
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from histdb import __version__
from histdb.config import HistdbConfig, load_config
from histdb.core.entry import Entry, utc_now
from histdb.core.exceptions import (
    DaemonAlreadyRunningError,
    DaemonNotRunningError,
    HistdbError,
    HistoryImportError,
    StorageError,
)
from histdb.core.types import ExitCode, ImportErrorPolicy
from histdb.daemon.client import DaemonClient
from histdb.daemon.protocol import Response, ResponseStatus, StartCommand, new_session_id
from histdb.daemon.server import HistoryDaemon
from histdb.importers import (
    HistdbSqliteSource,
    HistfileSource,
    default_histdb_path,
    default_histfile_path,
    ingest,
)
from histdb.persistence.engine import StorageEngine
from histdb.query.engine import QueryEngine, QueryStats
from histdb.query.filters import DEFAULT_LIMIT, QueryFilter
from histdb.ui.display import DisplayColumns, HistoryUI
from histdb.utils.logger import setup_logger

ZSH_INIT = """\
autoload -Uz add-zsh-hook

function histdb-init() {
  export HISTDB_SESSION_ID="$(histdb session-id)"
}

function histdb-addhistory() {
  unset HISTDB_RETVAL
  histdb start "${1%%$'\\n'}" &!
}

function histdb-precmd() {
  export HISTDB_RETVAL="${?}"
  histdb finish &!
}

add-zsh-hook zshaddhistory histdb-addhistory
add-zsh-hook precmd histdb-precmd

histdb-init
"""

session_option = click.option(
    "--session-id",
    envvar="HISTDB_SESSION_ID",
    type=click.UUID,
    required=True,
    help="Shell session id (default: $HISTDB_SESSION_ID)",
)


@dataclass
class CliContext:
    config: HistdbConfig
    ui: HistoryUI
    verbose: bool = False

    @property
    def client(self) -> DaemonClient:
        return DaemonClient(self.config.socket_path)


def _silence_stdout() -> None:
    # The reader went away (``histdb | head``); drop further output.
    devnull = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(devnull, sys.stdout.fileno())
    except (OSError, ValueError):
        logger.debug("stdout has no file descriptor to redirect")
    finally:
        os.close(devnull)


class HistdbGroup(click.Group):
    """Maps histdb errors to exit codes."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except BrokenPipeError:
            _silence_stdout()
            ctx.exit(ExitCode.SUCCESS)
        except DaemonNotRunningError as e:
            HistoryUI().error(f"❌ {e.message}")
            logger.debug(f"Daemon connection failed: {e}")
            ctx.exit(ExitCode.DAEMON_NOT_RUNNING)
        except StorageError as e:
            HistoryUI().error(f"❌ {e.message}")
            ctx.exit(ExitCode.STORAGE_FAILURE)
        except HistdbError as e:
            HistoryUI().error(f"❌ {e.message}")
            ctx.exit(ExitCode.FAILURE)


def _check(ctx: click.Context, response: Response) -> Response:
    """Exit with FAILURE on a not-found, invalid or error response."""
    if response.status in (ResponseStatus.NOT_FOUND, ResponseStatus.INVALID, ResponseStatus.ERROR):
        ctx.obj.ui.error(f"❌ {response.message or response.status.value}")
        ctx.exit(ExitCode.FAILURE)
    return response


@click.group(cls=HistdbGroup)
@click.version_option(version=__version__, prog_name="histdb")
@click.option(
    "--config", "config_file", type=click.Path(dir_okay=False, path_type=Path), default=None,
    help="Config file (default: ~/.config/histdb/config.yaml or $HISTDB_CONFIG)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr")
@click.pass_context
def cli(ctx: click.Context, config_file: Path | None, verbose: bool):
    """
    histdb - shell history across sessions and hosts.

    Commands are recorded by a small daemon fed from shell hooks
    (see ``histdb init``) into one append-only log per host.
    """
    # Sinks first so loading the config logs at the configured levels.
    setup_logger(verbose=verbose, to_file=False)
    config = load_config(config_file)
    setup_logger(verbose=verbose, level=config.log_level, to_file=False)
    ctx.obj = CliContext(config=config, ui=HistoryUI(), verbose=verbose)


# =============================================================================
# Daemon
# =============================================================================

@cli.command()
@click.pass_context
def server(ctx: click.Context):
    """Run the history daemon in the foreground."""
    obj: CliContext = ctx.obj
    setup_logger(verbose=obj.verbose, level=obj.config.log_level, to_file=True)
    try:
        daemon = HistoryDaemon(obj.config)
        code = daemon.serve_forever()
    except DaemonAlreadyRunningError as e:
        obj.ui.error(f"❌ {e.message}")
        code = ExitCode.FAILURE
    ctx.exit(code)


@cli.command()
@click.pass_context
def stop(ctx: click.Context):
    """Stop the history daemon."""
    _check(ctx, ctx.obj.client.stop())
    ctx.obj.ui.success("✅ Daemon stopping")


@cli.command("session-id")
def session_id():
    """Print a new session id."""
    click.echo(str(new_session_id()))


@cli.command()
def init():
    """Print the zsh hooks; add ``eval "$(histdb init)"`` to .zshrc."""
    click.echo(ZSH_INIT, nl=False)


# =============================================================================
# Shell hooks
# =============================================================================

@cli.command()
@session_option
@click.argument("command")
@click.pass_context
def start(ctx: click.Context, session_id: UUID, command: str):
    """Report that COMMAND started in the current session."""
    config: HistdbConfig = ctx.obj.config
    request = StartCommand(
        session_id=session_id,
        command=command.rstrip("\n"),
        pwd=os.getcwd(),
        hostname=config.resolve_hostname(),
        user=os.environ.get("USER", ""),
        time_start=utc_now(),
    )
    _check(ctx, ctx.obj.client.request(request))


@cli.command()
@session_option
@click.option(
    "--retval", envvar="HISTDB_RETVAL", type=int, required=True,
    help="Exit status of the command (default: $HISTDB_RETVAL)",
)
@click.pass_context
def finish(ctx: click.Context, session_id: UUID, retval: int):
    """Report that the running command of the session finished."""
    response = ctx.obj.client.finish_command(session_id, retval, time_finished=utc_now())
    if response.status == ResponseStatus.NOT_FOUND:
        # No start for this prompt (ignored command, fresh shell).
        logger.debug(response.message)
        return
    _check(ctx, response)


@cli.command()
@session_option
@click.pass_context
def running(ctx: click.Context, session_id: UUID):
    """Show the command running in the session."""
    response = _check(ctx, ctx.obj.client.currently_running(session_id))
    if response.running is not None:
        ctx.obj.ui.running(response.running)


@cli.command()
@session_option
@click.pass_context
def disable(ctx: click.Context, session_id: UUID):
    """Stop recording the current session."""
    _check(ctx, ctx.obj.client.disable_session(session_id))
    ctx.obj.ui.success("Recording disabled for this session")


@cli.command()
@session_option
@click.pass_context
def enable(ctx: click.Context, session_id: UUID):
    """Resume recording the current session."""
    _check(ctx, ctx.obj.client.enable_session(session_id))
    ctx.obj.ui.success("Recording enabled for this session")


# =============================================================================
# History
# =============================================================================

def _query(obj: CliContext, query_filter: QueryFilter) -> tuple[list[Entry], QueryStats | None, Response | None]:
    """Query through the daemon, or read the logs directly when it is down."""
    try:
        response = obj.client.query(query_filter)
    except DaemonNotRunningError:
        logger.debug("Daemon not running, reading history logs directly")
        with StorageEngine.open(obj.config.data_dir) as storage:
            result = QueryEngine(storage, obj.config.resolve_hostname()).run(query_filter)
        return result.entries, result.stats, None
    return response.entries or [], response.stats, response


@cli.command("list")
@click.option("--count", "-n", "limit", type=click.IntRange(min=0), default=DEFAULT_LIMIT,
              show_default=True, help="How many entries to print, 0 for all")
@click.option("--command", "-c", help="Only entries running this command")
@click.option("--prefix", is_flag=True, help="Match --command as a prefix of the command line")
@click.option("--text", "-t", "include_regex", help="Only entries matching this regex")
@click.option("--exclude", "exclude_regex", help="Skip entries matching this regex")
@click.option("--in", "in_current", is_flag=True, help="Only entries run in the current directory")
@click.option("--folder", "-f", type=click.Path(file_okay=False, path_type=Path),
              help="Only entries run in this directory")
@click.option("--no-subdirs", is_flag=True, help="Exclude subdirectories of the folder")
@click.option("--hostname", help="Entries of this host instead of the local one")
@click.option("--all-hosts", is_flag=True, help="Entries of every host")
@click.option("--session", "session_filter", type=click.UUID, help="Only entries of this session")
@click.option("--this-session", is_flag=True, help="Only entries of $HISTDB_SESSION_ID")
@click.option("--failed", is_flag=True, help="Only entries with a non-zero exit status")
@click.option("--exit-status", type=int, help="Only entries with this exit status")
@click.option("--stats", "with_stats", is_flag=True, help="Print statistics over all matches")
@click.option("--host", "show_host", is_flag=True, help="Show the host column")
@click.option("--status", "show_status", is_flag=True, help="Show the exit status column")
@click.option("--duration", "show_duration", is_flag=True, help="Show the duration column")
@click.option("--show-session", is_flag=True, help="Show the session column")
@click.option("--show-pwd", is_flag=True, help="Show the directory column")
@click.option("--no-header", is_flag=True, help="Do not print the header")
@click.option("--no-format", "plain", is_flag=True, help="Tab separated output without styling")
@click.pass_context
def list_history(ctx: click.Context, **options):
    """List history entries, newest last."""
    obj: CliContext = ctx.obj

    if options["in_current"] and options["folder"]:
        raise click.UsageError("--in and --folder are mutually exclusive")
    if options["hostname"] and options["all_hosts"]:
        raise click.UsageError("--hostname and --all-hosts are mutually exclusive")

    session_filter = options["session_filter"]
    if options["this_session"]:
        env_session = os.environ.get("HISTDB_SESSION_ID")
        if not env_session:
            raise click.UsageError("--this-session needs $HISTDB_SESSION_ID")
        try:
            session_filter = UUID(env_session)
        except ValueError as e:
            raise click.UsageError(f"Invalid $HISTDB_SESSION_ID: {env_session}") from e

    folder = Path.cwd() if options["in_current"] else options["folder"]
    if folder is not None:
        folder = folder.expanduser().absolute()

    try:
        query_filter = QueryFilter(
            hostname=options["hostname"],
            all_hosts=options["all_hosts"],
            folder=folder,
            include_subdirs=not options["no_subdirs"],
            command=options["command"],
            command_prefix=options["prefix"],
            include_regex=options["include_regex"],
            exclude_regex=options["exclude_regex"],
            session_id=session_filter,
            failed=options["failed"],
            status=options["exit_status"],
            limit=options["limit"],
            with_stats=options["with_stats"],
        )
    except PydanticValidationError as e:
        raise click.UsageError(e.errors()[0]["msg"]) from e

    entries, stats, response = _query(obj, query_filter)
    if response is not None:
        _check(ctx, response)

    columns = DisplayColumns(
        host=options["show_host"] or options["all_hosts"],
        duration=options["show_duration"],
        status=options["show_status"],
        session=options["show_session"],
        pwd=options["show_pwd"],
        header=not options["no_header"],
    )
    obj.ui.entries(entries, columns, plain=options["plain"])
    if stats is not None:
        obj.ui.stats(stats)


@cli.command()
@click.pass_obj
def hosts(obj: CliContext):
    """List hosts with a history log."""
    try:
        names = obj.client.list_hosts().hosts or []
    except DaemonNotRunningError:
        with StorageEngine.open(obj.config.data_dir) as storage:
            names = sorted(storage.list_hosts())
    obj.ui.hosts(names)


# =============================================================================
# Import
# =============================================================================

@cli.group("import")
def import_group():
    """Import existing shell history."""


on_error_option = click.option(
    "--on-error", type=click.Choice([p.value for p in ImportErrorPolicy]), default=None,
    help="skip (and count) or abort on malformed records (default: import_on_error setting)",
)


def _run_import(obj: CliContext, source) -> None:
    with StorageEngine.open(obj.config.data_dir) as storage:
        try:
            report = ingest(source, storage)
        except HistoryImportError as e:
            obj.ui.error(f"❌ Import aborted at {e.location}: {e.reason}")
            click.get_current_context().exit(ExitCode.FAILURE)

    obj.ui.success(
        f"✅ Imported {report.imported} entries ({report.skipped} skipped) "
        f"for {', '.join(report.hosts) or 'no hosts'}"
    )


@import_group.command("histdb")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path), required=False)
@on_error_option
@click.pass_obj
def import_histdb(obj: CliContext, path: Path | None, on_error: str | None):
    """Import a zsh-histdb database (default: ~/.histdb/zsh-history.db)."""
    source = HistdbSqliteSource(
        path or default_histdb_path(), on_error=on_error or obj.config.import_on_error
    )
    _run_import(obj, source)


@import_group.command("histfile")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path), required=False)
@on_error_option
@click.pass_obj
def import_histfile(obj: CliContext, path: Path | None, on_error: str | None):
    """Import a zsh history file (default: $HISTFILE or ~/.zsh_history)."""
    source = HistfileSource(
        path or default_histfile_path(),
        hostname=obj.config.resolve_hostname(),
        on_error=on_error or obj.config.import_on_error,
    )
    _run_import(obj, source)


def main() -> None:
    cli(prog_name="histdb")


if __name__ == "__main__":
    main()
