"""CLI adapter for ``ghost_hosts`` built on ``lib_cli_exit_tools``.

Purpose
-------
Expose entry management, apply, refresh, config, and backup operations as a
command line tool so the hosts file can be managed from a shell or a timer
unit. Structured results are printed as JSON.

Contents
--------
* :data:`CLICK_CONTEXT_SETTINGS` – shared Click settings ensuring ``-h`` works.
* :func:`cli` – root command wiring traceback handling and console logging.
* Entry commands (``list``, ``show``, ``add``, ``update``, ``remove``,
  ``enable``, ``disable``).
* File commands (``apply``, ``preview``, ``status``, ``restore-raw``).
* Refresh commands (``refresh``, ``watch``).
* ``config`` group plus ``backup``, ``backups``, ``restore``.
* :func:`main` – entry point used by ``console_scripts`` registration.

System Role
-----------
The outermost layer. Commands call :class:`ghost_hosts.core.GhostHosts` only;
``lib_cli_exit_tools`` turns every exception into an exit code.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from importlib import metadata
from pathlib import Path
from typing import Any, Final, Optional, Sequence

import lib_cli_exit_tools
import rich_click as click

from .application.ports import BackupKind
from .core import GhostHosts, create_app
from .domain.errors import ElevationLaunched
from .observability import enable_console_logging, get_logger

CLICK_CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}
_TRACEBACK_SUMMARY_LIMIT: Final[int] = 500
_TRACEBACK_VERBOSE_LIMIT: Final[int] = 10_000
_DISTRIBUTION: Final[str] = "ghost-hosts"

KIND_CHOICES: Final[tuple[str, ...]] = tuple(kind.value for kind in BackupKind)


def _resolve_version() -> str:
    """Return the installed package version, ``"0.0.0"`` for source checkouts."""

    try:
        return metadata.version(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "0.0.0"


@click.group(
    help="Manage a delimited section of the system hosts file",
    context_settings=CLICK_CONTEXT_SETTINGS,
    invoke_without_command=False,
)
@click.version_option(
    version=_resolve_version(),
    prog_name="ghost-hosts",
    message="ghost-hosts version %(version)s",
)
@click.option(
    "--traceback/--no-traceback",
    is_flag=True,
    default=False,
    help="Show full Python traceback on errors",
)
@click.option("--verbose", "-v", count=True, help="Log to stderr (-v info, -vv debug)")
@click.pass_context
def cli(ctx: click.Context, traceback: bool, verbose: int) -> None:
    """Root command configuring traceback handling and logging for all subcommands.

    Side Effects
        Mutates ``lib_cli_exit_tools.config.traceback`` and
        ``lib_cli_exit_tools.config.traceback_force_color``; attaches a console
        handler to the package logger for the duration of the command when
        ``--verbose`` is given.
    """

    ctx.ensure_object(dict)
    ctx.obj["traceback"] = traceback
    lib_cli_exit_tools.config.traceback = traceback
    lib_cli_exit_tools.config.traceback_force_color = traceback
    if verbose:
        handler = enable_console_logging(logging.DEBUG if verbose > 1 else logging.INFO)
        ctx.call_on_close(lambda: get_logger().removeHandler(handler))


def _app(ctx: click.Context) -> GhostHosts:
    """Return the application for this invocation, building it on first use."""

    obj = ctx.find_root().ensure_object(dict)
    app = obj.get("app")
    if app is None:
        app = create_app()
        obj["app"] = app
    return app


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@cli.command("info", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_info() -> None:
    """Print basic distribution metadata so users can confirm installation."""

    try:
        meta = metadata.metadata(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        click.echo("ghost-hosts (metadata unavailable)")
        return
    click.echo(f"Info for {meta.get('Name', _DISTRIBUTION)}:")
    click.echo(f"  Version         : {meta.get('Version', _resolve_version())}")
    click.echo(f"  Requires-Python : {meta.get('Requires-Python', '>=3.10')}")
    summary = meta.get("Summary")
    if summary:
        click.echo(f"  Summary         : {summary}")


# ------------------------------------------------------------------- entries


@cli.command("list", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("--enabled-only", is_flag=True, default=False, help="Only list enabled entries")
@click.pass_context
def cli_list(ctx: click.Context, enabled_only: bool) -> None:
    """Print all entries as JSON, in merge order."""

    entries = _app(ctx).entries()
    if enabled_only:
        entries = [entry for entry in entries if entry.enabled]
    _echo_json([entry.to_dict() for entry in entries])


@cli.command("show", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("entry_id")
@click.pass_context
def cli_show(ctx: click.Context, entry_id: str) -> None:
    """Print one entry as JSON."""

    _echo_json(_app(ctx).get_entry(entry_id).to_dict())


@cli.command("add", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("name")
@click.option("--content", default=None, help="Entry text block")
@click.option(
    "--content-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False, readable=True),
    default=None,
    help="Read the text block from a file",
)
@click.option("--description", default="", help="Free-form description")
@click.option("--enabled/--disabled", default=False, show_default=True, help="Include the entry on apply")
@click.option("--url", default="", help="Remote source; makes the entry remote")
@click.option("--interval", type=click.IntRange(min=0), default=None, help="Refresh interval in seconds")
@click.pass_context
def cli_add(
    ctx: click.Context,
    name: str,
    content: Optional[str],
    content_file: Optional[Path],
    description: str,
    enabled: bool,
    url: str,
    interval: Optional[int],
) -> None:
    """Create an entry and print it as JSON (including its generated id)."""

    entry = _app(ctx).add_entry(
        name,
        content=_content(content, content_file) or "",
        description=description,
        enabled=enabled,
        is_remote=bool(url),
        url=url,
        refresh_interval=interval,
    )
    _echo_json(entry.to_dict())


@cli.command("update", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("entry_id")
@click.option("--name", default=None)
@click.option("--content", default=None)
@click.option(
    "--content-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False, readable=True),
    default=None,
)
@click.option("--description", default=None)
@click.option("--url", default=None, help="Remote source; an empty string makes the entry local")
@click.option("--interval", type=click.IntRange(min=0), default=None, help="Refresh interval in seconds")
@click.pass_context
def cli_update(
    ctx: click.Context,
    entry_id: str,
    name: Optional[str],
    content: Optional[str],
    content_file: Optional[Path],
    description: Optional[str],
    url: Optional[str],
    interval: Optional[int],
) -> None:
    """Change selected fields of an entry and print the result."""

    changes: dict[str, Any] = {}
    if name is not None:
        changes["name"] = name
    text = _content(content, content_file)
    if text is not None:
        changes["content"] = text
    if description is not None:
        changes["description"] = description
    if url is not None:
        changes["url"] = url
        changes["is_remote"] = bool(url)
    if interval is not None:
        changes["refresh_interval"] = interval
    if not changes:
        raise click.UsageError("Nothing to update; pass at least one option")
    _echo_json(_app(ctx).update_entry(entry_id, **changes).to_dict())


@cli.command("remove", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("entry_id")
@click.pass_context
def cli_remove(ctx: click.Context, entry_id: str) -> None:
    """Delete an entry (its refresh task is stopped first)."""

    removed = _app(ctx).delete_entry(entry_id)
    click.echo(f"Removed {removed.label} ({removed.id})")


@cli.command("enable", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("entry_id")
@click.pass_context
def cli_enable(ctx: click.Context, entry_id: str) -> None:
    entry = _app(ctx).toggle_entry(entry_id, True)
    click.echo(f"Enabled {entry.label}")


@cli.command("disable", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("entry_id")
@click.pass_context
def cli_disable(ctx: click.Context, entry_id: str) -> None:
    entry = _app(ctx).toggle_entry(entry_id, False)
    click.echo(f"Disabled {entry.label}")


# ---------------------------------------------------------------- hosts file


@cli.command("apply", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("--no-refresh", is_flag=True, default=False, help="Use stored content for remote entries")
@click.pass_context
def cli_apply(ctx: click.Context, no_refresh: bool) -> None:
    """Write the enabled entries into the managed section of the hosts file."""

    try:
        result = _app(ctx).apply(refresh=not no_refresh)
    except ElevationLaunched:
        click.echo("Started an elevated copy to finish applying; this process exits now.")
        return
    _echo_json(result.to_dict())


@cli.command("preview", context_settings=CLICK_CONTEXT_SETTINGS)
@click.pass_context
def cli_preview(ctx: click.Context) -> None:
    """Print the hosts file as ``apply`` would write it."""

    click.echo(_app(ctx).preview().encode("utf-8", errors="surrogateescape"), nl=False)


@cli.command("status", context_settings=CLICK_CONTEXT_SETTINGS)
@click.pass_context
def cli_status(ctx: click.Context) -> None:
    """Show the hosts file path, write access, and the applied groups."""

    _echo_json(_app(ctx).status())


@cli.command("restore-raw", context_settings=CLICK_CONTEXT_SETTINGS)
@click.pass_context
def cli_restore_raw(ctx: click.Context) -> None:
    """Write back the hosts file as it was before ghost-hosts first touched it."""

    try:
        path = _app(ctx).restore_raw_hosts()
    except ElevationLaunched:
        click.echo("Started an elevated copy to finish restoring; this process exits now.")
        return
    click.echo(f"Restored {path}")


# ------------------------------------------------------------------- refresh


@cli.command("refresh", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("entry_id", required=False)
@click.pass_context
def cli_refresh(ctx: click.Context, entry_id: Optional[str]) -> None:
    """Fetch one remote entry (or all of them) now and store the new content."""

    app = _app(ctx)
    if entry_id is None:
        _echo_json(app.refresh_remote_entries().to_dict())
        return
    _echo_json({"entry_id": entry_id, "changed": app.refresh_entry(entry_id)})


@cli.command("watch", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option(
    "--duration",
    type=click.FloatRange(min=0),
    default=None,
    help="Stop after this many seconds instead of waiting for Ctrl+C",
)
@click.option(
    "--poll",
    type=click.FloatRange(min=0, min_open=True),
    default=5.0,
    show_default=True,
    help="Seconds between re-reads of the stored entries",
)
@click.pass_context
def cli_watch(ctx: click.Context, duration: Optional[float], poll: float) -> None:
    """Run refresh tasks for every schedulable remote entry until interrupted.

    Entries changed by other ghost-hosts runs are picked up every ``--poll``
    seconds; switching ``autoRefreshEnabled`` off ends the watch.
    """

    app = _app(ctx)
    app.ensure_initial_backup()
    failures = app.start_auto_refresh()
    for failed_id, error in failures.items():
        click.echo(f"Could not start refresh for {failed_id}: {error}", err=True)
    click.echo(f"Watching {len(app.scheduler.running_ids())} remote entries")
    deadline = None if duration is None else time.monotonic() + duration
    try:
        while app.auto_refresh_active:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                break
            time.sleep(poll if remaining is None else min(poll, remaining))
            app.resync_auto_refresh()
    except KeyboardInterrupt:
        click.echo("Interrupted")
    finally:
        app.shutdown()


# -------------------------------------------------------------------- config


@cli.group("config", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_config() -> None:
    """Inspect or change the application config."""


@cli_config.command("show", context_settings=CLICK_CONTEXT_SETTINGS)
@click.pass_context
def cli_config_show(ctx: click.Context) -> None:
    _echo_json(_app(ctx).get_config().to_dict())


@cli_config.command("set", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("key")
@click.argument("value")
@click.pass_context
def cli_config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set KEY (camelCase, e.g. ``maxBackups``) to VALUE (parsed as JSON when possible)."""

    _echo_json(_app(ctx).update_config({key: _parse_value(value)}).to_dict())


# ------------------------------------------------------------------- backups


@cli.command("backup", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option(
    "--kind",
    type=click.Choice((*KIND_CHOICES, "raw"), case_sensitive=False),
    default=BackupKind.DATA.value,
    show_default=True,
    help="Document to snapshot; 'raw' re-captures the hosts file itself",
)
@click.pass_context
def cli_backup(ctx: click.Context, kind: str) -> None:
    """Snapshot a document and print the snapshot name."""

    app = _app(ctx)
    if kind.lower() == "raw":
        click.echo(str(app.backup_raw_hosts()))
        return
    click.echo(app.create_backup(BackupKind(kind.lower())))


@cli.command("backups", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("--kind", type=click.Choice(KIND_CHOICES, case_sensitive=False), default=BackupKind.DATA.value)
@click.pass_context
def cli_backups(ctx: click.Context, kind: str) -> None:
    """List snapshots of a document, newest first."""

    _echo_json(_app(ctx).list_backups(BackupKind(kind.lower())))


@cli.command("restore", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("filename")
@click.option("--kind", type=click.Choice(KIND_CHOICES, case_sensitive=False), default=BackupKind.DATA.value)
@click.pass_context
def cli_restore(ctx: click.Context, filename: str, kind: str) -> None:
    """Replace a live document with snapshot FILENAME after validating it."""

    _app(ctx).restore_backup(filename, BackupKind(kind.lower()))
    click.echo(f"Restored {filename}")


def _content(content: Optional[str], content_file: Optional[Path]) -> Optional[str]:
    if content is not None and content_file is not None:
        raise click.UsageError("Use either --content or --content-file, not both")
    if content_file is not None:
        return content_file.read_text(encoding="utf-8")
    return content


def _parse_value(value: str) -> Any:
    """Interpret *value* as JSON, falling back to the raw string.

    Examples
    --------
    >>> _parse_value("true"), _parse_value("5"), _parse_value("/etc/hosts")
    (True, 5, '/etc/hosts')
    """

    try:
        return json.loads(value)
    except ValueError:
        return value


def main(argv: Optional[Sequence[str]] = None, *, restore_traceback: bool = True) -> int:
    """Execute the CLI with shared exit handling and return the exit code."""

    previous_traceback = getattr(lib_cli_exit_tools.config, "traceback", False)
    previous_force_color = getattr(lib_cli_exit_tools.config, "traceback_force_color", False)
    try:
        try:
            return lib_cli_exit_tools.run_cli(
                cli,
                argv=list(argv) if argv is not None else None,
                prog_name="ghost-hosts",
            )
        except BaseException as exc:  # noqa: BLE001 - funnel through shared printers
            lib_cli_exit_tools.print_exception_message(
                trace_back=lib_cli_exit_tools.config.traceback,
                length_limit=(
                    _TRACEBACK_VERBOSE_LIMIT if lib_cli_exit_tools.config.traceback else _TRACEBACK_SUMMARY_LIMIT
                ),
            )
            return lib_cli_exit_tools.get_system_exit_code(exc)
    finally:
        if restore_traceback:
            lib_cli_exit_tools.config.traceback = previous_traceback
            lib_cli_exit_tools.config.traceback_force_color = previous_force_color


if __name__ == "__main__":  # pragma: no cover - exercised via console entry point
    raise SystemExit(main(sys.argv[1:]))
