"""Composition root for ``ghost_hosts``.

Purpose
-------
Wire the document store, the refresh scheduler, and the platform adapters into
one facade that the CLI (or any embedding application) drives. Entry CRUD lives
here because every mutation must also keep the scheduler registry in step with
the persisted entry settings.

Contents
--------
* :class:`ApplyResult` – outcome of one apply run.
* :class:`GhostHosts` – entry management, apply/preview, refresh, config, and
  backup operations.
* :func:`create_app` – build a :class:`GhostHosts` from the default adapters.

System Role
-----------
The only module that knows every adapter. Tests build :class:`GhostHosts`
directly with in-memory fakes for the fetcher, the file gateway, and the
privilege gate.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .adapters.hosts_file.default import HostsFileGateway
from .adapters.path_resolvers.default import DefaultPathResolver
from .adapters.privilege.default import default_privilege_gate
from .adapters.remote.http import HttpRemoteFetcher
from .adapters.storage.json_store import JSONDocumentStore
from .application.merge import extract_section, merge_section
from .application.ports import BackupKind, DocumentStore, FileGateway, PrivilegeGate, RemoteFetcher
from .application.scheduler import RefreshScheduler
from .domain.errors import GhostError, InvalidFormat, NotFound, PermissionDenied, UnsupportedPlatform, ValidationError
from .domain.models import CONFIG_FIELDS, AppConfig, Entry, EntrySetDocument, new_entry_id, timestamp
from .observability import bind_trace_id, log_debug, log_info, log_warning, make_event

#: Entry attributes callers may change through :meth:`GhostHosts.update_entry`.
EDITABLE_FIELDS = frozenset({"name", "content", "description", "enabled", "is_remote", "url", "refresh_interval"})


@dataclass(frozen=True, slots=True)
class ApplyResult:
    """What an apply run wrote and refreshed.

    Attributes
    ----------
    path:
        External file that was rewritten.
    applied_entries:
        Ids of the enabled entries placed in the managed section, in order.
    refreshed_entries:
        Ids of remote entries whose content changed during the run.
    backup:
        Filename of the data snapshot taken afterwards, ``None`` when backups
        are disabled.
    """

    path: str
    applied_entries: tuple[str, ...] = ()
    refreshed_entries: tuple[str, ...] = ()
    backup: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "applied_entries": list(self.applied_entries),
            "refreshed_entries": list(self.refreshed_entries),
            "backup": self.backup,
        }


@dataclass(slots=True)
class RefreshReport:
    """Result of refreshing every remote entry once."""

    changed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"changed": self.changed, "unchanged": self.unchanged, "failed": self.failed}


class GhostHosts:
    """Facade over the store, the scheduler, and the external file.

    Why
    ----
    Callers should not have to remember that deleting an entry stops its
    refresh task, or that apply needs write access first. The facade owns
    these couplings.

    Parameters
    ----------
    store / scheduler / gateway / privilege / fetcher:
        Collaborators; see :mod:`ghost_hosts.application.ports`.
    default_hosts_path:
        External file used when ``AppConfig.external_file_path`` is empty.
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        scheduler: RefreshScheduler,
        gateway: FileGateway,
        privilege: PrivilegeGate,
        fetcher: RemoteFetcher,
        default_hosts_path: str | Path,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.gateway = gateway
        self.privilege = privilege
        self.fetcher = fetcher
        self.default_hosts_path = str(default_hosts_path)
        self._auto_refresh = False

    # ------------------------------------------------------------------ entries

    def entries(self) -> list[Entry]:
        return list(self.store.load_entry_set())

    def get_entry(self, entry_id: str) -> Entry:
        entry = self.store.load_entry_set().find(entry_id)
        if entry is None:
            raise NotFound(f"Entry not found: {entry_id}")
        return entry

    def add_entry(
        self,
        name: str,
        *,
        content: str = "",
        description: str = "",
        enabled: bool = False,
        is_remote: bool = False,
        url: str = "",
        refresh_interval: int | None = None,
    ) -> Entry:
        """Create, validate, and persist a new entry; return it with its generated id.

        Remote entries without an explicit interval inherit
        ``AppConfig.default_refresh_interval``.
        """

        if refresh_interval is None:
            refresh_interval = self.store.load_config().default_refresh_interval if is_remote else 0
        stamp = timestamp()
        entry = Entry(
            id=new_entry_id(),
            name=name,
            content=content,
            description=description,
            enabled=enabled,
            is_remote=is_remote,
            url=url,
            refresh_interval=refresh_interval,
            created_at=stamp,
            updated_at=stamp,
        ).validate()
        self.store.modify_entry_set(lambda document: document.entries.append(entry))
        log_info("entry_added", **make_event(entry.id, None, {"name": entry.name}))
        self._sync(entry)
        return entry

    def update_entry(self, entry_id: str, **changes: Any) -> Entry:
        """Apply *changes* to an entry, keeping ``id`` and ``created_at``.

        Raises
        ------
        ValidationError
            For unknown fields or when the result violates an entry invariant.
        NotFound
            When *entry_id* does not exist.
        """

        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown entry field(s): {', '.join(unknown)}")

        def mutate(document: EntrySetDocument) -> Entry:
            current = document.find(entry_id)
            if current is None:
                raise NotFound(f"Entry not found: {entry_id}")
            updated = current.evolve(**changes, updated_at=timestamp()).validate()
            document.replace_entry(updated)
            return updated

        entry = self.store.modify_entry_set(mutate)
        log_info("entry_updated", **make_event(entry_id, None, {"fields": sorted(changes)}))
        self._sync(entry)
        return entry

    def toggle_entry(self, entry_id: str, enabled: bool) -> Entry:
        return self.update_entry(entry_id, enabled=enabled)

    def delete_entry(self, entry_id: str) -> Entry:
        """Stop the entry's refresh task, then remove the entry."""

        self.scheduler.stop(entry_id)

        def mutate(document: EntrySetDocument) -> Entry:
            removed = document.remove(entry_id)
            if removed is None:
                raise NotFound(f"Entry not found: {entry_id}")
            return removed

        removed = self.store.modify_entry_set(mutate)
        log_info("entry_deleted", **make_event(entry_id, None, {"name": removed.name}))
        return removed

    # -------------------------------------------------------------------- apply

    def external_path(self) -> str:
        """Return the configured external file, falling back to the platform default."""

        return self.store.load_config().external_file_path or self.default_hosts_path

    def system_content(self) -> str:
        return self.gateway.read_file(self.external_path())

    def preview(self) -> str:
        """Return what :meth:`apply` would write, without refreshing or writing anything."""

        current = self._read_current(self.external_path())
        return merge_section(current, self.store.load_entry_set().enabled_entries())

    def apply(self, *, refresh: bool = True) -> ApplyResult:
        """Merge the enabled entries into the external file.

        What
        ----
        1. Check write access; without it request elevation. A launched
           elevated copy surfaces as ``ElevationLaunched``; a failed request
           surfaces as ``PermissionDenied`` chained to the cause (or
           ``UnsupportedPlatform``).
        2. Fetch every enabled remote entry once (failures are logged and the
           stored content is used).
        3. Merge, write the external file, then persist refreshed content.
        4. Take a data snapshot when ``backup_enabled``.
        """

        bind_trace_id(f"apply-{uuid.uuid4().hex[:12]}")
        try:
            path = self.external_path()
            self._ensure_writable(path)
            document = self.store.load_entry_set()
            fetched = self._fetch_enabled_remote(document) if refresh else {}
            enabled = [_with_content(entry, fetched) for entry in document.enabled_entries()]
            current = self._read_current(path)
            self.ensure_initial_backup(current)
            self.gateway.write_file(path, merge_section(current, enabled))
            refreshed = self.store.modify_entry_set(lambda live: _store_fetched(live, fetched))
            config = self.store.load_config()
            backup = self.store.create_backup(BackupKind.DATA) if config.backup_enabled else None
            result = ApplyResult(
                path=path,
                applied_entries=tuple(entry.id for entry in enabled),
                refreshed_entries=tuple(refreshed),
                backup=backup,
            )
            log_info("apply_completed", **make_event(None, path, {"entries": len(enabled), "refreshed": len(refreshed)}))
            return result
        finally:
            bind_trace_id(None)

    def status(self) -> dict[str, Any]:
        """Summarize the external file, the managed section, and running tasks."""

        path = self.external_path()
        try:
            section = extract_section(self.gateway.read_file(path))
        except NotFound:
            section = None
        groups = [line[len("# Start of group: ") :] for line in section or [] if line.startswith("# Start of group: ")]
        document = self.store.load_entry_set()
        return {
            "path": path,
            "writable": self.gateway.has_write_access(path),
            "admin": self.privilege.is_admin(),
            "managed_section": section is not None,
            "applied_groups": groups,
            "enabled_entries": [entry.label for entry in document.enabled_entries()],
            "auto_refresh": self._auto_refresh,
            "running_tasks": self.scheduler.running_ids(),
        }

    # ------------------------------------------------------------------ refresh

    def refresh_entry(self, entry_id: str) -> bool:
        """Fetch one remote entry now; return whether its content changed."""

        return self.scheduler.refresh_now(entry_id)

    def refresh_remote_entries(self) -> RefreshReport:
        """Fetch every remote entry once, collecting failures instead of raising."""

        report = RefreshReport()
        for entry in self.store.load_entry_set():
            if not entry.is_remote or not entry.url.strip():
                continue
            try:
                changed = self.scheduler.refresh_now(entry.id)
            except GhostError as exc:
                log_warning("remote_refresh_failed", **make_event(entry.id, entry.url, {"error": str(exc)}))
                report.failed[entry.id] = str(exc)
                continue
            (report.changed if changed else report.unchanged).append(entry.id)
        return report

    def start_auto_refresh(self) -> dict[str, GhostError | RuntimeError]:
        """Start refresh tasks for every schedulable entry; return per-entry failures.

        Raises
        ------
        ValidationError
            When ``autoRefreshEnabled`` is off in the config.
        """

        if not self.store.load_config().auto_refresh_enabled:
            raise ValidationError("Auto refresh is disabled in config (set autoRefreshEnabled to true)")
        self._auto_refresh = True
        failures = self.scheduler.start_all()
        log_info("auto_refresh_started", entry_id=None, path=None, running=len(self.scheduler.running_ids()))
        return failures

    def stop_auto_refresh(self) -> None:
        self._auto_refresh = False
        self.scheduler.stop_all()

    def resync_auto_refresh(self) -> None:
        """Bring running tasks in line with the stored entries and config.

        Entry mutations through this instance re-sync at once. Edits made by
        another process only show up in the store, so long-running callers
        such as ``watch`` call this periodically. Auto refresh ends when
        ``autoRefreshEnabled`` was switched off elsewhere.
        """

        if not self._auto_refresh:
            return
        if not self.store.load_config().auto_refresh_enabled:
            self.stop_auto_refresh()
            return
        entries = self.store.load_entry_set().entries
        known = {entry.id for entry in entries}
        for entry_id in self.scheduler.running_ids():
            if entry_id not in known:
                self.scheduler.stop(entry_id)
        for entry in entries:
            self.scheduler.sync(entry)

    @property
    def auto_refresh_active(self) -> bool:
        return self._auto_refresh

    # ------------------------------------------------------------------- config

    def get_config(self) -> AppConfig:
        return self.store.load_config()

    def update_config(self, changes: Mapping[str, Any]) -> AppConfig:
        """Persist *changes* keyed by their camelCase config names.

        Examples
        --------
        >>> from tempfile import TemporaryDirectory
        >>> tmp = TemporaryDirectory()
        >>> app = create_app(env={"GHOST_HOSTS_DATA_DIR": tmp.name})
        >>> app.update_config({"maxBackups": 3}).max_backups
        3
        >>> app.update_config({"colour": "blue"})
        Traceback (most recent call last):
        ...
        ghost_hosts.domain.errors.ValidationError: Unknown config key(s): colour
        >>> tmp.cleanup()
        """

        unknown = sorted(set(changes) - set(CONFIG_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown config key(s): {', '.join(unknown)}")
        current = self.store.load_config()
        try:
            updated = AppConfig.from_dict({**current.to_dict(), **changes})
        except InvalidFormat as exc:
            raise ValidationError(str(exc)) from exc
        self.store.save_config(updated)
        log_info("config_updated", entry_id=None, path=None, keys=sorted(changes))
        if self._auto_refresh and not updated.auto_refresh_enabled:
            self.stop_auto_refresh()
        return updated

    # ------------------------------------------------------------------ backups

    def create_backup(self, kind: BackupKind = BackupKind.DATA) -> str:
        return self.store.create_backup(kind)

    def list_backups(self, kind: BackupKind = BackupKind.DATA) -> list[str]:
        return self.store.list_backups(kind)

    def restore_backup(self, filename: str, kind: BackupKind = BackupKind.DATA) -> None:
        """Restore a snapshot; restoring entries re-syncs running refresh tasks."""

        self.store.restore(kind, filename)
        if BackupKind(kind) is BackupKind.DATA and self._auto_refresh:
            self.scheduler.stop_all()
            self.scheduler.start_all()

    def ensure_initial_backup(self, current: str | None = None) -> Path | None:
        """Keep a raw copy of the external file the first time ghost-hosts sees it."""

        if self.store.has_raw_external_backup():
            return None
        if current is None:
            try:
                current = self.system_content()
            except NotFound:
                return None
        return self.store.backup_raw_external(current)

    def backup_raw_hosts(self) -> Path:
        """Overwrite the raw snapshot with the external file as it is now."""

        return self.store.backup_raw_external(self.system_content())

    def restore_raw_hosts(self) -> str:
        """Write the raw snapshot back to the external file and return its path."""

        text = self.store.read_raw_external_backup()
        path = self.external_path()
        self._ensure_writable(path)
        self.gateway.write_file(path, text)
        log_info("raw_external_restored", entry_id=None, path=path)
        return path

    def shutdown(self) -> None:
        """Stop every refresh task and snapshot the config, logging failures."""

        self.stop_auto_refresh()
        try:
            self.store.create_backup(BackupKind.CONFIG)
        except NotFound:
            log_debug("config_backup_skipped", entry_id=None, path=None)
        except GhostError as exc:
            log_warning("config_backup_failed", entry_id=None, path=None, error=str(exc))

    # ---------------------------------------------------------------- internals

    def _sync(self, entry: Entry) -> None:
        # Only this process sees the change here; see resync_auto_refresh.
        if self._auto_refresh:
            self.scheduler.sync(entry)
        else:
            self.scheduler.stop(entry.id)

    def _ensure_writable(self, path: str) -> None:
        if self.gateway.has_write_access(path):
            return
        denied = PermissionDenied(f"No write access to {path}")
        log_warning("write_access_denied", entry_id=None, path=path)
        try:
            self.privilege.request_elevation()
        except UnsupportedPlatform:
            raise
        except PermissionDenied as exc:
            raise denied from exc
        raise denied

    def _read_current(self, path: str) -> str:
        try:
            return self.gateway.read_file(path)
        except NotFound:
            return ""

    def _fetch_enabled_remote(self, document: EntrySetDocument) -> dict[str, str]:
        fetched: dict[str, str] = {}
        for entry in document.enabled_entries():
            if not entry.is_remote or not entry.url.strip():
                continue
            try:
                fetched[entry.id] = self.fetcher.fetch(entry.url)
            except GhostError as exc:
                log_warning("remote_refresh_failed", **make_event(entry.id, entry.url, {"error": str(exc)}))
        return fetched


def _with_content(entry: Entry, fetched: Mapping[str, str]) -> Entry:
    content = fetched.get(entry.id)
    return entry if content is None else entry.evolve(content=content)


def _store_fetched(document: EntrySetDocument, fetched: Mapping[str, str]) -> list[str]:
    changed: list[str] = []
    stamp = timestamp()
    for entry in list(document):
        content = fetched.get(entry.id)
        if content is None or content == entry.content:
            continue
        document.replace_entry(entry.evolve(content=content, last_updated=stamp, updated_at=stamp))
        changed.append(entry.id)
    return changed


def create_app(
    *,
    env: Mapping[str, str] | None = None,
    platform: str | None = None,
    fetcher: RemoteFetcher | None = None,
    gateway: FileGateway | None = None,
    privilege: PrivilegeGate | None = None,
    interval_scale: float = 1.0,
) -> GhostHosts:
    """Build a :class:`GhostHosts` wired to the default adapters.

    Parameters
    ----------
    env:
        Environment overrides (``GHOST_HOSTS_DATA_DIR``, ``GHOST_HOSTS_FILE``,
        platform variables) layered over ``os.environ``.
    platform:
        ``sys.platform`` clone selecting paths and the elevation strategy.
    fetcher / gateway / privilege:
        Replacement adapters, mostly for tests.
    """

    resolver = DefaultPathResolver(env=env, platform=platform)
    store = JSONDocumentStore(resolver.data_dir())
    fetcher = fetcher or HttpRemoteFetcher()
    app = GhostHosts(
        store=store,
        scheduler=RefreshScheduler(store, fetcher, interval_scale=interval_scale),
        gateway=gateway or HostsFileGateway(),
        privilege=privilege or default_privilege_gate(resolver.platform),
        fetcher=fetcher,
        default_hosts_path=resolver.hosts_path(),
    )
    log_debug("app_created", entry_id=None, path=str(store.root), platform=resolver.platform)
    return app


__all__ = [
    "ApplyResult",
    "GhostHosts",
    "RefreshReport",
    "create_app",
]
