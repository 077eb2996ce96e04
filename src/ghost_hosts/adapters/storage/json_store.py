"""JSON document store with bounded, rotating backups.

Purpose
-------
Persist the entry-set document (``data.json``) and the application config
(``config.json``) inside the per-user data directory, keep timestamped
snapshots under ``backups/``, and restore them only after they validate.

Contents
--------
* :class:`JSONDocumentStore` – implementation of
  :class:`ghost_hosts.application.ports.DocumentStore`.
* :func:`snapshot_kind` – classify a filename inside the backup directory.
* Module constants naming the files and prefixes on disk.

System Role
-----------
The store is the only shared mutable resource. Each document kind has its own
:class:`~ghost_hosts.adapters.storage.locking.ReadWriteLock`; refresh ticks and
foreground operations serialize their writes through the same lock. Backup
cleanup is best-effort and logged; every other filesystem error surfaces as
:class:`~ghost_hosts.domain.errors.IOFailure`.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Final, Mapping, TypeVar

from ...application.ports import BackupKind
from ...domain.errors import InvalidFormat, IOFailure, MalformedBackup, NotFound, ValidationError
from ...domain.models import DEFAULT_MAX_BACKUPS, AppConfig, EntrySetDocument, timestamp
from ...observability import log_debug, log_error, log_info, log_warning
from .locking import ReadWriteLock

T = TypeVar("T")

DATA_FILE: Final[str] = "data.json"
CONFIG_FILE: Final[str] = "config.json"
BACKUP_DIR: Final[str] = "backups"
CONFIG_PREFIX: Final[str] = "config_"
SAFETY_PREFIX: Final[str] = "pre_restore_"
RAW_EXTERNAL_BACKUP: Final[str] = "raw_hosts_backup.txt"

_DATA_STAMP: Final[str] = "%Y-%m-%d_%H-%M-%S-%f"
_CONFIG_STAMP: Final[str] = "%Y%m%d_%H%M%S_%f"


def snapshot_kind(filename: str) -> BackupKind | None:
    """Return the document kind encoded in *filename*, ``None`` for non-snapshots.

    Safety snapshots are reported as ``None`` so neither listing
    nor rotation ever counts them.

    Examples
    --------
    >>> snapshot_kind("2024-05-01_10-00-00-000000.json")
    <BackupKind.DATA: 'data'>
    >>> snapshot_kind("config_20240501_100000_000000.json")
    <BackupKind.CONFIG: 'config'>
    >>> snapshot_kind("pre_restore_2024-05-01_10-00-00-000000.json") is None
    True
    >>> snapshot_kind("raw_hosts_backup.txt") is None
    True
    """

    if not filename.endswith(".json") or filename.startswith(SAFETY_PREFIX):
        return None
    if filename.startswith(CONFIG_PREFIX):
        return BackupKind.CONFIG
    return BackupKind.DATA


class JSONDocumentStore:
    """Persist ghost-hosts documents as pretty-printed JSON files.

    Why
    ----
    Two tiny documents do not justify a database, but they are read by
    background refresh threads and written by foreground commands at the same
    time, so every access goes through a per-document read/write lock and
    every write replaces the file atomically.

    Parameters
    ----------
    root:
        Data directory holding both documents and the ``backups`` folder. It
        is created when missing.
    clock:
        Callable returning the current (timezone aware) time. Injected by
        tests that need deterministic snapshot names.
    """

    def __init__(self, root: str | Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self.root = Path(root)
        self.data_path = self.root / DATA_FILE
        self.config_path = self.root / CONFIG_FILE
        self.backup_dir = self.root / BACKUP_DIR
        self._clock = clock or _local_now
        self._locks = {BackupKind.DATA: ReadWriteLock(), BackupKind.CONFIG: ReadWriteLock()}
        self._backup_lock = threading.Lock()
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailure(f"Cannot create data directory {self.root}: {exc}") from exc

    # ------------------------------------------------------------------ entries

    def load_entry_set(self) -> EntrySetDocument:
        """Return the persisted entry set, or a fresh empty document when none exists."""

        with self._locks[BackupKind.DATA].read_locked():
            return self._read_entry_set()

    def save_entry_set(self, document: EntrySetDocument) -> None:
        """Stamp ``updated_at`` and persist the whole entry-set document."""

        with self._locks[BackupKind.DATA].write_locked():
            self._write_entry_set(document)

    def modify_entry_set(self, mutator: Callable[[EntrySetDocument], T]) -> T:
        """Apply *mutator* to the live document and persist it, all under the write lock.

        Why
        ----
        A plain load/save pair lets a refresh tick and a foreground edit both
        read the same version and silently drop one another's change. Holding
        the write lock across read, mutate, and write serializes them.

        What
        ----
        Exceptions raised by *mutator* propagate and nothing is written. A
        document that already exists and that *mutator* left unchanged is not
        rewritten, so ``updatedAt`` only moves when an entry did.

        Examples
        --------
        >>> from tempfile import TemporaryDirectory
        >>> from ghost_hosts.domain.models import Entry
        >>> tmp = TemporaryDirectory()
        >>> store = JSONDocumentStore(tmp.name)
        >>> store.modify_entry_set(lambda doc: doc.entries.append(Entry(id="1", name="demo")))
        >>> [entry.name for entry in store.load_entry_set()]
        ['demo']
        >>> tmp.cleanup()
        """

        with self._locks[BackupKind.DATA].write_locked():
            document = self._read_entry_set()
            before = document.to_dict()
            result = mutator(document)
            if document.to_dict() == before and self.data_path.is_file():
                return result
            self._write_entry_set(document)
            return result

    # ------------------------------------------------------------------- config

    def load_config(self) -> AppConfig:
        """Return the persisted config, or built-in defaults when none exists."""

        with self._locks[BackupKind.CONFIG].read_locked():
            payload = self._read_json(self.config_path)
        if payload is None:
            return AppConfig.defaults(self._now())
        try:
            return AppConfig.from_dict(payload)
        except InvalidFormat as exc:
            raise InvalidFormat(f"{self.config_path}: {exc}") from exc

    def save_config(self, config: AppConfig) -> None:
        """Validate, stamp ``updated_at``, and persist the config document."""

        config.validate()
        with self._locks[BackupKind.CONFIG].write_locked():
            stamp = self._now()
            config.created_at = config.created_at or stamp
            config.updated_at = stamp
            self._write_json(self.config_path, config.to_dict())

    # ------------------------------------------------------------------ backups

    def create_backup(self, kind: BackupKind) -> str:
        """Snapshot the live document of *kind*, rotate, and return the snapshot filename.

        Raises
        ------
        NotFound
            When the live document has never been saved.
        IOFailure
            When the live document cannot be read or the snapshot written.
        """

        kind = BackupKind(kind)
        max_backups = self.load_config().max_backups
        source = self._live_path(kind)
        with self._locks[kind].read_locked():
            payload = self._read_bytes(source)
            if payload is None:
                raise NotFound(f"Nothing to back up: {source} does not exist")
            with self._backup_lock:
                target = self._unique_snapshot_path(self._snapshot_stem(kind))
                self._write_bytes(target, payload)
        log_info("backup_created", entry_id=None, path=str(target), kind=kind.value)
        self._rotate(kind, max_backups)
        return target.name

    def list_backups(self, kind: BackupKind) -> list[str]:
        """Return snapshot filenames of *kind*, newest first, safety snapshots excluded."""

        return [path.name for path in self._snapshots(BackupKind(kind))]

    def restore(self, kind: BackupKind, filename: str) -> None:
        """Replace the live document of *kind* with snapshot *filename*.

        Why
        ----
        A restore is destructive; the snapshot must prove it is a valid
        document before the live file is touched, and the live file is kept
        as a safety snapshot in case the user picked the wrong one.

        What
        ----
        1. Resolve and read the snapshot (``NotFound`` for unknown names).
        2. Parse and validate it (``MalformedBackup`` on failure).
        3. Under the write lock, copy the live document to a
           ``pre_restore_`` snapshot, then write the snapshot bytes verbatim.

        Rotation is not triggered here; safety snapshots never count toward
        ``maxBackups``.
        """

        kind = BackupKind(kind)
        path = self._snapshot_path(kind, filename)
        payload = self._read_bytes(path)
        if payload is None:
            raise NotFound(f"Backup not found: {filename}")
        self._validate_snapshot(kind, payload, filename)
        live = self._live_path(kind)
        with self._locks[kind].write_locked():
            current = self._read_bytes(live)
            if current is not None:
                with self._backup_lock:
                    safety = self._unique_snapshot_path(self._safety_stem(kind))
                    self._write_bytes(safety, current)
                log_debug("safety_snapshot_created", entry_id=None, path=str(safety))
            self._write_bytes(live, payload)
        log_info("backup_restored", entry_id=None, path=str(path), kind=kind.value)

    # ---------------------------------------------------- raw external snapshot

    def backup_raw_external(self, text: str) -> Path:
        """Keep a verbatim copy of the external file as it was before ghost-hosts touched it."""

        target = self.backup_dir / RAW_EXTERNAL_BACKUP
        with self._backup_lock:
            self._write_bytes(target, text.encode("utf-8", errors="surrogateescape"))
        log_info("raw_external_backup_created", entry_id=None, path=str(target))
        return target

    def has_raw_external_backup(self) -> bool:
        return (self.backup_dir / RAW_EXTERNAL_BACKUP).is_file()

    def read_raw_external_backup(self) -> str:
        """Return the raw external-file snapshot; ``NotFound`` when none was taken."""

        payload = self._read_bytes(self.backup_dir / RAW_EXTERNAL_BACKUP)
        if payload is None:
            raise NotFound("No raw hosts backup has been taken yet")
        return payload.decode("utf-8", errors="surrogateescape")

    def is_backup_dir_empty(self) -> bool:
        """Return ``True`` when the backup directory holds nothing but safety snapshots."""

        try:
            names = [path.name for path in self.backup_dir.iterdir() if path.is_file()]
        except FileNotFoundError:
            return True
        except OSError as exc:
            raise IOFailure(f"Cannot list {self.backup_dir}: {exc}") from exc
        return all(name.startswith(SAFETY_PREFIX) for name in names)

    # ---------------------------------------------------------------- internals

    def _read_entry_set(self) -> EntrySetDocument:
        payload = self._read_json(self.data_path)
        if payload is None:
            return EntrySetDocument.empty(self._now())
        try:
            return EntrySetDocument.from_dict(payload)
        except InvalidFormat as exc:
            raise InvalidFormat(f"{self.data_path}: {exc}") from exc

    def _write_entry_set(self, document: EntrySetDocument) -> None:
        stamp = self._now()
        document.created_at = document.created_at or stamp
        document.updated_at = stamp
        self._write_json(self.data_path, document.to_dict())

    def _read_json(self, path: Path) -> Any:
        """Return parsed JSON at *path*, ``None`` when the file does not exist."""

        payload = self._read_bytes(path)
        if payload is None:
            return None
        try:
            return json.loads(payload)
        except ValueError as exc:
            log_error("document_invalid", entry_id=None, path=str(path), error=str(exc))
            raise InvalidFormat(f"Invalid JSON in {path}: {exc}") from exc

    def _write_json(self, path: Path, data: Mapping[str, Any]) -> None:
        text = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
        self._write_bytes(path, text.encode("utf-8"))

    @staticmethod
    def _read_bytes(path: Path) -> bytes | None:
        try:
            payload = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise IOFailure(f"Cannot read {path}: {exc}") from exc
        log_debug("document_read", entry_id=None, path=str(path), size=len(payload))
        return payload

    @staticmethod
    def _write_bytes(path: Path, payload: bytes) -> None:
        """Write *payload* to a sibling temp file and move it over *path*."""

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(payload)
                os.replace(temp_name, path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise IOFailure(f"Cannot write {path}: {exc}") from exc
        log_debug("document_written", entry_id=None, path=str(path), size=len(payload))

    def _live_path(self, kind: BackupKind) -> Path:
        return self.data_path if kind is BackupKind.DATA else self.config_path

    def _snapshot_stem(self, kind: BackupKind) -> str:
        now = self._clock()
        if kind is BackupKind.CONFIG:
            return CONFIG_PREFIX + now.strftime(_CONFIG_STAMP)
        return now.strftime(_DATA_STAMP)

    def _safety_stem(self, kind: BackupKind) -> str:
        now = self._clock()
        if kind is BackupKind.CONFIG:
            return SAFETY_PREFIX + CONFIG_PREFIX + now.strftime(_CONFIG_STAMP)
        return SAFETY_PREFIX + now.strftime(_DATA_STAMP)

    def _unique_snapshot_path(self, stem: str) -> Path:
        # "_" sorts after "." so a suffixed name still orders after its twin.
        candidate = self.backup_dir / f"{stem}.json"
        counter = 1
        while candidate.exists():
            candidate = self.backup_dir / f"{stem}_{counter}.json"
            counter += 1
        return candidate

    def _snapshot_path(self, kind: BackupKind, filename: str) -> Path:
        if Path(filename).name != filename or snapshot_kind(filename) is not kind:
            raise NotFound(f"Backup not found: {filename}")
        return self.backup_dir / filename

    def _snapshots(self, kind: BackupKind) -> list[Path]:
        """Return snapshots of *kind* newest first (mtime, then filename)."""

        try:
            candidates = [
                path for path in self.backup_dir.iterdir() if path.is_file() and snapshot_kind(path.name) is kind
            ]
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise IOFailure(f"Cannot list {self.backup_dir}: {exc}") from exc
        stamped: list[tuple[int, str, Path]] = []
        for path in candidates:
            try:
                stamped.append((path.stat().st_mtime_ns, path.name, path))
            except OSError:
                continue
        stamped.sort(reverse=True)
        return [path for _, _, path in stamped]

    def _rotate(self, kind: BackupKind, max_backups: int) -> None:
        """Delete snapshots of *kind* beyond *max_backups*; failures are logged only."""

        limit = max_backups if max_backups > 0 else DEFAULT_MAX_BACKUPS
        removed = 0
        with self._backup_lock:
            try:
                stale = self._snapshots(kind)[limit:]
            except IOFailure as exc:
                log_warning("backup_cleanup_failed", entry_id=None, path=str(self.backup_dir), error=str(exc))
                return
            for path in stale:
                try:
                    path.unlink()
                except OSError as exc:
                    log_warning("backup_cleanup_failed", entry_id=None, path=str(path), error=str(exc))
                    continue
                removed += 1
        if removed:
            log_info("backup_rotated", entry_id=None, path=str(self.backup_dir), kind=kind.value, removed=removed)

    @staticmethod
    def _validate_snapshot(kind: BackupKind, payload: bytes, filename: str) -> None:
        try:
            data = json.loads(payload)
            if kind is BackupKind.DATA:
                for entry in EntrySetDocument.from_dict(data):
                    entry.validate()
            else:
                AppConfig.from_dict(data).validate()
        except (ValueError, InvalidFormat, ValidationError) as exc:
            log_error("backup_invalid", entry_id=None, path=filename, error=str(exc))
            raise MalformedBackup(f"Backup {filename} is not a valid {kind.value} document: {exc}") from exc

    def _now(self) -> str:
        return timestamp(self._clock())


def _local_now() -> datetime:
    return datetime.now().astimezone()
