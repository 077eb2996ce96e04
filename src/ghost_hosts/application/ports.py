"""Application-layer ports describing adapter responsibilities.

Purpose
-------
Define the structural contracts the scheduler and the composition root rely on
so they can orchestrate behaviour without depending on concrete adapters.

Contents
--------
* :class:`BackupKind` – the two document kinds that can be snapshotted.
* :class:`DocumentStore` – persists entries and config with bounded backups.
* :class:`RemoteFetcher` – retrieves raw text for a URL.
* :class:`FileGateway` – reads and writes the external file.
* :class:`PrivilegeGate` – capability check and elevation request.

System Role
-----------
These protocols enforce Dependency Inversion. Tests substitute in-memory fakes
for the fetcher, gateway, and privilege gate through the same seams.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

from ..domain.models import AppConfig, EntrySetDocument

T = TypeVar("T")


class BackupKind(str, Enum):
    """Document kinds covered by snapshots."""

    DATA = "data"
    CONFIG = "config"


@runtime_checkable
class DocumentStore(Protocol):
    """Persist the entry-set and config documents with backup history.

    Why
    ----
    The store is the only shared mutable resource; every foreground operation
    and every refresh tick goes through it, so its locking discipline is the
    concurrency contract of the whole package.
    """

    def load_entry_set(self) -> EntrySetDocument:
        """Return the entry-set document, or a fresh empty one when none is persisted."""

    def save_entry_set(self, document: EntrySetDocument) -> None:
        """Stamp ``updated_at`` and persist the whole document."""

    def modify_entry_set(self, mutator: Callable[[EntrySetDocument], T]) -> T:
        """Run *mutator* on the live document under the write lock, then persist it."""

    def load_config(self) -> AppConfig:
        """Return the config document, or built-in defaults when none is persisted."""

    def save_config(self, config: AppConfig) -> None:
        """Stamp ``updated_at`` and persist the config document."""

    def create_backup(self, kind: BackupKind) -> str:
        """Snapshot the live document of *kind*, rotate old snapshots, return the filename."""

    def list_backups(self, kind: BackupKind) -> list[str]:
        """Return snapshot filenames of *kind*, newest first, safety snapshots excluded."""

    def restore(self, kind: BackupKind, filename: str) -> None:
        """Validate *filename* and replace the live document of *kind* with it."""


@runtime_checkable
class RemoteFetcher(Protocol):
    """Retrieve raw text for a remote entry."""

    def fetch(self, url: str) -> str:
        """Return the body at *url* or raise :class:`~ghost_hosts.domain.errors.FetchError`."""


@runtime_checkable
class FileGateway(Protocol):
    """Read and write the external file."""

    def read_file(self, path: str) -> str:
        """Return the content at *path*; raise ``IOFailure`` when unreadable."""

    def write_file(self, path: str, text: str) -> None:
        """Replace the content at *path*; raise ``IOFailure`` when the write fails."""

    def has_write_access(self, path: str) -> bool:
        """Return ``True`` when the current process may write *path*."""


@runtime_checkable
class PrivilegeGate(Protocol):
    """Capability check plus elevation request for the running platform."""

    def is_admin(self) -> bool:
        """Return ``True`` when the process already runs with elevated rights."""

    def request_elevation(self) -> Any:
        """Start an elevated copy or raise ``PermissionDenied`` / ``UnsupportedPlatform``."""
