"""Public package surface for ``ghost_hosts``.

Exposes the composition root, the pure section merger, and the error taxonomy
so embedding applications can drive ghost-hosts without importing adapter
modules, plus the logging helpers needed to attach handlers or bind trace ids.
"""

from __future__ import annotations

from .application.merge import END_MARKER, START_MARKER, extract_section, merge_section
from .application.ports import BackupKind
from .core import ApplyResult, GhostHosts, RefreshReport, create_app
from .domain.errors import (
    ElevationLaunched,
    FetchError,
    GhostError,
    InvalidFormat,
    IOFailure,
    MalformedBackup,
    NotFound,
    PermissionDenied,
    UnsupportedPlatform,
    ValidationError,
)
from .domain.models import AppConfig, Entry, EntrySetDocument
from .observability import bind_trace_id, get_logger

__all__ = [
    "START_MARKER",
    "END_MARKER",
    "AppConfig",
    "ApplyResult",
    "BackupKind",
    "ElevationLaunched",
    "Entry",
    "EntrySetDocument",
    "FetchError",
    "GhostError",
    "GhostHosts",
    "IOFailure",
    "InvalidFormat",
    "MalformedBackup",
    "NotFound",
    "PermissionDenied",
    "RefreshReport",
    "UnsupportedPlatform",
    "ValidationError",
    "bind_trace_id",
    "create_app",
    "extract_section",
    "get_logger",
    "merge_section",
]
