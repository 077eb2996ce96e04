"""Domain records persisted by ghost-hosts.

Purpose
-------
Describe the entry, the entry-set document, and the application configuration
as explicit typed records. This module belongs to the domain layer and contains
no I/O; JSON conversion is limited to plain ``dict`` payloads so the storage
adapter owns the actual encoding.

Contents
--------
* :class:`Entry` – one named text block, optionally sourced from a URL.
* :class:`EntrySetDocument` – ordered entries plus document metadata.
* :class:`AppConfig` – application settings and their defaults.
* :func:`timestamp` / :func:`new_entry_id` – helpers shared by the services.
* :data:`START_MARKER` / :data:`END_MARKER` and :func:`contains_marker` – the
  lines that delimit the managed section.

System Role
-----------
The section merger consumes :class:`Entry` objects directly; the document store
converts documents to and from the camelCase JSON layout and relies on the
``from_dict`` validators when restoring snapshots.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Final, Iterator, Mapping

from .errors import InvalidFormat, ValidationError

DOCUMENT_VERSION: Final[str] = "1.0.0"
DEFAULT_REFRESH_INTERVAL: Final[int] = 3600
DEFAULT_MAX_BACKUPS: Final[int] = 10

#: Lines delimiting the managed section of the external file.
START_MARKER: Final[str] = "# >>> Ghost Host Entries"
END_MARKER: Final[str] = "# <<< Ghost Host Entries"

_MISSING = object()


def timestamp(moment: datetime | None = None) -> str:
    """Return *moment* (default: now) as a local ISO-8601 string with offset.

    Examples
    --------
    >>> from datetime import timezone
    >>> timestamp(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
    '2024-05-01T12:00:00+00:00'
    """

    moment = moment or datetime.now().astimezone()
    return moment.isoformat(timespec="seconds")


def new_entry_id() -> str:
    """Return a fresh opaque entry identifier."""

    return str(uuid.uuid4())


def contains_marker(text: str) -> bool:
    """Return ``True`` when a line of *text* is a managed-section marker.

    Examples
    --------
    >>> contains_marker("1.1.1.1 a.test\n  # <<< Ghost Host Entries")
    True
    >>> contains_marker("# >>> Ghost Host Entries are great")
    False
    """

    return any(line.strip() in (START_MARKER, END_MARKER) for line in text.splitlines())


@dataclass(frozen=True, slots=True)
class Entry:
    """A named text block merged into the managed section when enabled.

    Why
    ----
    The merge step and the scheduler need a typed record instead of loose
    mappings so field names and invariants are checked in one place.

    Attributes
    ----------
    id:
        Opaque unique identifier, assigned on creation and never changed.
    name:
        Human readable label used in the group comment lines.
    content:
        Text block written verbatim between the group comment lines.
    is_remote / url:
        Remote entries have their ``content`` replaced by whatever ``url``
        returns.
    refresh_interval:
        Seconds between scheduled refreshes; ``0`` disables scheduling.

    Examples
    --------
    >>> entry = Entry(id="a1", name="Ads", content="1.2.3.4 ads.example", enabled=True)
    >>> entry.validate().label
    'Ads'
    >>> Entry.from_dict(entry.to_dict()) == entry
    True
    """

    id: str
    name: str
    content: str = ""
    description: str = ""
    enabled: bool = False
    is_remote: bool = False
    url: str = ""
    refresh_interval: int = 0
    last_updated: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def label(self) -> str:
        """Return the name used in group comment lines, falling back to the id."""

        return self.name or self.id

    @property
    def schedulable(self) -> bool:
        """Return ``True`` when a periodic refresh task may run for this entry."""

        return self.enabled and self.is_remote and bool(self.url.strip()) and self.refresh_interval > 0

    def validate(self) -> Entry:
        """Check the entry invariants and return ``self`` for chaining.

        Raises
        ------
        ValidationError
            When the name is blank, an enabled remote entry has no URL, the
            refresh interval is negative, or the content holds a marker line.
        """

        if not self.name.strip():
            raise ValidationError("entry name cannot be empty")
        if self.is_remote and self.enabled and not self.url.strip():
            raise ValidationError(f"remote entry {self.name!r} needs a URL while enabled")
        if self.refresh_interval < 0:
            raise ValidationError(f"refresh interval must be >= 0, got {self.refresh_interval}")
        if contains_marker(self.content):
            raise ValidationError(f"content of entry {self.label!r} must not contain a managed-section marker line")
        return self

    def evolve(self, **changes: Any) -> Entry:
        """Return a copy with *changes* applied (thin wrapper over ``dataclasses.replace``)."""

        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the camelCase JSON layout of the entry-set document."""

        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "content": self.content,
            "enabled": self.enabled,
            "isRemote": self.is_remote,
            "url": self.url,
            "refreshInterval": self.refresh_interval,
            "lastUpdated": self.last_updated,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> Entry:
        """Build an entry from its JSON mapping, raising ``InvalidFormat`` on schema errors."""

        data = _ensure_mapping(payload, "entry")
        return cls(
            id=_field(data, "id", str),
            name=_field(data, "name", str),
            description=_field(data, "description", str, ""),
            content=_field(data, "content", str, ""),
            enabled=_field(data, "enabled", bool, False),
            is_remote=_field(data, "isRemote", bool, False),
            url=_field(data, "url", str, ""),
            refresh_interval=_field(data, "refreshInterval", int, 0),
            last_updated=_field(data, "lastUpdated", str, ""),
            created_at=_field(data, "createdAt", str, ""),
            updated_at=_field(data, "updatedAt", str, ""),
        )


@dataclass(slots=True)
class EntrySetDocument:
    """Ordered entries plus document metadata; insertion order is merge order."""

    entries: list[Entry] = field(default_factory=list)
    version: str = DOCUMENT_VERSION
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def empty(cls, now: str | None = None) -> EntrySetDocument:
        """Return a fresh document with no entries."""

        stamp = now or timestamp()
        return cls(entries=[], version=DOCUMENT_VERSION, created_at=stamp, updated_at=stamp)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def find(self, entry_id: str) -> Entry | None:
        """Return the entry with *entry_id* or ``None``."""

        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def replace_entry(self, entry: Entry) -> bool:
        """Swap the stored entry sharing ``entry.id`` in place; ``False`` when absent."""

        for index, existing in enumerate(self.entries):
            if existing.id == entry.id:
                self.entries[index] = entry
                return True
        return False

    def remove(self, entry_id: str) -> Entry | None:
        """Remove and return the entry with *entry_id*, or ``None`` when absent."""

        for index, existing in enumerate(self.entries):
            if existing.id == entry_id:
                return self.entries.pop(index)
        return None

    def enabled_entries(self) -> list[Entry]:
        """Return enabled entries in document order."""

        return [entry for entry in self.entries if entry.enabled]

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "version": self.version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> EntrySetDocument:
        """Validate and build a document; raises ``InvalidFormat`` on any schema error.

        Examples
        --------
        >>> EntrySetDocument.from_dict({"entries": "nope"})
        Traceback (most recent call last):
        ...
        ghost_hosts.domain.errors.InvalidFormat: field 'entries' must be a list
        """

        data = _ensure_mapping(payload, "entry-set document")
        raw_entries = data.get("entries", [])
        if raw_entries is None:
            raw_entries = []
        if not isinstance(raw_entries, list):
            raise InvalidFormat("field 'entries' must be a list")
        entries = [Entry.from_dict(item) for item in raw_entries]
        seen: set[str] = set()
        for entry in entries:
            if entry.id in seen:
                raise InvalidFormat(f"duplicate entry id {entry.id!r}")
            seen.add(entry.id)
        return cls(
            entries=entries,
            version=_field(data, "version", str, DOCUMENT_VERSION),
            created_at=_field(data, "createdAt", str, ""),
            updated_at=_field(data, "updatedAt", str, ""),
        )


@dataclass(slots=True)
class AppConfig:
    """Application settings; the only home of the default interval and retention count."""

    auto_refresh_enabled: bool = False
    default_refresh_interval: int = DEFAULT_REFRESH_INTERVAL
    active_entry_ids: list[str] = field(default_factory=list)
    backup_enabled: bool = True
    max_backups: int = DEFAULT_MAX_BACKUPS
    external_file_path: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def defaults(cls, now: str | None = None) -> AppConfig:
        stamp = now or timestamp()
        return cls(created_at=stamp, updated_at=stamp)

    def validate(self) -> AppConfig:
        """Reject negative intervals and retention counts."""

        if self.default_refresh_interval < 0:
            raise ValidationError("defaultRefreshInterval must be >= 0")
        if self.max_backups < 0:
            raise ValidationError("maxBackups must be >= 0")
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "autoRefreshEnabled": self.auto_refresh_enabled,
            "defaultRefreshInterval": self.default_refresh_interval,
            "activeEntryIds": list(self.active_entry_ids),
            "backupEnabled": self.backup_enabled,
            "maxBackups": self.max_backups,
            "externalFilePath": self.external_file_path,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> AppConfig:
        """Build a config, filling absent keys with the built-in defaults."""

        data = _ensure_mapping(payload, "config document")
        active = data.get("activeEntryIds", [])
        if active is None:
            active = []
        if not isinstance(active, list) or not all(isinstance(item, str) for item in active):
            raise InvalidFormat("field 'activeEntryIds' must be a list of strings")
        return cls(
            auto_refresh_enabled=_field(data, "autoRefreshEnabled", bool, False),
            default_refresh_interval=_field(data, "defaultRefreshInterval", int, DEFAULT_REFRESH_INTERVAL),
            active_entry_ids=list(active),
            backup_enabled=_field(data, "backupEnabled", bool, True),
            max_backups=_field(data, "maxBackups", int, DEFAULT_MAX_BACKUPS),
            external_file_path=_field(data, "externalFilePath", str, ""),
            created_at=_field(data, "createdAt", str, ""),
            updated_at=_field(data, "updatedAt", str, ""),
        )


#: Field names accepted by ``AppConfig`` updates, keyed by their JSON spelling.
CONFIG_FIELDS: Final[Mapping[str, str]] = {
    "autoRefreshEnabled": "auto_refresh_enabled",
    "defaultRefreshInterval": "default_refresh_interval",
    "activeEntryIds": "active_entry_ids",
    "backupEnabled": "backup_enabled",
    "maxBackups": "max_backups",
    "externalFilePath": "external_file_path",
}


def _ensure_mapping(payload: Any, what: str) -> Mapping[str, Any]:
    """Ensure *payload* is a JSON object, otherwise raise ``InvalidFormat``."""

    if not isinstance(payload, Mapping):
        raise InvalidFormat(f"{what} must be a JSON object")
    return payload


def _field(data: Mapping[str, Any], key: str, kind: type, default: Any = _MISSING) -> Any:
    """Return ``data[key]`` checked against *kind*; absent or null keys use *default*."""

    value = data.get(key)
    if value is None:
        if default is _MISSING:
            raise InvalidFormat(f"field {key!r} is required")
        return default
    if not _is_kind(value, kind):
        raise InvalidFormat(f"field {key!r} must be of type {kind.__name__}")
    return value


def _is_kind(value: Any, kind: type) -> bool:
    # bool is a subclass of int; a JSON true must not pass as an interval.
    if kind is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, kind)


EntryMutator = Callable[[EntrySetDocument], Any]
"""Callable applied to the live entry-set document inside a write transaction."""
