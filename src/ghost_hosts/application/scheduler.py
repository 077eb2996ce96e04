"""Per-entry periodic refresh of remote entries.

Purpose
-------
Keep remote entries current by running one independent background task per
entry. Each task owns its own cancellation token, so stopping or restarting
one entry never disturbs the others.

Contents
--------
* :class:`RefreshScheduler` – registry of running tasks keyed by entry id.
* :class:`RefreshTask` – bookkeeping for a single running task.

System Role
-----------
The composition root calls :meth:`RefreshScheduler.sync` after every entry
mutation so the registry always mirrors the persisted entry settings. Ticks
persist through :meth:`DocumentStore.modify_entry_set`, which serializes them
with foreground edits under the store's write lock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Mapping

from ..domain.errors import GhostError, NotFound, ValidationError
from ..domain.models import Entry, EntrySetDocument, timestamp
from ..observability import log_debug, log_error, log_info, log_warning, make_event
from .ports import DocumentStore, RemoteFetcher


@dataclass(slots=True)
class RefreshTask:
    """A running refresh task: its settings, cancellation token, and worker thread."""

    entry_id: str
    url: str
    interval: int
    cancelled: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None


class RefreshScheduler:
    """Registry of periodic refresh tasks, one per remote entry.

    Why
    ----
    A single global refresh loop cannot honour per-entry intervals and has to
    be torn down entirely whenever one entry changes. Independent tasks with
    their own tokens make start, stop, and restart local operations.

    Parameters
    ----------
    store:
        Document store holding the entry set.
    fetcher:
        Remote fetcher used by every tick.
    interval_scale:
        Multiplier applied to every ``refresh_interval`` before waiting. Tests
        shrink it so ticks happen in milliseconds.

    Examples
    --------
    >>> from tempfile import TemporaryDirectory
    >>> from ghost_hosts.adapters.storage.json_store import JSONDocumentStore
    >>> class StaticFetcher:
    ...     def fetch(self, url):
    ...         return "10.0.0.1 intranet.example"
    >>> tmp = TemporaryDirectory()
    >>> store = JSONDocumentStore(tmp.name)
    >>> store.modify_entry_set(lambda doc: doc.entries.append(
    ...     Entry(id="r1", name="Remote", enabled=True, is_remote=True,
    ...           url="https://example.invalid/hosts", refresh_interval=60)))
    >>> scheduler = RefreshScheduler(store, StaticFetcher())
    >>> scheduler.refresh_now("r1")
    True
    >>> store.load_entry_set().find("r1").content
    '10.0.0.1 intranet.example'
    >>> tmp.cleanup()
    """

    def __init__(self, store: DocumentStore, fetcher: RemoteFetcher, *, interval_scale: float = 1.0) -> None:
        self._store = store
        self._fetcher = fetcher
        self._interval_scale = interval_scale
        self._tasks: dict[str, RefreshTask] = {}
        self._lock = threading.Lock()

    def start(self, entry_id: str) -> None:
        """Start the refresh task for *entry_id*; a running task is left alone.

        Raises
        ------
        NotFound
            When no entry has *entry_id*.
        ValidationError
            When the entry is not remote, disabled, has no URL, or has a
            non-positive refresh interval.
        """

        entry = self._lookup(entry_id)
        _require_schedulable(entry)
        self._launch(entry)

    def stop(self, entry_id: str) -> None:
        """Signal the task for *entry_id* and forget it; unknown ids are ignored.

        Returns immediately. A tick already in flight finishes its fetch but
        does not persist anything.
        """

        with self._lock:
            task = self._tasks.pop(entry_id, None)
        if task is None:
            return
        task.cancelled.set()
        log_info("refresh_task_stopped", **make_event(entry_id, task.url))

    def start_all(self) -> dict[str, GhostError | RuntimeError]:
        """Start every schedulable entry and return failures keyed by entry id."""

        failures: dict[str, GhostError | RuntimeError] = {}
        for entry in self._store.load_entry_set():
            if not entry.schedulable:
                continue
            try:
                self.start(entry.id)
            except (GhostError, RuntimeError) as exc:
                log_warning("refresh_task_start_failed", **make_event(entry.id, entry.url, {"error": str(exc)}))
                failures[entry.id] = exc
        return failures

    def stop_all(self) -> None:
        """Stop every registered task."""

        for entry_id in self.running_ids():
            self.stop(entry_id)

    def is_running(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._tasks

    def running_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._tasks)

    def sync(self, entry: Entry) -> None:
        """Start, restart, or stop the task for *entry* to match its current settings."""

        if not entry.schedulable:
            self.stop(entry.id)
            return
        with self._lock:
            task = self._tasks.get(entry.id)
        if task is not None and task.interval == entry.refresh_interval and task.url == entry.url:
            return
        self.stop(entry.id)
        self._launch(entry)

    def refresh_now(self, entry_id: str) -> bool:
        """Run one tick for *entry_id* synchronously and return whether content changed.

        Unlike scheduled ticks, fetch errors propagate to the caller.
        """

        entry = self._lookup(entry_id)
        if not entry.is_remote or not entry.url.strip():
            raise ValidationError(f"entry {entry.label!r} is not a remote entry with a URL")
        return self._tick(entry_id, threading.Event())

    # ---------------------------------------------------------------- internals

    def _lookup(self, entry_id: str) -> Entry:
        entry = self._store.load_entry_set().find(entry_id)
        if entry is None:
            raise NotFound(f"Entry not found: {entry_id}")
        return entry

    def _launch(self, entry: Entry) -> None:
        with self._lock:
            if entry.id in self._tasks:
                return
            task = RefreshTask(entry_id=entry.id, url=entry.url, interval=entry.refresh_interval)
            task.thread = threading.Thread(
                target=self._run,
                args=(task,),
                name=f"ghost-refresh-{entry.id}",
                daemon=True,
            )
            self._tasks[entry.id] = task
        try:
            task.thread.start()
        except RuntimeError:
            with self._lock:
                self._tasks.pop(entry.id, None)
            raise
        log_info("refresh_task_started", **make_event(entry.id, entry.url, {"interval": entry.refresh_interval}))

    def _run(self, task: RefreshTask) -> None:
        delay = task.interval * self._interval_scale
        while not task.cancelled.wait(delay):
            try:
                self._tick(task.entry_id, task.cancelled)
            except GhostError as exc:
                log_warning("refresh_tick_failed", **make_event(task.entry_id, task.url, {"error": str(exc)}))
            except Exception as exc:
                log_error("refresh_tick_failed", **make_event(task.entry_id, task.url, {"error": repr(exc)}))

    def _tick(self, entry_id: str, cancelled: threading.Event) -> bool:
        entry = self._lookup(entry_id)
        content = self._fetcher.fetch(entry.url)
        if cancelled.is_set():
            log_debug("refresh_tick_discarded", **make_event(entry_id, entry.url))
            return False
        if entry.content == content:
            log_debug("refresh_tick_completed", **make_event(entry_id, entry.url, {"changed": False}))
            return False
        changed = self._store.modify_entry_set(lambda document: _apply_content(document, entry_id, content, cancelled))
        log_debug("refresh_tick_completed", **make_event(entry_id, entry.url, {"changed": changed}))
        return changed


def _apply_content(document: EntrySetDocument, entry_id: str, content: str, cancelled: threading.Event) -> bool:
    if cancelled.is_set():
        return False
    entry = document.find(entry_id)
    if entry is None or entry.content == content:
        return False
    stamp = timestamp()
    document.replace_entry(entry.evolve(content=content, last_updated=stamp, updated_at=stamp))
    log_info("entry_refreshed", **make_event(entry_id, entry.url, {"size": len(content)}))
    return True


def _require_schedulable(entry: Entry) -> None:
    problems: Mapping[str, bool] = {
        "is not remote": not entry.is_remote,
        "is disabled": not entry.enabled,
        "has no URL": not entry.url.strip(),
        "has no positive refresh interval": entry.refresh_interval <= 0,
    }
    reasons = [reason for reason, failed in problems.items() if failed]
    if reasons:
        raise ValidationError(f"entry {entry.label!r} cannot be scheduled: it {', '.join(reasons)}")
