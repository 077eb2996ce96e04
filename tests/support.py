"""In-memory collaborators shared by the ghost-hosts test-suite.

The fakes satisfy the application ports structurally so tests can drive the
store, the scheduler, and :class:`ghost_hosts.core.GhostHosts` without network
access, real elevation prompts, or touching ``/etc/hosts``.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable, Mapping

from ghost_hosts.adapters.storage.json_store import JSONDocumentStore
from ghost_hosts.application.scheduler import RefreshScheduler
from ghost_hosts.core import GhostHosts
from ghost_hosts.domain.errors import FetchError, NotFound

HOSTS_PATH = "/virtual/etc/hosts"


class FakeFetcher:
    """Return canned bodies per URL; an exception value is raised instead."""

    def __init__(self, responses: Mapping[str, str | Exception] | None = None) -> None:
        self.responses: dict[str, str | Exception] = dict(responses or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, url: str) -> str:
        with self._lock:
            self.calls.append(url)
            response = self.responses.get(url)
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise FetchError(f"no canned response for {url}")
        return response

    def call_count(self, url: str) -> int:
        with self._lock:
            return self.calls.count(url)


class MemoryGateway:
    """Dictionary-backed external files with a switchable write permission."""

    def __init__(self, files: Mapping[str, str] | None = None, *, writable: bool = True) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.writable = writable
        self.writes: list[tuple[str, str]] = []

    def read_file(self, path: str) -> str:
        try:
            return self.files[path]
        except KeyError as exc:
            raise NotFound(f"External file not found: {path}") from exc

    def write_file(self, path: str, text: str) -> None:
        self.files[path] = text
        self.writes.append((path, text))

    def has_write_access(self, path: str) -> bool:
        return self.writable


class FakePrivilegeGate:
    """Record elevation requests and raise *outcome* when one is configured."""

    def __init__(self, *, admin: bool = False, outcome: Exception | None = None) -> None:
        self.admin = admin
        self.outcome = outcome
        self.requests = 0

    def is_admin(self) -> bool:
        return self.admin

    def request_elevation(self) -> None:
        self.requests += 1
        if self.outcome is not None:
            raise self.outcome


def build_app(
    root: Path,
    *,
    hosts_text: str | None = "127.0.0.1 localhost\n",
    fetcher: FakeFetcher | None = None,
    gateway: MemoryGateway | None = None,
    privilege: FakePrivilegeGate | None = None,
    interval_scale: float = 0.001,
) -> GhostHosts:
    """Wire a :class:`GhostHosts` with a real JSON store under *root* and in-memory adapters."""

    store = JSONDocumentStore(root / "data")
    fetcher = fetcher or FakeFetcher()
    if gateway is None:
        gateway = MemoryGateway({HOSTS_PATH: hosts_text} if hosts_text is not None else {})
    return GhostHosts(
        store=store,
        scheduler=RefreshScheduler(store, fetcher, interval_scale=interval_scale),
        gateway=gateway,
        privilege=privilege or FakePrivilegeGate(),
        fetcher=fetcher,
        default_hosts_path=HOSTS_PATH,
    )


def wait_until(predicate: Callable[[], bool], *, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll *predicate* until it holds or *timeout* seconds pass; return the last result."""

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()

