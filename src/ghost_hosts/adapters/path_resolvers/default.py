"""Filesystem locations for ghost-hosts.

Purpose
-------
Encapsulate OS-specific conventions: where the per-user data directory lives
and where the platform keeps its hosts file. The adapter is the only component
that understands these conventions; everything else receives plain paths.

Contents
--------
* :class:`DefaultPathResolver` – resolves the data directory and hosts file.
* :data:`DATA_DIR_ENV` / :data:`HOSTS_FILE_ENV` – environment overrides.

System Role
-----------
Feeds :func:`ghost_hosts.core.create_app`. Environment overrides keep tests
and portable setups away from the real home directory and ``/etc/hosts``.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Final, Mapping

from ...observability import log_debug

DATA_DIR_ENV: Final[str] = "GHOST_HOSTS_DATA_DIR"
HOSTS_FILE_ENV: Final[str] = "GHOST_HOSTS_FILE"

_APP_DIR_POSIX: Final[str] = "ghost"
_APP_DIR_TITLE: Final[str] = "Ghost"


class DefaultPathResolver:
    """Resolve the data directory and the external hosts file for a platform.

    Why
    ----
    Centralise path discovery so the composition root stays platform-agnostic
    and easy to test.
    """

    def __init__(
        self,
        *,
        env: Mapping[str, str] | None = None,
        platform: str | None = None,
        home: Path | None = None,
    ) -> None:
        """Store the context required to resolve filesystem locations.

        Parameters
        ----------
        env:
            Optional environment mapping layered over ``os.environ`` (useful
            for deterministic tests).
        platform:
            Platform identifier (``sys.platform`` clone). Defaults to the
            current interpreter platform.
        home:
            Home directory; defaults to :meth:`Path.home`.
        """

        self.env = {**os.environ, **(env or {})}
        self.platform = platform or sys.platform
        self.home = home or Path.home()

    def data_dir(self) -> Path:
        """Return the per-user application data directory.

        Examples
        --------
        >>> resolver = DefaultPathResolver(env={"XDG_DATA_HOME": "/data"}, platform="linux")
        >>> resolver.data_dir().as_posix()
        '/data/ghost'
        >>> DefaultPathResolver(env={"GHOST_HOSTS_DATA_DIR": "/tmp/g"}, platform="win32").data_dir().as_posix()
        '/tmp/g'
        """

        override = self.env.get(DATA_DIR_ENV)
        if override:
            path = Path(override)
        elif self._is_windows:
            appdata = self.env.get("APPDATA") or str(self.home / "AppData" / "Roaming")
            path = Path(appdata) / _APP_DIR_TITLE
        elif self._is_macos:
            path = self.home / "Library" / "Application Support" / _APP_DIR_TITLE
        else:
            xdg = self.env.get("XDG_DATA_HOME")
            base = Path(xdg) if xdg else self.home / ".local" / "share"
            path = base / _APP_DIR_POSIX
        log_debug("data_dir_resolved", entry_id=None, path=str(path), platform=self.platform)
        return path

    def hosts_path(self) -> Path:
        """Return the platform hosts file location.

        Examples
        --------
        >>> DefaultPathResolver(env={}, platform="darwin").hosts_path().as_posix()
        '/etc/hosts'
        >>> resolver = DefaultPathResolver(env={"SystemRoot": "C:/Windows"}, platform="win32")
        >>> resolver.hosts_path().as_posix()
        'C:/Windows/System32/drivers/etc/hosts'
        """

        override = self.env.get(HOSTS_FILE_ENV)
        if override:
            return Path(override)
        if self._is_windows:
            system_root = self.env.get("SystemRoot") or self.env.get("SYSTEMROOT") or r"C:\Windows"
            return Path(system_root) / "System32" / "drivers" / "etc" / "hosts"
        return Path("/etc/hosts")

    @property
    def _is_macos(self) -> bool:
        return self.platform == "darwin"

    @property
    def _is_windows(self) -> bool:
        return self.platform.startswith("win")
