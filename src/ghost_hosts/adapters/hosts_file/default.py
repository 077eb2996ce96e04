"""Read/write access to the external hosts file.

The gateway turns filesystem errors into
:class:`~ghost_hosts.domain.errors.IOFailure` and checks write access by
opening the file for appending.
"""

from __future__ import annotations

import os
from pathlib import Path

from ...domain.errors import IOFailure, NotFound
from ...observability import log_debug, log_info


class HostsFileGateway:
    """Implementation of :class:`ghost_hosts.application.ports.FileGateway`."""

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def read_file(self, path: str) -> str:
        """Return the text at *path*.

        Bytes that do not decode are carried as lone surrogates and written
        back unchanged by :meth:`write_file`.

        Raises
        ------
        NotFound
            When *path* does not exist.
        IOFailure
            For any other read error.
        """

        file_path = Path(path)
        try:
            with file_path.open("r", encoding=self.encoding, errors="surrogateescape", newline="") as handle:
                text = handle.read()
        except FileNotFoundError as exc:
            raise NotFound(f"External file not found: {path}") from exc
        except OSError as exc:
            raise IOFailure(f"Failed to read {path}: {exc}") from exc
        log_debug("external_file_read", entry_id=None, path=str(path), size=len(text))
        return text

    def write_file(self, path: str, text: str) -> None:
        """Replace the content at *path* with *text* (in place, preserving the inode)."""

        try:
            with Path(path).open("w", encoding=self.encoding, errors="surrogateescape", newline="") as handle:
                handle.write(text)
        except OSError as exc:
            raise IOFailure(f"Failed to write {path}: {exc}") from exc
        log_info("external_file_written", entry_id=None, path=str(path), size=len(text))

    def has_write_access(self, path: str) -> bool:
        """Return ``True`` when *path* can be opened for appending.

        A missing file counts as writable when its directory is.
        """

        file_path = Path(path)
        if not file_path.exists():
            return os.access(file_path.parent, os.W_OK)
        try:
            with file_path.open("a", encoding=self.encoding):
                pass
        except OSError:
            return False
        return True
