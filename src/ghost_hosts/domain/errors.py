"""Domain-level exception hierarchy.

Purpose
-------
Expose the stable error taxonomy shared by the store, the scheduler, the
adapters, and the composition root. The hierarchy lives in the domain layer so
outer layers depend on it and never the other way round.

Contents
--------
* :class:`GhostError` – umbrella base class for every ghost-hosts failure.
* :class:`ValidationError` – an entry or request violates an invariant.
* :class:`NotFound` – unknown entry id, backup filename, or missing document.
* :class:`PermissionDenied` / :class:`UnsupportedPlatform` – the hosts file is
  not writable and elevation was declined or is impossible.
* :class:`ElevationLaunched` – an elevated copy of the process was started.
* :class:`IOFailure` / :class:`InvalidFormat` – document or hosts file I/O.
* :class:`MalformedBackup` – a snapshot failed validation during restore.
* :class:`FetchError` – a remote source could not be retrieved.

System Role
-----------
Callers catch :class:`GhostError` to handle all package failures uniformly; the
CLI turns any of them into an exit code via ``lib_cli_exit_tools``.
"""

from __future__ import annotations


class GhostError(Exception):
    """Base type for all exceptions emitted by ``ghost_hosts``.

    Why
    ----
    Provide a single catch-all type for consumers that do not need fine-grained
    handling.
    """


class ValidationError(GhostError):
    """Signifies that an entry or a scheduler request failed semantic checks.

    Typical Sources
    ---------------
    Empty entry names, enabled remote entries without a URL, negative refresh
    intervals, and :meth:`RefreshScheduler.start` on entries that cannot be
    scheduled.
    """


class NotFound(GhostError):
    """Raised when an entry id, backup filename, or live document does not exist."""


class PermissionDenied(GhostError):
    """The external file cannot be written and elevation did not help."""


class UnsupportedPlatform(PermissionDenied):
    """Elevation is not available on the running platform."""


class ElevationLaunched(GhostError):
    """An elevated copy of the program was started; the caller should exit.

    Why
    ----
    The privilege gate never terminates the interpreter itself. Raising keeps
    the decision with the outermost layer (the CLI) while still stopping the
    current apply run.
    """


class IOFailure(GhostError):
    """Reading or writing a document or the external file failed."""


class InvalidFormat(IOFailure):
    """A live document exists but cannot be parsed into the expected schema."""


class MalformedBackup(GhostError):
    """A snapshot failed schema validation; the live document was left untouched."""


class FetchError(GhostError):
    """Remote content could not be retrieved or does not look like hosts data."""
