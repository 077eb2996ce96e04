"""Privilege elevation strategies, one per platform.

Purpose
-------
Hide the platform-specific helper programs used to relaunch ghost-hosts with
administrator rights behind the
:class:`ghost_hosts.application.ports.PrivilegeGate` protocol. The strategy is
chosen once at startup by :func:`default_privilege_gate` and injected into the
composition root; nothing else branches on the platform.

Contents
--------
* :class:`WindowsPrivilegeGate` – PowerShell ``Start-Process -Verb RunAs``.
* :class:`LinuxPrivilegeGate` – first available graphical sudo front end.
* :class:`MacOSPrivilegeGate` – ``osascript ... with administrator privileges``.
* :class:`UnsupportedPrivilegeGate` – every request fails.
* :func:`default_privilege_gate` – factory keyed by ``sys.platform``.

System Role
-----------
A successful launch raises :class:`~ghost_hosts.domain.errors.ElevationLaunched`
so the CLI can exit; the gate never terminates the interpreter itself.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from typing import Callable, Final, Sequence

from ...domain.errors import ElevationLaunched, PermissionDenied, UnsupportedPlatform
from ...observability import log_info, log_warning

Launcher = Callable[[Sequence[str]], object]
"""Callable that starts a detached process for an argv list (``subprocess.Popen`` by default)."""

LINUX_TOOLS: Final[tuple[str, ...]] = ("pkexec", "gksudo", "kdesudo", "lxqt-sudo")


def _current_command() -> list[str]:
    """Return the argv that restarts the running program."""

    return [sys.executable, *sys.argv]


class _BasePrivilegeGate:
    def __init__(
        self,
        *,
        launcher: Launcher | None = None,
        command: Sequence[str] | None = None,
    ) -> None:
        self._launcher = launcher or subprocess.Popen
        self._command = list(command) if command is not None else _current_command()

    def _launch(self, argv: Sequence[str], platform: str) -> None:
        try:
            self._launcher(list(argv))
        except OSError as exc:
            log_warning("elevation_failed", entry_id=None, path=None, platform=platform, error=str(exc))
            raise PermissionDenied(f"Could not start an elevated process: {exc}") from exc
        log_info("elevation_launched", entry_id=None, path=None, platform=platform)
        raise ElevationLaunched("An elevated copy was started; this process should exit")


class PosixAdminMixin:
    def is_admin(self) -> bool:
        geteuid = getattr(os, "geteuid", None)
        return geteuid is not None and geteuid() == 0


class WindowsPrivilegeGate(_BasePrivilegeGate):
    """Relaunch through PowerShell with the ``RunAs`` verb."""

    def is_admin(self) -> bool:
        try:
            import ctypes

            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
        except (ImportError, AttributeError, OSError):
            return False

    def request_elevation(self) -> None:
        program, *arguments = self._command
        argument_list = ",".join(f"'{argument}'" for argument in arguments)
        script = f"Start-Process '{program}' -Verb RunAs"
        if argument_list:
            script += f" -ArgumentList {argument_list}"
        self._launch(["powershell", "-WindowStyle", "Hidden", "-Command", script], "windows")


class LinuxPrivilegeGate(PosixAdminMixin, _BasePrivilegeGate):
    """Relaunch through the first graphical sudo front end found on ``PATH``."""

    def __init__(
        self,
        *,
        launcher: Launcher | None = None,
        command: Sequence[str] | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        super().__init__(launcher=launcher, command=command)
        self._which = which

    def request_elevation(self) -> None:
        last_error: PermissionDenied | None = None
        for tool in LINUX_TOOLS:
            if self._which(tool) is None:
                continue
            argv = [tool, "--disable-internal-agent", *self._command] if tool == "pkexec" else [tool, "--", *self._command]
            try:
                self._launch(argv, "linux")
            except PermissionDenied as exc:
                last_error = exc
                continue
        if last_error is not None:
            raise PermissionDenied(f"Failed to elevate privileges using any available tool: {last_error}") from last_error
        raise PermissionDenied(
            f"No graphical sudo tool found (tried: {', '.join(LINUX_TOOLS)}); "
            "run this application with sudo to modify the hosts file"
        )


class MacOSPrivilegeGate(PosixAdminMixin, _BasePrivilegeGate):
    """Relaunch through AppleScript's administrator prompt."""

    def request_elevation(self) -> None:
        command = " ".join(_shell_quote(part) for part in self._command)
        script = f'do shell script "{command}" with administrator privileges'
        self._launch(["osascript", "-e", script], "darwin")


class UnsupportedPrivilegeGate:
    """Gate for platforms without an elevation strategy."""

    def __init__(self, platform: str) -> None:
        self.platform = platform

    def is_admin(self) -> bool:
        return False

    def request_elevation(self) -> None:
        raise UnsupportedPlatform(f"Platform {self.platform} does not support privilege elevation")


def default_privilege_gate(
    platform: str | None = None,
    *,
    launcher: Launcher | None = None,
    command: Sequence[str] | None = None,
) -> WindowsPrivilegeGate | LinuxPrivilegeGate | MacOSPrivilegeGate | UnsupportedPrivilegeGate:
    """Return the elevation strategy for *platform* (default: ``sys.platform``).

    Examples
    --------
    >>> type(default_privilege_gate("linux")).__name__
    'LinuxPrivilegeGate'
    >>> type(default_privilege_gate("sunos5")).__name__
    'UnsupportedPrivilegeGate'
    """

    platform = platform or sys.platform
    if platform.startswith("win"):
        return WindowsPrivilegeGate(launcher=launcher, command=command)
    if platform.startswith("linux"):
        return LinuxPrivilegeGate(launcher=launcher, command=command)
    if platform == "darwin":
        return MacOSPrivilegeGate(launcher=launcher, command=command)
    return UnsupportedPrivilegeGate(platform)


def _shell_quote(part: str) -> str:
    # AppleScript string inside double quotes: escape backslashes and quotes.
    escaped = part.replace("\\", "\\\\").replace('"', '\\"')
    return f"'{escaped}'" if " " in part else escaped
