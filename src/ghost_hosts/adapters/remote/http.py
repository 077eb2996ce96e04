"""HTTP adapter retrieving remote entry content.

Purpose
-------
Download the body behind a remote entry's URL and refuse anything that does
not look like hosts data, so a captive portal page or an error document never
replaces a working entry.

Contents
--------
* :class:`HttpRemoteFetcher` – :class:`ghost_hosts.application.ports.RemoteFetcher`
  implementation over ``httpx``.
* :func:`looks_like_hosts` – content sanity check.
"""

from __future__ import annotations

import string
from typing import Final

import httpx

from ...domain.errors import FetchError
from ...domain.models import contains_marker
from ...observability import log_info, log_warning

DEFAULT_TIMEOUT: Final[float] = 30.0
DEFAULT_USER_AGENT: Final[str] = "Ghost Host Manager/1.0"

_DOMAIN_CHARS: Final[frozenset[str]] = frozenset(string.ascii_letters + string.digits + "-._")


class HttpRemoteFetcher:
    """Fetch remote entry content with a bounded timeout.

    Parameters
    ----------
    timeout:
        Seconds before connect/read attempts give up.
    user_agent:
        Value of the ``User-Agent`` header sent with every request.
    transport:
        Optional ``httpx`` transport; tests pass :class:`httpx.MockTransport`.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    def fetch(self, url: str) -> str:
        """Return the body at *url*.

        Raises
        ------
        FetchError
            On transport errors, any status other than 200, a body that holds
            no ``<IPv4> <domain>`` line, or a body carrying a managed-section
            marker line.
        """

        try:
            with httpx.Client(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = client.get(url)
        except httpx.HTTPError as exc:
            log_warning("remote_fetch_failed", entry_id=None, path=url, error=str(exc))
            raise FetchError(f"Failed to fetch from URL {url}: {exc}") from exc
        if response.status_code != httpx.codes.OK:
            log_warning("remote_fetch_failed", entry_id=None, path=url, status=response.status_code)
            raise FetchError(f"Received status code {response.status_code} from URL {url}")
        text = response.text
        if not looks_like_hosts(text):
            log_warning("remote_content_rejected", entry_id=None, path=url, size=len(text))
            raise FetchError(f"Content from {url} does not look like a hosts file")
        if contains_marker(text):
            log_warning("remote_content_rejected", entry_id=None, path=url, size=len(text))
            raise FetchError(f"Content from {url} contains a managed-section marker line")
        log_info("remote_fetched", entry_id=None, path=url, size=len(text))
        return text


def looks_like_hosts(text: str) -> bool:
    """Return ``True`` when *text* holds at least one ``<IPv4> <domain>`` line.

    Examples
    --------
    >>> looks_like_hosts("# comment\\n127.0.0.1 localhost\\n")
    True
    >>> looks_like_hosts("<html><body>login</body></html>")
    False
    >>> looks_like_hosts("::1 localhost")
    False
    """

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        if len(parts) >= 2 and _is_ipv4(parts[0]) and _is_domain(parts[1]):
            return True
    return False


def _is_ipv4(candidate: str) -> bool:
    octets = candidate.split(".")
    return len(octets) == 4 and all(0 < len(octet) <= 3 and octet.isascii() and octet.isdigit() for octet in octets)


def _is_domain(candidate: str) -> bool:
    if not 0 < len(candidate) <= 253 or not set(candidate) <= _DOMAIN_CHARS:
        return False
    for label in candidate.split("."):
        if not 0 < len(label) <= 63 or label.startswith("-") or label.endswith("-"):
            return False
    return True
