"""Application-layer managed-section merge.

Purpose
-------
Compute the new content of the external file from its current content and the
ordered list of enabled entries. The function is pure: no I/O, no clock reads
when a timestamp is supplied, so it can be exercised with property tests and
reused by preview and apply flows alike.

Contents
    - ``START_MARKER`` / ``END_MARKER``: section delimiters, re-exported from the domain.
    - ``merge_section``: public entry point.
    - ``extract_section``: return the lines of the current managed section.
    - ``_locate_section`` / ``_strip_section`` / ``_render_section``: small
      stanzas that keep the algorithm readable.

System Role
-----------
Called by :class:`ghost_hosts.core.GhostHosts` during ``apply`` and
``preview``; the result is written by the hosts-file gateway.
"""

from __future__ import annotations

from datetime import datetime
from typing import Final, Sequence

from ..domain.models import END_MARKER, START_MARKER, Entry, timestamp

BANNER: Final[tuple[str, ...]] = (
    "# This section is managed by Ghost - Host Manager",
    "# Changes made outside this section will be preserved",
)


def merge_section(
    current: str,
    entries: Sequence[Entry],
    *,
    generated_at: datetime | str | None = None,
) -> str:
    """Return *current* with its managed section regenerated from *entries*.

    Why
    ----
    The external file is shared with humans and other tools. Regenerating the
    whole delimited region on every run (instead of patching it) is what makes
    repeated applies idempotent.

    What
    ----
    Removes the first START through the first END after it, normalises the
    remaining foreign lines, and appends a freshly rendered section after
    exactly one blank line. A file holding only one marker kind is left as foreign text.

    Parameters
    ----------
    current:
        Current external file content (may be empty).
    entries:
        Entries to render, in order. Callers pass the enabled ones.
    generated_at:
        Timestamp for the banner line; defaults to now.

    Examples
    --------
    >>> entry = Entry(id="1", name="Ads", content="1.2.3.4 ads.example", enabled=True)
    >>> print(merge_section("127.0.0.1 localhost\\n", [entry], generated_at="T0"), end="")
    127.0.0.1 localhost
    <BLANKLINE>
    # >>> Ghost Host Entries
    # This section is managed by Ghost - Host Manager
    # Changes made outside this section will be preserved
    # Generated at: T0
    <BLANKLINE>
    # Start of group: Ads
    1.2.3.4 ads.example
    # End of group: Ads
    <BLANKLINE>
    # <<< Ghost Host Entries
    """

    newline = "\r\n" if "\r\n" in current else "\n"
    foreign = _strip_section(_split_lines(current, newline))
    stamp = generated_at if isinstance(generated_at, str) else timestamp(generated_at)
    section = _render_section(entries, stamp)
    lines = [*foreign, ""] if foreign else []
    lines.extend(section)
    return newline.join(lines) + newline


def extract_section(current: str) -> list[str] | None:
    """Return the lines of the managed section (markers included) or ``None``.

    Examples
    --------
    >>> extract_section("a\\n# >>> Ghost Host Entries\\nb\\n# <<< Ghost Host Entries\\n")
    ['# >>> Ghost Host Entries', 'b', '# <<< Ghost Host Entries']
    >>> extract_section("a\\n") is None
    True
    """

    lines = _split_lines(current, "\r\n" if "\r\n" in current else "\n")
    bounds = _locate_section(lines)
    if bounds is None:
        return None
    start, end = bounds
    return lines[start : end + 1]


def _locate_section(lines: Sequence[str]) -> tuple[int, int] | None:
    """Return ``(start, end)``: the first START and the first END that follows it.

    Further STARTs before that END lie inside the pair and are removed with it.
    """

    start: int | None = None
    for index, line in enumerate(lines):
        marker = line.strip()
        if marker == START_MARKER and start is None:
            start = index
        elif marker == END_MARKER and start is not None:
            return start, index
    return None


def _strip_section(lines: list[str]) -> list[str]:
    """Remove the managed section and collapse the seam to one blank line at most."""

    bounds = _locate_section(lines)
    if bounds is None:
        return _trim_trailing_blank(lines)
    start, end = bounds
    head = _trim_trailing_blank(lines[:start])
    tail = _trim_trailing_blank(_trim_leading_blank(lines[end + 1 :]))
    if head and tail:
        return [*head, "", *tail]
    return head or tail


def _render_section(entries: Sequence[Entry], stamp: str) -> list[str]:
    """Render START, banner, one group per entry, and END as a list of lines."""

    lines = [START_MARKER, *BANNER, f"# Generated at: {stamp}", ""]
    for entry in entries:
        lines.append(f"# Start of group: {entry.label}")
        content = entry.content.rstrip("\r\n")
        if content:
            lines.extend(line.rstrip("\r") for line in content.split("\n"))
        lines.append(f"# End of group: {entry.label}")
        lines.append("")
    lines.append(END_MARKER)
    return lines


def _split_lines(text: str, newline: str) -> list[str]:
    """Split *text* on *newline* only, so other control characters stay inside their line."""

    if not text:
        return []
    lines = text.split(newline)
    if text.endswith(newline):
        lines.pop()
    return lines


def _trim_trailing_blank(lines: list[str]) -> list[str]:
    end = len(lines)
    while end and not lines[end - 1].strip():
        end -= 1
    return lines[:end]


def _trim_leading_blank(lines: list[str]) -> list[str]:
    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1
    return lines[start:]
