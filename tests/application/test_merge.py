"""Managed-section merge: layout, idempotence, and preservation of foreign lines."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from ghost_hosts.application.merge import END_MARKER, START_MARKER, extract_section, merge_section
from ghost_hosts.domain.models import Entry

STAMP = "2024-05-01T10:00:00+02:00"

LINE = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\r\n"),
    max_size=20,
).filter(lambda line: line.strip() not in (START_MARKER, END_MARKER))
FOREIGN = st.lists(LINE, max_size=8).map("\n".join)
CONTENT = st.lists(LINE, max_size=4).map("\n".join)
ENTRIES = st.lists(
    st.builds(
        Entry,
        id=st.uuids().map(str),
        name=st.text(alphabet="abcdefghij -_", min_size=1, max_size=10),
        content=CONTENT,
        enabled=st.just(True),
    ),
    max_size=4,
)


def _entry(name: str, content: str) -> Entry:
    return Entry(id=f"id-{name}", name=name, content=content, enabled=True)


def _section(*body: str) -> list[str]:
    return [
        START_MARKER,
        "# This section is managed by Ghost - Host Manager",
        "# Changes made outside this section will be preserved",
        f"# Generated at: {STAMP}",
        "",
        *body,
        END_MARKER,
    ]


def test_fresh_file_gets_section_after_one_blank_line() -> None:
    merged = merge_section("127.0.0.1 localhost\n", [_entry("A", "1.1.1.1 a.test")], generated_at=STAMP)

    assert merged.split("\n") == [
        "127.0.0.1 localhost",
        "",
        *_section("# Start of group: A", "1.1.1.1 a.test", "# End of group: A", ""),
        "",
    ]
    assert merged.endswith(END_MARKER + "\n")


def test_existing_section_is_replaced_and_foreign_tail_kept() -> None:
    current = "\n".join(
        [
            "127.0.0.1 localhost",
            START_MARKER,
            "# Start of group: A",
            "1.1.1.1 a.test",
            "# End of group: A",
            END_MARKER,
            "10.0.0.1 x",
            "",
        ]
    )

    merged = merge_section(current, [_entry("B", "2.2.2.2 b.test")], generated_at=STAMP)

    assert merged.split("\n") == [
        "127.0.0.1 localhost",
        "",
        "10.0.0.1 x",
        "",
        *_section("# Start of group: B", "2.2.2.2 b.test", "# End of group: B", ""),
        "",
    ]
    assert "a.test" not in merged


def test_disabling_the_only_entry_leaves_an_empty_section() -> None:
    first = merge_section("127.0.0.1 localhost\n", [_entry("A", "1.1.1.1 a.test")], generated_at=STAMP)
    second = merge_section(first, [], generated_at=STAMP)

    assert "# Start of group: A" not in second
    assert second.split("\n") == ["127.0.0.1 localhost", "", *_section(), ""]


def test_entry_order_is_merge_order() -> None:
    merged = merge_section("", [_entry("Z", "z"), _entry("A", "a")], generated_at=STAMP)
    assert merged.index("# Start of group: Z") < merged.index("# Start of group: A")


def test_empty_content_still_emits_group_lines() -> None:
    merged = merge_section("", [_entry("Empty", "")], generated_at=STAMP)
    assert merged.split("\n") == [*_section("# Start of group: Empty", "# End of group: Empty", ""), ""]


def test_trailing_newlines_of_content_are_stripped() -> None:
    merged = merge_section("", [_entry("A", "1.1.1.1 a.test\n\n")], generated_at=STAMP)
    assert "1.1.1.1 a.test\n# End of group: A" in merged


def test_empty_name_falls_back_to_id() -> None:
    merged = merge_section("", [Entry(id="abc", name="", content="x", enabled=True)], generated_at=STAMP)
    assert "# Start of group: abc" in merged


def test_only_start_marker_is_treated_as_unmanaged() -> None:
    current = f"127.0.0.1 localhost\n{START_MARKER}\n10.0.0.1 kept\n"

    merged = merge_section(current, [_entry("A", "a")], generated_at=STAMP)

    assert merged.startswith(current + "\n")
    assert merge_section(merged, [_entry("A", "a")], generated_at=STAMP) == merged


def test_only_end_marker_is_treated_as_unmanaged() -> None:
    current = f"{END_MARKER}\n127.0.0.1 localhost\n"

    merged = merge_section(current, [_entry("A", "a")], generated_at=STAMP)

    assert merged.startswith(current + "\n")
    assert merge_section(merged, [_entry("A", "a")], generated_at=STAMP) == merged


def test_section_runs_from_first_start_to_first_end() -> None:
    current = "\n".join(["a", START_MARKER, "b", START_MARKER, "old", END_MARKER, "c", ""])

    merged = merge_section(current, [], generated_at=STAMP)

    assert merged.split("\n")[:5] == ["a", "", "c", "", START_MARKER]
    assert "b" not in merged.split("\n") and "old" not in merged
    assert merged.count(START_MARKER) == 1


def test_marker_text_inside_a_content_line_keeps_merge_idempotent() -> None:
    entries = [_entry("A", f"1.1.1.1 a.test {END_MARKER}")]

    once = merge_section("127.0.0.1 localhost\n", entries, generated_at=STAMP)

    assert merge_section(once, entries, generated_at=STAMP) == once
    assert once.count(END_MARKER) == 2


def test_crlf_input_keeps_crlf() -> None:
    merged = merge_section("127.0.0.1 localhost\r\n", [_entry("A", "1.1.1.1 a.test")], generated_at=STAMP)

    assert merged.endswith(END_MARKER + "\r\n")
    assert "\n" not in merged.replace("\r\n", "")
    assert merge_section(merged, [_entry("A", "1.1.1.1 a.test")], generated_at=STAMP) == merged


def test_extract_section_returns_marker_bounded_lines() -> None:
    merged = merge_section("x\n", [_entry("A", "a")], generated_at=STAMP)
    section = extract_section(merged)
    assert section is not None
    assert section[0] == START_MARKER and section[-1] == END_MARKER
    assert extract_section("x\n") is None


@given(FOREIGN, ENTRIES)
def test_merge_is_idempotent(foreign: str, entries: list[Entry]) -> None:
    once = merge_section(foreign, entries, generated_at=STAMP)
    assert merge_section(once, entries, generated_at=STAMP) == once


@given(FOREIGN, ENTRIES, ENTRIES)
def test_remerging_with_other_entries_only_touches_the_section(foreign: str, first: list[Entry], second: list[Entry]) -> None:
    direct = merge_section(foreign, second, generated_at=STAMP)
    via_first = merge_section(merge_section(foreign, first, generated_at=STAMP), second, generated_at=STAMP)
    assert via_first == direct


@given(FOREIGN, ENTRIES)
def test_foreign_lines_precede_the_section_verbatim(foreign: str, entries: list[Entry]) -> None:
    kept = foreign.split("\n") if foreign else []
    while kept and not kept[-1].strip():
        kept.pop()

    merged = merge_section(foreign, entries, generated_at=STAMP).split("\n")

    assert merged[: len(kept)] == kept
    assert merged.index(START_MARKER) == (len(kept) + 1 if kept else 0)
    assert merged[-1] == "" and merged[-2] == END_MARKER
