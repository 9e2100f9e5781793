from __future__ import annotations

from decimal import Decimal

import pytest

from quotebook.core.ranges import (
    UNBOUNDED,
    Excluded,
    Included,
    RangeSyntaxError,
    parse_range,
    range_contains,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("2..", (Included(2), UNBOUNDED)),
        ("010", (Included(10), Included(10))),
        ("..=5", (UNBOUNDED, Included(5))),
        ("  ..=   100", (UNBOUNDED, Included(100))),
        ("  100    ..", (Included(100), UNBOUNDED)),
        ("7 .. ", (Included(7), UNBOUNDED)),
        (" 42 ", (Included(42), Included(42))),
    ],
)
def test_parse_range_accepts_supported_forms(text: str, expected: tuple) -> None:
    assert parse_range(text) == expected


@pytest.mark.parametrize(
    "text",
    [
        "..5",
        "3..=",
        "..=5f",
        ".a.2",
        "not expected",
        " . . = 100",
        "",
        "..",
        "..=",
        "1 2",
        "2..3",
        "1...",
        "..=1..",
        "5.",
        ".. =5",
        "  ..  = 100",
        "2.. 3",
    ],
)
def test_parse_range_rejects_malformed_text(text: str) -> None:
    with pytest.raises(RangeSyntaxError):
        parse_range(text)


def test_parse_range_error_reports_offending_position() -> None:
    with pytest.raises(RangeSyntaxError) as excinfo:
        parse_range("..=5f")

    assert excinfo.value.char == "f"
    assert excinfo.value.position == 4


def test_parse_range_rejects_space_inside_at_most_marker() -> None:
    with pytest.raises(RangeSyntaxError) as excinfo:
        parse_range(".. =5")

    assert excinfo.value.char == " "
    assert excinfo.value.position == 2


def test_parse_range_uses_requested_numeric_type() -> None:
    lower, upper = parse_range("15..", convert=Decimal)

    assert lower == Included(Decimal(15))
    assert upper is UNBOUNDED


def test_range_contains_respects_bound_kinds() -> None:
    assert range_contains(parse_range("3"), 3)
    assert not range_contains(parse_range("3"), 4)
    assert range_contains(parse_range("3.."), 10)
    assert not range_contains(parse_range("3.."), 2)
    assert range_contains(parse_range("..=3"), 0)
    assert not range_contains(parse_range("..=3"), 4)
    assert not range_contains((Excluded(1), Excluded(3)), 1)
    assert range_contains((Excluded(1), Excluded(3)), 2)
    assert not range_contains((Excluded(1), Excluded(3)), 3)
    assert range_contains((UNBOUNDED, UNBOUNDED), 999)
