from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

N = TypeVar("N")

DIGITS = frozenset("0123456789")


@dataclass(frozen=True, slots=True)
class Included(Generic[N]):
    value: N


@dataclass(frozen=True, slots=True)
class Excluded(Generic[N]):
    value: N


@dataclass(frozen=True, slots=True)
class Unbounded:
    pass


UNBOUNDED = Unbounded()

Bound = Union[Included[Any], Excluded[Any], Unbounded]
BoundPair = tuple[Bound, Bound]


class RangeSyntaxError(ValueError):
    """Raised when range text does not follow the `N`, `N..`, `..=N` notation."""

    def __init__(self, char: str | None, position: int) -> None:
        self.char = char
        self.position = position
        if char is None:
            super().__init__(f"unexpected end of input (pos: {position})")
        else:
            super().__init__(f"no expected char: {char!r} (pos: {position})")


def range_contains(bounds: BoundPair, value: Any) -> bool:
    lower, upper = bounds
    if isinstance(lower, Included) and value < lower.value:
        return False
    if isinstance(lower, Excluded) and value <= lower.value:
        return False
    if isinstance(upper, Included) and value > upper.value:
        return False
    if isinstance(upper, Excluded) and value >= upper.value:
        return False
    return True


class _Scanner:
    """Left-to-right character source with a single pushback slot."""

    def __init__(self, text: str) -> None:
        self._chars: Iterator[tuple[int, str]] = enumerate(text)
        self._pushed: tuple[int, str] | None = None
        self.end = len(text)

    def next(self) -> tuple[int, str] | None:
        if self._pushed is not None:
            item, self._pushed = self._pushed, None
            return item
        return next(self._chars, None)

    def push_back(self, item: tuple[int, str]) -> None:
        self._pushed = item


def parse_range(text: str, convert: Callable[[str], N] = int) -> tuple[Bound, Bound]:  # type: ignore[assignment]
    """
    Parse the limited range notation used by numeric filters.

    Three forms are accepted, with ASCII spaces allowed around the number and
    the range marker but not inside ``..=``:

    - ``N``    -> target == N
    - ``N..``  -> target >= N
    - ``..=N`` -> target <= N

    ``convert`` turns the collected digits into the caller's numeric type.
    """
    scanner = _Scanner(text)
    digits = ""
    seen_number = False
    seen_range = False
    lower: Bound | None = None
    upper: Bound | None = None

    while True:
        item = scanner.next()
        if item is None:
            break
        position, char = item

        if char == " ":
            continue

        if char in DIGITS:
            if seen_number:
                raise RangeSyntaxError(char, position)
            seen_number = True
            digits = char
            while True:
                following = scanner.next()
                if following is None:
                    break
                if following[1] not in DIGITS:
                    scanner.push_back(following)
                    break
                digits += following[1]
            continue

        if char == ".":
            if seen_range:
                raise RangeSyntaxError(char, position)
            seen_range = True

            second = scanner.next()
            if second is None:
                raise RangeSyntaxError(None, scanner.end)
            if second[1] != ".":
                raise RangeSyntaxError(second[1], second[0])

            marker = scanner.next()
            if marker is None:
                if not seen_number:
                    raise RangeSyntaxError(None, scanner.end)
                lower, upper = None, UNBOUNDED
                break
            if marker[1] == "=" and not seen_number:
                lower, upper = UNBOUNDED, None
                continue
            if marker[1] == " " and seen_number:
                lower, upper = None, UNBOUNDED
                continue
            raise RangeSyntaxError(marker[1], marker[0])

        raise RangeSyntaxError(char, position)

    if not seen_number:
        raise RangeSyntaxError(None, scanner.end)

    value = convert(digits)
    return (
        Included(value) if lower is None else lower,
        Included(value) if upper is None else upper,
    )
