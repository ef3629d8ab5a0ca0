"""Sorted, coalesced set of integer ranges with diff and union.

A SortedRangeSet describes which ids (event ids, repository versions) a party
already holds. Its text form travels over the wire, e.g. ``"0-4,7,10-12"``.

Invariants, kept by every constructor and operation:

- ranges are sorted ascending by ``low``
- ranges never overlap
- ranges are never adjacent (``[a, b]`` and ``[b + 1, c]`` become ``[a, c]``)

Instances are immutable; every operation returns a new set.
"""

from bisect import bisect_left, bisect_right
from collections.abc import Iterable

from ..exceptions import MalformedRangeError, MalformedRangeSetError
from .iterator import RangeIterator
from .range import MAX_VALUE, Range


def _insert(ranges: list[Range], low: int, high: int) -> None:
    """Insert ``[low, high]`` into a canonical list, keeping it canonical.

    Every range that overlaps or touches the new interval is absorbed into a
    single range, so adding ``n`` next to one neighbour extends it and adding
    ``n`` into a one-wide gap bridges both neighbours.
    """
    # first range that reaches low - 1, i.e. overlaps or touches on the left
    i = bisect_left(ranges, low - 1, key=lambda r: r.high)
    # first range that starts beyond high + 1, i.e. cannot touch on the right
    j = bisect_right(ranges, high + 1, key=lambda r: r.low)
    if i < j:
        low = min(low, ranges[i].low)
        high = max(high, ranges[j - 1].high)
    ranges[i:j] = [Range(low, high)]


class SortedRangeSet:
    """An arbitrary set of non-negative integers stored as coalesced ranges."""

    __slots__ = ("_ranges",)

    def __init__(self, ranges: Iterable[Range] = ()):
        canonical: list[Range] = []
        for r in ranges:
            _insert(canonical, r.low, r.high)
        self._ranges: tuple[Range, ...] = tuple(canonical)

    # ---- construction -------------------------------------------------

    @classmethod
    def empty(cls) -> "SortedRangeSet":
        return cls()

    @classmethod
    def full(cls) -> "SortedRangeSet":
        """The set holding every id, used as the "no filtering" wildcard."""
        return cls((Range(0, MAX_VALUE),))

    @classmethod
    def parse(cls, text: str) -> "SortedRangeSet":
        """Parse a comma separated list of range tokens.

        Tokens may come in any order and may overlap; the result is always
        canonical. Empty tokens are ignored, so ``""`` is the empty set.

        Raises:
            MalformedRangeSetError: If any token is not a valid range.
        """
        ranges = []
        for token in text.split(","):
            if not token.strip():
                continue
            try:
                ranges.append(Range.parse(token))
            except MalformedRangeError as e:
                raise MalformedRangeSetError(text, e.reason) from e
        return cls(ranges)

    @classmethod
    def from_integers(cls, values: Iterable[int]) -> "SortedRangeSet":
        """Build a set from integers in any order, duplicates allowed."""
        canonical: list[Range] = []
        previous = None
        for value in sorted(values):
            if value == previous:
                continue
            _insert(canonical, value, value)
            previous = value
        result = cls.__new__(cls)
        result._ranges = tuple(canonical)
        return result

    # ---- queries ------------------------------------------------------

    @property
    def is_full(self) -> bool:
        return self._ranges == (Range(0, MAX_VALUE),)

    @property
    def high(self) -> int:
        """Highest element, or 0 for the empty set."""
        return self._ranges[-1].high if self._ranges else 0

    @property
    def low(self) -> int:
        """Lowest element, or 0 for the empty set."""
        return self._ranges[0].low if self._ranges else 0

    def contains(self, number: int) -> bool:
        # last range starting at or before number is the only candidate
        index = bisect_right(self._ranges, number, key=lambda r: r.low) - 1
        return index >= 0 and self._ranges[index].contains(number)

    def __contains__(self, number: int) -> bool:
        return self.contains(number)

    def ranges(self) -> tuple[Range, ...]:
        return self._ranges

    def size(self) -> int:
        """Number of integers in the set."""
        return sum(r.size for r in self._ranges)

    def __bool__(self) -> bool:
        return bool(self._ranges)

    # ---- set algebra --------------------------------------------------

    def diff_dest(self, dest: "SortedRangeSet") -> "SortedRangeSet":
        """Return ``dest \\ self``: everything in ``dest`` that this set lacks.

        With ``self = {2, 3}`` and ``dest = {1, 2}`` the result is ``{1}``.
        Callers asking "what does the peer have that I am missing" pass the
        peer's set as ``dest`` and call this on their own set.
        """
        result: list[Range] = []
        mine = self._ranges
        for r in dest._ranges:
            cursor = r.low
            # skip my ranges that end before this one starts
            k = bisect_left(mine, r.low, key=lambda m: m.high)
            while k < len(mine) and mine[k].low <= r.high:
                if mine[k].low > cursor:
                    _insert(result, cursor, mine[k].low - 1)
                cursor = mine[k].high + 1
                if cursor > r.high:
                    break
                k += 1
            if cursor <= r.high:
                _insert(result, cursor, r.high)
        diff = SortedRangeSet.__new__(SortedRangeSet)
        diff._ranges = tuple(result)
        return diff

    def union(self, dest: "SortedRangeSet") -> "SortedRangeSet":
        """Return every integer present in this set or in ``dest``."""
        merged = list(self._ranges)
        for r in dest._ranges:
            _insert(merged, r.low, r.high)
        result = SortedRangeSet.__new__(SortedRangeSet)
        result._ranges = tuple(merged)
        return result

    def add(self, number: int) -> "SortedRangeSet":
        """Return a copy of this set that also holds ``number``."""
        if self.contains(number):
            return self
        merged = list(self._ranges)
        _insert(merged, number, number)
        result = SortedRangeSet.__new__(SortedRangeSet)
        result._ranges = tuple(merged)
        return result

    # ---- iteration ----------------------------------------------------

    def iterator(self) -> RangeIterator:
        """Ascending, restartable iteration over the individual integers."""
        return RangeIterator(self._ranges)

    def reverse_iterator(self) -> RangeIterator:
        """Descending, restartable iteration over the individual integers."""
        return RangeIterator(self._ranges, reverse=True)

    def __iter__(self):
        return iter(self.iterator())

    # ---- representation -----------------------------------------------

    def to_representation(self) -> str:
        return ",".join(r.to_representation() for r in self._ranges)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SortedRangeSet):
            return NotImplemented
        return self._ranges == other._ranges

    def __hash__(self) -> int:
        return hash(self._ranges)

    def __repr__(self) -> str:
        return f"SortedRangeSet[{self.to_representation()}]"
