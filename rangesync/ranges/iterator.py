"""Lazy iteration over the integers covered by a sequence of ranges."""

from collections.abc import Iterator, Sequence

from .range import Range


class RangeIterator:
    """Restartable iterable over every integer in a snapshot of ranges.

    Each call to ``iter()`` starts a fresh pass, so the same object can be
    walked more than once. The snapshot is taken at construction; later
    changes to the source list are not observed.
    """

    def __init__(self, ranges: Sequence[Range], reverse: bool = False):
        self._ranges = tuple(ranges)
        self._reverse = reverse

    def __iter__(self) -> Iterator[int]:
        if self._reverse:
            for r in reversed(self._ranges):
                yield from range(r.high, r.low - 1, -1)
        else:
            for r in self._ranges:
                yield from range(r.low, r.high + 1)

    def count(self) -> int:
        """Number of integers a full pass yields, without walking them."""
        return sum(r.size for r in self._ranges)

    def first(self) -> int | None:
        """Return the first value this iterator would yield, or None if empty."""
        if not self._ranges:
            return None
        return self._ranges[-1].high if self._reverse else self._ranges[0].low
