"""Inclusive integer interval, the building block of a SortedRangeSet."""

from dataclasses import dataclass

from ..exceptions import MalformedRangeError

# Largest id the wire formats carry (signed 64-bit).
MAX_VALUE = 2**63 - 1


@dataclass(frozen=True, order=True)
class Range:
    """An inclusive ``[low, high]`` interval of non-negative integers."""

    low: int
    high: int

    def __post_init__(self) -> None:
        if self.low < 0:
            raise MalformedRangeError(self.to_representation(), "negative bound")
        if self.low > self.high:
            raise MalformedRangeError(f"{self.low}-{self.high}", "low exceeds high")
        if self.high > MAX_VALUE:
            raise MalformedRangeError(f"{self.low}-{self.high}", "out of bounds")

    @classmethod
    def single(cls, number: int) -> "Range":
        return cls(number, number)

    @classmethod
    def parse(cls, text: str) -> "Range":
        """Parse ``"N"`` or ``"LOW-HIGH"``.

        Raises:
            MalformedRangeError: If a bound is not a non-negative integer or
                ``LOW > HIGH``.
        """
        token = text.strip()
        low_text, sep, high_text = token.partition("-")
        try:
            low = int(low_text)
            high = int(high_text) if sep else low
        except ValueError:
            raise MalformedRangeError(text, "not an integer") from None
        if low > high:
            raise MalformedRangeError(text, "low exceeds high")
        if high > MAX_VALUE:
            raise MalformedRangeError(text, "out of bounds")
        return cls(low, high)

    def contains(self, number: int) -> bool:
        return self.low <= number <= self.high

    def __contains__(self, number: int) -> bool:
        return self.contains(number)

    @property
    def size(self) -> int:
        """Number of integers covered. Not ``__len__``: ``[0, MAX_VALUE]`` overflows len()."""
        return self.high - self.low + 1

    def with_low(self, number: int) -> "Range":
        """Return a copy with a new low bound, collapsing to ``[n, n]`` if it passes high."""
        if number > self.high:
            return Range(number, number)
        return Range(number, self.high)

    def with_high(self, number: int) -> "Range":
        """Return a copy with a new high bound, collapsing to ``[n, n]`` if it drops below low."""
        if number < self.low:
            return Range(number, number)
        return Range(self.low, number)

    def to_representation(self) -> str:
        if self.low == self.high:
            return str(self.low)
        return f"{self.low}-{self.high}"

    def __str__(self) -> str:
        return self.to_representation()
