"""Compact sets of integer ids.

Both event-log sync and repository replication describe "what I already
have" as a SortedRangeSet and compute transfers as range-set differences.
"""

from .iterator import RangeIterator
from .range import MAX_VALUE, Range
from .sorted_range_set import SortedRangeSet

__all__ = ["MAX_VALUE", "Range", "RangeIterator", "SortedRangeSet"]
