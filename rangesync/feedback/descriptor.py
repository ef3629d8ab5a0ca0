"""Descriptors and watermarks that identify event logs."""

from dataclasses import dataclass
from typing import Any

from ..exceptions import (
    MalformedDescriptorError,
    MalformedLowestIDError,
    MalformedRepresentationError,
)
from ..ranges import SortedRangeSet
from . import codec


@dataclass(frozen=True)
class Descriptor:
    """One (target, store) log and the set of event ids known for it."""

    target_id: str
    store_id: int
    range_set: SortedRangeSet

    @property
    def key(self) -> tuple[str, int]:
        return (self.target_id, self.store_id)

    def with_range(self, range_set: SortedRangeSet) -> "Descriptor":
        return Descriptor(self.target_id, self.store_id, range_set)

    def to_representation(self) -> str:
        return f"{codec.encode(self.target_id)},{self.store_id},{self.range_set.to_representation()}"

    @classmethod
    def parse(cls, representation: str) -> "Descriptor":
        """Parse ``tid,storeID,ranges``; the range part may itself hold commas."""
        tokens = representation.rstrip("\r\n").split(",", 2)
        if len(tokens) < 2:
            raise MalformedDescriptorError(representation, "too few fields")
        try:
            target_id = codec.decode(tokens[0])
            store_id = int(tokens[1])
            range_set = SortedRangeSet.parse(tokens[2] if len(tokens) > 2 else "")
        except (ValueError, MalformedRepresentationError) as e:
            raise MalformedDescriptorError(representation, str(e)) from e
        if not target_id:
            raise MalformedDescriptorError(representation, "empty target ID")
        return cls(target_id, store_id, range_set)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "store_id": self.store_id,
            "range": self.range_set.to_representation(),
        }


@dataclass(frozen=True)
class LowestID:
    """Watermark below which a log's events were purged."""

    target_id: str
    store_id: int
    lowest_id: int

    def to_representation(self) -> str:
        return f"{codec.encode(self.target_id)},{self.store_id},{self.lowest_id}"

    @classmethod
    def parse(cls, representation: str) -> "LowestID":
        tokens = representation.rstrip("\r\n").split(",")
        if len(tokens) != 3:
            raise MalformedLowestIDError(representation, "expected three fields")
        try:
            target_id = codec.decode(tokens[0])
            store_id = int(tokens[1])
            lowest_id = int(tokens[2])
        except (ValueError, MalformedRepresentationError) as e:
            raise MalformedLowestIDError(representation, str(e)) from e
        if not target_id or lowest_id < 0:
            raise MalformedLowestIDError(representation, "invalid target or id")
        return cls(target_id, store_id, lowest_id)
