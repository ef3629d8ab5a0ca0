"""Feedback events reported by targets."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from ..exceptions import MalformedEventError, MalformedRepresentationError
from . import codec


class AuditEventType(IntEnum):
    """Well-known event type codes. Event.type accepts any integer."""

    BUNDLE_INSTALLED = 1
    BUNDLE_RESOLVED = 2
    BUNDLE_STARTED = 3
    BUNDLE_STOPPED = 4
    BUNDLE_UNRESOLVED = 5
    BUNDLE_UPDATED = 6
    BUNDLE_UNINSTALLED = 7
    BUNDLE_STARTING = 8
    BUNDLE_STOPPING = 9

    FRAMEWORK_INFO = 1001
    FRAMEWORK_WARNING = 1002
    FRAMEWORK_ERROR = 1003
    FRAMEWORK_REFRESH = 1004
    FRAMEWORK_STARTED = 1005
    FRAMEWORK_STARTLEVEL = 1006

    DEPLOYMENTADMIN_INSTALL = 2001
    DEPLOYMENTADMIN_UNINSTALL = 2002
    DEPLOYMENTADMIN_COMPLETE = 2003

    DEPLOYMENTCONTROL_INSTALL = 3001

    TARGETPROPERTIES_SET = 4001


@dataclass(frozen=True)
class Event:
    """A single event from a specific store on a specific target.

    Events are identified by ``(target_id, store_id, id)``; two events with
    the same key are the same event regardless of their payload, which is
    how duplicates are dropped during a merge.
    """

    target_id: str
    store_id: int
    id: int
    timestamp: int  # milliseconds since the epoch
    type: int
    properties: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.target_id, self.store_id, self.id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Event):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __lt__(self, other: "Event") -> bool:
        return self.key < other.key

    def to_representation(self) -> str:
        parts = [
            codec.encode(self.target_id),
            str(self.store_id),
            str(self.id),
            str(self.timestamp),
            str(self.type),
        ]
        for key, value in self.properties.items():
            parts.append(codec.encode(key))
            parts.append(codec.encode(value))
        return ",".join(parts)

    @classmethod
    def parse(cls, representation: str) -> "Event":
        """Parse one event line.

        Raises:
            MalformedEventError: If the line is not a valid event.
        """
        tokens = representation.rstrip("\r\n").split(",")
        if len(tokens) < 5:
            raise MalformedEventError(representation, "too few fields")
        if (len(tokens) - 5) % 2:
            raise MalformedEventError(representation, "dangling property key")
        try:
            target_id = codec.decode(tokens[0])
            store_id, event_id, timestamp, event_type = (int(t) for t in tokens[1:5])
            properties = {
                codec.decode(tokens[i]): codec.decode(tokens[i + 1])
                for i in range(5, len(tokens), 2)
            }
        except (ValueError, MalformedRepresentationError) as e:
            raise MalformedEventError(representation, str(e)) from e
        if not target_id:
            raise MalformedEventError(representation, "empty target ID")
        if store_id < 0 or event_id < 0:
            raise MalformedEventError(representation, "negative id")
        return cls(target_id, store_id, event_id, timestamp, event_type, properties)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "target_id": self.target_id,
            "store_id": self.store_id,
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type,
            "properties": dict(self.properties),
        }
