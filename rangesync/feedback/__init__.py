"""Feedback event model and its line-oriented wire formats."""

from .descriptor import Descriptor, LowestID
from .event import AuditEventType, Event

__all__ = ["AuditEventType", "Descriptor", "Event", "LowestID"]
