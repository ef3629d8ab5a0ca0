"""rangesync: range-set based event log sync and repository replication."""

__version__ = "0.1.0"
