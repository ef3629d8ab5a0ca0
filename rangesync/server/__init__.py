"""HTTP server for rangesync nodes."""

from .app import create_app

__all__ = ["create_app"]
