"""HTTP interface for the interview recorder."""

from .server import create_app

__all__ = ["create_app"]
