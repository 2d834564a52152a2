"""HTTP server for note synchronization."""

from .app import create_app
from .auth import TokenAuthenticator

__all__ = ["TokenAuthenticator", "create_app"]
