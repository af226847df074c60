"""Transport client for the remote proposal service."""

from .politeia_client import CSRF_HEADER, DEFAULT_HOST, PoliteiaClient
from .session import Session

__all__ = ["CSRF_HEADER", "DEFAULT_HOST", "PoliteiaClient", "Session"]
