"""
Low-level socket plumbing for the standalone server.
"""

from .connection import Connection, ConnectionState, RequestTooLarge

__all__ = [
    "Connection",
    "ConnectionState",
    "RequestTooLarge",
]
