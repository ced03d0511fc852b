"""
Mock implementations for testing CargoKit components.

This package provides mock implementations of the remote store and HTTP
responses to enable isolated, deterministic testing.
"""

from .network import MockResponse
from .store import InMemoryStore

__all__ = [
    "MockResponse",
    "InMemoryStore",
]
