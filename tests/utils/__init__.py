"""
Test utilities for CargoKit testing.

This package provides test data builders to simplify test writing and
improve test readability.
"""

from .builders import (
    CargoHomeBuilder,
    write_lockfile,
)

__all__ = [
    "CargoHomeBuilder",
    "write_lockfile",
]
