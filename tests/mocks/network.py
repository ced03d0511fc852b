"""
Mock network operations for testing.

This module provides mock HTTP responses so the HTTP store can be tested
without actual network access.
"""

from typing import Dict, Optional

import requests


class MockResponse:
    """Mock HTTP response."""

    def __init__(
        self,
        content: bytes = b"",
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize mock response.

        Args:
            content: Response body content
            status_code: HTTP status code (default: 200)
            headers: Optional response headers
        """
        self.content = content
        self.status_code = status_code
        self.headers = headers or {}
        self.ok = 200 <= status_code < 300

    def raise_for_status(self):
        """
        Raise exception for bad status codes.

        Raises:
            requests.HTTPError: If status code indicates error (400-599)
        """
        if 400 <= self.status_code < 600:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)
