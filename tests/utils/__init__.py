"""
Test utilities for hostwatch.
"""

from .async_helpers import AsyncTestHelper, wait_for_condition

__all__ = [
    "AsyncTestHelper",
    "wait_for_condition",
]
