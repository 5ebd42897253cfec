"""
Shared utilities for quire.

Common functionality used across contexts:
- Logger configuration
- Timestamps
"""

from quire.utils.timestamp import now

__all__ = ["now"]
