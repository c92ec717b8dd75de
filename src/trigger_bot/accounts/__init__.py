"""
Accounts Layer - user account registry.

This module provides:
    - AccountRegistry: In-memory map of user accounts, kept current by order records
    - AccountNotFoundError: Raised when an account cannot be resolved
"""

from .registry import AccountNotFoundError, AccountRegistry

__all__ = [
    "AccountRegistry",
    "AccountNotFoundError",
]
