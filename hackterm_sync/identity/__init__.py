"""
Identity management for the sync client.

Provides the session credential type and the local credential cache.
"""

from .store import CredentialStore, FileCredentialStore, MemoryCredentialStore
from .types import Session

__all__ = [
    # Types
    "Session",
    # Stores
    "CredentialStore",
    "FileCredentialStore",
    "MemoryCredentialStore",
]
