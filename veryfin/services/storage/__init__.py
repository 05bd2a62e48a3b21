"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
SQLStorage is the production backend; InMemoryStorage backs the tests.
"""

from veryfin.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    NotFoundError,
    SessionStorageInterface,
    StorageError,
    UserStorageInterface,
)
from veryfin.services.storage.memory import InMemoryStorage
from veryfin.services.storage.sql import SQLDatabase, SQLStorage

__all__ = [
    # Interfaces
    "FinanceStorageInterface",
    "SessionStorageInterface",
    "UserStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryStorage",
    "SQLDatabase",
    "SQLStorage",
]
