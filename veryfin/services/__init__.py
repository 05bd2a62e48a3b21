"""Services package."""

from veryfin.services.currency import (
    ExchangeRateError,
    ExchangeRateService,
    UpstreamUnavailableError,
)
from veryfin.services.storage import (
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    InMemoryStorage,
    NotFoundError,
    SessionStorageInterface,
    SQLDatabase,
    SQLStorage,
    StorageError,
    UserStorageInterface,
)

__all__ = [
    # Currency services
    "ExchangeRateError",
    "ExchangeRateService",
    "UpstreamUnavailableError",
    # Storage services
    "ConnectionError",
    "DuplicateError",
    "FinanceStorageInterface",
    "InMemoryStorage",
    "NotFoundError",
    "SessionStorageInterface",
    "SQLDatabase",
    "SQLStorage",
    "StorageError",
    "UserStorageInterface",
]
