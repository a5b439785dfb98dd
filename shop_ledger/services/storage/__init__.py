"""
Storage Services Package

Provides the abstract ledger storage interface and its implementations:
an in-memory backend and Google Sheets as the hosted backend.
"""

from shop_ledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    Record,
    StorageError,
)
from shop_ledger.services.storage.memory import InMemoryLedgerStorage
from shop_ledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
)

__all__ = [
    # Interface
    "LedgerStorageInterface",
    "Record",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryLedgerStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
]
