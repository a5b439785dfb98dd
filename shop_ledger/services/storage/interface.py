"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a hosted database later
2. Use in-memory storage for testing
3. Keep the ledger service decoupled from storage implementation

Reads return RAW records (plain dicts). Validation happens once, when
the ledger builds its snapshot, so a single malformed row is quarantined
instead of failing the whole load. Writes take validated models.
"""

from abc import ABC, abstractmethod
from typing import Any

from shop_ledger.models.ledger import Product, ProductCategory, Transaction


Record = dict[str, Any]


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods. Writes are issued one at a time by
    the ledger service; implementations need no locking of their own.
    """

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_transactions(self) -> list[Record]:
        """
        Return every stored transaction as a raw record.

        Returns:
            Raw records in storage order
        """
        pass

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> bool:
        """
        Save a new transaction.

        Raises:
            DuplicateError: If the id is already stored
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> bool:
        """
        Replace a stored transaction with the same id.

        Raises:
            NotFoundError: If transaction doesn't exist
            StorageError: If update fails
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """
        Delete a transaction by id.

        Returns:
            True if deleted, False if there was nothing to delete
        """
        pass

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_products(self) -> list[Record]:
        """Return every stored product as a raw record."""
        pass

    @abstractmethod
    async def save_product(self, product: Product) -> bool:
        """
        Save a new product.

        Raises:
            DuplicateError: If the id is already stored
        """
        pass

    @abstractmethod
    async def upsert_products(self, products: list[Product]) -> bool:
        """
        Insert or replace products by id.

        Products not mentioned are left untouched.
        """
        pass

    @abstractmethod
    async def delete_product(self, product_id: str) -> bool:
        """
        Delete a product by id.

        Returns:
            True if deleted, False if there was nothing to delete
        """
        pass

    # -------------------------------------------------------------------------
    # Product categories
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_product_categories(self) -> list[Record]:
        """Return every stored product category as a raw record."""
        pass

    @abstractmethod
    async def save_product_category(self, category: ProductCategory) -> bool:
        """
        Save a new product category.

        Raises:
            DuplicateError: If the id is already stored
        """
        pass

    @abstractmethod
    async def update_product_category(self, category: ProductCategory) -> bool:
        """
        Replace a stored product category with the same id.

        Raises:
            NotFoundError: If category doesn't exist
        """
        pass

    @abstractmethod
    async def delete_product_category(self, category_id: str) -> bool:
        """
        Delete a product category by id.

        Products referencing it are NOT touched here; the ledger service
        clears their reference.

        Returns:
            True if deleted, False if there was nothing to delete
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
