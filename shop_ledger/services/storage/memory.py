"""
In-Memory Storage Implementation

Keeps raw records in dicts keyed by id, in insertion order. Used by the
tests and for running the ledger without any backend configured.

Records are stored the way a remote backend would return them
(`model_dump(mode="json")`), and copies are handed out so callers can
never mutate stored state through a returned record.
"""

import copy
from typing import Any, Iterable, Optional

from shop_ledger.models.ledger import Product, ProductCategory, Transaction
from shop_ledger.services.storage.interface import (
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    Record,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dict-backed storage, one table per entity."""

    def __init__(
        self,
        transactions: Optional[Iterable[Record]] = None,
        products: Optional[Iterable[Record]] = None,
        product_categories: Optional[Iterable[Record]] = None,
    ):
        """
        Initialize storage, optionally pre-loaded with raw records.

        Seed records are stored as given, malformed ones included, which
        lets tests reproduce what a real backend can hand back.
        """
        self._transactions: dict[str, Record] = {}
        self._products: dict[str, Record] = {}
        self._categories: dict[str, Record] = {}

        for table, records in (
            (self._transactions, transactions),
            (self._products, products),
            (self._categories, product_categories),
        ):
            for index, record in enumerate(records or []):
                key = str(record.get("id") or f"seed-{index}")
                table[key] = copy.deepcopy(record)

    @staticmethod
    def _dump(model: Any) -> Record:
        return model.model_dump(mode="json")

    @staticmethod
    def _rows(table: dict[str, Record]) -> list[Record]:
        return [copy.deepcopy(record) for record in table.values()]

    def _insert(self, table: dict[str, Record], key: str, model: Any, entity: str) -> bool:
        if key in table:
            raise DuplicateError(f"{entity} already exists: {key}")
        table[key] = self._dump(model)
        return True

    def _replace(self, table: dict[str, Record], key: str, model: Any, entity: str) -> bool:
        if key not in table:
            raise NotFoundError(f"{entity} not found: {key}")
        table[key] = self._dump(model)
        return True

    # Transactions

    async def list_transactions(self) -> list[Record]:
        return self._rows(self._transactions)

    async def save_transaction(self, transaction: Transaction) -> bool:
        return self._insert(self._transactions, transaction.id, transaction, "Transaction")

    async def update_transaction(self, transaction: Transaction) -> bool:
        return self._replace(self._transactions, transaction.id, transaction, "Transaction")

    async def delete_transaction(self, transaction_id: str) -> bool:
        return self._transactions.pop(transaction_id, None) is not None

    # Products

    async def list_products(self) -> list[Record]:
        return self._rows(self._products)

    async def save_product(self, product: Product) -> bool:
        return self._insert(self._products, product.id, product, "Product")

    async def upsert_products(self, products: list[Product]) -> bool:
        for product in products:
            self._products[product.id] = self._dump(product)
        return True

    async def delete_product(self, product_id: str) -> bool:
        return self._products.pop(product_id, None) is not None

    # Product categories

    async def list_product_categories(self) -> list[Record]:
        return self._rows(self._categories)

    async def save_product_category(self, category: ProductCategory) -> bool:
        return self._insert(self._categories, category.id, category, "Product category")

    async def update_product_category(self, category: ProductCategory) -> bool:
        return self._replace(self._categories, category.id, category, "Product category")

    async def delete_product_category(self, category_id: str) -> bool:
        return self._categories.pop(category_id, None) is not None
