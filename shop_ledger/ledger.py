"""
Ledger Service for Shop Ledger

This module ties the storage backend to the report functions and
defines the write operations the shop performs:
1. Record a sale (quantities → items → priced transaction) or an expense
2. Edit or delete past transactions
3. Maintain the product catalog and its categories

DESIGN DECISION: The service owns an explicit snapshot.
- Reads never go to storage; reports are computed from the snapshot
- Writes go to storage first and only then touch the snapshot
- Writes are serialized with a lock, one at a time

The snapshot only ever reflects writes that storage accepted.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Iterable, Optional, TypeVar, Union

from pydantic import ValidationError

from shop_ledger.config import AppSettings, get_settings
from shop_ledger.log import configure_logging, get_logger
from shop_ledger.models.ledger import (
    ExpenseCategory,
    Period,
    Product,
    ProductCategory,
    SaleItem,
    Transaction,
    TransactionKind,
)
from shop_ledger.models.report import AggregateReport, PeriodTotals, SummaryReport
from shop_ledger.models.snapshot import Snapshot
from shop_ledger.reports.aggregator import (
    build_period_report,
    build_summary,
    daily_totals,
    transactions_on,
)
from shop_ledger.reports.periods import local_now, resolve_timezone, to_local
from shop_ledger.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = get_logger(__name__)

T = TypeVar("T")


class LedgerService:
    """
    Application state for one shop.

    Usage:
        service = LedgerService(InMemoryLedgerStorage())
        await service.load()
        sale = await service.add_sale(service.build_sale_items({"p1": 2}))
        report = service.period_report(Period.single_day(date.today()))
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[AppSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().app
        self._tz = resolve_timezone(self._settings.timezone)
        self._snapshot = Snapshot()
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Snapshot
    # -------------------------------------------------------------------------

    def _newest_first(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        return sorted(
            transactions,
            key=lambda t: to_local(t.timestamp, self._tz),
            reverse=True,
        )

    @staticmethod
    def _by_sort_order(products: Iterable[Product]) -> list[Product]:
        return sorted(products, key=lambda p: p.sort_order)

    def _replace_snapshot(self, **changes: Any) -> None:
        self._snapshot = self._snapshot.model_copy(update=changes)

    async def _storage_call(self, operation: str, call: Awaitable[T], **context: Any) -> T:
        """Await a storage call, logging failures before re-raising them."""
        try:
            return await call
        except StorageError as e:
            logger.error(
                "storage_write_failed",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
                **context,
            )
            raise

    async def load(self) -> Snapshot:
        """
        Fetch everything from storage and rebuild the snapshot.

        Malformed rows are skipped and counted in `skipped_records`.
        """
        async with self._lock:
            try:
                transactions = await self._storage.list_transactions()
                products = await self._storage.list_products()
                categories = await self._storage.list_product_categories()
            except StorageError as e:
                logger.error("snapshot_load_failed", error=str(e))
                raise

            snapshot = Snapshot.from_records(transactions, products, categories)
            self._snapshot = snapshot.model_copy(update={
                "transactions": self._newest_first(snapshot.transactions),
                "products": self._by_sort_order(snapshot.products),
            })

        logger.info(
            "snapshot_loaded",
            transactions=len(self._snapshot.transactions),
            products=len(self._snapshot.products),
            product_categories=len(self._snapshot.product_categories),
            skipped_records=self._snapshot.skipped_records,
        )
        return self.snapshot()

    def snapshot(self) -> Snapshot:
        """A deep copy of the current snapshot; mutating it never reaches the service."""
        return self._snapshot.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _now(self) -> datetime:
        return datetime.now(self._tz) if self._tz else datetime.now().astimezone()

    def visible_products(self, limit: Optional[int] = None) -> list[Product]:
        """Products offered on the sale screen, in sort order."""
        if limit is None:
            limit = self._settings.sale_screen_product_limit
        visible = [p.model_copy() for p in self._snapshot.products if p.is_visible]
        return self._by_sort_order(visible)[:max(limit, 0)]

    def build_sale_items(self, quantities: dict[str, int]) -> list[SaleItem]:
        """
        Turn the sale screen's `{product_id: quantity}` into sale items.

        Name and price are copied from the catalog now. Products not on
        the sale screen and zero quantities are ignored.
        """
        items = []
        for product in self.visible_products():
            quantity = quantities.get(product.id, 0)
            if not quantity:
                continue
            items.append(SaleItem(
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price=product.price,
            ))
        return items

    async def _insert_transaction(self, transaction: Transaction) -> Transaction:
        async with self._lock:
            await self._storage_call(
                "save_transaction",
                self._storage.save_transaction(transaction),
                transaction_id=transaction.id,
            )
            self._replace_snapshot(
                transactions=self._newest_first([transaction, *self._snapshot.transactions])
            )

        logger.info(
            "transaction_saved",
            transaction_id=transaction.id,
            kind=transaction.kind.value,
            amount=str(transaction.amount),
        )
        return transaction

    async def add_sale(
        self,
        items: Iterable[Union[SaleItem, dict[str, Any]]],
        timestamp: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        """
        Record a sale.

        The amount is always the sum of quantity x unit price over the
        items. Zero-quantity lines are dropped.

        Raises:
            ValueError: If no line has a quantity
            ValidationError: If an item is invalid
        """
        sale_items = []
        for item in items:
            if isinstance(item, dict) and item.get("quantity") == 0:
                continue
            sale_items.append(SaleItem.model_validate(item))

        if not sale_items:
            raise ValueError("A sale needs at least one item")

        transaction = Transaction(
            kind=TransactionKind.SALE,
            amount=sum((item.subtotal for item in sale_items), Decimal("0")),
            timestamp=timestamp or self._now(),
            description=description,
            items=sale_items,
        )
        return await self._insert_transaction(transaction)

    async def add_expense(
        self,
        amount: Union[Decimal, str, int],
        category: Union[ExpenseCategory, str],
        description: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Transaction:
        """Record an expense under one of the fixed categories."""
        transaction = Transaction(
            kind=TransactionKind.EXPENSE,
            amount=amount,
            category=category,
            description=description,
            timestamp=timestamp or self._now(),
        )
        return await self._insert_transaction(transaction)

    def _require_transaction(self, transaction_id: str) -> Transaction:
        transaction = self._snapshot.find_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    async def update_transaction(self, transaction_id: str, **changes: Any) -> Transaction:
        """
        Apply field changes to a transaction and persist it.

        The result is validated as a whole, so changing a sale's items
        without its amount (or vice versa) is rejected. Changes apply on
        top of the latest stored version, after any write in progress.
        """
        async with self._lock:
            existing = self._require_transaction(transaction_id)
            data = existing.model_dump()
            data.update(changes)
            data["id"] = existing.id
            updated = Transaction.model_validate(data)

            await self._storage_call(
                "update_transaction",
                self._storage.update_transaction(updated),
                transaction_id=transaction_id,
            )
            self._replace_snapshot(transactions=self._newest_first(
                updated if t.id == transaction_id else t
                for t in self._snapshot.transactions
            ))

        logger.info("transaction_updated", transaction_id=transaction_id, fields=sorted(changes))
        return updated

    async def delete_transaction(self, transaction_id: str) -> None:
        async with self._lock:
            self._require_transaction(transaction_id)
            await self._storage_call(
                "delete_transaction",
                self._storage.delete_transaction(transaction_id),
                transaction_id=transaction_id,
            )
            self._replace_snapshot(transactions=[
                t for t in self._snapshot.transactions if t.id != transaction_id
            ])

        logger.info("transaction_deleted", transaction_id=transaction_id)

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    async def add_product(
        self,
        name: str,
        price: Union[Decimal, str, int],
        category_id: Optional[str] = None,
    ) -> Product:
        """Add a visible product at the end of the sale screen."""
        async with self._lock:
            products = self._snapshot.products
            product = Product(
                name=name,
                price=price,
                category_id=category_id,
                sort_order=max((p.sort_order for p in products), default=0) + 1,
            )
            await self._storage_call(
                "save_product",
                self._storage.save_product(product),
                product_id=product.id,
            )
            self._replace_snapshot(products=self._by_sort_order([*products, product]))

        logger.info("product_saved", product_id=product.id, name=product.name)
        return product.model_copy()

    async def update_products(
        self,
        products: Iterable[Union[Product, dict[str, Any]]],
    ) -> list[Product]:
        """
        Insert or replace products by id.

        Products not in `products` are kept as they are.
        """
        validated = [
            p.model_copy() if isinstance(p, Product) else Product.model_validate(p)
            for p in products
        ]
        if not validated:
            return []

        async with self._lock:
            await self._storage_call(
                "upsert_products",
                self._storage.upsert_products(validated),
                count=len(validated),
            )
            merged = {p.id: p for p in self._snapshot.products}
            merged.update((p.id, p) for p in validated)
            self._replace_snapshot(products=self._by_sort_order(merged.values()))

        logger.info("products_upserted", count=len(validated))
        return [p.model_copy() for p in validated]

    async def delete_product(self, product_id: str) -> None:
        """Delete a product. Past sales keep their copied name and price."""
        async with self._lock:
            if self._snapshot.find_product(product_id) is None:
                raise NotFoundError(f"Product not found: {product_id}")
            await self._storage_call(
                "delete_product",
                self._storage.delete_product(product_id),
                product_id=product_id,
            )
            self._replace_snapshot(products=[
                p for p in self._snapshot.products if p.id != product_id
            ])

        logger.info("product_deleted", product_id=product_id)

    # -------------------------------------------------------------------------
    # Product categories
    # -------------------------------------------------------------------------

    async def add_product_category(self, name: str) -> ProductCategory:
        category = ProductCategory(name=name)

        async with self._lock:
            await self._storage_call(
                "save_product_category",
                self._storage.save_product_category(category),
                category_id=category.id,
            )
            self._replace_snapshot(
                product_categories=[*self._snapshot.product_categories, category]
            )

        logger.info("product_category_saved", category_id=category.id, name=category.name)
        return category.model_copy()

    def _require_category(self, category_id: str) -> ProductCategory:
        category = self._snapshot.find_product_category(category_id)
        if category is None:
            raise NotFoundError(f"Product category not found: {category_id}")
        return category

    async def rename_product_category(self, category_id: str, name: str) -> ProductCategory:
        renamed = ProductCategory(id=category_id, name=name)

        async with self._lock:
            self._require_category(category_id)
            await self._storage_call(
                "update_product_category",
                self._storage.update_product_category(renamed),
                category_id=category_id,
            )
            self._replace_snapshot(product_categories=[
                renamed if c.id == category_id else c
                for c in self._snapshot.product_categories
            ])

        logger.info("product_category_renamed", category_id=category_id, name=renamed.name)
        return renamed.model_copy()

    async def delete_product_category(self, category_id: str) -> list[Product]:
        """
        Delete a category and clear it from every product that used it.

        Products are cleared first and the category is deleted last, so
        a failure part way never leaves a product pointing at a deleted
        category. Products are never deleted. Returns the products that
        were updated.
        """
        async with self._lock:
            self._require_category(category_id)
            cleared = [
                p.model_copy(update={"category_id": None})
                for p in self._snapshot.products
                if p.category_id == category_id
            ]
            if cleared:
                await self._storage_call(
                    "upsert_products",
                    self._storage.upsert_products(cleared),
                    category_id=category_id,
                    count=len(cleared),
                )
                by_id = {p.id: p for p in cleared}
                self._replace_snapshot(
                    products=[by_id.get(p.id, p) for p in self._snapshot.products]
                )

            await self._storage_call(
                "delete_product_category",
                self._storage.delete_product_category(category_id),
                category_id=category_id,
            )
            self._replace_snapshot(product_categories=[
                c for c in self._snapshot.product_categories if c.id != category_id
            ])

        logger.info(
            "product_category_deleted",
            category_id=category_id,
            products_cleared=len(cleared),
        )
        return [p.model_copy() for p in cleared]

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    def _today(self) -> date:
        return local_now(self._tz).date()

    def period_report(self, period: Period, chronological: bool = False) -> AggregateReport:
        return build_period_report(
            self._snapshot,
            period,
            tz=self._tz,
            uncategorized_label=self._settings.uncategorized_label,
            top_limit=self._settings.top_products_limit,
            chronological=chronological,
        )

    def summary(self, now: Optional[datetime] = None) -> SummaryReport:
        return build_summary(
            self._snapshot,
            now=now,
            tz=self._tz,
            top_limit=self._settings.top_products_limit,
            activity_days=self._settings.activity_window_days,
        )

    def today_totals(self, today: Optional[date] = None) -> PeriodTotals:
        """Dashboard figures: sales, expenses and balance for one day."""
        return daily_totals(self._snapshot.transactions, today or self._today(), self._tz)

    def todays_transactions(self, today: Optional[date] = None) -> list[Transaction]:
        """The day's history, newest first."""
        return transactions_on(self._snapshot.transactions, today or self._today(), self._tz)


def create_ledger_service(use_storage: bool = True) -> LedgerService:
    """
    Factory function to create a ready-to-load ledger service.

    Args:
        use_storage: Whether to use the configured storage backend.
                    Set to False to run fully in memory.

    Falls back to in-memory storage when Google Sheets is selected but
    not configured.
    """
    app_settings = get_settings().app
    configure_logging(app_settings.log_level, app_settings.json_logs)

    storage: LedgerStorageInterface = InMemoryLedgerStorage()
    if use_storage and app_settings.storage_backend == "google_sheets":
        try:
            storage = GoogleSheetsLedgerStorage(GoogleSheetsClient())
        except ValidationError as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e), fallback="memory")

    logger.info(
        "ledger_service_created",
        storage=type(storage).__name__,
        environment=app_settings.app_environment,
    )
    return LedgerService(storage, app_settings)
