"""
Integration tests for the ledger service against in-memory storage.
"""

import asyncio
import pytest
from datetime import date, datetime
from decimal import Decimal

from pydantic import ValidationError

from shop_ledger.config import AppSettings
from shop_ledger.ledger import LedgerService, create_ledger_service
from shop_ledger.models.ledger import (
    ExpenseCategory,
    Period,
    Product,
    SaleItem,
    TransactionKind,
)
from shop_ledger.services.storage import (
    InMemoryLedgerStorage,
    NotFoundError,
    StorageError,
)


PRODUCTS = [
    {"id": "prod1", "name": "Torta Chocolate", "price": 45, "isVisible": True, "sortOrder": 1, "categoryId": "cat1"},
    {"id": "prod2", "name": "Cupcakes x6", "price": 30, "isVisible": True, "sortOrder": 2, "categoryId": "cat1"},
    {"id": "prod3", "name": "Brownies x4", "price": 20, "isVisible": True, "sortOrder": 3},
    {"id": "prod7", "name": "Cheesecake", "price": 50, "isVisible": False, "sortOrder": 7},
]

CATEGORIES = [
    {"id": "cat1", "name": "Tortas"},
    {"id": "cat2", "name": "Galletas"},
]


def make_service(transactions=None, products=PRODUCTS, categories=CATEGORIES, **settings):
    storage = InMemoryLedgerStorage(
        transactions=transactions,
        products=products,
        product_categories=categories,
    )
    return LedgerService(storage, AppSettings(**settings)), storage


def run(coro):
    return asyncio.run(coro)


class FailingStorage(InMemoryLedgerStorage):
    """In-memory storage whose transaction writes always fail."""

    async def save_transaction(self, transaction):
        raise StorageError("backend unavailable")


class FailingUpsertStorage(InMemoryLedgerStorage):
    """In-memory storage whose product upserts always fail."""

    async def upsert_products(self, products):
        raise StorageError("backend unavailable")


class FailingCategoryDeleteStorage(InMemoryLedgerStorage):
    """In-memory storage whose category deletes always fail."""

    async def delete_product_category(self, category_id):
        raise StorageError("backend unavailable")


class YieldingStorage(InMemoryLedgerStorage):
    """In-memory storage that suspends inside every write, like a network call."""

    async def save_product(self, product):
        await asyncio.sleep(0)
        return await super().save_product(product)

    async def update_transaction(self, transaction):
        await asyncio.sleep(0)
        return await super().update_transaction(transaction)

    async def upsert_products(self, products):
        await asyncio.sleep(0)
        return await super().upsert_products(products)


class TestLoad:
    """Tests for building the snapshot from storage."""

    def test_load_orders_transactions_newest_first(self):
        service, _ = make_service(transactions=[
            {"id": "t1", "kind": "sale", "amount": "10", "timestamp": "2024-03-01T10:00:00"},
            {"id": "t2", "kind": "sale", "amount": "10", "timestamp": "2024-03-03T10:00:00"},
            {"id": "t3", "kind": "expense", "amount": "5", "timestamp": "2024-03-02T10:00:00",
             "category": "Servicios Públicos"},
        ])
        snapshot = run(service.load())
        assert [t.id for t in snapshot.transactions] == ["t2", "t3", "t1"]
        assert snapshot == service.snapshot()

    def test_snapshot_is_a_copy(self):
        """Test that mutating a returned snapshot never changes the service."""
        service, _ = make_service()
        snapshot = run(service.load())

        snapshot.products.clear()
        snapshot.product_categories.append(snapshot.product_categories[0])
        service.visible_products()[0].name = "Cambiado"

        fresh = service.snapshot()
        assert len(fresh.products) == 4
        assert len(fresh.product_categories) == 2
        assert fresh.find_product("prod1").name == "Torta Chocolate"

    def test_load_counts_malformed_rows(self):
        """Test that a malformed row is quarantined, not fatal."""
        service, _ = make_service(transactions=[
            {"id": "t1", "kind": "sale", "amount": "10", "timestamp": "2024-03-01T10:00:00"},
            {"id": "t2", "kind": "sale", "amount": "Infinity", "timestamp": "2024-03-01T10:00:00"},
            {"id": "t3", "kind": "sale", "amount": "10", "timestamp": "32/13/2024"},
        ])
        snapshot = run(service.load())
        assert [t.id for t in snapshot.transactions] == ["t1"]
        assert snapshot.skipped_records == 2

        report = service.period_report(Period.single_day(date(2024, 3, 1)))
        assert report.totals.sales == Decimal("10")
        assert report.skipped_records == 2

    def test_products_ordered_by_sort_order(self):
        service, _ = make_service(products=list(reversed(PRODUCTS)))
        snapshot = run(service.load())
        assert [p.id for p in snapshot.products] == ["prod1", "prod2", "prod3", "prod7"]


class TestSales:
    """Tests for recording sales."""

    def test_build_sale_items_from_quantities(self):
        """Test that only visible products with a quantity become items."""
        service, _ = make_service()
        run(service.load())

        items = service.build_sale_items({"prod1": 1, "prod3": 2, "prod2": 0, "prod7": 4, "nope": 1})
        assert [(i.product_id, i.product_name, i.quantity, i.unit_price) for i in items] == [
            ("prod1", "Torta Chocolate", 1, Decimal("45")),
            ("prod3", "Brownies x4", 2, Decimal("20")),
        ]

    def test_add_sale_computes_amount_and_persists(self):
        service, storage = make_service()

        async def scenario():
            await service.load()
            items = service.build_sale_items({"prod1": 1, "prod3": 2})
            return await service.add_sale(items, description="Pedido")

        sale = run(scenario())
        assert sale.kind == TransactionKind.SALE
        assert sale.amount == Decimal("85")
        assert sale.timestamp.tzinfo is not None
        assert service.snapshot().transactions[0] == sale
        assert [t["id"] for t in run(storage.list_transactions())] == [sale.id]

    def test_add_sale_drops_zero_quantity_lines(self):
        service, _ = make_service()
        sale = run(service.add_sale([
            {"product_id": "prod1", "product_name": "Torta Chocolate", "quantity": 2, "unit_price": "45"},
            {"product_id": "prod2", "product_name": "Cupcakes x6", "quantity": 0, "unit_price": "30"},
        ]))
        assert len(sale.items) == 1
        assert sale.amount == Decimal("90")

    def test_add_sale_without_items_is_rejected(self):
        service, _ = make_service()
        with pytest.raises(ValueError):
            run(service.add_sale([]))

    def test_sale_keeps_price_after_catalog_change(self):
        """Test that editing a product's price does not rewrite past sales."""
        service, _ = make_service()

        async def scenario():
            await service.load()
            sale = await service.add_sale(service.build_sale_items({"prod1": 1}))
            product = service.snapshot().find_product("prod1")
            await service.update_products([product.model_copy(update={"price": Decimal("60")})])
            return sale

        sale = run(scenario())
        stored = service.snapshot().find_transaction(sale.id)
        assert stored.amount == Decimal("45")
        assert stored.items[0].unit_price == Decimal("45")

    def test_failed_write_leaves_snapshot_untouched(self):
        service = LedgerService(FailingStorage(products=PRODUCTS), AppSettings())

        async def scenario():
            await service.load()
            await service.add_sale(service.build_sale_items({"prod1": 1}))

        with pytest.raises(StorageError):
            run(scenario())
        assert service.snapshot().transactions == []


class TestExpensesAndEdits:
    """Tests for expenses, transaction updates and deletes."""

    def test_add_expense(self):
        service, _ = make_service()
        expense = run(service.add_expense(Decimal("20"), "Servicios Públicos", "Luz"))
        assert expense.category == ExpenseCategory.UTILITIES
        assert expense.description == "Luz"

    def test_add_expense_requires_valid_category(self):
        service, _ = make_service()
        with pytest.raises(ValidationError):
            run(service.add_expense(Decimal("20"), "Viajes"))

    def test_update_transaction(self):
        service, storage = make_service()

        async def scenario():
            expense = await service.add_expense(Decimal("20"), ExpenseCategory.UTILITIES)
            return await service.update_transaction(
                expense.id,
                amount=Decimal("25"),
                category=ExpenseCategory.RENT_MAINTENANCE,
            )

        updated = run(scenario())
        assert updated.amount == Decimal("25")
        assert service.snapshot().find_transaction(updated.id).category == ExpenseCategory.RENT_MAINTENANCE
        stored = run(storage.list_transactions())
        assert stored[0]["amount"] == "25"

    def test_update_is_validated_as_a_whole(self):
        """Test that changing a sale's amount away from its items is rejected."""
        service, _ = make_service()

        async def scenario():
            sale = await service.add_sale([SaleItem(
                product_id="prod3", product_name="Brownies x4", quantity=1, unit_price=Decimal("20"),
            )])
            await service.update_transaction(sale.id, amount=Decimal("99"))

        with pytest.raises(ValidationError):
            run(scenario())

    def test_update_unknown_transaction(self):
        service, _ = make_service()
        with pytest.raises(NotFoundError):
            run(service.update_transaction("missing", amount=Decimal("1")))

    def test_delete_transaction(self):
        service, storage = make_service()

        async def scenario():
            expense = await service.add_expense(Decimal("20"), ExpenseCategory.UTILITIES)
            await service.delete_transaction(expense.id)

        run(scenario())
        assert service.snapshot().transactions == []
        assert run(storage.list_transactions()) == []

    def test_delete_unknown_transaction(self):
        service, _ = make_service()
        with pytest.raises(NotFoundError):
            run(service.delete_transaction("missing"))


class TestCatalog:
    """Tests for product and product category maintenance."""

    def test_add_product_goes_last(self):
        service, _ = make_service()

        async def scenario():
            await service.load()
            return await service.add_product("Alfajores", Decimal("12"), category_id="cat2")

        product = run(scenario())
        assert product.sort_order == 8
        assert product.is_visible
        assert service.snapshot().products[-1] == product

    def test_first_product_sort_order(self):
        service, _ = make_service(products=[])
        product = run(service.add_product("Alfajores", Decimal("12")))
        assert product.sort_order == 1

    def test_add_product_rejects_blank_name(self):
        service, _ = make_service()
        with pytest.raises(ValidationError):
            run(service.add_product("   ", Decimal("12")))

    def test_update_products_merges(self):
        """Test that upserting some products keeps the others."""
        service, storage = make_service()

        async def scenario():
            await service.load()
            hidden = service.snapshot().find_product("prod1").model_copy(update={"is_visible": False})
            new = Product(id="prod9", name="Alfajores", price=Decimal("12"), sort_order=9)
            await service.update_products([hidden, new])

        run(scenario())
        snapshot = service.snapshot()
        assert [p.id for p in snapshot.products] == ["prod1", "prod2", "prod3", "prod7", "prod9"]
        assert snapshot.find_product("prod1").is_visible is False
        assert len(run(storage.list_products())) == 5

    def test_visible_products_limit(self):
        service, _ = make_service(sale_screen_product_limit=2)
        run(service.load())
        assert [p.id for p in service.visible_products()] == ["prod1", "prod2"]
        assert [p.id for p in service.visible_products(limit=10)] == ["prod1", "prod2", "prod3"]

    def test_delete_product(self):
        service, _ = make_service()

        async def scenario():
            await service.load()
            await service.delete_product("prod3")

        run(scenario())
        assert service.snapshot().find_product("prod3") is None

    def test_delete_unknown_product(self):
        service, _ = make_service()
        with pytest.raises(NotFoundError):
            run(service.delete_product("missing"))

    def test_category_crud(self):
        service, _ = make_service(categories=[])

        async def scenario():
            category = await service.add_product_category("Panes")
            return await service.rename_product_category(category.id, "Panadería")

        renamed = run(scenario())
        assert [c.name for c in service.snapshot().product_categories] == ["Panadería"]
        assert renamed.name == "Panadería"

    def test_rename_unknown_category(self):
        service, _ = make_service()
        with pytest.raises(NotFoundError):
            run(service.rename_product_category("missing", "X"))

    def test_delete_category_clears_product_references(self):
        """Test that deleting a category nulls it on products and keeps them."""
        service, storage = make_service()

        async def scenario():
            await service.load()
            return await service.delete_product_category("cat1")

        cleared = run(scenario())
        assert {p.id for p in cleared} == {"prod1", "prod2"}

        snapshot = service.snapshot()
        assert snapshot.find_product_category("cat1") is None
        assert snapshot.find_product("prod1").category_id is None
        assert snapshot.find_product("prod2").category_id is None
        assert len(snapshot.products) == 4

        stored = {p["id"]: p for p in run(storage.list_products())}
        assert stored["prod1"]["category_id"] is None
        assert [c["id"] for c in run(storage.list_product_categories())] == ["cat2"]

    def test_income_moves_to_uncategorized_after_category_delete(self):
        service, _ = make_service()
        today = date(2024, 3, 1)

        async def scenario():
            await service.load()
            await service.add_sale(
                service.build_sale_items({"prod1": 1}),
                timestamp=datetime(2024, 3, 1, 10, 0),
            )
            before = service.period_report(Period.single_day(today)).income_breakdown
            await service.delete_product_category("cat1")
            after = service.period_report(Period.single_day(today)).income_breakdown
            return before, after

        before, after = run(scenario())
        assert before == {"Tortas": Decimal("45")}
        assert after == {"Sin Categoría": Decimal("45")}


class TestWriteSerialization:
    """Tests for concurrent writes and failures part way through a write."""

    def test_concurrent_add_product_keeps_both(self):
        """Test that overlapping adds see each other and get distinct sort orders."""
        service = LedgerService(YieldingStorage(), AppSettings())

        async def scenario():
            await service.load()
            return await asyncio.gather(
                service.add_product("A", Decimal("1")),
                service.add_product("B", Decimal("1")),
            )

        first, second = run(scenario())
        assert [(p.name, p.sort_order) for p in service.snapshot().products] == [("A", 1), ("B", 2)]
        assert {first.sort_order, second.sort_order} == {1, 2}
        stored = run(service._storage.list_products())
        assert sorted(p["sort_order"] for p in stored) == [1, 2]

    def test_concurrent_updates_are_both_applied(self):
        """Test that the second update builds on the first instead of overwriting it."""
        service = LedgerService(YieldingStorage(), AppSettings())

        async def scenario():
            expense = await service.add_expense(Decimal("20"), ExpenseCategory.UTILITIES)
            await asyncio.gather(
                service.update_transaction(expense.id, amount=Decimal("25")),
                service.update_transaction(expense.id, description="Luz"),
            )
            return expense.id

        transaction_id = run(scenario())
        updated = service.snapshot().find_transaction(transaction_id)
        assert updated.amount == Decimal("25")
        assert updated.description == "Luz"
        stored = run(service._storage.list_transactions())[0]
        assert Decimal(stored["amount"]) == Decimal("25")
        assert stored["description"] == "Luz"

    def test_concurrent_delete_and_update_of_same_transaction(self):
        """Test that an update queued behind a delete reports the transaction as gone."""
        service = LedgerService(YieldingStorage(), AppSettings())

        async def scenario():
            expense = await service.add_expense(Decimal("20"), ExpenseCategory.UTILITIES)
            return await asyncio.gather(
                service.delete_transaction(expense.id),
                service.update_transaction(expense.id, amount=Decimal("25")),
                return_exceptions=True,
            )

        deleted, updated = run(scenario())
        assert deleted is None
        assert isinstance(updated, NotFoundError)
        assert service.snapshot().transactions == []

    def test_failed_product_clear_keeps_category(self):
        """Test that a failed product update leaves the category and references intact."""
        storage = FailingUpsertStorage(products=PRODUCTS, product_categories=CATEGORIES)
        service = LedgerService(storage, AppSettings())

        async def scenario():
            await service.load()
            await service.delete_product_category("cat1")

        with pytest.raises(StorageError):
            run(scenario())

        assert [c["id"] for c in run(storage.list_product_categories())] == ["cat1", "cat2"]
        snapshot = service.snapshot()
        assert snapshot.find_product_category("cat1") is not None
        assert snapshot.find_product("prod1").category_id == "cat1"

    def test_failed_category_delete_after_clearing_products(self):
        """Test that products stay cleared when only the category delete fails."""
        storage = FailingCategoryDeleteStorage(products=PRODUCTS, product_categories=CATEGORIES)
        service = LedgerService(storage, AppSettings())

        async def scenario():
            await service.load()
            await service.delete_product_category("cat1")

        with pytest.raises(StorageError):
            run(scenario())

        stored = {p["id"]: p for p in run(storage.list_products())}
        assert stored["prod1"]["category_id"] is None
        assert stored["prod2"]["category_id"] is None

        snapshot = service.snapshot()
        assert snapshot.find_product("prod1").category_id is None
        assert snapshot.find_product_category("cat1") is not None

        # Retrying finishes the delete
        service._storage = InMemoryLedgerStorage(
            products=run(storage.list_products()),
            product_categories=run(storage.list_product_categories()),
        )
        assert run(service.delete_product_category("cat1")) == []
        assert service.snapshot().find_product_category("cat1") is None


class TestReports:
    """Tests for the report shortcuts on the service."""

    def test_today_totals_and_history(self):
        service, _ = make_service()

        async def scenario():
            await service.add_sale([SaleItem(
                product_id="prod3", product_name="Brownies x4", quantity=1, unit_price=Decimal("20"),
            )])
            await service.add_expense(Decimal("5"), ExpenseCategory.SUPPLIES_PACKAGING)

        run(scenario())
        totals = service.today_totals()
        assert totals.sales == Decimal("20")
        assert totals.expenses == Decimal("5")
        assert totals.balance == Decimal("15")
        assert len(service.todays_transactions()) == 2

    def test_report_settings_are_applied(self):
        service, _ = make_service(uncategorized_label="Otros", top_products_limit=1, activity_window_days=3)

        async def scenario():
            await service.load()
            await service.add_sale(
                service.build_sale_items({"prod3": 2, "prod2": 1}),
                timestamp=datetime(2024, 3, 6, 10, 0),
            )

        run(scenario())
        report = service.period_report(Period.single_day(date(2024, 3, 6)))
        assert report.income_breakdown == {"Tortas": Decimal("30"), "Otros": Decimal("40")}
        assert [r.name for r in report.top_products] == ["Brownies x4"]

        summary = service.summary(now=datetime(2024, 3, 6, 18, 0))
        assert len(summary.activity.days) == 3
        assert summary.weekly.this_week_sales == Decimal("70")


class TestFactory:
    """Tests for the service factory."""

    def test_memory_backend(self, monkeypatch):
        from shop_ledger.config import get_settings

        monkeypatch.setenv("STORAGE_BACKEND", "memory")
        monkeypatch.setenv("JSON_LOGS", "false")
        get_settings.cache_clear()
        service = create_ledger_service()
        assert isinstance(service._storage, InMemoryLedgerStorage)

    def test_unconfigured_sheets_fall_back_to_memory(self, monkeypatch):
        from shop_ledger.config import get_settings

        monkeypatch.setenv("STORAGE_BACKEND", "google_sheets")
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        get_settings.cache_clear()
        service = create_ledger_service()
        assert isinstance(service._storage, InMemoryLedgerStorage)
