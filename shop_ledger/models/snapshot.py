"""
Ledger Snapshot

The in-memory set of transactions, products and product categories
handed to the report functions. Reports never reach back into storage;
whatever is in the snapshot is the whole truth for that computation.
"""

from typing import Any, Iterable, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shop_ledger.log import get_logger
from shop_ledger.models.ledger import Product, ProductCategory, Transaction


logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _parse_records(
    model: type[ModelT],
    records: Iterable[Union[ModelT, dict[str, Any]]],
    entity: str,
) -> tuple[list[ModelT], int]:
    """Validate raw records one by one, skipping the ones that fail."""
    parsed: list[ModelT] = []
    skipped = 0
    for record in records:
        if isinstance(record, model):
            parsed.append(record)
            continue
        try:
            parsed.append(model.model_validate(record))
        except ValidationError as e:
            skipped += 1
            record_id = record.get("id") if isinstance(record, dict) else None
            logger.warning(
                "record_skipped",
                entity=entity,
                record_id=record_id,
                error_count=e.error_count(),
                errors=[err["msg"] for err in e.errors()],
            )
    return parsed, skipped


class Snapshot(BaseModel):
    """
    Consistent view of the ledger at one point in time.

    `skipped_records` counts raw rows that failed validation when the
    snapshot was built; they are not part of any list here.
    """
    model_config = ConfigDict(frozen=True)

    transactions: list[Transaction] = Field(default_factory=list)
    products: list[Product] = Field(default_factory=list)
    product_categories: list[ProductCategory] = Field(default_factory=list)
    skipped_records: int = Field(default=0, ge=0)

    @classmethod
    def from_records(
        cls,
        transactions: Iterable[Union[Transaction, dict[str, Any]]] = (),
        products: Iterable[Union[Product, dict[str, Any]]] = (),
        product_categories: Iterable[Union[ProductCategory, dict[str, Any]]] = (),
    ) -> 'Snapshot':
        """
        Build a snapshot from rows returned by a storage backend.

        Malformed rows (unparseable date, non-finite amount, expense
        without a category, ...) are quarantined and counted instead of
        failing the whole load.
        """
        parsed_transactions, skipped_transactions = _parse_records(
            Transaction, transactions, "transaction"
        )
        parsed_products, skipped_products = _parse_records(
            Product, products, "product"
        )
        parsed_categories, skipped_categories = _parse_records(
            ProductCategory, product_categories, "product_category"
        )
        return cls(
            transactions=parsed_transactions,
            products=parsed_products,
            product_categories=parsed_categories,
            skipped_records=skipped_transactions + skipped_products + skipped_categories,
        )

    def find_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return next((t for t in self.transactions if t.id == transaction_id), None)

    def find_product(self, product_id: str) -> Optional[Product]:
        return next((p for p in self.products if p.id == product_id), None)

    def find_product_category(self, category_id: str) -> Optional[ProductCategory]:
        return next((c for c in self.product_categories if c.id == category_id), None)
