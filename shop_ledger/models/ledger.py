"""
Core Data Models for Shop Ledger

These models define the strict schemas for every record the ledger keeps.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage
4. Accept rows written by earlier versions of the store (camelCase keys, `type`/`date`)

DESIGN DECISION: Money is always Decimal. Pydantic rejects NaN and
Infinity for Decimal fields, so a validated record can always be summed.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


UNCATEGORIZED_LABEL = "Sin Categoría"


def new_id() -> str:
    """Fresh identifier for records created locally."""
    return str(uuid4())


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """Direction of money for a transaction."""
    SALE = "sale"
    EXPENSE = "expense"


class ExpenseCategory(str, Enum):
    """
    Fixed expense categories.

    DESIGN DECISION: A closed enum keeps the expense breakdown exhaustive.
    Declaration order is the display order.
    """
    SUPPLIES_PACKAGING = "Insumos y Empaques"
    UTILITIES = "Servicios Públicos"
    SALARIES = "Sueldos y Personal"
    RENT_MAINTENANCE = "Alquiler y Mantenimiento"
    MARKETING_SALES = "Marketing y Ventas"
    ADMIN_OTHER = "Administrativos y Otros"


# =============================================================================
# CATALOG
# =============================================================================

class ProductCategory(BaseModel):
    """A user-defined grouping for products (e.g. "Tortas")."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id, min_length=1)
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Category name shown in the income breakdown"
    )


class Product(BaseModel):
    """
    A product that can be sold.

    Only visible products are offered when recording a sale, ordered by
    `sort_order`. The category reference is optional and is cleared when
    the category is deleted.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str = Field(default_factory=new_id, min_length=1)
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Product name"
    )
    price: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Current unit price"
    )
    is_visible: bool = Field(
        default=True,
        description="Offered on the sale screen"
    )
    sort_order: int = Field(
        default=0,
        description="Position on the sale screen (ascending)"
    )
    category_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("category_id", "categoryId"),
        description="Reference to a ProductCategory"
    )

    @field_validator('category_id', mode='before')
    @classmethod
    def blank_category_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


# =============================================================================
# TRANSACTIONS
# =============================================================================

class SaleItem(BaseModel):
    """
    One line of a sale.

    Name and unit price are copied from the product when the sale is
    recorded, so later catalog edits never rewrite history.
    """
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    product_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price


class Transaction(BaseModel):
    """
    A sale or an expense.

    Sales may carry items (and then the amount must match them) but never
    a category. Expenses must carry a category and never items.
    Records are frozen: changes go through LedgerService.update_transaction.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id, min_length=1)
    kind: TransactionKind = Field(
        ...,
        validation_alias=AliasChoices("kind", "type"),
        description="sale or expense"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Total amount of the transaction"
    )
    timestamp: datetime = Field(
        default_factory=datetime.now,
        validation_alias=AliasChoices("timestamp", "date"),
        description="When the transaction happened"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500
    )
    items: list[SaleItem] = Field(default_factory=list)
    category: Optional[ExpenseCategory] = None

    @field_validator('items', mode='before')
    @classmethod
    def null_items_are_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator('description', 'category', mode='before')
    @classmethod
    def blank_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def validate_kind_fields(self) -> 'Transaction':
        """Validate the fields each kind may carry."""
        if self.kind == TransactionKind.SALE:
            if self.category is not None:
                raise ValueError("A sale cannot have an expense category")
            if self.items and self.items_total != self.amount:
                raise ValueError(
                    f"Sale amount {self.amount} does not match items total {self.items_total}"
                )
        else:
            if self.category is None:
                raise ValueError("An expense must have a category")
            if self.items:
                raise ValueError("An expense cannot have sale items")
        return self

    @property
    def is_sale(self) -> bool:
        return self.kind == TransactionKind.SALE

    @property
    def is_expense(self) -> bool:
        return self.kind == TransactionKind.EXPENSE

    @property
    def items_total(self) -> Decimal:
        return sum((item.subtotal for item in self.items), Decimal("0"))


# =============================================================================
# PERIODS
# =============================================================================

class Period(BaseModel):
    """
    Inclusive range of local calendar dates.

    No ordering check: a period whose start is after its end is legal and
    matches nothing, so reports over it are all zero.
    """
    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @classmethod
    def single_day(cls, day: date) -> 'Period':
        return cls(start=day, end=day)

    @property
    def is_empty(self) -> bool:
        return self.start > self.end
