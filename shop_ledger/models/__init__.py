"""
Data Models Package

This package contains all Pydantic models used in Shop Ledger.
All data flowing through the system must conform to these schemas.
"""

from shop_ledger.models.ledger import (
    UNCATEGORIZED_LABEL,
    ExpenseCategory,
    Period,
    Product,
    ProductCategory,
    SaleItem,
    Transaction,
    TransactionKind,
    new_id,
)
from shop_ledger.models.report import (
    ActivityHistogram,
    AggregateReport,
    ChartPoint,
    DailyActivity,
    PeriodTotals,
    ProductRanking,
    SummaryReport,
    WeeklyComparison,
)
from shop_ledger.models.snapshot import Snapshot

__all__ = [
    # Ledger records
    "UNCATEGORIZED_LABEL",
    "ExpenseCategory",
    "Period",
    "Product",
    "ProductCategory",
    "SaleItem",
    "Transaction",
    "TransactionKind",
    "new_id",
    # Reports
    "ActivityHistogram",
    "AggregateReport",
    "ChartPoint",
    "DailyActivity",
    "PeriodTotals",
    "ProductRanking",
    "SummaryReport",
    "WeeklyComparison",
    # Snapshot
    "Snapshot",
]
