"""Report aggregation package."""

from shop_ledger.reports.aggregator import (
    balance_series,
    build_period_report,
    build_summary,
    daily_activity,
    daily_totals,
    expense_breakdown,
    income_breakdown,
    percentage_change,
    period_totals,
    top_products,
    transactions_on,
    weekly_comparison,
)

__all__ = [
    "balance_series",
    "build_period_report",
    "build_summary",
    "daily_activity",
    "daily_totals",
    "expense_breakdown",
    "income_breakdown",
    "percentage_change",
    "period_totals",
    "top_products",
    "transactions_on",
    "weekly_comparison",
]
