"""
Report Models

Results produced by the aggregation functions in
`shop_ledger.reports.aggregator`. They carry raw Decimal amounts;
rounding to two decimals and the currency symbol are presentation
concerns.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from shop_ledger.models.ledger import ExpenseCategory, Period


class PeriodTotals(BaseModel):
    """Sales, expenses and balance for one period."""
    model_config = ConfigDict(frozen=True)

    sales: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    transaction_count: int = Field(default=0, ge=0)
    skipped_records: int = Field(
        default=0,
        ge=0,
        description="Malformed records left out of the totals"
    )


class ChartPoint(BaseModel):
    """
    One day of the balance chart.

    `balance` is cumulative over the points before it in the series.
    """
    model_config = ConfigDict(frozen=True)

    label: str
    day: date
    income: Decimal
    expense: Decimal
    balance: Decimal


class ProductRanking(BaseModel):
    """Units sold of one product name."""
    model_config = ConfigDict(frozen=True)

    name: str
    quantity: int = Field(ge=0)


class WeeklyComparison(BaseModel):
    """Sales of the current ISO week against the previous one."""
    model_config = ConfigDict(frozen=True)

    week_start: date
    this_week_sales: Decimal
    last_week_sales: Decimal
    percentage_change: Decimal

    @property
    def is_up(self) -> bool:
        return self.percentage_change >= 0


class DailyActivity(BaseModel):
    """One bar of the daily activity histogram."""
    model_config = ConfigDict(frozen=True)

    day: date
    label: str = Field(..., description="Short weekday name (lun, mar, ...)")
    sales: Decimal
    expenses: Decimal
    height: float = Field(
        ...,
        ge=0.0,
        le=1.0,
        description="Day total as a fraction of the busiest day in the window"
    )
    sales_share: float = Field(default=0.0, ge=0.0, le=100.0)
    expense_share: float = Field(default=0.0, ge=0.0, le=100.0)

    @property
    def total(self) -> Decimal:
        return self.sales + self.expenses


class ActivityHistogram(BaseModel):
    """Trailing window of daily activity, oldest day first."""
    model_config = ConfigDict(frozen=True)

    days: list[DailyActivity] = Field(default_factory=list)
    max_total: Decimal = Field(
        default=Decimal("1"),
        gt=0,
        description="Normalization base; 1 when every day is empty"
    )


class AggregateReport(BaseModel):
    """Everything the period screens show for one date range."""
    model_config = ConfigDict(frozen=True)

    period: Period
    totals: PeriodTotals
    expense_breakdown: dict[ExpenseCategory, Decimal]
    income_breakdown: dict[str, Decimal]
    balance_series: list[ChartPoint] = Field(default_factory=list)
    top_products: list[ProductRanking] = Field(default_factory=list)
    skipped_records: int = Field(default=0, ge=0)


class SummaryReport(BaseModel):
    """The weekly summary screen: comparison, best sellers, activity."""
    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    weekly: WeeklyComparison
    top_products: list[ProductRanking] = Field(default_factory=list)
    activity: ActivityHistogram
    skipped_records: int = Field(default=0, ge=0)
