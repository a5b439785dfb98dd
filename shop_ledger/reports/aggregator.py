"""
Report Aggregation Engine

DESIGN DECISION: Reporting is a set of pure functions over a snapshot.
They never touch storage, hold no state and have no side effects, so
any screen can recompute them whenever the snapshot changes.

GUARANTEES:
- Empty input gives zero-valued reports, never an error
- Malformed records are left out of every total and counted
- Percentages are always finite (0 or 100 when there is no baseline)
- Only a missing snapshot or transaction list raises (TypeError)
"""

from datetime import date, datetime, timedelta, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Iterable, NamedTuple, Optional

from shop_ledger.log import get_logger
from shop_ledger.models.ledger import (
    UNCATEGORIZED_LABEL,
    ExpenseCategory,
    Period,
    Product,
    ProductCategory,
    Transaction,
    TransactionKind,
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
from shop_ledger.reports.periods import (
    day_label,
    local_now,
    period_contains,
    start_of_week,
    to_local,
    trailing_days,
    weekday_label,
)


logger = get_logger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

DEFAULT_TOP_PRODUCTS = 3
DEFAULT_ACTIVITY_DAYS = 7


class _Entry(NamedTuple):
    """A transaction that passed the sanity checks, in local time."""
    transaction: Transaction
    kind: TransactionKind
    amount: Decimal
    moment: datetime
    category: Optional[ExpenseCategory]


def _finite_amount(value: object) -> Optional[Decimal]:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def _to_entry(transaction: Transaction, tz: Optional[tzinfo]) -> Optional[_Entry]:
    """
    Re-check a record before it is summed.

    Validated models always pass; records built without validation
    (model_construct, partially migrated rows) may not.
    """
    amount = _finite_amount(getattr(transaction, "amount", None))
    if amount is None:
        return None
    timestamp = getattr(transaction, "timestamp", None)
    if not isinstance(timestamp, datetime):
        return None
    try:
        kind = TransactionKind(getattr(transaction, "kind", None))
    except ValueError:
        return None

    category = None
    if kind == TransactionKind.EXPENSE:
        try:
            category = ExpenseCategory(getattr(transaction, "category", None))
        except ValueError:
            return None

    return _Entry(
        transaction=transaction,
        kind=kind,
        amount=amount,
        moment=to_local(timestamp, tz),
        category=category,
    )


def _collect(
    transactions: Iterable[Transaction],
    period: Optional[Period] = None,
    tz: Optional[tzinfo] = None,
) -> tuple[list[_Entry], int]:
    """Sanity-check and period-filter transactions, keeping input order."""
    if transactions is None:
        raise TypeError("transactions must be an iterable of Transaction, not None")

    entries: list[_Entry] = []
    skipped = 0
    for transaction in transactions:
        entry = _to_entry(transaction, tz)
        if entry is None:
            skipped += 1
            continue
        if period is not None and not period_contains(period, entry.moment):
            continue
        entries.append(entry)

    if skipped:
        logger.warning("malformed_transactions_skipped", count=skipped)
    return entries, skipped


def _item_subtotal(item) -> Decimal:
    return Decimal(item.quantity) * Decimal(str(item.unit_price))


# =============================================================================
# PERIOD TOTALS
# =============================================================================

def period_totals(
    transactions: Iterable[Transaction],
    period: Period,
    tz: Optional[tzinfo] = None,
) -> PeriodTotals:
    """Total sales, total expenses and their balance over a period."""
    entries, skipped = _collect(transactions, period, tz)

    sales = sum((e.amount for e in entries if e.kind == TransactionKind.SALE), ZERO)
    expenses = sum((e.amount for e in entries if e.kind == TransactionKind.EXPENSE), ZERO)

    return PeriodTotals(
        sales=sales,
        expenses=expenses,
        balance=sales - expenses,
        transaction_count=len(entries),
        skipped_records=skipped,
    )


def daily_totals(
    transactions: Iterable[Transaction],
    day: date,
    tz: Optional[tzinfo] = None,
) -> PeriodTotals:
    """The dashboard's "today" figures for any single day."""
    return period_totals(transactions, Period.single_day(day), tz)


def transactions_on(
    transactions: Iterable[Transaction],
    day: date,
    tz: Optional[tzinfo] = None,
) -> list[Transaction]:
    """A day's history list, in input order."""
    entries, _ = _collect(transactions, Period.single_day(day), tz)
    return [e.transaction for e in entries]


# =============================================================================
# CATEGORY BREAKDOWNS
# =============================================================================

def expense_breakdown(
    transactions: Iterable[Transaction],
    period: Period,
    tz: Optional[tzinfo] = None,
) -> dict[ExpenseCategory, Decimal]:
    """Expense totals for every category, zero-valued ones included."""
    entries, _ = _collect(transactions, period, tz)

    totals = {category: ZERO for category in ExpenseCategory}
    for entry in entries:
        if entry.kind == TransactionKind.EXPENSE:
            totals[entry.category] += entry.amount
    return totals


def income_breakdown(
    transactions: Iterable[Transaction],
    products: Iterable[Product],
    product_categories: Iterable[ProductCategory],
    period: Period,
    tz: Optional[tzinfo] = None,
    uncategorized_label: str = UNCATEGORIZED_LABEL,
) -> dict[str, Decimal]:
    """
    Sales per product category, resolved through the current catalog.

    The item's product id is looked up in today's catalog, not in the
    name snapshot on the sale. Items whose product is gone, has no
    category, or points at a deleted category go to the uncategorized
    bucket. Only non-zero buckets are returned, catalog order first.
    """
    entries, _ = _collect(transactions, period, tz)

    category_names = {c.id: c.name for c in product_categories}
    product_category = {p.id: p.category_id for p in products}

    totals: dict[str, Decimal] = {}
    for name in category_names.values():
        totals.setdefault(name, ZERO)
    totals.setdefault(uncategorized_label, ZERO)

    for entry in entries:
        if entry.kind != TransactionKind.SALE:
            continue
        for item in getattr(entry.transaction, "items", None) or []:
            category_id = product_category.get(item.product_id)
            name = category_names.get(category_id) if category_id else None
            totals[name or uncategorized_label] += _item_subtotal(item)

    return {name: total for name, total in totals.items() if total > 0}


# =============================================================================
# BALANCE SERIES
# =============================================================================

def balance_series(
    transactions: Iterable[Transaction],
    period: Optional[Period] = None,
    tz: Optional[tzinfo] = None,
    chronological: bool = False,
) -> list[ChartPoint]:
    """
    Per-day income/expense with a running balance.

    Days are bucketed by their short label and, by default, emitted in
    the order each label is first seen in `transactions`. Data loaded
    newest-first therefore produces a newest-first series. Pass
    `chronological=True` to sort buckets by calendar date instead.
    """
    entries, _ = _collect(transactions, period, tz)

    buckets: dict[str, dict] = {}
    for entry in entries:
        day = entry.moment.date()
        label = day_label(day)
        bucket = buckets.get(label)
        if bucket is None:
            bucket = buckets[label] = {"day": day, "income": ZERO, "expense": ZERO}
        if entry.kind == TransactionKind.SALE:
            bucket["income"] += entry.amount
        else:
            bucket["expense"] += entry.amount

    ordered = list(buckets.items())
    if chronological:
        ordered.sort(key=lambda kv: kv[1]["day"])

    points = []
    running = ZERO
    for label, bucket in ordered:
        running += bucket["income"] - bucket["expense"]
        points.append(ChartPoint(
            label=label,
            day=bucket["day"],
            income=bucket["income"],
            expense=bucket["expense"],
            balance=running,
        ))
    return points


# =============================================================================
# WEEKLY COMPARISON
# =============================================================================

def percentage_change(current: Decimal, previous: Decimal) -> Decimal:
    """
    Change from `previous` to `current`, in percent.

    Without a baseline the change is 100 if anything happened, else 0.
    """
    if previous > 0:
        return (current - previous) / previous * HUNDRED
    if current > 0:
        return HUNDRED
    return ZERO


def weekly_comparison(
    transactions: Iterable[Transaction],
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> WeeklyComparison:
    """Sales this week (Monday 00:00 onwards) against the week before."""
    now = to_local(now, tz) if now is not None else local_now(tz)
    entries, _ = _collect(transactions, None, tz)

    this_week = start_of_week(now)
    next_week = this_week + timedelta(days=7)
    last_week = this_week - timedelta(days=7)

    this_week_sales = ZERO
    last_week_sales = ZERO
    for entry in entries:
        if entry.kind != TransactionKind.SALE:
            continue
        if this_week <= entry.moment < next_week:
            this_week_sales += entry.amount
        elif last_week <= entry.moment < this_week:
            last_week_sales += entry.amount

    return WeeklyComparison(
        week_start=this_week.date(),
        this_week_sales=this_week_sales,
        last_week_sales=last_week_sales,
        percentage_change=percentage_change(this_week_sales, last_week_sales),
    )


# =============================================================================
# TOP PRODUCTS
# =============================================================================

def top_products(
    transactions: Iterable[Transaction],
    period: Optional[Period] = None,
    limit: int = DEFAULT_TOP_PRODUCTS,
    tz: Optional[tzinfo] = None,
) -> list[ProductRanking]:
    """
    Best sellers by units, grouped by product name.

    Ties keep the order in which the names were first seen.
    """
    entries, _ = _collect(transactions, period, tz)

    quantities: dict[str, int] = {}
    for entry in entries:
        if entry.kind != TransactionKind.SALE:
            continue
        for item in getattr(entry.transaction, "items", None) or []:
            quantities[item.product_name] = quantities.get(item.product_name, 0) + item.quantity

    # sorted() is stable, reverse=True included
    ranked = sorted(quantities.items(), key=lambda kv: kv[1], reverse=True)
    return [
        ProductRanking(name=name, quantity=quantity)
        for name, quantity in ranked[:max(limit, 0)]
    ]


# =============================================================================
# DAILY ACTIVITY
# =============================================================================

def daily_activity(
    transactions: Iterable[Transaction],
    today: Optional[date] = None,
    days: int = DEFAULT_ACTIVITY_DAYS,
    tz: Optional[tzinfo] = None,
) -> ActivityHistogram:
    """Sales and expenses for each of the last `days` days, today included."""
    today = today or local_now(tz).date()
    window = trailing_days(today, days)
    if not window:
        return ActivityHistogram()

    entries, _ = _collect(transactions, Period(start=window[0], end=window[-1]), tz)

    sums = {day: [ZERO, ZERO] for day in window}
    for entry in entries:
        slot = sums[entry.moment.date()]
        if entry.kind == TransactionKind.SALE:
            slot[0] += entry.amount
        else:
            slot[1] += entry.amount

    max_total = max(sales + expenses for sales, expenses in sums.values())
    if max_total == 0:
        max_total = ONE

    bars = []
    for day in window:
        sales, expenses = sums[day]
        total = sales + expenses
        bars.append(DailyActivity(
            day=day,
            label=weekday_label(day),
            sales=sales,
            expenses=expenses,
            height=float(total / max_total),
            sales_share=float(sales / total * HUNDRED) if total else 0.0,
            expense_share=float(expenses / total * HUNDRED) if total else 0.0,
        ))
    return ActivityHistogram(days=bars, max_total=max_total)


# =============================================================================
# REPORT BUILDERS
# =============================================================================

def build_period_report(
    snapshot: Snapshot,
    period: Period,
    tz: Optional[tzinfo] = None,
    uncategorized_label: str = UNCATEGORIZED_LABEL,
    top_limit: int = DEFAULT_TOP_PRODUCTS,
    chronological: bool = False,
) -> AggregateReport:
    """Totals, breakdowns, chart series and best sellers for one period."""
    if snapshot is None:
        raise TypeError("snapshot is required")

    transactions = snapshot.transactions
    totals = period_totals(transactions, period, tz)

    return AggregateReport(
        period=period,
        totals=totals,
        expense_breakdown=expense_breakdown(transactions, period, tz),
        income_breakdown=income_breakdown(
            transactions,
            snapshot.products,
            snapshot.product_categories,
            period,
            tz,
            uncategorized_label=uncategorized_label,
        ),
        balance_series=balance_series(transactions, period, tz, chronological=chronological),
        top_products=top_products(transactions, period, limit=top_limit, tz=tz),
        skipped_records=snapshot.skipped_records + totals.skipped_records,
    )


def build_summary(
    snapshot: Snapshot,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
    top_limit: int = DEFAULT_TOP_PRODUCTS,
    activity_days: int = DEFAULT_ACTIVITY_DAYS,
) -> SummaryReport:
    """Weekly comparison, all-time best sellers and recent daily activity."""
    if snapshot is None:
        raise TypeError("snapshot is required")

    now = to_local(now, tz) if now is not None else local_now(tz)
    transactions = snapshot.transactions
    _, skipped = _collect(transactions, None, tz)

    return SummaryReport(
        generated_at=now,
        weekly=weekly_comparison(transactions, now, tz),
        top_products=top_products(transactions, None, limit=top_limit, tz=tz),
        activity=daily_activity(transactions, now.date(), activity_days, tz),
        skipped_records=snapshot.skipped_records + skipped,
    )
