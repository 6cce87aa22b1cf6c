"""
Monthly report builder

Groups one user's transactions for a calendar month by category and splits
the totals into income and expenses.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, NamedTuple, Optional

from database import RecordStore
from errors import ValidationError
from schemas import Category, MonthlyReport, ReportCategory, Transaction

logger = logging.getLogger(__name__)

MONTH_FORMAT_ERROR = "Invalid month format. Use YYYY-MM."


class MonthRange(NamedTuple):
    month: str
    start: datetime  # inclusive
    end: datetime  # exclusive


def parse_month(month: Optional[str] = None, now: Optional[datetime] = None) -> MonthRange:
    if not month:
        now = now or datetime.now()
        month = f"{now.year:04d}-{now.month:02d}"

    parts = month.split("-")
    if len(parts) != 2 or not all(p.isascii() and p.isdigit() for p in parts):
        raise ValidationError(MONTH_FORMAT_ERROR)
    year = int(parts[0])
    month_index = int(parts[1]) - 1
    if not 0 <= month_index <= 11 or not 1 <= year <= 9999:
        raise ValidationError(MONTH_FORMAT_ERROR)

    start = datetime(year, month_index + 1, 1)
    if month_index == 11:
        if year == 9999:
            raise ValidationError(MONTH_FORMAT_ERROR)
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, month_index + 2, 1)
    return MonthRange(f"{year:04d}-{month_index + 1:02d}", start, end)


def summarize_month(
    month: str,
    transactions: Iterable[Transaction],
    find_category: Callable[[str], Optional[Category]],
) -> MonthlyReport:
    """Group already-selected transactions into a report.

    Transactions whose category can no longer be found are left out.
    Categories appear in the order their first transaction was seen.
    """
    categories: Dict[str, Optional[Category]] = {}
    groups: Dict[str, ReportCategory] = {}

    for t in transactions:
        if t.category_id not in categories:
            categories[t.category_id] = find_category(t.category_id)
        category = categories[t.category_id]
        if category is None:
            logger.debug("Dropping transaction %s: category %s not found", t.id, t.category_id)
            continue

        group = groups.get(category.id)
        if group is None:
            group = groups[category.id] = ReportCategory(category=category.name, type=t.type, total=Decimal("0"))
        group.total += t.amount

    total_income = sum((g.total for g in groups.values() if g.type == "income"), Decimal("0"))
    total_expenses = sum((g.total for g in groups.values() if g.type == "expense"), Decimal("0"))
    return MonthlyReport(
        month=month,
        total_income=total_income,
        total_expenses=total_expenses,
        categories=list(groups.values()),
    )


def build_monthly_report(
    store: RecordStore, user_id: str, month: Optional[str] = None, now: Optional[datetime] = None
) -> MonthlyReport:
    month_range = parse_month(month, now)
    transactions = store.find_transactions_by_user_and_date_range(user_id, month_range.start, month_range.end)
    return summarize_month(month_range.month, transactions, store.find_category_by_id)
