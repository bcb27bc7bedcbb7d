from __future__ import annotations

import math
import statistics
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from spendbox.core.errors import BadRequest
from spendbox.models.ai import SimilarTransaction, SpendingPatterns
from spendbox.models.common import Pagination, as_utc
from spendbox.models.expense import ExpenseAnalytics, ExpenseInDB, MerchantTotal
from spendbox.models.user import SubscriptionUsage, UserInDB, UserStats

SORT_FIELDS = ("date", "amount", "category")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
TOP_MERCHANTS = 5


@dataclass
class ExpenseFilters:
    """Optional constraints for listing; every bound is inclusive."""

    category: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None

    def __post_init__(self) -> None:
        if self.start_date is not None:
            self.start_date = as_utc(self.start_date)
        if self.end_date is not None:
            self.end_date = as_utc(self.end_date)

    def matches(self, expense: ExpenseInDB) -> bool:
        if self.category is not None and expense.category != self.category:
            return False
        if self.start_date is not None and expense.date < self.start_date:
            return False
        if self.end_date is not None and expense.date > self.end_date:
            return False
        if self.min_amount is not None and expense.amount < self.min_amount:
            return False
        if self.max_amount is not None and expense.amount > self.max_amount:
            return False
        return True


class ExpenseAnalyzer:
    """
    Listing and aggregation over one user's expenses. Works on already
    loaded records, so the same logic backs the HTTP routes, the AI
    endpoints and the background jobs.
    """

    def __init__(self, spike_sigma: float = 2.5, minimum_spike_amount: float = 250.0) -> None:
        self._spike_sigma = spike_sigma
        self._minimum_spike_amount = minimum_spike_amount

    # --- listing -------------------------------------------------------------

    def filter(self, expenses: Sequence[ExpenseInDB], filters: ExpenseFilters) -> List[ExpenseInDB]:
        return [exp for exp in expenses if filters.matches(exp)]

    def sort(
        self,
        expenses: Sequence[ExpenseInDB],
        sort_by: str = "date",
        sort_order: str = "desc",
    ) -> List[ExpenseInDB]:
        if sort_by not in SORT_FIELDS:
            raise BadRequest(f"Cannot sort by {sort_by}")
        # sorted() is stable in both directions, ties keep their input order
        return sorted(expenses, key=lambda exp: getattr(exp, sort_by), reverse=sort_order == "desc")

    def paginate(
        self,
        items: Sequence[ExpenseInDB],
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[ExpenseInDB], Pagination]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)
        total = len(items)
        start = (page - 1) * limit
        window = list(items[start:start + limit])
        return window, Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit))

    def query(
        self,
        expenses: Sequence[ExpenseInDB],
        filters: Optional[ExpenseFilters] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        sort_by: str = "date",
        sort_order: str = "desc",
    ) -> Tuple[List[ExpenseInDB], Pagination]:
        matching = self.filter(expenses, filters or ExpenseFilters())
        return self.paginate(self.sort(matching, sort_by, sort_order), page, limit)

    # --- analytics -----------------------------------------------------------

    @staticmethod
    def resolve_period(
        period: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[datetime, datetime]:
        """Turn a period name into a concrete inclusive UTC date range."""
        if period == "custom":
            if start_date is None or end_date is None:
                raise BadRequest("Start date and end date are required for custom period")
            return as_utc(start_date), as_utc(end_date)

        now = as_utc(now) if now else datetime.now(timezone.utc)
        day_start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
        if period == "day":
            start, end = day_start, day_start + timedelta(days=1)
        elif period == "week":
            # Weeks start on Sunday
            start = day_start - timedelta(days=(now.weekday() + 1) % 7)
            end = start + timedelta(days=7)
        elif period == "month":
            start = day_start.replace(day=1)
            end = start + relativedelta(months=1)
        elif period == "year":
            start = day_start.replace(month=1, day=1)
            end = start + relativedelta(years=1)
        else:
            raise BadRequest(f"Unknown period {period}")
        return start, end - timedelta(microseconds=1)

    def analytics(self, expenses: Sequence[ExpenseInDB], period: str) -> ExpenseAnalytics:
        """Single pass over an already date-filtered set of expenses."""
        count = 0
        by_category: Dict[str, float] = defaultdict(float)
        by_merchant: Dict[str, float] = defaultdict(float)
        by_day: Dict[str, float] = defaultdict(float)

        for exp in expenses:
            count += 1
            by_category[exp.category] += exp.amount
            if exp.merchant:
                by_merchant[exp.merchant] += exp.amount
            by_day[exp.date.strftime("%Y-%m-%d")] += exp.amount

        # Every expense has a category, so this is the grand total
        total = sum(by_category.values())
        top_merchants = sorted(by_merchant.items(), key=lambda kv: kv[1], reverse=True)[:TOP_MERCHANTS]

        return ExpenseAnalytics(
            period=period,
            total_expenses=count,
            total_amount=total,
            average_amount=total / count if count else 0.0,
            category_breakdown=dict(by_category),
            top_merchants=[MerchantTotal(merchant=m, amount=a) for m, a in top_merchants],
            daily_trend=dict(sorted(by_day.items())),
        )

    def detect_spending_spikes(self, expenses: Sequence[ExpenseInDB]) -> List[ExpenseInDB]:
        """
        Detect outliers using Z-score heuristics to highlight unusual spends.
        """
        if not expenses:
            return []

        amounts = [exp.amount for exp in expenses]
        mean = statistics.fmean(amounts)
        stdev = statistics.pstdev(amounts)

        anomalies: List[ExpenseInDB] = []
        for exp in expenses:
            if exp.amount < self._minimum_spike_amount:
                continue
            z_score = 0 if stdev == 0 else (exp.amount - mean) / stdev
            if z_score >= self._spike_sigma:
                anomalies.append(exp)
        return anomalies

    def patterns(self, expenses: Sequence[ExpenseInDB]) -> SpendingPatterns:
        categories: Dict[str, float] = defaultdict(float)
        merchants: Dict[str, float] = defaultdict(float)
        weekdays: Dict[str, float] = defaultdict(float)
        months: Dict[str, float] = defaultdict(float)

        for exp in expenses:
            categories[exp.category] += exp.amount
            if exp.merchant:
                merchants[exp.merchant] += exp.amount
            weekdays[exp.date.strftime("%A")] += exp.amount
            months[exp.date.strftime("%Y-%m")] += exp.amount

        monthly = dict(sorted(months.items()))
        trends: Dict[str, float] = {}
        previous = None
        for month, amount in monthly.items():
            if previous:
                trends[month] = round((amount - previous) / previous * 100, 2)
            previous = amount

        return SpendingPatterns(
            top_categories=_top(categories, 5),
            merchant_patterns=_top(merchants, 10),
            day_of_week_patterns={day: round(total, 2) for day, total in weekdays.items()},
            monthly_patterns={month: round(total, 2) for month, total in monthly.items()},
            spending_trends=trends,
            unusual_transactions=[
                SimilarTransaction(id=exp.expense_id, amount=exp.amount, category=exp.category, date=exp.date)
                for exp in self.detect_spending_spikes(expenses)
            ],
        )

    def stats(
        self,
        user: UserInDB,
        expenses: Sequence[ExpenseInDB],
        now: Optional[datetime] = None,
    ) -> UserStats:
        now = as_utc(now) if now else datetime.now(timezone.utc)
        total = round(sum(exp.amount for exp in expenses), 2)
        most_common = Counter(exp.category for exp in expenses).most_common(1)
        used = user.subscription.used_transactions
        limit = user.subscription.transaction_limit

        return UserStats(
            total_expenses=len(expenses),
            total_amount=total,
            average_expense=round(total / len(expenses), 2) if expenses else 0.0,
            most_used_category=most_common[0][0] if most_common else "",
            subscription_usage=SubscriptionUsage(
                used=used,
                limit=limit,
                percentage=round(used / limit * 100, 2) if limit else 0.0,
            ),
            account_age=(now - user.created_at).days,
        )


def _top(totals: Dict[str, float], n: int) -> Dict[str, float]:
    ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)[:n]
    return {key: round(value, 2) for key, value in ranked}
