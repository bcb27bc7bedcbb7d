from datetime import datetime, timezone

import pytest
from conftest import seed_expense

from spendbox.core.security import get_password_hash
from spendbox.db import dynamo
from spendbox.models.expense import RecurringPattern
from spendbox.models.user import UserInDB
from spendbox.utils.scheduler import advance_occurrence, materialize_recurring_expenses


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "frequency, interval, expected",
    [
        ("daily", 3, _utc(2025, 1, 4)),
        ("weekly", 2, _utc(2025, 1, 15)),
        ("monthly", 1, _utc(2025, 2, 1)),
        ("yearly", 1, _utc(2026, 1, 1)),
    ],
)
def test_advance_occurrence(frequency, interval, expected):
    pattern = RecurringPattern(frequency=frequency, interval=interval)
    assert advance_occurrence(_utc(2025, 1, 1), pattern) == expected


def test_advance_occurrence_clamps_month_end():
    pattern = RecurringPattern(frequency="monthly")
    assert advance_occurrence(_utc(2024, 1, 31), pattern) == _utc(2024, 2, 29)


def test_advance_occurrence_stops_after_end_date():
    pattern = RecurringPattern(frequency="weekly", end_date=_utc(2025, 1, 10))
    assert advance_occurrence(_utc(2025, 1, 1), pattern) == _utc(2025, 1, 8)
    assert advance_occurrence(_utc(2025, 1, 8), pattern) is None


def _make_user():
    user = UserInDB(
        email="ada@example.com",
        password_hash=get_password_hash("password123"),
        first_name="Ada",
        last_name="Lovelace",
    )
    dynamo.create_user(user.model_dump(mode="json"))
    return {"user_id": user.user_id}


def _recurring(user_id):
    return seed_expense(
        user_id,
        amount=15.0,
        description="Streaming",
        category="Entertainment",
        date=_utc(2025, 3, 1),
        is_recurring=True,
        recurring_pattern={"frequency": "monthly"},
        next_occurrence=_utc(2025, 4, 1),
    )


def test_materialize_creates_due_copies_once(aws):
    user = _make_user()
    template = _recurring(user["user_id"])

    created = materialize_recurring_expenses(now=_utc(2025, 5, 15))
    assert created == 2

    items = dynamo.get_expenses_for_user(user["user_id"])
    copies = [item for item in items if item["expense_id"] != template.expense_id]
    assert sorted(item["date"][:10] for item in copies) == ["2025-04-01", "2025-05-01"]
    assert all(item["is_recurring"] is False for item in copies)
    assert all(item.get("recurring_pattern") is None for item in copies)

    stored = dynamo.get_expense(user["user_id"], template.expense_id)
    assert stored["next_occurrence"].startswith("2025-06-01")

    assert materialize_recurring_expenses(now=_utc(2025, 5, 15)) == 0


def test_materialize_finishes_at_end_date(aws):
    user = _make_user()
    template = _recurring(user["user_id"])
    dynamo.update_expense(
        user["user_id"],
        template.expense_id,
        {"recurring_pattern": {"frequency": "monthly", "interval": 1, "end_date": "2025-04-15T00:00:00Z"}},
    )

    assert materialize_recurring_expenses(now=_utc(2025, 8, 1)) == 1
    assert dynamo.get_expense(user["user_id"], template.expense_id)["next_occurrence"] is None
    assert materialize_recurring_expenses(now=_utc(2025, 9, 1)) == 0


def test_materialize_skips_users_at_limit(aws):
    user = _make_user()
    template = _recurring(user["user_id"])
    dynamo.update_user(user["user_id"], {"subscription.transaction_limit": 1})

    assert materialize_recurring_expenses(now=_utc(2025, 5, 15)) == 0
    assert len(dynamo.get_expenses_for_user(user["user_id"])) == 1
    # Skipped occurrences are not retried
    stored = dynamo.get_expense(user["user_id"], template.expense_id)
    assert stored["next_occurrence"].startswith("2025-06-01")

