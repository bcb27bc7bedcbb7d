"""
Scheduler Service
Materializes recurring expenses with a daily APScheduler job
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from dateutil.relativedelta import relativedelta

from spendbox.core.config import settings
from spendbox.core.errors import Forbidden, InternalError
from spendbox.db import dynamo
from spendbox.models.common import as_utc
from spendbox.models.expense import ExpenseInDB, RecurringPattern
from spendbox.utils.notifier import NotificationHub

logger = logging.getLogger(__name__)

RECURRING_JOB_ID = "recurring_expenses"

_STEP = {
    "daily": lambda n: relativedelta(days=n),
    "weekly": lambda n: relativedelta(weeks=n),
    "monthly": lambda n: relativedelta(months=n),
    "yearly": lambda n: relativedelta(years=n),
}

scheduler: Optional[BackgroundScheduler] = None


def advance_occurrence(current: datetime, pattern: RecurringPattern) -> Optional[datetime]:
    """Next occurrence after `current`, or None once past the pattern's end date."""
    upcoming = as_utc(current) + _STEP[pattern.frequency](pattern.interval)
    if pattern.end_date is not None and upcoming > pattern.end_date:
        return None
    return upcoming


def _copy_for(expense: ExpenseInDB, occurrence: datetime) -> ExpenseInDB:
    data = expense.model_dump(
        exclude={
            "expense_id",
            "created_at",
            "updated_at",
            "shared_with",
            "shared_user_ids",
            "next_occurrence",
            "external_id",
        }
    )
    data.update(date=occurrence, is_recurring=False, recurring_pattern=None)
    return ExpenseInDB.model_validate(data)


def materialize_recurring_expenses(
    notifier: Optional[NotificationHub] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Create one copy per due occurrence of every recurring expense and move
    its schedule forward. Returns the number of copies written.
    """
    now = as_utc(now) if now else datetime.now(timezone.utc)
    created = 0

    for item in dynamo.get_recurring_expenses():
        expense = ExpenseInDB.model_validate(item)
        if expense.recurring_pattern is None or expense.next_occurrence is None:
            continue

        occurrence: Optional[datetime] = expense.next_occurrence
        while occurrence is not None and occurrence <= now:
            copy = _copy_for(expense, occurrence)
            try:
                dynamo.create_expense(copy.model_dump(mode="json"))
                created += 1
                if notifier is not None:
                    notifier.publish(expense.user_id, "expense-added", copy.to_public())
            except Forbidden:
                logger.warning(
                    f"Skipped recurring copy of {expense.expense_id}: user {expense.user_id} is at the transaction limit"
                )
            except InternalError as e:
                # Retried from this occurrence on the next run
                logger.error(f"Could not copy recurring expense {expense.expense_id}: {e.message}")
                break
            occurrence = advance_occurrence(occurrence, expense.recurring_pattern)

        if occurrence != expense.next_occurrence:
            dynamo.update_expense(
                expense.user_id,
                expense.expense_id,
                {"next_occurrence": occurrence.isoformat() if occurrence else None},
            )

    logger.info(f"Recurring expenses job created {created} expenses")
    return created


def start_scheduler(notifier: Optional[NotificationHub] = None) -> None:
    """Start the background scheduler with the daily recurring-expense job"""
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler is already running")
        return

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        materialize_recurring_expenses,
        kwargs={"notifier": notifier},
        trigger=CronTrigger(hour=settings.RECURRING_JOB_HOUR, minute=settings.RECURRING_JOB_MINUTE),
        id=RECURRING_JOB_ID,
        name="Recurring expenses",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started, recurring expenses run daily at "
        f"{settings.RECURRING_JOB_HOUR:02d}:{settings.RECURRING_JOB_MINUTE:02d} UTC"
    )


def stop_scheduler() -> None:
    """Stop the background scheduler"""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Scheduler stopped")
