import logging
from datetime import datetime
from typing import Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import ValidationError as PydanticValidationError

from spendbox.core.deps import get_ai_assistant, get_current_user, get_notifier
from spendbox.core.errors import BadRequest, InternalError, NotFound, ValidationError
from spendbox.core.rate_limit import upload_limiter
from spendbox.db import dynamo
from spendbox.models.ai import OCRResult
from spendbox.models.common import Envelope, PagedEnvelope, utcnow
from spendbox.models.expense import (
    ExpenseAnalytics,
    ExpenseCreate,
    ExpenseDeleted,
    ExpenseInDB,
    ExpensePublic,
    ExpenseUpdate,
    ReceiptRequest,
    Share,
    SharedExpense,
    ShareRequest,
)
from spendbox.models.user import UserInDB, UserSummary, normalize_email
from spendbox.utils.ai_service import AIAssistant
from spendbox.utils.analyzer import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ExpenseAnalyzer, ExpenseFilters
from spendbox.utils.notifier import NotificationHub
from spendbox.utils.scheduler import advance_occurrence

router = APIRouter()
logger = logging.getLogger(__name__)
expense_analyzer = ExpenseAnalyzer()

# Changing any of these moves the recurrence schedule
SCHEDULE_FIELDS = {"date", "is_recurring", "recurring_pattern"}


def load_user_expenses(user_id: str) -> List[ExpenseInDB]:
    return [ExpenseInDB.model_validate(item) for item in dynamo.get_expenses_for_user(user_id)]


def _get_owned(user: UserInDB, expense_id: str) -> ExpenseInDB:
    item = dynamo.get_expense(user.user_id, expense_id)
    if not item:
        raise NotFound("Expense not found")
    return ExpenseInDB.model_validate(item)


def _schedule(expense: ExpenseInDB) -> Optional[datetime]:
    if not expense.is_recurring or expense.recurring_pattern is None:
        return None
    return advance_occurrence(expense.date, expense.recurring_pattern)


def _reschedule(current: ExpenseInDB, merged: ExpenseInDB) -> Optional[datetime]:
    """Never moves a running schedule back onto occurrences already created."""
    upcoming = _schedule(merged)
    if upcoming is None or current.next_occurrence is None or not current.is_recurring:
        return upcoming
    return max(upcoming, current.next_occurrence)


@router.get("", response_model=PagedEnvelope[List[ExpensePublic]])
def list_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    category: Optional[str] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    min_amount: Optional[float] = Query(None, alias="minAmount", ge=0),
    max_amount: Optional[float] = Query(None, alias="maxAmount", ge=0),
    sort_by: Literal["date", "amount", "category"] = Query("date", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    user: UserInDB = Depends(get_current_user),
):
    filters = ExpenseFilters(
        category=category,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
    )
    items, pagination = expense_analyzer.query(
        load_user_expenses(user.user_id), filters, page, limit, sort_by, sort_order
    )
    return PagedEnvelope(data=[exp.to_public() for exp in items], pagination=pagination)


@router.get("/analytics", response_model=Envelope[ExpenseAnalytics])
def expense_analytics(
    period: Literal["day", "week", "month", "year", "custom"] = Query(...),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    user: UserInDB = Depends(get_current_user),
):
    start, end = expense_analyzer.resolve_period(period, start_date, end_date)
    in_range = expense_analyzer.filter(
        load_user_expenses(user.user_id), ExpenseFilters(start_date=start, end_date=end)
    )
    return Envelope(data=expense_analyzer.analytics(in_range, period))


@router.get("/shared", response_model=Envelope[List[SharedExpense]])
def list_shared_expenses(user: UserInDB = Depends(get_current_user)):
    owners: Dict[str, Optional[UserSummary]] = {}
    shared = []
    for item in dynamo.get_expenses_shared_with(user.user_id):
        expense = ExpenseInDB.model_validate(item)
        if expense.user_id not in owners:
            owner = dynamo.get_user_by_id(expense.user_id)
            owners[expense.user_id] = UserSummary.model_validate(owner) if owner else None
        shared.append(SharedExpense(**expense.to_public().model_dump(), owner=owners[expense.user_id]))
    shared.sort(key=lambda exp: exp.date, reverse=True)
    return Envelope(data=shared)


@router.post(
    "/process-receipt",
    response_model=Envelope[OCRResult],
    dependencies=[Depends(upload_limiter)],
)
def process_receipt(
    payload: ReceiptRequest,
    user: UserInDB = Depends(get_current_user),
    assistant: AIAssistant = Depends(get_ai_assistant),
):
    if not payload.image_data:
        raise ValidationError("Image data is required")
    result = assistant.ocr_extract(payload.image_data)
    logger.info(f"Processed receipt for user {user.user_id}")
    return Envelope(data=result)


@router.get("/{expense_id}", response_model=Envelope[ExpensePublic])
def get_expense(expense_id: str, user: UserInDB = Depends(get_current_user)):
    return Envelope(data=_get_owned(user, expense_id).to_public())


@router.post(
    "",
    response_model=Envelope[ExpensePublic],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(upload_limiter)],
)
def create_expense(
    payload: ExpenseCreate,
    user: UserInDB = Depends(get_current_user),
    notifier: NotificationHub = Depends(get_notifier),
):
    data = payload.model_dump(exclude_none=True)
    data.setdefault("currency", user.preferences.currency)
    expense = ExpenseInDB(user_id=user.user_id, **data)
    expense.next_occurrence = _schedule(expense)

    # Raises Forbidden, with nothing written, when the plan limit is reached
    dynamo.create_expense(expense.model_dump(mode="json"))

    public = expense.to_public()
    notifier.publish(user.user_id, "expense-added", public)
    logger.info(f"Expense {expense.expense_id} created for user {user.user_id}")
    return Envelope(data=public)


@router.put("/{expense_id}", response_model=Envelope[ExpensePublic])
def update_expense(
    expense_id: str,
    payload: ExpenseUpdate,
    user: UserInDB = Depends(get_current_user),
    notifier: NotificationHub = Depends(get_notifier),
):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise BadRequest("No fields to update")

    current = _get_owned(user, expense_id)
    try:
        merged = ExpenseInDB.model_validate({**current.model_dump(), **changes, "updated_at": utcnow()})
    except PydanticValidationError as e:
        errors = [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()]
        raise ValidationError(errors=errors)

    written = [*changes, "updated_at"]
    if SCHEDULE_FIELDS.intersection(changes):
        merged.next_occurrence = _reschedule(current, merged)
        written.append("next_occurrence")
    stored = merged.model_dump(mode="json")
    updates = {field: stored[field] for field in written}

    updated = dynamo.update_expense(user.user_id, expense_id, updates)
    if not updated:
        raise NotFound("Expense not found")

    public = ExpenseInDB.model_validate(updated).to_public()
    notifier.publish(user.user_id, "expense-updated", public)
    return Envelope(data=public)


@router.delete("/{expense_id}", response_model=Envelope)
def delete_expense(
    expense_id: str,
    user: UserInDB = Depends(get_current_user),
    notifier: NotificationHub = Depends(get_notifier),
):
    deleted = dynamo.delete_expense(user.user_id, expense_id)
    if not deleted:
        raise NotFound("Expense not found")
    notifier.publish(user.user_id, "expense-deleted", ExpenseDeleted(id=expense_id))
    return Envelope(message="Expense deleted successfully")


@router.post("/{expense_id}/share", response_model=Envelope[ExpensePublic])
def share_expense(
    expense_id: str,
    payload: ShareRequest,
    user: UserInDB = Depends(get_current_user),
    notifier: NotificationHub = Depends(get_notifier),
):
    _get_owned(user, expense_id)

    shares: List[Share] = []
    for target in payload.shares:
        item = dynamo.get_user_by_email(normalize_email(target.email))
        if not item:
            # Unknown emails are dropped
            continue
        shares.append(Share(user_id=item["user_id"], amount=target.amount))

    updated = dynamo.update_expense(
        user.user_id,
        expense_id,
        {
            "shared_with": [share.model_dump(mode="json") for share in shares],
            "shared_user_ids": sorted({share.user_id for share in shares}),
            "updated_at": utcnow().isoformat(),
        },
    )
    if not updated:
        raise InternalError("Failed to share expense")

    public = ExpenseInDB.model_validate(updated).to_public()
    notifier.publish(user.user_id, "expense-shared", public)
    return Envelope(data=public)
