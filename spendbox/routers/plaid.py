import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from spendbox.core.config import settings
from spendbox.core.deps import get_current_user, get_notifier, get_plaid_service
from spendbox.core.errors import BadRequest, Forbidden, InternalError, NotFound
from spendbox.db import dynamo
from spendbox.models.common import Envelope, utcnow
from spendbox.models.expense import ExpenseInDB
from spendbox.models.plaid import ExchangeTokenRequest, LinkResult, LinkToken, SyncResult
from spendbox.models.user import LinkedAccount, LinkedItem, UserInDB
from spendbox.routers.expenses import load_user_expenses
from spendbox.utils.notifier import NotificationHub
from spendbox.utils.plaid_client import PlaidService, map_category

router = APIRouter()
logger = logging.getLogger(__name__)


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        value = date.fromisoformat(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _expense_from_transaction(user: UserInDB, tx: Dict[str, Any]) -> ExpenseInDB:
    account_types = {acc.account_id: acc.account_type for acc in user.linked_accounts}
    account_id = tx.get("account_id")
    payment_type = "card" if account_types.get(account_id) == "credit" else "bank_transfer"
    description = (tx.get("name") or tx.get("merchant_name") or "Bank transaction").strip()[:200]

    return ExpenseInDB(
        user_id=user.user_id,
        amount=round(float(tx["amount"]), 2),
        currency=tx.get("iso_currency_code") or user.preferences.currency,
        description=description,
        category=map_category(tx),
        merchant=tx.get("merchant_name"),
        date=_as_datetime(tx["date"]),
        payment_method={"type": payment_type, "account_id": account_id},
        status="pending" if tx.get("pending") else "confirmed",
        external_id=tx["transaction_id"],
    )


@router.post("/create-link-token", response_model=Envelope[LinkToken])
def create_link_token(
    user: UserInDB = Depends(get_current_user),
    plaid: PlaidService = Depends(get_plaid_service),
):
    return Envelope(data=LinkToken(link_token=plaid.create_link_token(user.user_id)))


@router.post("/exchange-token", response_model=Envelope[LinkResult])
def exchange_token(
    payload: ExchangeTokenRequest,
    user: UserInDB = Depends(get_current_user),
    plaid: PlaidService = Depends(get_plaid_service),
):
    if not payload.public_token:
        raise BadRequest("Public token is required")

    access_token, item_id = plaid.exchange_public_token(payload.public_token)
    accounts = plaid.get_accounts(access_token, payload.institution_name)

    known = {acc.account_id for acc in user.linked_accounts}
    linked_accounts = user.linked_accounts + [acc for acc in accounts if acc.account_id not in known]
    linked_items = [item for item in user.linked_items if item.item_id != item_id]
    linked_items.append(
        LinkedItem(item_id=item_id, access_token=access_token, institution_name=payload.institution_name or "Unknown")
    )

    updated = dynamo.update_user(
        user.user_id,
        {
            "linked_accounts": [acc.model_dump(mode="json") for acc in linked_accounts],
            "linked_items": [item.model_dump(mode="json") for item in linked_items],
            "updated_at": utcnow().isoformat(),
        },
    )
    if not updated:
        raise InternalError("Failed to link bank accounts")

    logger.info(f"Linked {len(accounts)} bank accounts for user {user.user_id}")
    return Envelope(data=LinkResult(accounts=accounts))


@router.get("/accounts", response_model=Envelope[List[LinkedAccount]])
def list_accounts(user: UserInDB = Depends(get_current_user)):
    return Envelope(data=user.linked_accounts)


@router.delete("/accounts/{account_id}", response_model=Envelope[List[LinkedAccount]])
def unlink_account(account_id: str, user: UserInDB = Depends(get_current_user)):
    remaining = [acc for acc in user.linked_accounts if acc.account_id != account_id]
    if len(remaining) == len(user.linked_accounts):
        raise NotFound("Linked account not found")

    updated = dynamo.update_user(
        user.user_id,
        {
            "linked_accounts": [acc.model_dump(mode="json") for acc in remaining],
            "updated_at": utcnow().isoformat(),
        },
    )
    if not updated:
        raise InternalError("Failed to unlink account")
    return Envelope(data=remaining, message="Account unlinked successfully")


@router.get("/institutions", response_model=Envelope[List[Dict[str, Any]]])
def list_institutions(
    user: UserInDB = Depends(get_current_user),
    plaid: PlaidService = Depends(get_plaid_service),
):
    return Envelope(data=plaid.get_institutions())


@router.post("/sync-transactions", response_model=Envelope[SyncResult])
def sync_transactions(
    user: UserInDB = Depends(get_current_user),
    plaid: PlaidService = Depends(get_plaid_service),
    notifier: NotificationHub = Depends(get_notifier),
):
    if not user.linked_items:
        raise BadRequest("No linked bank accounts to sync")

    end = utcnow().date()
    start = end - timedelta(days=settings.PLAID_SYNC_DAYS)
    seen = {exp.external_id for exp in load_user_expenses(user.user_id) if exp.external_id}
    imported = skipped = 0
    limit_reached = False

    for item in user.linked_items:
        for tx in plaid.get_transactions(item.access_token, start, end):
            # Plaid reports money leaving the account as a positive amount
            if tx.get("transaction_id") in seen or float(tx.get("amount") or 0) <= 0:
                skipped += 1
                continue
            expense = _expense_from_transaction(user, tx)
            try:
                dynamo.create_expense(expense.model_dump(mode="json"))
            except Forbidden:
                limit_reached = True
                break
            seen.add(expense.external_id)
            imported += 1
            notifier.publish(user.user_id, "expense-added", expense.to_public())
        if limit_reached:
            break

    logger.info(f"Imported {imported} bank transactions for user {user.user_id}")
    message = "Transaction limit reached. Please upgrade to premium." if limit_reached else "Transactions synced"
    return Envelope(
        data=SyncResult(imported=imported, skipped=skipped, limit_reached=limit_reached),
        message=message,
    )
