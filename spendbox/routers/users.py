import logging
from datetime import timedelta

from fastapi import APIRouter, Depends

from spendbox.core.config import settings
from spendbox.core.deps import get_current_user
from spendbox.core.errors import BadRequest, InternalError
from spendbox.db import dynamo
from spendbox.models.common import Envelope, utcnow
from spendbox.models.user import (
    Preferences,
    PreferencesUpdate,
    ProfileUpdate,
    Subscription,
    UserInDB,
    UserPublic,
    UserStats,
)
from spendbox.routers.auth import apply_profile_update
from spendbox.routers.expenses import expense_analyzer, load_user_expenses

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/profile", response_model=Envelope[UserPublic])
def get_profile(user: UserInDB = Depends(get_current_user)):
    return Envelope(data=UserPublic.from_db(user))


@router.put("/profile", response_model=Envelope[UserPublic])
def update_profile(profile: ProfileUpdate, user: UserInDB = Depends(get_current_user)):
    updated = apply_profile_update(user, profile)
    return Envelope(data=UserPublic.from_db(updated), message="Profile updated successfully")


@router.get("/preferences", response_model=Envelope[Preferences])
def get_preferences(user: UserInDB = Depends(get_current_user)):
    return Envelope(data=user.preferences)


@router.put("/preferences", response_model=Envelope[Preferences])
def update_preferences(payload: PreferencesUpdate, user: UserInDB = Depends(get_current_user)):
    updated = apply_profile_update(user, ProfileUpdate(preferences=payload))
    return Envelope(data=updated.preferences, message="Preferences updated successfully")


@router.get("/subscription", response_model=Envelope[Subscription])
def get_subscription(user: UserInDB = Depends(get_current_user)):
    return Envelope(data=user.subscription)


@router.post("/upgrade", response_model=Envelope[Subscription])
def upgrade(user: UserInDB = Depends(get_current_user)):
    if user.subscription.plan == "premium":
        raise BadRequest("User is already on premium plan")

    # No payment processing; the plan switches immediately
    now = utcnow()
    updated = dynamo.update_user(
        user.user_id,
        {
            "subscription.plan": "premium",
            "subscription.transaction_limit": settings.PREMIUM_TRANSACTION_LIMIT,
            "subscription.start_date": now.isoformat(),
            "subscription.end_date": (now + timedelta(days=settings.PREMIUM_PERIOD_DAYS)).isoformat(),
            "updated_at": now.isoformat(),
        },
    )
    if not updated:
        raise InternalError("Failed to upgrade subscription")

    logger.info(f"User {user.user_id} upgraded to premium")
    return Envelope(
        data=UserInDB.model_validate(updated).subscription,
        message="Successfully upgraded to premium",
    )


@router.get("/stats", response_model=Envelope[UserStats])
def get_stats(user: UserInDB = Depends(get_current_user)):
    return Envelope(data=expense_analyzer.stats(user, load_user_expenses(user.user_id)))
