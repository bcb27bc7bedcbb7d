from datetime import datetime
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import EmailStr, Field, field_validator

from spendbox.core.config import settings
from spendbox.core.security import BCRYPT_MAX_BYTES, password_fits
from spendbox.models.common import ApiModel, UTCDateTime, utcnow

DEFAULT_CATEGORIES = [
    "Food & Dining",
    "Transportation",
    "Shopping",
    "Entertainment",
    "Healthcare",
    "Utilities",
    "Housing",
    "Education",
    "Travel",
    "Other",
]

Role = Literal["user", "admin"]
Plan = Literal["free", "premium"]


def normalize_email(email: str) -> str:
    return email.strip().lower()


def check_password_length(value: str) -> str:
    if not password_fits(value):
        raise ValueError(f"must be at most {BCRYPT_MAX_BYTES} bytes")
    return value


class NotificationPreferences(ApiModel):
    email: bool = True
    push: bool = True
    sms: bool = False


class Preferences(ApiModel):
    currency: str = "USD"
    timezone: str = "UTC"
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    categories: List[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))

    def merged(self, update: "PreferencesUpdate") -> "Preferences":
        """Apply a partial update; notification flags merge key by key."""
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        notifications = changes.pop("notifications", None)
        merged = self.model_copy(update=changes)
        if notifications:
            merged.notifications = self.notifications.model_copy(update=notifications)
        return merged


class Subscription(ApiModel):
    plan: Plan = "free"
    start_date: UTCDateTime = Field(default_factory=utcnow)
    end_date: Optional[UTCDateTime] = None
    transaction_limit: int = Field(default_factory=lambda: settings.FREE_TRANSACTION_LIMIT)
    used_transactions: int = 0


class LinkedAccount(ApiModel):
    account_id: str
    institution_name: str = "Unknown"
    account_type: Optional[str] = None
    account_name: Optional[str] = None
    mask: Optional[str] = None


class LinkedItem(ApiModel):
    """A bank connection. Holds the access token, so it is never sent to clients."""

    item_id: str
    access_token: str
    institution_name: str = "Unknown"


# --- Requests ---------------------------------------------------------------

class UserCreate(ApiModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def password_length(cls, value: str) -> str:
        return check_password_length(value)


class UserLogin(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1)


class NotificationPreferencesUpdate(ApiModel):
    email: Optional[bool] = None
    push: Optional[bool] = None
    sms: Optional[bool] = None


class PreferencesUpdate(ApiModel):
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    timezone: Optional[str] = Field(default=None, min_length=1)
    notifications: Optional[NotificationPreferencesUpdate] = None
    categories: Optional[List[str]] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class ProfileUpdate(ApiModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    preferences: Optional[PreferencesUpdate] = None


class PasswordChange(ApiModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=72)

    @field_validator("new_password")
    @classmethod
    def password_length(cls, value: str) -> str:
        return check_password_length(value)


class ForgotPasswordRequest(ApiModel):
    email: EmailStr


class ResetPasswordRequest(ApiModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=8, max_length=72)

    @field_validator("password")
    @classmethod
    def password_length(cls, value: str) -> str:
        return check_password_length(value)


class VerifyEmailRequest(ApiModel):
    token: str = Field(min_length=1)


# --- Stored and public shapes -----------------------------------------------

class UserInDB(ApiModel):
    user_id: str = Field(default_factory=lambda: str(uuid4()))
    email: EmailStr
    password_hash: str
    first_name: str
    last_name: str
    role: Role = "user"
    subscription: Subscription = Field(default_factory=Subscription)
    preferences: Preferences = Field(default_factory=Preferences)
    linked_accounts: List[LinkedAccount] = Field(default_factory=list)
    linked_items: List[LinkedItem] = Field(default_factory=list)
    is_email_verified: bool = False
    email_verification_token: Optional[str] = None
    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[UTCDateTime] = None
    last_login: Optional[UTCDateTime] = None
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class UserPublic(ApiModel):
    user_id: str
    email: EmailStr
    first_name: str
    last_name: str
    role: Role = "user"
    subscription: Subscription
    preferences: Preferences
    linked_accounts: List[LinkedAccount] = Field(default_factory=list)
    is_email_verified: bool = False
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_db(cls, user: UserInDB) -> "UserPublic":
        return cls.model_validate(user.model_dump(exclude={"password_hash", "linked_items"}))


class UserSummary(ApiModel):
    user_id: str
    email: EmailStr
    first_name: str
    last_name: str


class AuthResponse(ApiModel):
    success: bool = True
    token: str
    user: UserPublic


class SubscriptionUsage(ApiModel):
    used: int
    limit: int
    percentage: float


class UserStats(ApiModel):
    total_expenses: int
    total_amount: float
    average_expense: float
    most_used_category: str
    subscription_usage: SubscriptionUsage
    account_age: int
