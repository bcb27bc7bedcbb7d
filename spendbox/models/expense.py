from typing import Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import EmailStr, Field, field_validator

from spendbox.models.common import ApiModel, UTCDateTime, utcnow
from spendbox.models.user import UserSummary

PaymentType = Literal["card", "cash", "bank_transfer", "digital_wallet"]
Frequency = Literal["daily", "weekly", "monthly", "yearly"]
ShareStatus = Literal["pending", "accepted", "declined"]
ExpenseStatus = Literal["pending", "confirmed", "disputed"]


class PaymentMethod(ApiModel):
    type: PaymentType
    account_id: Optional[str] = None
    last4: Optional[str] = Field(default=None, max_length=4)


class Coordinates(ApiModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class Location(ApiModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class Receipt(ApiModel):
    image_url: str
    ocr_text: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class VoiceNote(ApiModel):
    audio_url: str
    transcription: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class RecurringPattern(ApiModel):
    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    end_date: Optional[UTCDateTime] = None


class Share(ApiModel):
    user_id: str
    amount: float = Field(ge=0)
    status: ShareStatus = "pending"


class AIProcessed(ApiModel):
    category: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    suggestions: List[str] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class ExpenseFields(ApiModel):
    """Everything a client may set on an expense."""

    amount: float = Field(ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    description: str = Field(min_length=1, max_length=200)
    category: str = Field(min_length=1, max_length=100)
    subcategory: Optional[str] = None
    merchant: Optional[str] = None
    location: Optional[Location] = None
    date: Optional[UTCDateTime] = None
    payment_method: PaymentMethod
    receipt: Optional[Receipt] = None
    voice_note: Optional[VoiceNote] = None
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=500)
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    ai_processed: Optional[AIProcessed] = None
    status: ExpenseStatus = "confirmed"

    @field_validator("description", "category", "subcategory", "merchant", "notes", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: List[str]) -> List[str]:
        return [tag.strip() for tag in value if tag and tag.strip()]


class ExpenseCreate(ExpenseFields):
    pass


class ExpenseUpdate(ApiModel):
    amount: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    subcategory: Optional[str] = None
    merchant: Optional[str] = None
    location: Optional[Location] = None
    date: Optional[UTCDateTime] = None
    payment_method: Optional[PaymentMethod] = None
    receipt: Optional[Receipt] = None
    voice_note: Optional[VoiceNote] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    is_recurring: Optional[bool] = None
    recurring_pattern: Optional[RecurringPattern] = None
    ai_processed: Optional[AIProcessed] = None
    status: Optional[ExpenseStatus] = None

    @field_validator("description", "category", "subcategory", "merchant", "notes", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class ExpensePublic(ExpenseFields):
    expense_id: str
    user_id: str
    currency: str
    date: UTCDateTime
    shared_with: List[Share] = Field(default_factory=list)
    created_at: UTCDateTime
    updated_at: UTCDateTime


class ExpenseInDB(ExpensePublic):
    expense_id: str = Field(default_factory=lambda: uuid4().hex)
    date: UTCDateTime = Field(default_factory=utcnow)
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)
    shared_user_ids: List[str] = Field(default_factory=list)
    next_occurrence: Optional[UTCDateTime] = None
    external_id: Optional[str] = None

    def to_public(self) -> ExpensePublic:
        return ExpensePublic.model_validate(self.model_dump())


class SharedExpense(ExpensePublic):
    owner: Optional[UserSummary] = None


# --- Sharing ----------------------------------------------------------------

class ShareTarget(ApiModel):
    email: EmailStr
    amount: float = Field(ge=0)


class ShareRequest(ApiModel):
    shares: List[ShareTarget]


# --- Receipts and analytics -------------------------------------------------

class ReceiptRequest(ApiModel):
    image_data: Optional[str] = None


class MerchantTotal(ApiModel):
    merchant: str
    amount: float


class ExpenseAnalytics(ApiModel):
    period: str
    total_expenses: int
    total_amount: float
    average_amount: float
    category_breakdown: Dict[str, float]
    top_merchants: List[MerchantTotal]
    daily_trend: Dict[str, float]


class ExpenseDeleted(ApiModel):
    id: str
