"""
Request/response shapes of the AI endpoints, plus the strict schemas that
responses from the language model must satisfy before they are trusted.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import Field, field_validator

from spendbox.models.common import ApiModel, UTCDateTime
from spendbox.models.user import DEFAULT_CATEGORIES

CATEGORIES = tuple(DEFAULT_CATEGORIES)

InsightPeriod = Literal["week", "month", "quarter", "year"]


class LineItem(ApiModel):
    name: str
    price: float


class ExtractedFields(ApiModel):
    amount: Optional[float] = None
    merchant: Optional[str] = None
    date: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def null_items(cls, value):
        return value or []


class CategorizationResult(ApiModel):
    category: str
    confidence: float = Field(ge=0, le=1)
    suggestions: List[str] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)

    @field_validator("category")
    @classmethod
    def known_category(cls, value: str) -> str:
        if value not in CATEGORIES:
            raise ValueError(f"unknown category {value!r}")
        return value


class OCRResult(ApiModel):
    text: str
    confidence: float = Field(ge=0, le=1)
    extracted_data: ExtractedFields


class TranscriptionResult(ApiModel):
    text: str
    confidence: float = Field(ge=0, le=1)
    extracted_data: ExtractedFields


class Prediction(ApiModel):
    predictions: Dict[str, float]
    confidence: float


# --- Requests ---------------------------------------------------------------

class CategorizeRequest(ApiModel):
    description: str = Field(min_length=1)
    amount: float = Field(ge=0)
    merchant: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, value):
        return value.strip() if isinstance(value, str) else value


class InsightExpense(ApiModel):
    amount: float
    category: str
    description: str = ""
    date: Optional[UTCDateTime] = None


class InsightsRequest(ApiModel):
    period: InsightPeriod
    expenses: Optional[List[InsightExpense]] = None


class PredictRequest(ApiModel):
    months: int = Field(default=3, ge=1, le=12)


class ImageRequest(ApiModel):
    image_data: str = Field(min_length=1)


class AudioRequest(ApiModel):
    audio_data: str = Field(min_length=1)


class SuggestionsRequest(CategorizeRequest):
    pass


# --- Responses --------------------------------------------------------------

class InsightsResponse(ApiModel):
    period: InsightPeriod
    insights: List[str]
    total_expenses: int
    total_amount: float


class PredictResponse(ApiModel):
    months: int
    predictions: Dict[str, float]
    confidence: float
    historical_data_points: int


class SimilarTransaction(ApiModel):
    id: str
    amount: float
    category: str
    date: datetime


class SuggestionsResponse(ApiModel):
    category: str
    confidence: float
    alternative_categories: List[str]
    insights: List[str]
    similar_transactions: List[SimilarTransaction]
    recommendations: List[str]


class SpendingPatterns(ApiModel):
    top_categories: Dict[str, float]
    merchant_patterns: Dict[str, float]
    day_of_week_patterns: Dict[str, float]
    monthly_patterns: Dict[str, float]
    spending_trends: Dict[str, float]
    unusual_transactions: List[SimilarTransaction] = Field(default_factory=list)
