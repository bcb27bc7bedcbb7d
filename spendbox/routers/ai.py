import logging
from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta
from fastapi import APIRouter, Depends

from spendbox.core.deps import get_ai_assistant, get_current_user
from spendbox.core.rate_limit import upload_limiter
from spendbox.models.ai import (
    AudioRequest,
    CategorizationResult,
    CategorizeRequest,
    ImageRequest,
    InsightsRequest,
    InsightsResponse,
    OCRResult,
    PredictRequest,
    PredictResponse,
    SimilarTransaction,
    SpendingPatterns,
    SuggestionsRequest,
    SuggestionsResponse,
    TranscriptionResult,
)
from spendbox.models.common import Envelope
from spendbox.models.user import UserInDB
from spendbox.routers.expenses import expense_analyzer, load_user_expenses
from spendbox.utils.ai_service import AIAssistant

router = APIRouter()
logger = logging.getLogger(__name__)

HISTORY_LIMIT = 1000
SIMILAR_LIMIT = 5

INSIGHT_LOOKBACK = {
    "week": relativedelta(weeks=1),
    "month": relativedelta(months=1),
    "quarter": relativedelta(months=3),
    "year": relativedelta(years=1),
}

RECOMMENDATIONS = [
    "Consider setting up a budget for this category",
    "Review similar past transactions",
    "Add tags for better organization",
]


def _recent_expenses(user_id: str):
    expenses = sorted(load_user_expenses(user_id), key=lambda exp: exp.date, reverse=True)
    return expenses[:HISTORY_LIMIT]


@router.post("/categorize", response_model=Envelope[CategorizationResult])
def categorize(
    payload: CategorizeRequest,
    user: UserInDB = Depends(get_current_user),
    assistant: AIAssistant = Depends(get_ai_assistant),
):
    return Envelope(data=assistant.categorize(payload.description, payload.amount, payload.merchant))


@router.post("/insights", response_model=Envelope[InsightsResponse])
def insights(
    payload: InsightsRequest,
    user: UserInDB = Depends(get_current_user),
    assistant: AIAssistant = Depends(get_ai_assistant),
):
    if payload.expenses is not None:
        expenses = payload.expenses
    else:
        since = datetime.now(timezone.utc) - INSIGHT_LOOKBACK[payload.period]
        expenses = [exp for exp in _recent_expenses(user.user_id) if exp.date >= since]

    return Envelope(
        data=InsightsResponse(
            period=payload.period,
            insights=assistant.insights(expenses, payload.period),
            total_expenses=len(expenses),
            total_amount=round(sum(exp.amount for exp in expenses), 2),
        )
    )


@router.post("/predict", response_model=Envelope[PredictResponse])
def predict(
    payload: PredictRequest,
    user: UserInDB = Depends(get_current_user),
    assistant: AIAssistant = Depends(get_ai_assistant),
):
    history = _recent_expenses(user.user_id)
    prediction = assistant.predict(history, payload.months)
    return Envelope(
        data=PredictResponse(
            months=payload.months,
            predictions=prediction.predictions,
            confidence=prediction.confidence,
            historical_data_points=len(history),
        )
    )


@router.post(
    "/process-receipt",
    response_model=Envelope[OCRResult],
    dependencies=[Depends(upload_limiter)],
)
def process_receipt(
    payload: ImageRequest,
    user: UserInDB = Depends(get_current_user),
    assistant: AIAssistant = Depends(get_ai_assistant),
):
    return Envelope(data=assistant.ocr_extract(payload.image_data))


@router.post(
    "/process-voice",
    response_model=Envelope[TranscriptionResult],
    dependencies=[Depends(upload_limiter)],
)
def process_voice(
    payload: AudioRequest,
    user: UserInDB = Depends(get_current_user),
    assistant: AIAssistant = Depends(get_ai_assistant),
):
    return Envelope(data=assistant.transcribe(payload.audio_data))


@router.post("/suggestions", response_model=Envelope[SuggestionsResponse])
def suggestions(
    payload: SuggestionsRequest,
    user: UserInDB = Depends(get_current_user),
    assistant: AIAssistant = Depends(get_ai_assistant),
):
    needle = payload.description.lower()
    similar = [exp for exp in load_user_expenses(user.user_id) if needle in exp.description.lower()]
    categorization = assistant.categorize(payload.description, payload.amount, payload.merchant)

    return Envelope(
        data=SuggestionsResponse(
            category=categorization.category,
            confidence=categorization.confidence,
            alternative_categories=categorization.suggestions,
            insights=categorization.insights,
            similar_transactions=[
                SimilarTransaction(id=exp.expense_id, amount=exp.amount, category=exp.category, date=exp.date)
                for exp in similar[:SIMILAR_LIMIT]
            ],
            recommendations=list(RECOMMENDATIONS),
        )
    )


@router.get("/patterns", response_model=Envelope[SpendingPatterns])
def patterns(user: UserInDB = Depends(get_current_user)):
    return Envelope(data=expense_analyzer.patterns(_recent_expenses(user.user_id)))
