"""
AI helpers: receipt OCR, voice transcription and language-model prompts for
categorization, field extraction and insights, plus the local spending
forecast.

Every language-model answer is validated against a pydantic schema before it
is used. Categorization, extraction, insights and prediction never raise;
OCR and transcription raise InternalError when their first stage fails.
"""
import base64
import binascii
import io
import json
import logging
import statistics
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytesseract
from openai import OpenAI
from PIL import Image
from pydantic import TypeAdapter

from spendbox.core.config import settings
from spendbox.core.errors import InternalError
from spendbox.models.ai import (
    CATEGORIES,
    CategorizationResult,
    ExtractedFields,
    OCRResult,
    Prediction,
    TranscriptionResult,
)
from spendbox.models.common import as_utc

logger = logging.getLogger(__name__)

# Whisper does not report a confidence score
TRANSCRIPTION_CONFIDENCE = 0.9
MAX_PROMPT_TRANSACTIONS = 10

FALLBACK_CATEGORIZATION = {
    "category": "Other",
    "confidence": 0.5,
    "suggestions": ["Food & Dining", "Shopping"],
    "insights": ["Unable to categorize automatically. Please review and categorize manually."],
}
FALLBACK_INSIGHTS = ["Unable to generate insights at this time."]
FALLBACK_PREDICTION = {"predictions": {}, "confidence": 0.5}

_insight_list = TypeAdapter(List[str])


def decode_base64_payload(data: str) -> bytes:
    """Accept raw base64 or a data URL (data:image/png;base64,....)."""
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("payload is not valid base64") from e


def parse_model_json(content: Optional[str]) -> Any:
    """Parse a JSON answer, tolerating a markdown code fence around it."""
    if not content:
        raise ValueError("empty response from language model")
    cleaned = content.replace("```json", "").replace("```", "").strip()
    return json.loads(cleaned)


class AIAssistant:
    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: str = "gpt-3.5-turbo",
        transcription_model: str = "whisper-1",
        ocr_engine: Any = pytesseract,
        ocr_lang: str = "eng",
    ) -> None:
        self._client = client
        self._model = model
        self._transcription_model = transcription_model
        self._ocr = ocr_engine
        self._ocr_lang = ocr_lang

    def _complete(self, system: str, prompt: str, temperature: float, max_tokens: int) -> Optional[str]:
        if self._client is None:
            raise RuntimeError("OpenAI API key is not configured")
        completion = self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return completion.choices[0].message.content if completion.choices else None

    # --- OCR and speech ------------------------------------------------------

    def ocr_extract(self, image_data: str) -> OCRResult:
        logger.info("Starting OCR processing")
        try:
            image = Image.open(io.BytesIO(decode_base64_payload(image_data)))
            image.load()
            text = self._ocr.image_to_string(image, lang=self._ocr_lang)
            data = self._ocr.image_to_data(image, lang=self._ocr_lang, output_type=pytesseract.Output.DICT)
        except Exception as e:
            logger.error(f"OCR processing failed: {e}")
            raise InternalError("Failed to process receipt image")

        # Tesseract reports -1 for blocks that carry no word
        word_confidences = [float(c) for c in data.get("conf", []) if float(c) >= 0]
        confidence = statistics.fmean(word_confidences) / 100 if word_confidences else 0.0
        confidence = min(1.0, max(0.0, confidence))

        extracted = self.extract_fields(text)
        logger.info(f"OCR processing completed with confidence {confidence:.2f}")
        return OCRResult(text=text, confidence=confidence, extracted_data=extracted)

    def transcribe(self, audio_data: str) -> TranscriptionResult:
        logger.info("Starting voice transcription")
        try:
            if self._client is None:
                raise RuntimeError("OpenAI API key is not configured")
            audio = decode_base64_payload(audio_data)
            transcription = self._client.audio.transcriptions.create(
                model=self._transcription_model,
                file=("voice.webm", audio),
                response_format="text",
            )
        except Exception as e:
            logger.error(f"Voice transcription failed: {e}")
            raise InternalError("Failed to process voice audio")

        text = transcription if isinstance(transcription, str) else getattr(transcription, "text", "")
        extracted = self.extract_fields(text)
        logger.info("Voice transcription completed")
        return TranscriptionResult(text=text, confidence=TRANSCRIPTION_CONFIDENCE, extracted_data=extracted)

    # --- Language model prompts ---------------------------------------------

    def extract_fields(self, text: str) -> ExtractedFields:
        """Structured fields from free text. Empty result on any failure."""
        if not text or not text.strip():
            return ExtractedFields()
        prompt = (
            "Extract expense information from this text:\n"
            f'"{text}"\n\n'
            "Respond with a JSON object containing:\n"
            '{"amount": 0.00, "merchant": "merchant name", "date": "YYYY-MM-DD", '
            '"category": "category", "description": "short description", '
            '"items": [{"name": "item name", "price": 0.00}]}\n\n'
            "If any field cannot be determined, use null."
        )
        try:
            content = self._complete(
                "You are an AI assistant that extracts structured expense data from text. Always respond with valid JSON.",
                prompt,
                temperature=0.1,
                max_tokens=200,
            )
            return ExtractedFields.model_validate(parse_model_json(content))
        except Exception as e:
            logger.error(f"Data extraction failed: {e}")
            return ExtractedFields()

    def categorize(self, description: str, amount: float, merchant: Optional[str] = None) -> CategorizationResult:
        logger.info("Starting expense categorization")
        merchant_line = f"Merchant: {merchant}\n" if merchant else ""
        prompt = (
            "Categorize this expense transaction:\n"
            f"Description: {description}\n"
            f"Amount: ${amount}\n"
            f"{merchant_line}\n"
            "Please categorize this into one of these categories:\n"
            + "\n".join(f"- {category}" for category in CATEGORIES)
            + "\n\nRespond with a JSON object containing:\n"
            '{"category": "the best category", "confidence": 0.95, '
            '"suggestions": ["alternative category 1", "alternative category 2"], '
            '"insights": ["helpful insight about spending pattern", "saving tip"]}'
        )
        try:
            content = self._complete(
                "You are an AI assistant that helps categorize expenses. Always respond with valid JSON.",
                prompt,
                temperature=0.3,
                max_tokens=300,
            )
            result = CategorizationResult.model_validate(parse_model_json(content))
            logger.info(f"Expense categorized as {result.category}")
            return result
        except Exception as e:
            logger.error(f"Expense categorization failed: {e}")
            return CategorizationResult.model_validate(FALLBACK_CATEGORIZATION)

    def insights(self, expenses: Sequence[Any], period: str) -> List[str]:
        total = sum(exp.amount for exp in expenses)
        breakdown: Dict[str, float] = defaultdict(float)
        for exp in expenses:
            breakdown[exp.category] += exp.amount

        recent = "\n".join(
            f"- ${exp.amount} on {exp.category}: {exp.description}"
            for exp in list(expenses)[:MAX_PROMPT_TRANSACTIONS]
        )
        prompt = (
            "Analyze this spending data and provide 3-5 actionable insights:\n\n"
            f"Period: {period}\n"
            f"Total spent: ${total:.2f}\n"
            f"Number of transactions: {len(expenses)}\n"
            f"Category breakdown: {json.dumps(dict(breakdown))}\n\n"
            f"Recent transactions:\n{recent}\n\n"
            "Provide insights that are specific and actionable, based on spending patterns, "
            "and include money-saving suggestions.\n\n"
            "Respond with a JSON array of insight strings."
        )
        try:
            content = self._complete(
                "You are a financial advisor AI that provides personalized spending insights.",
                prompt,
                temperature=0.7,
                max_tokens=400,
            )
            insights = _insight_list.validate_python(parse_model_json(content))
            if not insights:
                raise ValueError("no insights returned")
            return insights
        except Exception as e:
            logger.error(f"Insight generation failed: {e}")
            return list(FALLBACK_INSIGHTS)

    def predict(self, history: Sequence[Any], months: int = 3, now: Optional[datetime] = None) -> Prediction:
        return predict_expenses(history, months, now)


def predict_expenses(history: Sequence[Any], months: int = 3, now: Optional[datetime] = None) -> Prediction:
    """
    Average monthly spend per category over the observed history, scaled to
    `months`. History span is measured from the oldest record to now.
    """
    try:
        now = as_utc(now) if now else datetime.now(timezone.utc)
        totals: Dict[str, float] = defaultdict(float)
        for exp in history:
            totals[exp.category] += float(exp.amount)

        oldest = min((as_utc(exp.date) for exp in history), default=now)
        months_of_data = max(1.0, (now - oldest).days / 30)

        predictions = {category: total / months_of_data * months for category, total in totals.items()}
        return Prediction(predictions=predictions, confidence=min(0.9, months_of_data / 6))
    except Exception as e:
        logger.error(f"Expense prediction failed: {e}")
        return Prediction.model_validate(FALLBACK_PREDICTION)


def build_assistant() -> AIAssistant:
    client = None
    if settings.OPENAI_API_KEY:
        client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.AI_TIMEOUT_SECONDS, max_retries=1)
    else:
        logger.warning("OPENAI_API_KEY is not set, AI features will use fallbacks")
    return AIAssistant(
        client=client,
        model=settings.OPENAI_MODEL,
        transcription_model=settings.OPENAI_TRANSCRIPTION_MODEL,
        ocr_lang=settings.TESSERACT_LANG,
    )
