"""
Email classification API endpoints.
Provides LLM suggestions per email and the inbox personality summary.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from routers.deps import get_llm_classifier
from schemas import (
    ClassificationItem,
    ClassifyRequest,
    ClassifyResponse,
    PersonalitySummaryRequest,
    PersonalitySummaryResponse,
)
from triage.llm_classifier import LLMClassifier

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_available(classifier: LLMClassifier) -> None:
    if not classifier.is_available():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="OpenAI API key not configured. Set OPENAI_API_KEY in environment.",
        )


@router.post("/classify", response_model=ClassifyResponse)
async def classify_emails(
    request: ClassifyRequest,
    classifier: LLMClassifier = Depends(get_llm_classifier),
) -> ClassifyResponse:
    """
    Suggest keep/delete/unsubscribe for each email.

    An unreachable model yields an empty list rather than an error.
    """
    _require_available(classifier)
    classifications = await classifier.classify_messages([e.model_dump() for e in request.emails])
    return ClassifyResponse(classifications=[ClassificationItem(**c) for c in classifications])


@router.post("/personality-summary", response_model=PersonalitySummaryResponse)
async def personality_summary(
    request: PersonalitySummaryRequest,
    classifier: LLMClassifier = Depends(get_llm_classifier),
) -> PersonalitySummaryResponse:
    _require_available(classifier)
    if not any(value > 0 for value in request.percentages.values()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Percentages are required")

    summary = await classifier.summarize_personality(request.percentages)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to generate personality summary",
        )
    return PersonalitySummaryResponse(summary=summary)
