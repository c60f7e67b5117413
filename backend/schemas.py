"""
Pydantic schemas for API request/response validation.
Defines the structure of data exchanged between client and server.
"""

from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


ActionType = Literal["keep", "delete", "unsubscribe"]


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str = Field(..., examples=["healthy"])
    version: str = Field(..., examples=["1.0.0"])


# ============================================================================
# Error Schemas
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response format."""
    error: str = Field(..., examples=["Bad Request"])
    detail: Optional[str] = Field(None, examples=["Invalid input data"])


# ============================================================================
# Inbox Schemas
# ============================================================================

class InboxRequest(BaseModel):
    """Request to scan the inbox grouped by sender."""
    max_results: int = Field(default=25, ge=1, le=500)
    max_pages: int = Field(default=1, ge=1, le=50)
    sender_filter: Optional[str] = None
    refresh: bool = Field(default=False, description="Bypass the cached snapshot")


class InboxEmailResponse(BaseModel):
    """One sender entry of the inbox listing."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender: str
    subject: str
    snippet: str
    is_newsletter: bool = False
    has_list_unsubscribe: bool = False
    email_count: int = 0
    action: Optional[ActionType] = None


class InboxResponse(BaseModel):
    emails: List[InboxEmailResponse]
    cached: bool = False


class SenderMessagesResponse(BaseModel):
    """One page of message IDs from a sender."""
    total_count: int
    messages: List[Dict[str, str]]
    next_page_token: Optional[str] = None


class SenderCountResponse(BaseModel):
    total_count: int


# ============================================================================
# Unsubscribe Schemas
# ============================================================================

class ResolveUnsubscribeRequest(BaseModel):
    """Message IDs to find unsubscribe mechanisms for."""
    message_ids: List[str] = Field(..., min_length=1, max_length=50)


class UnsubscribeCandidateResponse(BaseModel):
    """Resolved unsubscribe mechanism for one message."""
    model_config = ConfigDict(from_attributes=True)

    message_id: str
    url: Optional[str] = None
    method: Literal["GET", "POST", "MAILTO"]
    status: Literal["found", "skipped", "not_found", "fetch_failed"]
    source: Optional[str] = None
    reason: str = ""


class ResolveUnsubscribeResponse(BaseModel):
    candidates: List[UnsubscribeCandidateResponse]


class ExecuteUnsubscribeItem(BaseModel):
    id: str
    url: Optional[str] = None
    method: Literal["GET", "POST", "MAILTO"] = "GET"


class ExecuteUnsubscribeRequest(BaseModel):
    unsubscribes: List[ExecuteUnsubscribeItem] = Field(..., min_length=1, max_length=100)


class ExecuteUnsubscribeResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    success: bool
    status: int = 0
    error: Optional[str] = None


class ExecuteUnsubscribeResponse(BaseModel):
    results: List[ExecuteUnsubscribeResult]


# ============================================================================
# Bulk Sender Schemas
# ============================================================================

class SenderActionRequest(BaseModel):
    """Target sender of a bulk operation."""
    sender: str = Field(..., min_length=3, examples=["news@example.com"])


class KeepLatestRequest(SenderActionRequest):
    # None keeps settings.KEEP_LATEST_DEFAULT
    keep: Optional[int] = Field(default=None, ge=0, le=500)


class BulkOperationResponse(BaseModel):
    """Outcome of a sender-wide bulk operation."""
    model_config = ConfigDict(from_attributes=True)

    success: bool = True
    total_processed: int
    deleted_count: int
    kept_count: int = 0
    failed_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    capped: bool = False


# ============================================================================
# Preference Schemas
# ============================================================================

class LearnActionItem(BaseModel):
    sender: str
    subject: Optional[str] = None
    action: ActionType


class LearnPreferencesRequest(BaseModel):
    actions: List[LearnActionItem] = Field(..., min_length=1, max_length=500)


class LearnPreferencesResponse(BaseModel):
    success: bool = True
    learned: int


class ApplyEmailItem(BaseModel):
    id: str
    sender: str
    subject: Optional[str] = None


class ApplyPreferencesRequest(BaseModel):
    emails: List[ApplyEmailItem]
    min_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class SuggestionResponse(BaseModel):
    id: str
    suggested_action: Optional[ActionType] = None
    confidence: float = 0.0
    reason: str


class ApplyPreferencesResponse(BaseModel):
    suggestions: List[SuggestionResponse]


class PreferenceResponse(BaseModel):
    """Stored sender preference."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_pattern: str
    preferred_action: ActionType
    confidence_score: float
    action_count: int
    last_updated: Optional[datetime] = None


class ResetPreferencesResponse(BaseModel):
    deleted: int


class AutoActionsRequest(BaseModel):
    count: int = Field(..., ge=1)


class WeeklySummaryResponse(BaseModel):
    """Counters of one Sunday-aligned week."""
    model_config = ConfigDict(from_attributes=True)

    week_start: date
    emails_processed: int = 0
    emails_kept: int = 0
    emails_deleted: int = 0
    emails_unsubscribed: int = 0
    auto_actions_applied: int = 0


# ============================================================================
# Classification Schemas
# ============================================================================

class ClassifyEmailItem(BaseModel):
    sender: str
    subject: str = ""
    snippet: str = ""


class ClassifyRequest(BaseModel):
    emails: List[ClassifyEmailItem] = Field(..., min_length=1, max_length=100)


class ClassificationItem(BaseModel):
    index: int
    action: ActionType
    reason: str = ""


class ClassifyResponse(BaseModel):
    classifications: List[ClassificationItem]


class PersonalitySummaryRequest(BaseModel):
    percentages: Dict[str, float] = Field(..., examples=[{"newsletters": 40, "work": 60}])


class PersonalitySummaryResponse(BaseModel):
    summary: str
