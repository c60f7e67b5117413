"""
Senders router for sender-wide operations.
Provides endpoints for bulk deletion, keep-latest cleanup, and paging or
counting a sender's inbox messages.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_db
from gmail_client import GmailClient
from routers.deps import get_gmail_client, get_user_id
from schemas import (
    BulkOperationResponse,
    KeepLatestRequest,
    SenderActionRequest,
    SenderCountResponse,
    SenderMessagesResponse,
)
from triage.bulk import BulkOperationError, BulkOperationResult, BulkSenderOperator
from triage.decoder import extract_email_address
from triage.inbox import InboxCache, InboxScanner

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(result: BulkOperationResult) -> BulkOperationResponse:
    return BulkOperationResponse(success=True, **result.to_dict())


@router.post("/delete-all", response_model=BulkOperationResponse)
async def delete_all_from_sender(
    request: SenderActionRequest,
    gmail: GmailClient = Depends(get_gmail_client),
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> BulkOperationResponse:
    """
    Move every inbox message from a sender to trash.

    Returns confirmed deletions only; deleted_count may be lower than
    total_processed.

    Raises:
        HTTPException: 502 if the first page of messages cannot be fetched
    """
    sender = extract_email_address(request.sender)
    try:
        result = await BulkSenderOperator(gmail).delete_all(sender)
    except BulkOperationError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    if result.deleted_count:
        await InboxCache(db).invalidate(user_id)
    return _to_response(result)


@router.post("/keep-latest", response_model=BulkOperationResponse)
async def keep_latest_from_sender(
    request: KeepLatestRequest,
    gmail: GmailClient = Depends(get_gmail_client),
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> BulkOperationResponse:
    """Keep the newest messages from a sender and trash the rest."""
    sender = extract_email_address(request.sender)
    try:
        result = await BulkSenderOperator(gmail).keep_latest_n(sender, request.keep)
    except BulkOperationError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    if result.deleted_count:
        await InboxCache(db).invalidate(user_id)
    return _to_response(result)


@router.get("/messages", response_model=SenderMessagesResponse)
async def list_sender_messages(
    sender: str = Query(..., min_length=3, description="Sender address or From value"),
    max_results: int = Query(default=5, ge=1, le=500),
    page_token: Optional[str] = Query(default=None),
    gmail: GmailClient = Depends(get_gmail_client),
) -> SenderMessagesResponse:
    page = await InboxScanner(gmail).list_sender_messages(sender, max_results, page_token)
    return SenderMessagesResponse(**page)


@router.get("/count", response_model=SenderCountResponse)
async def count_sender_messages(
    sender: str = Query(..., min_length=3, description="Sender address or From value"),
    gmail: GmailClient = Depends(get_gmail_client),
) -> SenderCountResponse:
    """Exact inbox message count for a sender (walks every result page)."""
    total = await InboxScanner(gmail).count_sender_messages(sender)
    return SenderCountResponse(total_count=total)
