"""
Inbox router.
Scans the inbox grouped by sender, serving a cached snapshot when fresh.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_db
from gmail_client import GmailClient
from routers.deps import get_gmail_client, get_user_id
from schemas import InboxEmailResponse, InboxRequest, InboxResponse
from triage.inbox import InboxCache, InboxScanner

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/scan", response_model=InboxResponse)
async def scan_inbox(
    request: InboxRequest,
    gmail: GmailClient = Depends(get_gmail_client),
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> InboxResponse:
    """
    List inbox senders with one sample message and a message count each.

    Unfiltered scans are cached per user; pass refresh=true to bypass the
    cache. Sender-filtered scans always hit Gmail.
    """
    cache = InboxCache(db)
    use_cache = not request.sender_filter

    if use_cache and not request.refresh:
        cached = await cache.get(user_id)
        if cached is not None:
            logger.info(f"Serving cached inbox for {user_id} ({len(cached)} senders)")
            return InboxResponse(
                emails=[InboxEmailResponse.model_validate(e) for e in cached],
                cached=True,
            )

    emails = await InboxScanner(gmail).fetch_inbox(
        max_results=request.max_results,
        max_pages=request.max_pages,
        sender_filter=request.sender_filter,
    )

    if use_cache:
        await cache.put(user_id, emails)

    return InboxResponse(emails=[InboxEmailResponse.model_validate(e) for e in emails], cached=False)
