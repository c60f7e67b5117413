"""
Unsubscribe API endpoints.
Resolves unsubscribe mechanisms for messages and executes confirmed ones.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from gmail_client import GmailAPIError, GmailAuthError, GmailClient
from routers.deps import get_gmail_client
from schemas import (
    ExecuteUnsubscribeRequest,
    ExecuteUnsubscribeResponse,
    ExecuteUnsubscribeResult,
    ResolveUnsubscribeRequest,
    ResolveUnsubscribeResponse,
    UnsubscribeCandidateResponse,
)
from triage.link_validator import LinkValidator
from triage.unsubscribe import (
    ResolutionStatus,
    UnsubscribeCandidate,
    UnsubscribeMethod,
    UnsubscribeRequest,
    UnsubscribeResolver,
    execute_unsubscribes,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(candidate: UnsubscribeCandidate) -> UnsubscribeCandidateResponse:
    return UnsubscribeCandidateResponse(
        message_id=candidate.message_id,
        url=candidate.url,
        method=candidate.method.value,
        status=candidate.status.value,
        source=candidate.source,
        reason=candidate.reason,
    )


@router.post("/resolve", response_model=ResolveUnsubscribeResponse)
async def resolve_unsubscribe_links(
    request: ResolveUnsubscribeRequest,
    gmail: GmailClient = Depends(get_gmail_client),
) -> ResolveUnsubscribeResponse:
    """
    Find the unsubscribe mechanism for each message.

    Protected senders come back as "skipped", messages without any usable
    link as "not_found". A message that cannot be fetched is reported as
    "fetch_failed" with the error as reason. An auth failure on any message
    fails the whole request once every lookup has finished.
    """
    logger.info(f"Resolving unsubscribe links for {len(request.message_ids)} messages")

    async with LinkValidator() as validator:
        resolver = UnsubscribeResolver(validator=validator)

        async def resolve_one(message_id: str) -> UnsubscribeCandidate:
            try:
                return await resolver.resolve_by_id(gmail, message_id)
            except GmailAuthError:
                raise
            except GmailAPIError as e:
                logger.error(f"Could not fetch message {message_id}: {e}")
                return UnsubscribeCandidate(
                    message_id=message_id,
                    status=ResolutionStatus.FETCH_FAILED,
                    source="fetch",
                    reason=f"Could not fetch message: {e}",
                )

        candidates = await asyncio.gather(
            *(resolve_one(mid) for mid in request.message_ids),
            return_exceptions=True,
        )
        for candidate in candidates:
            if isinstance(candidate, BaseException):
                raise candidate

    return ResolveUnsubscribeResponse(candidates=[_to_response(c) for c in candidates])


@router.post("/execute", response_model=ExecuteUnsubscribeResponse)
async def execute_unsubscribe(request: ExecuteUnsubscribeRequest) -> ExecuteUnsubscribeResponse:
    """
    Execute GET/POST unsubscribe requests.

    MAILTO entries are never sent; they come back unsuccessful with an
    explanation so the client can open them in a mail app.
    """
    logger.info(f"Executing {len(request.unsubscribes)} unsubscribe requests")
    items = [
        UnsubscribeRequest(id=item.id, url=item.url, method=UnsubscribeMethod(item.method))
        for item in request.unsubscribes
    ]
    results = await execute_unsubscribes(items)
    return ExecuteUnsubscribeResponse(
        results=[
            ExecuteUnsubscribeResult(id=r.id, success=r.success, status=r.status, error=r.error)
            for r in results
        ]
    )
