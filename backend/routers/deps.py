"""
Shared request dependencies: bearer token, Gmail client, user identity and
the LLM classifier.
"""

import logging
from functools import lru_cache
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, status

from gmail_client import GmailClient
from triage.llm_classifier import LLMClassifier

logger = logging.getLogger(__name__)

MISSING_TOKEN_MESSAGE = (
    "No Gmail access token available. Please sign in with Google again and grant Gmail permissions."
)


async def get_access_token(authorization: Optional[str] = Header(default=None)) -> str:
    """Extract the Gmail access token from an 'Authorization: Bearer ...' header."""
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=MISSING_TOKEN_MESSAGE)

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=MISSING_TOKEN_MESSAGE)
    return token.strip()


async def get_gmail_client(token: str = Depends(get_access_token)) -> AsyncGenerator[GmailClient, None]:
    async with GmailClient(token) as client:
        yield client


async def get_user_id(gmail: GmailClient = Depends(get_gmail_client)) -> str:
    """
    Identify the mailbox owner. Row store access is always scoped to this id.
    """
    profile = await gmail.get_profile()
    email = (profile.get("emailAddress") or "").lower()
    if not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=MISSING_TOKEN_MESSAGE)
    return email


@lru_cache
def get_llm_classifier() -> LLMClassifier:
    return LLMClassifier()
