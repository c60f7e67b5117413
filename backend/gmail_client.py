"""
Gmail REST API client for Cleany.

This module wraps the subset of the Gmail v1 REST API the triage engine needs:
- Message search with opaque page tokens
- Message retrieval in minimal/metadata/full formats
- Moving single messages to trash
- Profile lookup for the mailbox owner

Every call is authenticated with a bearer access token issued by the external
identity provider. Tokens are never stored or refreshed here.

Gmail API Quotas:
- 250 quota units per user per second
- list(): 5 units, get(): 5 units, trash(): 5 units
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from config import settings

logger = logging.getLogger(__name__)


# ============================================================================
# Custom Exceptions
# ============================================================================


class GmailAPIError(Exception):
    """Base exception for Gmail API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GmailAuthError(GmailAPIError):
    """Raised when the access token is missing, expired or lacks permission."""
    pass


class GmailRateLimitError(GmailAPIError):
    """Raised when Gmail API rate limit is exceeded."""
    pass


class GmailQuotaExceededError(GmailAPIError):
    """Raised when Gmail API quota is exceeded."""
    pass


_RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")


def _error_reasons(response: httpx.Response) -> str:
    """Flatten the error payload of a Gmail response for reason matching."""
    try:
        return json.dumps(response.json())
    except ValueError:
        return response.text or ""


def raise_for_gmail_status(response: httpx.Response, context: str) -> None:
    """
    Translate a non-2xx Gmail response into the matching exception.

    Args:
        response: HTTP response from the Gmail API
        context: Short description of the failed operation for the message

    Raises:
        GmailAuthError: 401, or 403 without a rate-limit reason
        GmailRateLimitError: 429, or 403 with a rate-limit reason
        GmailQuotaExceededError: 403 with a daily quota reason
        GmailAPIError: Any other error status
    """
    status_code = response.status_code
    if 200 <= status_code < 300:
        return

    if status_code == 401:
        raise GmailAuthError(
            "Gmail access token expired. Please sign out and sign in again.",
            status_code=status_code,
        )
    if status_code == 429:
        raise GmailRateLimitError("Gmail API rate limit exceeded", status_code=status_code)
    if status_code == 403:
        details = _error_reasons(response)
        if any(reason in details for reason in _RATE_LIMIT_REASONS):
            raise GmailRateLimitError("Gmail API rate limit exceeded", status_code=status_code)
        if "quotaExceeded" in details or "dailyLimitExceeded" in details:
            raise GmailQuotaExceededError("Gmail API quota exceeded", status_code=status_code)
        raise GmailAuthError(
            "Gmail access denied. Please grant Gmail permissions when signing in.",
            status_code=status_code,
        )
    if status_code == 404:
        raise GmailAPIError(f"{context}: not found", status_code=status_code)

    raise GmailAPIError(f"{context}: HTTP {status_code}", status_code=status_code)


_retry_on_rate_limit = retry(
    retry=retry_if_exception_type((GmailRateLimitError, GmailQuotaExceededError)),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    stop=stop_after_attempt(settings.GMAIL_MAX_RETRIES),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


# ============================================================================
# Gmail Client
# ============================================================================


class GmailClient:
    """
    Async Gmail API client bound to one delegated access token.

    Use as an async context manager, or call ``aclose()`` when done. An
    externally created ``httpx.AsyncClient`` can be injected (tests use an
    ``httpx.MockTransport``); injected clients are not closed by this class.

    Attributes:
        access_token: Bearer token from the identity provider
        base_url: Gmail API base including ``/users/me``
    """

    def __init__(
        self,
        access_token: str,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        if not access_token:
            raise GmailAuthError(
                "No Gmail access token available. Please sign in with Google again "
                "and grant Gmail permissions."
            )

        self.access_token = access_token
        self.base_url = (base_url or settings.GMAIL_API_BASE_URL).rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout or settings.GMAIL_REQUEST_TIMEOUT,
        )

    async def __aenter__(self) -> "GmailClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        context: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send an authenticated request and raise on error statuses."""
        try:
            response = await self._http.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
        except httpx.TimeoutException as e:
            raise GmailAPIError(f"{context}: request timed out ({e})")
        except httpx.RequestError as e:
            raise GmailAPIError(f"{context}: {e}")

        raise_for_gmail_status(response, context)
        return response

    @_retry_on_rate_limit
    async def search_messages(
        self,
        query: str,
        page_token: Optional[str] = None,
        max_results: int = 100,
    ) -> Dict[str, Any]:
        """
        Fetch one page of message IDs matching a Gmail search query.

        Args:
            query: Gmail search query (e.g., "in:inbox from:news@example.com")
            page_token: Opaque token from a previous page
            max_results: Page size (Gmail allows up to 500)

        Returns:
            Dict with 'messages' (list of {'id', 'threadId'}), optional
            'nextPageToken' and 'resultSizeEstimate'

        Raises:
            GmailAuthError: If the token is rejected
            GmailRateLimitError: If rate limit persists after retries
            GmailAPIError: For other API errors
        """
        params: Dict[str, Any] = {"q": query, "maxResults": max_results}
        if page_token:
            params["pageToken"] = page_token

        response = await self._request("GET", "/messages", "Failed to list messages", params)
        data = response.json()
        data.setdefault("messages", [])
        return data

    @_retry_on_rate_limit
    async def get_message(self, message_id: str, format: str = "full") -> Dict[str, Any]:
        """
        Get a single message by ID.

        Args:
            message_id: Gmail message ID
            format: "minimal" (ids, labels, internalDate), "metadata",
                    "full" (headers and body parts) or "raw"

        Returns:
            Message resource as returned by the API
        """
        response = await self._request(
            "GET",
            f"/messages/{message_id}",
            f"Failed to get message {message_id}",
            {"format": format},
        )
        return response.json()

    @_retry_on_rate_limit
    async def _trash(self, message_id: str) -> None:
        await self._request(
            "POST",
            f"/messages/{message_id}/trash",
            f"Failed to trash message {message_id}",
        )

    async def trash_message(self, message_id: str) -> bool:
        """
        Move one message to trash.

        Returns:
            True only when Gmail confirmed the move with a 2xx response.
            Rate limits that outlast the retries, missing messages and other
            API errors are logged and reported as False.

        Raises:
            GmailAuthError: If the token is rejected
        """
        try:
            await self._trash(message_id)
            return True
        except GmailAuthError:
            raise
        except GmailAPIError as e:
            logger.error(f"Failed to delete message {message_id}: {e}")
            return False

    async def get_profile(self) -> Dict[str, Any]:
        """
        Get the mailbox owner's profile (emailAddress, messagesTotal, ...).
        """
        response = await self._request("GET", "/profile", "Failed to get profile")
        return response.json()

    async def count_messages(self, query: str) -> int:
        """
        Cheap message count for a query using Gmail's resultSizeEstimate.

        Returns 0 on any error except authentication failures.
        """
        try:
            data = await self.search_messages(query, max_results=1)
            return int(data.get("resultSizeEstimate") or 0)
        except GmailAuthError:
            raise
        except GmailAPIError as e:
            logger.error(f"Error getting count for {query}: {e}")
            return 0
