"""
Sender-wide bulk operations for Cleany.

This module provides the Bulk Sender Operator:
- delete_all: trash every inbox message from one sender
- keep_latest_n: keep the newest N messages from one sender, trash the rest

Both operations page through Gmail search results (100 per page) up to a
hard safety cap, pace themselves with fixed delays, and only count trash
calls that Gmail confirmed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from config import settings
from gmail_client import GmailAPIError, GmailAuthError, GmailClient

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================


class BulkOperationError(Exception):
    """Raised when the first page fetch of a bulk operation fails."""


@dataclass
class BulkOperationResult:
    """
    Result of a sender-wide bulk operation.

    deleted_count < total_processed is a normal outcome: the difference is
    messages whose trash call was not confirmed and that are still in the
    inbox.

    Attributes:
        total_processed: Messages found and processed
        deleted_count: Messages Gmail confirmed as trashed
        kept_count: Messages intentionally left in the inbox
        failed_ids: IDs whose trash call failed
        errors: Error messages encountered along the way
        capped: True when the safety cap stopped paging early
    """
    total_processed: int = 0
    deleted_count: int = 0
    kept_count: int = 0
    failed_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    capped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "deleted_count": self.deleted_count,
            "kept_count": self.kept_count,
            "failed_ids": list(self.failed_ids),
            "errors": list(self.errors),
            "capped": self.capped,
        }


def sender_query(sender: str) -> str:
    return f"in:inbox from:{sender}"


# ============================================================================
# Bulk Sender Operator
# ============================================================================


class BulkSenderOperator:
    """
    Runs bulk trash operations for one sender against a Gmail mailbox.

    Example:
        >>> operator = BulkSenderOperator(gmail_client)
        >>> result = await operator.delete_all("news@example.com")
        >>> print(f"Deleted {result.deleted_count}/{result.total_processed}")
    """

    def __init__(
        self,
        gmail_client: GmailClient,
        page_size: Optional[int] = None,
        safety_cap: Optional[int] = None,
        page_delay: Optional[float] = None,
        pacing_every: Optional[int] = None,
    ):
        self.gmail = gmail_client
        self.page_size = page_size or settings.BULK_PAGE_SIZE
        self.safety_cap = safety_cap or settings.BULK_SAFETY_CAP
        self.page_delay = settings.BULK_PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self.pacing_every = pacing_every or settings.BULK_DELETE_PACING_EVERY

    async def _fetch_page(
        self,
        query: str,
        page_token: Optional[str],
        is_first: bool,
        result: BulkOperationResult,
    ) -> Optional[Dict[str, Any]]:
        """
        Fetch one search page.

        The first page is fatal on failure; later failures are recorded and
        end paging with whatever was gathered so far.
        """
        try:
            return await self.gmail.search_messages(query, page_token=page_token, max_results=self.page_size)
        except GmailAuthError:
            raise
        except GmailAPIError as e:
            if is_first:
                logger.error(f"Failed to fetch first page for {query}: {e}")
                raise BulkOperationError(f"Failed to fetch messages: {e}") from e
            error_msg = f"Failed to fetch next page for {query}: {e}"
            logger.warning(error_msg)
            result.errors.append(error_msg)
            return None

    async def _trash_page(self, message_ids: List[str], result: BulkOperationResult) -> int:
        outcomes = await asyncio.gather(
            *(self.gmail.trash_message(message_id) for message_id in message_ids),
            return_exceptions=True,
        )

        deleted = 0
        for message_id, outcome in zip(message_ids, outcomes):
            if isinstance(outcome, GmailAuthError):
                raise outcome
            if isinstance(outcome, BaseException):
                result.errors.append(f"Error deleting {message_id}: {outcome}")
                result.failed_ids.append(message_id)
            elif outcome:
                deleted += 1
            else:
                result.failed_ids.append(message_id)
        return deleted

    async def delete_all(self, sender: str) -> BulkOperationResult:
        """
        Trash every inbox message from a sender.

        Each page's trash calls run concurrently; pages are processed one
        after another with a fixed delay until the results are exhausted or
        the safety cap is reached.

        Args:
            sender: Sender email address

        Returns:
            BulkOperationResult with confirmed deletions

        Raises:
            GmailAuthError: If the token is rejected at any point
            BulkOperationError: If the first page fetch fails
        """
        query = sender_query(sender)
        result = BulkOperationResult()
        page_token: Optional[str] = None
        page_number = 0

        logger.info(f"Starting delete-all for {sender}")

        while True:
            page = await self._fetch_page(query, page_token, page_number == 0, result)
            if page is None:
                break
            page_number += 1

            message_ids = [m["id"] for m in page.get("messages") or [] if m.get("id")]
            if not message_ids:
                break

            deleted = await self._trash_page(message_ids, result)
            result.total_processed += len(message_ids)
            result.deleted_count += deleted
            logger.info(f"Processed batch: {deleted}/{len(message_ids)} deleted")

            page_token = page.get("nextPageToken")
            if result.total_processed >= self.safety_cap:
                result.capped = bool(page_token)
                logger.info(f"Reached safety limit of {self.safety_cap} emails for {sender}")
                break
            if not page_token:
                break
            if self.page_delay:
                await asyncio.sleep(self.page_delay)

        logger.info(f"Total deleted: {result.deleted_count}/{result.total_processed} for {sender}")
        return result

    async def _internal_date(self, message_id: str) -> int:
        try:
            details = await self.gmail.get_message(message_id, format="minimal")
            return int(details.get("internalDate") or 0)
        except GmailAuthError:
            raise
        except (GmailAPIError, TypeError, ValueError) as e:
            logger.warning(f"Could not read timestamp for {message_id}: {e}")
            return 0

    async def _collect_timestamps(self, sender: str, result: BulkOperationResult) -> List[Tuple[str, int]]:
        query = sender_query(sender)
        collected: List[Tuple[str, int]] = []
        page_token: Optional[str] = None
        is_first = True

        while True:
            page = await self._fetch_page(query, page_token, is_first, result)
            if page is None:
                break
            is_first = False

            message_ids = [m["id"] for m in page.get("messages") or [] if m.get("id")]
            if not message_ids:
                break

            timestamps = await asyncio.gather(*(self._internal_date(mid) for mid in message_ids))
            collected.extend(zip(message_ids, timestamps))

            page_token = page.get("nextPageToken")
            if len(collected) >= self.safety_cap:
                result.capped = bool(page_token)
                logger.info(f"Reached safety limit of {self.safety_cap} emails for {sender}")
                break
            if not page_token:
                break
            if self.page_delay:
                await asyncio.sleep(self.page_delay)

        return collected

    async def keep_latest_n(self, sender: str, n: Optional[int] = None) -> BulkOperationResult:
        """
        Keep the newest n inbox messages from a sender and trash the rest.

        Timestamps come from a minimal-format fetch per message. Messages are
        sorted newest first; everything after the first n is trashed one by
        one with a pause every BULK_DELETE_PACING_EVERY deletions.

        Args:
            sender: Sender email address
            n: Number of messages to keep (default: KEEP_LATEST_DEFAULT)

        Returns:
            BulkOperationResult; kept_count is the number left untouched
        """
        keep = settings.KEEP_LATEST_DEFAULT if n is None else max(n, 0)
        result = BulkOperationResult()

        logger.info(f"Starting keep-latest-{keep} for {sender}")
        messages = await self._collect_timestamps(sender, result)
        result.total_processed = len(messages)

        if len(messages) <= keep:
            result.kept_count = len(messages)
            logger.info(f"Only {len(messages)} emails from {sender}, nothing to delete")
            return result

        messages.sort(key=lambda item: item[1], reverse=True)
        to_keep = messages[:keep]
        to_delete = [message_id for message_id, _ in messages[keep:]]
        result.kept_count = len(to_keep)

        for i, message_id in enumerate(to_delete):
            if i > 0 and i % self.pacing_every == 0 and self.page_delay:
                await asyncio.sleep(self.page_delay)
            if await self.gmail.trash_message(message_id):
                result.deleted_count += 1
            else:
                result.failed_ids.append(message_id)

        logger.info(
            f"Kept {result.kept_count}, deleted {result.deleted_count}/{len(to_delete)} for {sender}"
        )
        return result
