"""
Inbox scanning for Cleany.

Lists inbox messages, fetches their details in small paced batches, groups
them by sender and attaches a per-sender message count. The last scan of each
user is cached in the row store for a few minutes.
"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from gmail_client import GmailAPIError, GmailAuthError, GmailClient
from models import InboxSnapshot
from triage.decoder import decode_message, extract_email_address
from triage.rules import DEFAULT_RULES, TriageRules

logger = logging.getLogger(__name__)

INBOX_CACHE_KEY = "cleany_inbox_cache_v4"
DETAIL_BATCH_SIZE = 10
DETAIL_BATCH_DELAY_SECONDS = 0.1
COUNT_PAGE_SIZE = 500
COUNT_PAGE_DELAY_SECONDS = 0.12
SENDER_FILTER_PAGE_LIMIT = 999
UNKNOWN_SENDER = "Unknown Sender"


@dataclass
class InboxEmail:
    """One sender entry of an inbox scan, represented by its first message."""
    id: str
    sender: str
    subject: str
    snippet: str
    is_newsletter: bool = False
    has_list_unsubscribe: bool = False
    email_count: int = 0


class InboxScanner:
    """
    Builds the sender-grouped inbox listing.

    Example:
        >>> scanner = InboxScanner(gmail_client)
        >>> emails = await scanner.fetch_inbox(max_results=25)
        >>> emails[0].sender, emails[0].email_count
        ('News <news@example.com>', 42)
    """

    def __init__(
        self,
        gmail_client: GmailClient,
        rules: TriageRules = DEFAULT_RULES,
        batch_delay: float = DETAIL_BATCH_DELAY_SECONDS,
        count_delay: float = COUNT_PAGE_DELAY_SECONDS,
    ):
        self.gmail = gmail_client
        self.rules = rules
        self.batch_delay = batch_delay
        self.count_delay = count_delay

    async def _list_ids(self, query: str, max_results: int, page_limit: int) -> List[str]:
        message_ids: List[str] = []
        page_token: Optional[str] = None

        for page_number in range(1, page_limit + 1):
            data = await self.gmail.search_messages(query, page_token=page_token, max_results=max_results)
            messages = data.get("messages") or []
            if not messages:
                break

            message_ids.extend(m["id"] for m in messages if m.get("id"))
            page_token = data.get("nextPageToken")
            logger.debug(f"Fetched page {page_number}: {len(messages)} messages")
            if not page_token:
                break

        return message_ids

    async def _fetch_detail(self, message_id: str) -> Optional[InboxEmail]:
        try:
            raw = await self.gmail.get_message(message_id, format="full")
        except GmailAuthError:
            raise
        except GmailAPIError as e:
            logger.error(f"Error fetching message {message_id}: {e}")
            return None

        message = decode_message(raw, self.rules)
        return InboxEmail(
            id=message.id,
            sender=message.sender or UNKNOWN_SENDER,
            subject=message.subject,
            snippet=message.preview,
            is_newsletter=message.is_newsletter,
            has_list_unsubscribe=message.get_header("List-Unsubscribe") is not None,
        )

    async def fetch_inbox(
        self,
        max_results: int = 25,
        max_pages: int = 1,
        sender_filter: Optional[str] = None,
    ) -> List[InboxEmail]:
        """
        Scan the inbox and group it by sender.

        Args:
            max_results: Page size of the message listing
            max_pages: Pages to read; ignored with a sender filter, which
                       reads every page
            sender_filter: Optional From value or address to restrict to

        Returns:
            One InboxEmail per distinct sender, in inbox order, each with
            the provider's estimated message count for that sender

        Raises:
            GmailAuthError: If the token is rejected
            GmailAPIError: If the listing itself fails
        """
        query = "in:inbox"
        page_limit = max_pages
        if sender_filter:
            query += f" from:{extract_email_address(sender_filter)}"
            page_limit = SENDER_FILTER_PAGE_LIMIT

        message_ids = await self._list_ids(query, max_results, page_limit)
        if not message_ids:
            logger.info("No messages found")
            return []

        logger.info(f"Found {len(message_ids)} messages, fetching details...")
        emails: List[InboxEmail] = []
        total_batches = (len(message_ids) + DETAIL_BATCH_SIZE - 1) // DETAIL_BATCH_SIZE

        for i in range(0, len(message_ids), DETAIL_BATCH_SIZE):
            batch = message_ids[i:i + DETAIL_BATCH_SIZE]
            logger.debug(f"Processing batch {i // DETAIL_BATCH_SIZE + 1}/{total_batches}")
            results = await asyncio.gather(*(self._fetch_detail(mid) for mid in batch))
            emails.extend(email for email in results if email is not None)

            if i + DETAIL_BATCH_SIZE < len(message_ids) and self.batch_delay:
                await asyncio.sleep(self.batch_delay)

        by_sender: Dict[str, InboxEmail] = {}
        for email in emails:
            by_sender.setdefault(email.sender, email)
        unique = list(by_sender.values())
        logger.info(f"Grouped {len(emails)} emails into {len(unique)} unique senders")

        counts = await asyncio.gather(
            *(self.gmail.count_messages(f"from:{extract_email_address(e.sender)}") for e in unique)
        )
        for email, count in zip(unique, counts):
            email.email_count = count

        return unique

    async def list_sender_messages(
        self,
        sender: str,
        max_results: int = 5,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """One page of inbox message IDs from a sender, with the next page token."""
        data = await self.gmail.search_messages(
            f"in:inbox from:{extract_email_address(sender)}",
            page_token=page_token,
            max_results=max_results,
        )
        return {
            "total_count": int(data.get("resultSizeEstimate") or 0),
            "messages": data.get("messages") or [],
            "next_page_token": data.get("nextPageToken"),
        }

    async def count_sender_messages(self, sender: str) -> int:
        """
        Exact inbox count for a sender by walking every result page.

        resultSizeEstimate is only an estimate; this pays one listing call
        per 500 messages instead.
        """
        query = f"in:inbox from:{extract_email_address(sender)}"
        total = 0
        page_token: Optional[str] = None

        while True:
            data = await self.gmail.search_messages(query, page_token=page_token, max_results=COUNT_PAGE_SIZE)
            total += len(data.get("messages") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            if self.count_delay:
                await asyncio.sleep(self.count_delay)

        return total


class InboxCache:
    """
    Per-user snapshot of the last inbox scan with a TTL.

    An empty or expired snapshot is deleted on read and reported as a miss.
    """

    def __init__(self, db: AsyncSession, ttl_seconds: Optional[int] = None, cache_key: str = INBOX_CACHE_KEY):
        self.db = db
        self.ttl = timedelta(seconds=settings.INBOX_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds)
        self.cache_key = cache_key

    async def _get_row(self, user_id: str) -> Optional[InboxSnapshot]:
        stmt = select(InboxSnapshot).where(
            InboxSnapshot.user_id == user_id,
            InboxSnapshot.cache_key == self.cache_key,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, user_id: str) -> Optional[List[InboxEmail]]:
        row = await self._get_row(user_id)
        if row is None:
            return None

        if datetime.utcnow() - row.created_at > self.ttl:
            logger.info(f"Inbox cache expired for {user_id}")
            await self.invalidate(user_id)
            return None

        try:
            items = json.loads(row.payload)
        except ValueError as e:
            logger.warning(f"Corrupt inbox cache for {user_id}: {e}")
            items = []

        if not items:
            await self.invalidate(user_id)
            return None

        return [InboxEmail(**item) for item in items]

    async def put(self, user_id: str, emails: List[InboxEmail]) -> None:
        if not emails:
            await self.invalidate(user_id)
            return

        payload = json.dumps([asdict(e) for e in emails])
        row = await self._get_row(user_id)
        if row is None:
            self.db.add(InboxSnapshot(
                user_id=user_id,
                cache_key=self.cache_key,
                payload=payload,
                created_at=datetime.utcnow(),
            ))
        else:
            row.payload = payload
            row.created_at = datetime.utcnow()
        await self.db.commit()

    async def invalidate(self, user_id: str) -> None:
        await self.db.execute(
            delete(InboxSnapshot).where(
                InboxSnapshot.user_id == user_id,
                InboxSnapshot.cache_key == self.cache_key,
            )
        )
        await self.db.commit()
