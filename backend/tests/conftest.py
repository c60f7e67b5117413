"""
Pytest configuration and fixtures for Cleany tests.
Provides a test database, an in-memory fake of the Gmail REST API served
through httpx.MockTransport, and builders for raw Gmail messages.
"""

import base64
import re
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional
from urllib.parse import unquote

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from db import Base
from gmail_client import GmailClient

GMAIL_BASE_URL = "https://gmail.test/gmail/v1/users/me"
TEST_TOKEN = "test-access-token"


def b64url(text: str) -> str:
    """Encode text the way Gmail delivers body data (base64url, no padding)."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def build_raw_message(
    message_id: str,
    sender: str = "News <news@example.com>",
    subject: Optional[str] = "Weekly update",
    snippet: str = "",
    internal_date: int = 0,
    extra_headers: Optional[List[Dict[str, str]]] = None,
    html: Optional[str] = None,
    text: Optional[str] = None,
    part_headers: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """
    Build a Gmail message resource in "full" format.

    html/text become multipart/alternative parts; part_headers are attached
    to the first part to exercise nested header collection.
    """
    headers = [{"name": "From", "value": sender}]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})
    headers.extend(extra_headers or [])

    parts = []
    if text is not None:
        parts.append({"mimeType": "text/plain", "headers": [], "body": {"data": b64url(text)}})
    if html is not None:
        parts.append({"mimeType": "text/html", "headers": [], "body": {"data": b64url(html)}})
    if parts and part_headers:
        parts[0]["headers"] = part_headers

    payload: Dict[str, Any] = {
        "mimeType": "multipart/alternative" if parts else "text/plain",
        "headers": headers,
        "body": {"size": 0},
    }
    if parts:
        payload["parts"] = parts

    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "snippet": snippet,
        "internalDate": str(internal_date),
        "payload": payload,
    }


# ============================================================================
# Fake Gmail API
# ============================================================================


class FakeGmail:
    """
    In-memory Gmail mailbox answering the REST calls GmailClient makes.

    Attributes:
        messages: message id -> full message resource, newest first
        trashed: IDs successfully moved to trash, in call order
        trash_status: per-id status override for the trash call
        get_status: per-id status override for message fetches
        list_status: page token (None for the first page) -> status override
        requests: every request received
    """

    def __init__(self, email_address: str = "user@example.com"):
        self.email_address = email_address
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.trashed: List[str] = []
        self.trash_status: Dict[str, int] = {}
        self.get_status: Dict[str, int] = {}
        self.list_status: Dict[Optional[str], int] = {}
        self.requests: List[httpx.Request] = []

    def add(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        self.messages[raw["id"]] = raw
        return raw

    def add_many(self, count: int, sender: str = "news@example.com", prefix: str = "m") -> List[str]:
        ids = []
        for i in range(count):
            message_id = f"{prefix}{i}"
            self.add(build_raw_message(message_id, sender=sender, internal_date=1_000 * (count - i)))
            ids.append(message_id)
        return ids

    def calls(self, method: str, pattern: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and re.search(pattern, r.url.path)]

    def _matching(self, query: str) -> List[str]:
        # Trashed messages stay listed so offset page tokens remain stable
        ids = list(self.messages)
        sender = re.search(r"from:(\S+)", query)
        if sender:
            wanted = sender.group(1).lower()
            ids = [
                mid for mid in ids
                if wanted in self._header(self.messages[mid], "From").lower()
            ]
        return ids

    @staticmethod
    def _header(raw: Dict[str, Any], name: str) -> str:
        for header in raw["payload"].get("headers", []):
            if header["name"].lower() == name.lower():
                return header["value"]
        return ""

    @staticmethod
    def _json(status_code: int, payload: Any) -> httpx.Response:
        return httpx.Response(status_code, json=payload)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.headers.get("Authorization") != f"Bearer {TEST_TOKEN}":
            return self._json(401, {"error": {"code": 401, "message": "Invalid Credentials"}})

        path = unquote(request.url.path).split("/users/me", 1)[1]
        params = request.url.params

        if request.method == "GET" and path == "/profile":
            return self._json(200, {"emailAddress": self.email_address, "messagesTotal": len(self.messages)})

        if request.method == "GET" and path == "/messages":
            page_token = params.get("pageToken")
            if page_token in self.list_status:
                return self._json(self.list_status[page_token], {"error": {"message": "list failed"}})

            ids = self._matching(params.get("q", ""))
            offset = int(page_token or 0)
            size = int(params.get("maxResults", 100))
            page = ids[offset:offset + size]
            body: Dict[str, Any] = {"resultSizeEstimate": len(ids)}
            if page:
                body["messages"] = [{"id": mid, "threadId": f"thread-{mid}"} for mid in page]
            if offset + size < len(ids):
                body["nextPageToken"] = str(offset + size)
            return self._json(200, body)

        match = re.fullmatch(r"/messages/([^/]+)/trash", path)
        if request.method == "POST" and match:
            message_id = match.group(1)
            status_code = self.trash_status.get(message_id, 200 if message_id in self.messages else 404)
            if status_code == 200:
                self.trashed.append(message_id)
                return self._json(200, {"id": message_id, "labelIds": ["TRASH"]})
            return self._json(status_code, {"error": {"code": status_code, "message": "trash failed"}})

        match = re.fullmatch(r"/messages/([^/]+)", path)
        if request.method == "GET" and match:
            message_id = match.group(1)
            if message_id in self.get_status:
                return self._json(self.get_status[message_id], {"error": {"message": "get failed"}})
            raw = self.messages.get(message_id)
            if raw is None:
                return self._json(404, {"error": {"code": 404, "message": "Not Found"}})
            if params.get("format") == "minimal":
                return self._json(200, {"id": raw["id"], "threadId": raw["threadId"], "internalDate": raw["internalDate"]})
            return self._json(200, raw)

        return self._json(404, {"error": {"message": f"unexpected {request.method} {path}"}})


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def test_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session using SQLite in-memory database.

    Yields:
        AsyncSession: Test database session

    Notes:
        - Database is created fresh for each test
        - autoflush is off, matching the application session factory
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ============================================================================
# Gmail Fixtures
# ============================================================================


@pytest.fixture
def fake_gmail() -> FakeGmail:
    return FakeGmail()


@pytest.fixture
async def gmail_client(fake_gmail: FakeGmail) -> AsyncGenerator[GmailClient, None]:
    """GmailClient wired to the fake mailbox."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_gmail.handler))
    client = GmailClient(TEST_TOKEN, http_client=http_client, base_url=GMAIL_BASE_URL)
    yield client
    await http_client.aclose()


@pytest.fixture
def make_message() -> Callable[..., Dict[str, Any]]:
    """Builder for raw Gmail messages (see build_raw_message)."""
    return build_raw_message


@pytest.fixture
def sample_gmail_message() -> Dict[str, Any]:
    """Newsletter with an http + mailto List-Unsubscribe header and an HTML body."""
    return build_raw_message(
        "test_msg_123",
        sender="Example Weekly <weekly@news.example.com>",
        subject="This week's digest",
        snippet="Top stories this week",
        extra_headers=[
            {"name": "List-Unsubscribe", "value": "<https://news.example.com/unsub?u=1>, <mailto:unsub@news.example.com>"},
            {"name": "List-Unsubscribe-Post", "value": "List-Unsubscribe=One-Click"},
        ],
        html='<p>Hello</p><a href="https://news.example.com/unsubscribe?u=1">Unsubscribe</a>',
    )


@pytest.fixture
def sample_protected_message() -> Dict[str, Any]:
    """Security alert from a payment provider."""
    return build_raw_message(
        "paypal_msg_456",
        sender="PayPal <security@paypal.com>",
        subject="Security Alert",
        extra_headers=[{"name": "List-Unsubscribe", "value": "<https://paypal.com/unsub>"}],
    )
