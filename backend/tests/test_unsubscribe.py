"""
Tests for unsubscribe link resolution and execution.
Web pages are served by an httpx.MockTransport so validation never leaves
the process.
"""

from typing import Dict, List, Tuple

import httpx
import pytest

from conftest import build_raw_message
from triage.decoder import decode_message
from triage.link_validator import LinkValidator
from triage.unsubscribe import (
    MAILTO_MANUAL_ERROR,
    ResolutionStatus,
    UnsubscribeMethod,
    UnsubscribeRequest,
    UnsubscribeResolver,
    execute_unsubscribes,
    extract_body_links,
    parse_list_unsubscribe,
    pick_body_candidate,
    pick_header_link,
)


class FakeWeb:
    """
    Minimal web: url -> (status, body, location). Unknown URLs answer 200 with
    an empty page; URLs in `broken` raise a connection error.
    """

    def __init__(self):
        self.pages: Dict[str, Tuple[int, str, str]] = {}
        self.broken: List[str] = []
        self.requests: List[httpx.Request] = []

    def page(self, url: str, body: str = "", status: int = 200) -> None:
        self.pages[url] = (status, body, "")

    def redirect(self, url: str, location: str) -> None:
        self.pages[url] = (302, "", location)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.broken:
            raise httpx.ConnectError("connection refused", request=request)

        status, body, location = self.pages.get(url, (200, "", ""))
        headers = {"Location": location} if location else {}
        return httpx.Response(status, text=body, headers=headers)

    def urls(self, method: str) -> List[str]:
        return [str(r.url) for r in self.requests if r.method == method]


@pytest.fixture
def web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture
async def resolver(web: FakeWeb):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(web.handler), follow_redirects=True)
    yield UnsubscribeResolver(validator=LinkValidator(http_client=http_client))
    await http_client.aclose()


def _unsub_header(value: str) -> List[Dict[str, str]]:
    return [{"name": "List-Unsubscribe", "value": value}]


# ============================================================================
# Parsing Helper Tests
# ============================================================================


class TestParsing:
    def test_parse_list_unsubscribe(self):
        assert parse_list_unsubscribe("<https://a.com/unsub>, <mailto:b@c.com>") == [
            "https://a.com/unsub",
            "mailto:b@c.com",
        ]

    def test_parse_empty(self):
        assert parse_list_unsubscribe("") == []

    def test_pick_header_prefers_http(self):
        assert pick_header_link(["mailto:b@c.com", "https://a.com/unsub"]) == "https://a.com/unsub"

    def test_pick_header_falls_back_to_first(self):
        assert pick_header_link(["mailto:b@c.com"]) == "mailto:b@c.com"
        assert pick_header_link([]) is None

    def test_extract_body_links_keeps_anchor_targets(self):
        html = (
            '<p>Hi ✨</p><a href="https://example.com/unsubscribe?id=1&amp;u=2">Unsubscribe</a>'
            " and https://example.com/plain"
        )
        assert extract_body_links(html) == [
            "https://example.com/unsubscribe?id=1&u=2",
            "https://example.com/plain",
        ]

    def test_extract_body_links_dedupes_in_order(self):
        text = "https://b.com/x https://a.com/y https://b.com/x"
        assert extract_body_links(text) == ["https://b.com/x", "https://a.com/y"]

    def test_extract_body_links_keeps_autolinks(self):
        text = "Unsubscribe: <https://example.com/unsubscribe?id=7>"
        assert extract_body_links(text) == ["https://example.com/unsubscribe?id=7"]

    def test_extract_body_links_unquoted_href(self):
        html = "<a href=https://example.com/unsubscribe?id=8>Unsubscribe</a>"
        assert extract_body_links(html) == ["https://example.com/unsubscribe?id=8"]

    def test_extract_body_links_single_quoted_href(self):
        html = "<a class='btn' href='https://example.com/unsubscribe?id=9'>Leave</a>"
        assert extract_body_links(html) == ["https://example.com/unsubscribe?id=9"]

    def test_pick_body_candidate_prefers_intent(self):
        links = ["https://click.example.com/track?x=1", "https://example.com/unsubscribe?id=2"]
        assert pick_body_candidate(links) == "https://example.com/unsubscribe?id=2"

    def test_pick_body_candidate_redirector_only(self):
        links = ["https://shop.com/home", "https://click.example.com/track?x=1"]
        assert pick_body_candidate(links) == "https://click.example.com/track?x=1"

    def test_pick_body_candidate_none(self):
        assert pick_body_candidate(["https://shop.com/home"]) is None


# ============================================================================
# Resolver Tests
# ============================================================================


class TestResolver:
    """Tests for the ordered resolution strategies."""

    @pytest.mark.asyncio
    async def test_strategies_are_ordered(self, resolver):
        names = [s.__name__ for s in resolver.strategies]
        assert names == [
            "_guard_check",
            "_from_list_unsubscribe_header",
            "_from_body_links",
            "_from_header_fallback",
            "_from_header_mailto",
        ]

    @pytest.mark.asyncio
    async def test_protected_sender_is_skipped(self, resolver, web, sample_protected_message):
        candidate = await resolver.resolve(decode_message(sample_protected_message))

        assert candidate.status == ResolutionStatus.SKIPPED
        assert candidate.url is None
        assert candidate.is_actionable is False
        assert web.requests == []

    @pytest.mark.asyncio
    async def test_mailto_only_header_resolves_to_mailto(self, resolver):
        raw = build_raw_message("m1", extra_headers=_unsub_header("<mailto:unsub@example.com>"))
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.status == ResolutionStatus.FOUND
        assert candidate.url == "mailto:unsub@example.com"
        assert candidate.method == UnsubscribeMethod.MAILTO
        assert candidate.is_actionable is False

    @pytest.mark.asyncio
    async def test_https_preferred_over_mailto(self, resolver, web):
        raw = build_raw_message("m1", extra_headers=_unsub_header("<https://a.com/unsub>, <mailto:b@c.com>"))
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.url == "https://a.com/unsub"
        assert candidate.method == UnsubscribeMethod.GET
        assert candidate.source == "list_unsubscribe_header"
        assert web.requests == []

    @pytest.mark.asyncio
    async def test_one_click_header_uses_post(self, resolver, sample_gmail_message):
        candidate = await resolver.resolve(decode_message(sample_gmail_message))

        assert candidate.url == "https://news.example.com/unsub?u=1"
        assert candidate.method == UnsubscribeMethod.POST

    @pytest.mark.asyncio
    async def test_body_intent_link_beats_redirector(self, resolver, web):
        web.page("https://example.com/unsubscribe?id=2", "Click to confirm you want to leave")
        raw = build_raw_message(
            "m1",
            text="Track https://click.example.com/track?x=1 or leave https://example.com/unsubscribe?id=2",
        )
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.status == ResolutionStatus.FOUND
        assert candidate.url == "https://example.com/unsubscribe?id=2"
        assert candidate.source == "body"
        assert web.urls("HEAD") == []

    @pytest.mark.asyncio
    async def test_body_autolink_is_found(self, resolver, web):
        web.page("https://example.com/unsubscribe?id=7", "Confirm unsubscribe")
        raw = build_raw_message("m1", text="Stop these emails: <https://example.com/unsubscribe?id=7>")
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.status == ResolutionStatus.FOUND
        assert candidate.url == "https://example.com/unsubscribe?id=7"
        assert candidate.source == "body"

    @pytest.mark.asyncio
    async def test_body_scan_runs_when_header_is_mailto(self, resolver, web):
        web.page("https://example.com/unsubscribe?id=3", "Manage your subscription")
        raw = build_raw_message(
            "m1",
            extra_headers=_unsub_header("<mailto:unsub@example.com>"),
            html='<a href="https://example.com/unsubscribe?id=3">Unsubscribe</a>',
        )
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.url == "https://example.com/unsubscribe?id=3"
        assert candidate.method == UnsubscribeMethod.GET

    @pytest.mark.asyncio
    async def test_redirect_confirmation_adopts_final_url(self, resolver, web):
        web.redirect("https://click.example.com/abc", "https://example.com/unsubscribe?id=9")
        web.page("https://example.com/unsubscribe?id=9", "Confirm")
        raw = build_raw_message("m1", html='<a href="https://click.example.com/abc">Stop emails</a>')
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.url == "https://example.com/unsubscribe?id=9"
        assert "https://click.example.com/abc" in web.urls("HEAD")

    @pytest.mark.asyncio
    async def test_network_errors_keep_original_candidate(self, resolver, web):
        web.broken.append("https://click.example.com/abc")
        raw = build_raw_message("m1", html='<a href="https://click.example.com/abc">Stop emails</a>')
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.status == ResolutionStatus.FOUND
        assert candidate.url == "https://click.example.com/abc"

    @pytest.mark.asyncio
    async def test_tokenized_body_link_is_discarded(self, resolver, web):
        raw = build_raw_message("m1", text="Leave: https://example.com/unsubscribe?token=abc123")
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.status == ResolutionStatus.NOT_FOUND
        assert candidate.url is None
        assert web.urls("GET") == []

    @pytest.mark.asyncio
    async def test_tokenized_body_link_falls_through_to_mailto(self, resolver):
        raw = build_raw_message(
            "m1",
            extra_headers=_unsub_header("<mailto:unsub@example.com>"),
            text="https://example.com/unsubscribe?token=abc123",
        )
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.method == UnsubscribeMethod.MAILTO
        assert candidate.url == "mailto:unsub@example.com"

    @pytest.mark.asyncio
    async def test_expired_page_is_discarded(self, resolver, web):
        web.page("https://example.com/unsubscribe?id=5", "<h1>Oops! This link has expired</h1>")
        raw = build_raw_message("m1", text="https://example.com/unsubscribe?id=5")
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.status == ResolutionStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_literal_header_fallback(self, resolver):
        raw = build_raw_message(
            "m1",
            extra_headers=_unsub_header("Unsubscribe here: https://a.com/u?id=1"),
        )
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.status == ResolutionStatus.FOUND
        assert candidate.url == "https://a.com/u?id=1"
        assert candidate.source == "header_fallback"

    @pytest.mark.asyncio
    async def test_literal_header_fallback_is_case_sensitive(self, resolver):
        raw = build_raw_message(
            "m1",
            extra_headers=[{"name": "list-unsubscribe", "value": "Unsubscribe here: https://a.com/u?id=1"}],
        )
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.status == ResolutionStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_nothing_found(self, resolver):
        raw = build_raw_message("m1", text="Thanks for reading https://shop.com/home")
        candidate = await resolver.resolve(decode_message(raw))

        assert candidate.status == ResolutionStatus.NOT_FOUND
        assert candidate.url is None
        assert "search" in candidate.reason.lower()


# ============================================================================
# Execution Tests
# ============================================================================


class TestExecuteUnsubscribes:
    @pytest.mark.asyncio
    async def test_get_and_post(self, web):
        web.page("https://a.com/unsub", "ok")
        web.page("https://b.com/one-click", "ok")
        async with httpx.AsyncClient(transport=httpx.MockTransport(web.handler)) as client:
            results = await execute_unsubscribes(
                [
                    UnsubscribeRequest(id="1", url="https://a.com/unsub", method=UnsubscribeMethod.GET),
                    UnsubscribeRequest(id="2", url="https://b.com/one-click", method=UnsubscribeMethod.POST),
                ],
                http_client=client,
                delay=0,
            )

        assert [(r.id, r.success, r.status) for r in results] == [("1", True, 200), ("2", True, 200)]
        post = [r for r in web.requests if r.method == "POST"][0]
        assert post.content == b"List-Unsubscribe=One-Click"

    @pytest.mark.asyncio
    async def test_mailto_is_never_sent(self, web):
        async with httpx.AsyncClient(transport=httpx.MockTransport(web.handler)) as client:
            results = await execute_unsubscribes(
                [UnsubscribeRequest(id="1", url="mailto:unsub@example.com", method=UnsubscribeMethod.MAILTO)],
                http_client=client,
                delay=0,
            )

        assert results[0].success is False
        assert results[0].error == MAILTO_MANUAL_ERROR
        assert web.requests == []

    @pytest.mark.asyncio
    async def test_error_status_is_failure(self, web):
        web.page("https://a.com/unsub", "nope", status=500)
        async with httpx.AsyncClient(transport=httpx.MockTransport(web.handler)) as client:
            results = await execute_unsubscribes(
                [UnsubscribeRequest(id="1", url="https://a.com/unsub", method=UnsubscribeMethod.GET)],
                http_client=client,
                delay=0,
            )

        assert results[0].success is False
        assert results[0].status == 500

    @pytest.mark.asyncio
    async def test_connection_error_is_failure(self, web):
        web.broken.append("https://a.com/unsub")
        async with httpx.AsyncClient(transport=httpx.MockTransport(web.handler)) as client:
            results = await execute_unsubscribes(
                [UnsubscribeRequest(id="1", url="https://a.com/unsub", method=UnsubscribeMethod.GET)],
                http_client=client,
                delay=0,
            )

        assert results[0].success is False
        assert results[0].status == 0

    @pytest.mark.asyncio
    async def test_missing_url_is_refused(self):
        results = await execute_unsubscribes(
            [UnsubscribeRequest(id="1", url=None, method=UnsubscribeMethod.GET)],
            delay=0,
        )
        assert results[0].success is False
