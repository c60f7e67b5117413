"""
Unsubscribe link discovery and execution for Cleany.

This module provides:
- UnsubscribeResolver: an ordered chain of strategies that finds the best
  unsubscribe mechanism for one message (List-Unsubscribe header, body links,
  a literal header re-scan, and finally a mailto address)
- execute_unsubscribes: performs resolved GET/POST unsubscribe requests and
  refuses mailto links, which must be opened by the user
"""

import asyncio
import html
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

import httpx

from config import settings
from gmail_client import GmailClient
from triage.decoder import Message, decode_message
from triage.link_validator import USER_AGENT, LinkValidator
from triage.rules import DEFAULT_RULES, TriageRules
from triage.safety import SystemSenderGuard

logger = logging.getLogger(__name__)

_HREF_RE = re.compile(r"""href\s*=\s*(?:"([^"]+)"|'([^']+)'|([^\s>"']+))""", re.IGNORECASE)
# Angle-bracketed autolinks such as <https://a.com/u> are text, not tags
_TAG_RE = re.compile(r"<(?!https?://)\/?[^>]+(>|$)", re.IGNORECASE)
_NON_ASCII_RE = re.compile(r"[^\x00-\x7F]+")
_WHITESPACE_RE = re.compile(r"\s+")
_LINK_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)

SKIPPED_REASON = "Skipped: this looks like a system email"
NOT_FOUND_REASON = "No unsubscribe link found. Try manually searching the email for an unsubscribe link"
MAILTO_MANUAL_ERROR = "MAILTO links must be handled manually"


# ============================================================================
# Data Classes
# ============================================================================


class UnsubscribeMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    MAILTO = "MAILTO"


class ResolutionStatus(str, Enum):
    FOUND = "found"
    SKIPPED = "skipped"
    NOT_FOUND = "not_found"
    FETCH_FAILED = "fetch_failed"


@dataclass
class UnsubscribeCandidate:
    """
    Resolved unsubscribe mechanism for one message.

    A candidate without a url must never be executed, and a MAILTO candidate
    is only ever surfaced to the user.

    Attributes:
        message_id: Provider message ID the candidate was resolved from
        url: http(s) or mailto: URL, None when skipped or not found
        method: GET, POST or MAILTO
        status: found, skipped (protected sender), not_found, or
                fetch_failed when the message itself could not be read
        source: Strategy that produced the candidate
        reason: Human-readable explanation
    """
    message_id: str
    url: Optional[str] = None
    method: UnsubscribeMethod = UnsubscribeMethod.GET
    status: ResolutionStatus = ResolutionStatus.NOT_FOUND
    source: Optional[str] = None
    reason: str = ""

    @property
    def is_actionable(self) -> bool:
        """True when the candidate may be executed automatically."""
        return (
            self.status == ResolutionStatus.FOUND
            and self.url is not None
            and self.method != UnsubscribeMethod.MAILTO
        )


@dataclass
class ResolutionState:
    """Scratch state shared by the strategies of one resolve() call."""
    message: Message
    header_mailto: Optional[str] = None


Strategy = Callable[[ResolutionState], Awaitable[Optional[UnsubscribeCandidate]]]


# ============================================================================
# Parsing Helpers
# ============================================================================


def parse_list_unsubscribe(value: str) -> List[str]:
    """
    Split a List-Unsubscribe value into its URIs.

    Example:
        >>> parse_list_unsubscribe("<https://a.com/unsub>, <mailto:b@c.com>")
        ['https://a.com/unsub', 'mailto:b@c.com']
    """
    if not value:
        return []
    cleaned = value.replace("<", "").replace(">", "").strip()
    return [link.strip() for link in cleaned.split(",") if link.strip()]


def pick_header_link(links: List[str]) -> Optional[str]:
    """First http(s) entry, else the first entry of any scheme."""
    for link in links:
        if link.lower().startswith("http"):
            return link
    return links[0] if links else None


def _href_targets(tag: str) -> List[str]:
    return [next(g for g in match.groups() if g) for match in _HREF_RE.finditer(tag)]


def extract_body_links(body: str) -> List[str]:
    """
    Extract http(s) links from a decoded body in order of first appearance.

    Anchor targets are lifted out of their tags before the tags are stripped,
    so HTML bodies yield the same links a reader would click.
    """
    if not body:
        return []

    # Each tag collapses to its href targets
    text = _TAG_RE.sub(lambda m: " " + " ".join(_href_targets(m.group(0))) + " ", body)
    text = html.unescape(text)
    text = _NON_ASCII_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()

    links: List[str] = []
    for link in _LINK_RE.findall(text):
        if link not in links:
            links.append(link)
    return links


def pick_body_candidate(links: List[str], rules: TriageRules = DEFAULT_RULES) -> Optional[str]:
    """
    Choose the best unsubscribe link among body links.

    Candidates are links with unsubscribe intent or on a known redirector
    host. A candidate with intent wins, otherwise the first candidate.
    """
    candidates = [
        link for link in links
        if rules.has_unsubscribe_intent(link) or rules.is_redirector(link)
    ]
    for link in candidates:
        if rules.has_unsubscribe_intent(link):
            return link
    return candidates[0] if candidates else None


def _is_one_click(message: Message) -> bool:
    post_header = message.get_header("List-Unsubscribe-Post") or ""
    return "one-click" in post_header.lower()


# ============================================================================
# Resolver
# ============================================================================


class UnsubscribeResolver:
    """
    Finds the unsubscribe mechanism for a message.

    Strategies run in order and the first one returning a candidate wins:
    1. System-sender guard (returns a "skipped" candidate)
    2. List-Unsubscribe header (http wins, mailto is remembered)
    3. Body link scan with redirect confirmation and expiry filtering
    4. Literal "List-Unsubscribe" header re-scan for an https link
    5. The mailto address remembered from step 2

    Example:
        >>> resolver = UnsubscribeResolver(validator=validator)
        >>> candidate = await resolver.resolve(message)
        >>> candidate.status, candidate.url
        (<ResolutionStatus.FOUND: 'found'>, 'https://example.com/unsubscribe')
    """

    def __init__(
        self,
        validator: Optional[LinkValidator] = None,
        guard: Optional[SystemSenderGuard] = None,
        rules: TriageRules = DEFAULT_RULES,
    ):
        self.rules = rules
        self.guard = guard or SystemSenderGuard(rules)
        self.validator = validator or LinkValidator(rules=rules)
        self.strategies: List[Strategy] = [
            self._guard_check,
            self._from_list_unsubscribe_header,
            self._from_body_links,
            self._from_header_fallback,
            self._from_header_mailto,
        ]

    async def resolve(self, message: Message) -> UnsubscribeCandidate:
        """
        Resolve the unsubscribe candidate for a decoded message.

        Returns:
            UnsubscribeCandidate with status found, skipped or not_found
        """
        state = ResolutionState(message=message)

        for strategy in self.strategies:
            candidate = await strategy(state)
            if candidate is not None:
                logger.info(
                    f"Resolved unsubscribe for {message.id}: status={candidate.status.value}, "
                    f"source={candidate.source}, method={candidate.method.value}"
                )
                return candidate

        logger.info(f"No unsubscribe link found for {message.id}")
        return UnsubscribeCandidate(
            message_id=message.id,
            status=ResolutionStatus.NOT_FOUND,
            reason=NOT_FOUND_REASON,
        )

    async def resolve_by_id(self, gmail_client: GmailClient, message_id: str) -> UnsubscribeCandidate:
        """Fetch a message in full format, decode it and resolve it."""
        raw = await gmail_client.get_message(message_id, format="full")
        return await self.resolve(decode_message(raw, self.rules))

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _guard_check(self, state: ResolutionState) -> Optional[UnsubscribeCandidate]:
        result = self.guard.check(state.message)
        if result.is_safe:
            return None

        logger.info(f"Skipping unsubscribe for system email {state.message.id}: {result.reason}")
        return UnsubscribeCandidate(
            message_id=state.message.id,
            status=ResolutionStatus.SKIPPED,
            source="guard",
            reason=f"{SKIPPED_REASON} ({result.reason})",
        )

    async def _from_list_unsubscribe_header(self, state: ResolutionState) -> Optional[UnsubscribeCandidate]:
        value = state.message.get_header("List-Unsubscribe")
        link = pick_header_link(parse_list_unsubscribe(value or ""))
        if not link:
            return None

        if link.lower().startswith("mailto:"):
            state.header_mailto = link
            return None
        if not link.lower().startswith(("http://", "https://")):
            logger.debug(f"Unusable List-Unsubscribe entry for {state.message.id}: {link}")
            return None

        method = UnsubscribeMethod.POST if _is_one_click(state.message) else UnsubscribeMethod.GET
        return UnsubscribeCandidate(
            message_id=state.message.id,
            url=link,
            method=method,
            status=ResolutionStatus.FOUND,
            source="list_unsubscribe_header",
            reason="Found List-Unsubscribe header link",
        )

    async def _from_body_links(self, state: ResolutionState) -> Optional[UnsubscribeCandidate]:
        links = extract_body_links(state.message.body_text)
        logger.debug(f"Body scan for {state.message.id}: {len(links)} links found")

        link = pick_body_candidate(links, self.rules)
        if not link:
            return None

        validation = await self.validator.validate(link)
        if not validation.ok or not validation.final_url:
            logger.info(f"Discarded body link for {state.message.id}: {validation.reason}")
            return None

        return UnsubscribeCandidate(
            message_id=state.message.id,
            url=validation.final_url,
            method=UnsubscribeMethod.GET,
            status=ResolutionStatus.FOUND,
            source="body",
            reason=f"Found unsubscribe link in email body ({validation.reason})",
        )

    async def _from_header_fallback(self, state: ResolutionState) -> Optional[UnsubscribeCandidate]:
        # Literal, case-sensitive name on the envelope headers only
        for header in state.message.payload.get("headers") or []:
            if header.get("name") != "List-Unsubscribe":
                continue
            value = header.get("value") or ""
            if "https" not in value:
                continue
            match = re.search(r"https?://[^\s<>]+", value, re.IGNORECASE)
            if match:
                url = match.group(0).rstrip(",")
                return UnsubscribeCandidate(
                    message_id=state.message.id,
                    url=url,
                    method=UnsubscribeMethod.GET,
                    status=ResolutionStatus.FOUND,
                    source="header_fallback",
                    reason="Using List-Unsubscribe header link",
                )
        return None

    async def _from_header_mailto(self, state: ResolutionState) -> Optional[UnsubscribeCandidate]:
        if not state.header_mailto:
            return None

        return UnsubscribeCandidate(
            message_id=state.message.id,
            url=state.header_mailto,
            method=UnsubscribeMethod.MAILTO,
            status=ResolutionStatus.FOUND,
            source="list_unsubscribe_mailto",
            reason="Open your email client to unsubscribe",
        )


# ============================================================================
# Execution
# ============================================================================


@dataclass
class UnsubscribeRequest:
    """One resolved unsubscribe to execute."""
    id: str
    url: Optional[str]
    method: UnsubscribeMethod


@dataclass
class ExecutionResult:
    """
    Result of executing one unsubscribe request.

    Attributes:
        id: Caller-supplied identifier (usually the message ID)
        success: True on a 2xx response after redirects
        status: Final HTTP status, 0 when no request was sent
        error: Optional error message if failed
    """
    id: str
    success: bool
    status: int = 0
    error: Optional[str] = None


async def _execute_one(client: httpx.AsyncClient, request: UnsubscribeRequest) -> ExecutionResult:
    if request.method == UnsubscribeMethod.MAILTO or (request.url or "").lower().startswith("mailto:"):
        return ExecutionResult(id=request.id, success=False, error=MAILTO_MANUAL_ERROR)

    if not request.url or not request.url.lower().startswith(("http://", "https://")):
        return ExecutionResult(id=request.id, success=False, error="Unsupported unsubscribe format")

    try:
        if request.method == UnsubscribeMethod.POST:
            response = await client.post(
                request.url,
                content="List-Unsubscribe=One-Click",
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                follow_redirects=True,
            )
        else:
            response = await client.get(request.url, follow_redirects=True)
    except httpx.TimeoutException:
        logger.error(f"HTTP unsubscribe timed out: {request.url}")
        return ExecutionResult(id=request.id, success=False, error="Request timed out")
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.error(f"Error unsubscribing {request.id}: {e}")
        return ExecutionResult(id=request.id, success=False, error=str(e))

    logger.info(f"Unsubscribe {request.id}: {response.status_code}")
    success = 200 <= response.status_code < 300
    return ExecutionResult(
        id=request.id,
        success=success,
        status=response.status_code,
        error=None if success else f"HTTP {response.status_code}",
    )


async def execute_unsubscribes(
    requests: List[UnsubscribeRequest],
    http_client: Optional[httpx.AsyncClient] = None,
    delay: Optional[float] = None,
) -> List[ExecutionResult]:
    """
    Execute GET/POST unsubscribe requests one after another.

    MAILTO requests are never sent; they come back as failures with an
    explanation so the caller can hand them to the user's mail client.

    Args:
        requests: Resolved unsubscribe requests
        http_client: Optional client to use (not closed here)
        delay: Pause before each request, defaults to
               UNSUBSCRIBE_REQUEST_DELAY_SECONDS

    Returns:
        One ExecutionResult per request, in input order
    """
    pause = settings.UNSUBSCRIBE_REQUEST_DELAY_SECONDS if delay is None else delay
    client = http_client or httpx.AsyncClient(
        timeout=settings.LINK_VALIDATION_TIMEOUT,
        headers={"User-Agent": USER_AGENT},
    )

    results: List[ExecutionResult] = []
    try:
        for request in requests:
            if pause and request.method != UnsubscribeMethod.MAILTO:
                await asyncio.sleep(pause)
            results.append(await _execute_one(client, request))
    finally:
        if http_client is None:
            await client.aclose()

    success_count = sum(1 for r in results if r.success)
    logger.info(f"Successfully unsubscribed from {success_count}/{len(requests)} emails")
    return results
