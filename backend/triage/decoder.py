"""
Message decoding for the triage engine.

Turns a raw Gmail message resource into a normalized Message:
- Headers are collected from every MIME part, not only the envelope
- Header lookup is case-insensitive
- Bodies are base64url decoded and read as UTF-8, degrading to a byte-for-byte
  character reading when the bytes are not valid UTF-8
- Subjects fall back to the first body line, then the snippet

Decoding never raises; malformed input only produces degraded text.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from email.utils import parseaddr
from typing import Any, Dict, List, Optional, Tuple

from triage.rules import DEFAULT_RULES, TriageRules

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://[^\s<>()]+", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")

NO_SUBJECT = "No subject"


# ============================================================================
# Data Classes
# ============================================================================


@dataclass
class BodyPart:
    """One candidate body part (text/html or text/plain) of a message."""
    mime_type: str
    data: str = ""  # base64url as delivered by the API


@dataclass
class Message:
    """
    Normalized view of one provider message.

    Attributes:
        id: Provider message ID
        sender: Raw From header ("Name <addr@domain>")
        subject: Subject, or a fallback derived from the body/snippet
        snippet: Provider snippet
        headers: (name, value) pairs from every MIME part, envelope first
        body_parts: Text parts found anywhere in the MIME tree
        body_text: Decoded text of the preferred body part
        payload: The raw top-level payload, kept for strategies that need it
        internal_date: Provider timestamp in ms since epoch (0 when unknown)
        is_newsletter: Informational newsletter flag for UI filtering
    """
    id: str
    sender: str = ""
    subject: str = ""
    snippet: str = ""
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body_parts: List[BodyPart] = field(default_factory=list)
    body_text: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    internal_date: int = 0
    is_newsletter: bool = False

    def get_header(self, name: str) -> Optional[str]:
        """Return the first header value matching name, case-insensitively."""
        return find_header(self.headers, name)

    @property
    def sender_email(self) -> str:
        return extract_email_address(self.sender)

    @property
    def sender_domain(self) -> str:
        return extract_domain(self.sender)

    @property
    def preview(self) -> str:
        """Cleaned short text for listings: the snippet, else the body start."""
        return (clean_text(self.snippet) or clean_text(self.body_text))[:200]


# ============================================================================
# Header Helpers
# ============================================================================


def collect_headers(payload: Optional[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """
    Collect headers from a payload and all of its nested parts.

    Args:
        payload: Gmail message payload (may be None)

    Returns:
        List of (name, value) tuples, envelope headers first, then each part
        depth-first in document order
    """
    if not payload:
        return []

    headers = [
        (h.get("name", ""), h.get("value", ""))
        for h in payload.get("headers") or []
    ]
    for part in payload.get("parts") or []:
        headers.extend(collect_headers(part))
    return headers


def find_header(headers: List[Tuple[str, str]], name: str) -> Optional[str]:
    """Case-insensitive lookup of the first header with the given name."""
    wanted = name.lower()
    for header_name, value in headers:
        if header_name.lower() == wanted:
            return value
    return None


def extract_email_address(sender: str) -> str:
    """
    Extract the bare address from a From value.

    Example:
        >>> extract_email_address("Jane <jane@example.com>")
        'jane@example.com'
    """
    if not sender:
        return ""
    _, address = parseaddr(sender)
    address = address or sender
    return address.strip().lower()


def extract_domain(sender: str) -> str:
    """Domain part of the sender address, or the whole value when it has no '@'."""
    address = extract_email_address(sender)
    if "@" in address:
        return address.rsplit("@", 1)[1].strip(">").lower()
    return address


# ============================================================================
# Body Decoding
# ============================================================================


def decode_base64url(data: str) -> str:
    """
    Decode a base64url body into text.

    UTF-8 is tried first; bytes that are not valid UTF-8 are read one byte per
    character instead. Malformed base64 yields an empty string.
    """
    if not data:
        return ""

    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii", errors="ignore"))
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Malformed base64 body, skipping: {e}")
        return ""

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def clean_text(text: str) -> str:
    """Strip URLs, collapse whitespace and trim."""
    if not text:
        return ""
    text = _URL_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def collect_body_parts(payload: Optional[Dict[str, Any]]) -> List[BodyPart]:
    """Find every text/html and text/plain part with inline data in the MIME tree."""
    if not payload:
        return []

    parts = []
    mime_type = (payload.get("mimeType") or "").lower()
    data = (payload.get("body") or {}).get("data")
    if data and mime_type in ("text/html", "text/plain"):
        parts.append(BodyPart(mime_type=mime_type, data=data))

    for part in payload.get("parts") or []:
        parts.extend(collect_body_parts(part))
    return parts


def select_body_data(payload: Optional[Dict[str, Any]]) -> str:
    """
    Pick the base64 data of the best body part.

    Preference: a text/html part, then a text/plain part, then the top-level
    payload body.
    """
    if not payload:
        return ""

    parts = collect_body_parts(payload)
    for wanted in ("text/html", "text/plain"):
        for part in parts:
            if part.mime_type == wanted:
                return part.data

    return (payload.get("body") or {}).get("data") or ""


def _first_non_blank_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line
    return ""


def fallback_subject(body_text: str, snippet: str) -> str:
    """Subject to show when the Subject header is missing or blank."""
    body_line = clean_text(_first_non_blank_line(body_text))
    if body_line:
        return body_line
    cleaned_snippet = clean_text(snippet)
    if cleaned_snippet:
        return cleaned_snippet
    return NO_SUBJECT


def is_newsletter(sender: str, subject: str, body_text: str, rules: TriageRules = DEFAULT_RULES) -> bool:
    """Flag newsletters by platform mention in sender/body or subject keywords."""
    sender_lower = (sender or "").lower()
    body_lower = (body_text or "").lower()
    subject_lower = (subject or "").lower()

    if any(p in sender_lower or p in body_lower for p in rules.newsletter_platforms):
        return True
    return any(k in subject_lower for k in rules.newsletter_subject_keywords)


# ============================================================================
# Main Decode Function
# ============================================================================


def decode_message(raw: Dict[str, Any], rules: TriageRules = DEFAULT_RULES) -> Message:
    """
    Decode a Gmail message resource into a Message.

    Args:
        raw: Message resource from GmailClient.get_message(format="full")
        rules: Rule set used for newsletter flagging

    Returns:
        Message with headers, body text, subject fallback and newsletter flag

    Example:
        >>> msg = decode_message(raw)
        >>> msg.get_header("list-unsubscribe")
        '<https://example.com/unsub>'
    """
    raw = raw or {}
    payload = raw.get("payload") or {}
    headers = collect_headers(payload)

    sender = find_header(headers, "From") or ""
    snippet = raw.get("snippet") or ""
    body_text = decode_base64url(select_body_data(payload))

    subject = (find_header(headers, "Subject") or "").strip()
    if not subject:
        subject = fallback_subject(body_text, snippet)

    try:
        internal_date = int(raw.get("internalDate") or 0)
    except (TypeError, ValueError):
        internal_date = 0

    return Message(
        id=raw.get("id", ""),
        sender=sender,
        subject=subject,
        snippet=snippet,
        headers=headers,
        body_parts=collect_body_parts(payload),
        body_text=body_text,
        payload=payload,
        internal_date=internal_date,
        is_newsletter=is_newsletter(sender, subject, body_text, rules),
    )
