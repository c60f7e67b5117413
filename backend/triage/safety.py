"""
System-sender guard for the triage engine.

Decides whether a message belongs to a protected, transactional channel
(identity, payments, banking, cloud, social platforms) that must never be
auto-unsubscribed. The guard over-protects: a keyword match in the subject
alone is enough.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from triage.decoder import Message, extract_domain
from triage.rules import DEFAULT_RULES, TriageRules

logger = logging.getLogger(__name__)


# ============================================================================
# ENUMS AND DATA CLASSES
# ============================================================================

class SafetyCheck(Enum):
    """Enum representing the result of a safety check."""
    SAFE = "safe"
    PROTECTED_DOMAIN = "protected_domain"
    PROTECTED_KEYWORD = "protected_keyword"


@dataclass
class SafetyResult:
    """Result of a safety check operation."""
    is_safe: bool
    check: SafetyCheck
    reason: str
    matched: Optional[str] = None


# ============================================================================
# CORE SAFETY FUNCTIONS
# ============================================================================

def matching_system_domain(domain: str, rules: TriageRules = DEFAULT_RULES) -> Optional[str]:
    """
    Return the first system domain contained in the sender domain.

    Substring containment is intentional, so "mail.google.com" and
    "accounts.google.com.au" both match "google.com".
    """
    if not domain:
        return None

    domain_lower = domain.lower().strip()
    for protected in rules.system_domains:
        if protected in domain_lower:
            return protected
    return None


def matching_system_keyword(subject: str, rules: TriageRules = DEFAULT_RULES) -> Optional[str]:
    """Return the first transactional keyword contained in the subject."""
    if not subject:
        return None

    subject_lower = subject.lower()
    for keyword in rules.system_keywords:
        if keyword in subject_lower:
            return keyword
    return None


class SystemSenderGuard:
    """
    Gate run before any unsubscribe link discovery.

    Example:
        >>> guard = SystemSenderGuard()
        >>> guard.is_protected(message)
        True
    """

    def __init__(self, rules: TriageRules = DEFAULT_RULES):
        self.rules = rules

    def check(self, message: Message) -> SafetyResult:
        """
        Check a message against the system domain and keyword lists.

        Checks (in order):
        1. Sender domain contains a system domain
        2. Subject contains a transactional keyword

        Returns:
            SafetyResult; is_safe is False when the message is protected
        """
        domain = extract_domain(message.sender)
        if "@" in (message.sender or ""):
            protected_domain = matching_system_domain(domain, self.rules)
            if protected_domain:
                return SafetyResult(
                    is_safe=False,
                    check=SafetyCheck.PROTECTED_DOMAIN,
                    reason=f"Sender domain {domain} is a system sender ({protected_domain})",
                    matched=protected_domain,
                )

        keyword = matching_system_keyword(message.subject, self.rules)
        if keyword:
            return SafetyResult(
                is_safe=False,
                check=SafetyCheck.PROTECTED_KEYWORD,
                reason=f"Subject contains transactional keyword: '{keyword}'",
                matched=keyword,
            )

        return SafetyResult(
            is_safe=True,
            check=SafetyCheck.SAFE,
            reason="No safety concerns detected",
        )

    def is_protected(self, message: Message) -> bool:
        result = self.check(message)
        if not result.is_safe:
            logger.info(f"Skipping unsubscribe for system email {message.id}: {result.reason}")
        return not result.is_safe
