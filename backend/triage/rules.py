"""
Fixed keyword and domain lists used by the triage engine.

All lists live in one immutable TriageRules instance that is injected into the
decoder and the system-sender guard. Tests build their own instance with
``dataclasses.replace`` instead of patching module globals.
"""

import re
from dataclasses import dataclass, field
from typing import Pattern, Tuple


# ============================================================================
# CONSTANTS - Protected Senders, Keywords and Newsletter Platforms
# ============================================================================

SYSTEM_DOMAINS: Tuple[str, ...] = (
    # Identity and cloud providers
    "google.com",
    "gmail.com",
    "apple.com",
    "microsoft.com",
    "github.com",
    "openai.com",
    "supabase.io",
    "vercel.com",
    "notion.so",

    # Payments and banking
    "paypal.com",
    "stripe.com",
    "bankofamerica.com",
    "chase.com",
    "wellsfargo.com",

    # Commerce
    "amazon.com",

    # Social networks
    "linkedin.com",
    "facebook.com",
    "x.com",
    "twitter.com",
    "instagram.com",
)

SYSTEM_KEYWORDS: Tuple[str, ...] = (
    "security alert",
    "password",
    "verification code",
    "two-factor",
    "receipt",
    "invoice",
    "payment",
    "order confirmation",
    "purchase",
    "login",
    "notification",
    "access granted",
)

NEWSLETTER_PLATFORMS: Tuple[str, ...] = (
    "substack",
    "beehiiv",
    "convertkit",
    "ck.page",
    "mailchimp",
    "buttondown",
    "ghost.io",
    "revue",
    "tinyletter.com",
    "kajabi",
    "campaignmonitor.com",
    "activecampaign.com",
    "constantcontact.com",
)

NEWSLETTER_SUBJECT_KEYWORDS: Tuple[str, ...] = (
    "newsletter",
    "digest",
)

UNSUBSCRIBE_INTENT_PATTERN = r"(unsubscribe|opt.?out|remove|manage.?pref|notification|v=off|optin=0)"
REDIRECTOR_PATTERN = r"(link\.|click\.|email\.|u\.|campaign\.)"
EXPIRED_PAGE_PATTERN = r"(expired|invalid|oops)"


@dataclass(frozen=True)
class TriageRules:
    """
    Immutable rule set shared by the decoder, guard and resolver.

    Attributes:
        system_domains: Sender domains that are never auto-unsubscribed
        system_keywords: Transactional subject phrases that protect a message
        newsletter_platforms: Platform names flagging a newsletter
        newsletter_subject_keywords: Subject words flagging a newsletter
        unsubscribe_intent: Regex for links that look like unsubscribe links
        redirector: Regex for click-tracking redirector hosts
        expired_page: Regex for landing pages of dead unsubscribe links
    """
    system_domains: Tuple[str, ...] = SYSTEM_DOMAINS
    system_keywords: Tuple[str, ...] = SYSTEM_KEYWORDS
    newsletter_platforms: Tuple[str, ...] = NEWSLETTER_PLATFORMS
    newsletter_subject_keywords: Tuple[str, ...] = NEWSLETTER_SUBJECT_KEYWORDS
    unsubscribe_intent: str = UNSUBSCRIBE_INTENT_PATTERN
    redirector: str = REDIRECTOR_PATTERN
    expired_page: str = EXPIRED_PAGE_PATTERN

    _intent_re: Pattern = field(init=False, repr=False, compare=False)
    _redirector_re: Pattern = field(init=False, repr=False, compare=False)
    _expired_re: Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Compile patterns once; frozen dataclasses need object.__setattr__
        object.__setattr__(self, "_intent_re", re.compile(self.unsubscribe_intent, re.IGNORECASE))
        object.__setattr__(self, "_redirector_re", re.compile(self.redirector, re.IGNORECASE))
        object.__setattr__(self, "_expired_re", re.compile(self.expired_page, re.IGNORECASE))

    def has_unsubscribe_intent(self, text: str) -> bool:
        return bool(text) and self._intent_re.search(text) is not None

    def is_redirector(self, text: str) -> bool:
        return bool(text) and self._redirector_re.search(text) is not None

    def looks_expired(self, text: str) -> bool:
        return bool(text) and self._expired_re.search(text) is not None


DEFAULT_RULES = TriageRules()
