"""
Unsubscribe link validation.

Two checks run on a candidate URL before it is offered to the user:
- Redirect confirmation: a HEAD request that follows redirects, adopting the
  final URL when it looks like an unsubscribe page
- Expiry check: tokenized links are rejected outright, other links are fetched
  and rejected when the page says the link is expired or invalid

Network problems never escape this module. They downgrade to "cannot confirm,
keep the original link".
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from config import settings
from triage.rules import DEFAULT_RULES, TriageRules

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


@dataclass
class ValidationResult:
    """
    Outcome of validating one unsubscribe URL.

    Attributes:
        ok: False only when the link was positively identified as unusable
        final_url: URL to use (the redirect target when one was confirmed)
        reason: Short explanation for logs and API responses
    """
    ok: bool
    final_url: Optional[str]
    reason: str = ""


def is_tokenized(url: str) -> bool:
    """Links carrying a token= parameter are treated as single-use."""
    return "token=" in (url or "").lower()


class LinkValidator:
    """
    Validates candidate unsubscribe URLs with bounded-timeout HTTP requests.

    Example:
        >>> async with LinkValidator() as validator:
        ...     result = await validator.validate("https://click.example.com/abc")
        >>> result.final_url
        'https://example.com/unsubscribe?id=1'
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        rules: TriageRules = DEFAULT_RULES,
    ):
        self.rules = rules
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=5,
            timeout=timeout or settings.LINK_VALIDATION_TIMEOUT,
            headers={"User-Agent": USER_AGENT},
        )

    async def __aenter__(self) -> "LinkValidator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def confirm_redirect(self, url: str) -> Optional[str]:
        """
        Follow redirects with a HEAD request.

        Returns:
            The final URL if it matches the unsubscribe-intent pattern,
            otherwise None (including on any network error)
        """
        try:
            response = await self._http.head(url, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Redirect check failed for {url}: {e}")
            return None

        final_url = str(response.url)
        if self.rules.has_unsubscribe_intent(final_url):
            logger.info(f"Confirmed final unsubscribe URL: {final_url}")
            return final_url
        return None

    async def check_expiry(self, url: str) -> ValidationResult:
        """
        Reject tokenized links and links whose page reports expiry.

        Fetch errors keep the link: an unreachable page is not proof that the
        link is dead.
        """
        if is_tokenized(url):
            logger.warning(f"Tokenized unsubscribe link likely expired, skipping: {url}")
            return ValidationResult(ok=False, final_url=None, reason="tokenized link")

        try:
            response = await self._http.get(url, follow_redirects=True)
            text = response.text
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Fetch error while validating {url}: {e}")
            return ValidationResult(ok=True, final_url=url, reason="could not confirm")

        if self.rules.looks_expired(text):
            logger.warning(f"Link appears expired: {url}")
            return ValidationResult(ok=False, final_url=None, reason="expired or invalid page")

        return ValidationResult(ok=True, final_url=url, reason="page looks valid")

    async def validate(self, url: str) -> ValidationResult:
        """
        Run redirect confirmation then the expiry check.

        Args:
            url: Candidate http(s) URL

        Returns:
            ValidationResult; never raises
        """
        final_url = url
        if not self.rules.has_unsubscribe_intent(url):
            redirected = await self.confirm_redirect(url)
            if redirected:
                final_url = redirected

        return await self.check_expiry(final_url)
