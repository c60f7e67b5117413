"""
LLM-backed suggestions for Cleany.

Two call shapes against an OpenAI-compatible chat completion endpoint:
- classify_messages: keep/delete/unsubscribe suggestion per message, returned
  through a forced function call so the output is structured
- summarize_personality: a short inbox "personality" blurb from category
  percentages

The endpoint is treated as unreliable. Every failure is logged and turned into
an empty result so deterministic features keep working without it.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from config import settings

logger = logging.getLogger(__name__)

VALID_ACTIONS = ("keep", "delete", "unsubscribe")

CLASSIFY_TOOL = {
    "type": "function",
    "function": {
        "name": "classify_emails",
        "description": "Return classification suggestions for emails",
        "parameters": {
            "type": "object",
            "properties": {
                "classifications": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "index": {"type": "number", "description": "Email index (0-based)"},
                            "action": {"type": "string", "enum": list(VALID_ACTIONS)},
                            "reason": {"type": "string", "description": "Brief reason for suggestion"},
                        },
                        "required": ["index", "action", "reason"],
                        "additionalProperties": False,
                    },
                },
            },
            "required": ["classifications"],
            "additionalProperties": False,
        },
    },
}


def format_percentages(percentages: Dict[str, float]) -> str:
    """
    Format category percentages for the summary prompt.

    Zero categories are dropped and the rest sorted highest first.

    Example:
        >>> format_percentages({"newsletters": 40, "social": 0, "work": 60})
        'Work: 60%\\nNewsletters: 40%'
    """
    rows = [(name, value) for name, value in percentages.items() if value and value > 0]
    rows.sort(key=lambda row: row[1], reverse=True)
    return "\n".join(f"{name[:1].upper()}{name[1:]}: {value:g}%" for name, value in rows)


class LLMClassifier:
    """
    Suggestion and summary client for the completion endpoint.

    The client is optional: without OPENAI_API_KEY every call returns an
    empty result and is_available() reports False.
    """

    CLASSIFY_SYSTEM_PROMPT = '''You are an expert email classifier. Analyze emails and suggest one of three actions: "keep", "delete", or "unsubscribe".

Classification rules:
- KEEP: Personal emails, important work emails, transactional emails (receipts, confirmations), time-sensitive information
- DELETE: Spam, low-value notifications, old promotional emails, irrelevant content
- UNSUBSCRIBE: Marketing emails, newsletters you don't read, promotional emails from retailers, social media notifications

Consider:
- Sender authenticity and importance
- Subject relevance and urgency
- Content value and personalization
- Promotional language and spam indicators'''

    SUMMARY_SYSTEM_PROMPT = (
        "You are Cleany, a calm and confident inbox personality guide. Speak like a founder to "
        "another founder: be emotionally intelligent, motivational without cliches, and focus on "
        "clarity and direction. Absolutely NO jokes, humor, wordplay, or witty remarks. Be direct, "
        "professional, and insightful. Keep responses under 3 sentences."
    )

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.model = model or settings.LLM_MODEL
        self.client = client

        if self.client is None:
            if settings.OPENAI_API_KEY:
                self.client = AsyncOpenAI(
                    api_key=settings.OPENAI_API_KEY,
                    base_url=settings.OPENAI_BASE_URL,
                    timeout=settings.LLM_REQUEST_TIMEOUT,
                )
            else:
                logger.warning("OPENAI_API_KEY not configured. LLM classification disabled.")

    def is_available(self) -> bool:
        """Check if LLM classification is available."""
        return self.client is not None

    def _build_classify_prompt(self, messages: List[Dict[str, Any]]) -> str:
        blocks = [
            f"Email {idx + 1}:\nFrom: {m.get('sender', '')}\nSubject: {m.get('subject', '')}\n"
            f"Snippet: {m.get('snippet', '')}"
            for idx, m in enumerate(messages)
        ]
        return "Classify these emails:\n\n" + "\n\n".join(blocks)

    async def classify_messages(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Suggest keep/delete/unsubscribe for each message.

        Args:
            messages: Dicts with sender, subject and snippet

        Returns:
            List of {index, action, reason}; entries with an out-of-range
            index or unknown action are dropped. Empty on any failure.
        """
        if not messages:
            return []
        if not self.is_available():
            logger.debug("LLM not available, skipping classification")
            return []

        logger.info(f"Classifying {len(messages)} emails")
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.CLASSIFY_SYSTEM_PROMPT},
                    {"role": "user", "content": self._build_classify_prompt(messages)},
                ],
                tools=[CLASSIFY_TOOL],
                tool_choice={"type": "function", "function": {"name": "classify_emails"}},
            )
        except openai.RateLimitError as e:
            logger.warning(f"LLM rate limit exceeded, no classifications returned: {e}")
            return []
        except openai.APIError as e:
            logger.error(f"LLM classification failed: {e}")
            return []

        tool_calls = response.choices[0].message.tool_calls if response.choices else None
        if not tool_calls:
            logger.error("No tool call in LLM response")
            return []

        try:
            raw = json.loads(tool_calls[0].function.arguments).get("classifications") or []
        except (ValueError, AttributeError) as e:
            logger.error(f"Could not parse LLM classifications: {e}")
            return []

        classifications = []
        for item in raw:
            try:
                index = int(item.get("index"))
            except (TypeError, ValueError):
                continue
            action = str(item.get("action", "")).lower()
            if not 0 <= index < len(messages) or action not in VALID_ACTIONS:
                continue
            classifications.append({"index": index, "action": action, "reason": item.get("reason", "")})

        logger.info(f"LLM returned {len(classifications)} classifications")
        return classifications

    async def summarize_personality(self, percentages: Dict[str, float]) -> Optional[str]:
        """
        Two-sentence summary of an inbox category profile.

        Returns:
            Summary text, or None when unavailable or on failure
        """
        formatted = format_percentages(percentages)
        if not formatted or not self.is_available():
            return None

        user_prompt = (
            f"Given this inbox personality profile:\n{formatted}\n\n"
            "Write a direct, professional 2-sentence summary of what this reveals about the user's "
            "email habits and priorities. Be factual and insightful. NO jokes, NO humor, NO wordplay."
        )

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.3,
                max_tokens=150,
            )
        except openai.APIError as e:
            logger.error(f"Personality summary failed: {e}")
            return None

        content = response.choices[0].message.content if response.choices else None
        summary = (content or "").strip()
        if not summary:
            logger.error("No summary generated")
            return None
        return summary
