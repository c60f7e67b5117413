"""
Preference learner that turns user actions into per-domain suggestions.

Every keep/delete/unsubscribe the user performs is fed to learn(), which
updates a confidence-weighted preference for the sender's domain and bumps
the counters of the current week. apply_preferences() reads those
preferences back to suggest actions for new messages.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from config import settings
from models import EmailActionLog, UserPreference, WeeklySummary
from triage.decoder import extract_domain

logger = logging.getLogger(__name__)

VALID_ACTIONS = ("keep", "delete", "unsubscribe")
NO_PREFERENCE_REASON = "No learned preference for this sender"


class PreferenceConflictError(Exception):
    """Raised when concurrent writers keep invalidating a learn batch."""


@dataclass
class LearnedAction:
    """One user action fed to the learner."""
    sender: str
    action: str
    subject: Optional[str] = None


def week_start_for(day: date) -> date:
    """
    Sunday on or before the given day.

    Example:
        >>> week_start_for(date(2024, 5, 15))  # a Wednesday
        datetime.date(2024, 5, 12)
    """
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _current_week_start() -> date:
    return week_start_for(datetime.utcnow().date())


class PreferenceLearner:
    """
    Learns sender-domain preferences from user actions.

    Mutation rule per domain:
    - First observation: confidence 0.6, count 1
    - Same action again: count + 1, confidence + 0.1 (capped at 1.0)
    - Different action: the stored action stays, confidence - 0.15
      (floored at 0.3), count + 1

    Writes are guarded by the preference row's version column. When another
    session updated a row in between, the whole batch is rolled back and
    replayed against fresh rows.
    """

    INITIAL_CONFIDENCE = 0.6
    CONFIDENCE_STEP_UP = 0.1
    CONFIDENCE_STEP_DOWN = 0.15
    MIN_CONFIDENCE = 0.3
    MAX_CONFIDENCE = 1.0

    def __init__(self, max_retries: Optional[int] = None):
        self.max_retries = max_retries or settings.PREFERENCE_WRITE_RETRIES

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def learn(self, db: AsyncSession, user_id: str, actions: Iterable[LearnedAction]) -> int:
        """
        Record a batch of user actions.

        Args:
            db: Async database session
            user_id: Owner of the preferences
            actions: Actions to learn from

        Returns:
            Number of actions learned (invalid ones are skipped)

        Raises:
            PreferenceConflictError: If every retry hit a concurrent update
        """
        valid = []
        for item in actions:
            if item.action not in VALID_ACTIONS:
                logger.warning(f"Ignoring unknown action '{item.action}' for {item.sender}")
                continue
            if not extract_domain(item.sender):
                logger.warning(f"Ignoring action without sender domain: {item.sender!r}")
                continue
            valid.append(item)

        if not valid:
            return 0

        for attempt in range(1, self.max_retries + 1):
            try:
                for item in valid:
                    await self._update_preference(db, user_id, item)
                    db.add(EmailActionLog(
                        user_id=user_id,
                        email_sender=item.sender,
                        email_subject=item.subject,
                        action=item.action,
                    ))
                await self._update_weekly_summary(db, user_id, valid)
                await db.commit()
                logger.info(f"Learned {len(valid)} actions for user {user_id}")
                return len(valid)
            except (StaleDataError, IntegrityError) as e:
                await db.rollback()
                logger.warning(
                    f"Concurrent preference update for user {user_id} "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )

        raise PreferenceConflictError(
            f"Could not save preferences for user {user_id} after {self.max_retries} attempts"
        )

    async def _update_preference(self, db: AsyncSession, user_id: str, item: LearnedAction) -> None:
        domain = extract_domain(item.sender)

        stmt = (
            select(UserPreference)
            .where(UserPreference.user_id == user_id, UserPreference.sender_pattern == domain)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        existing = result.scalar_one_or_none()

        if existing is None:
            db.add(UserPreference(
                user_id=user_id,
                sender_pattern=domain,
                preferred_action=item.action,
                confidence_score=self.INITIAL_CONFIDENCE,
                action_count=1,
                last_updated=datetime.utcnow(),
            ))
            await db.flush()
            logger.info(f"New preference: {domain} -> {item.action}")
            return

        if existing.preferred_action == item.action:
            confidence = min(self.MAX_CONFIDENCE, existing.confidence_score + self.CONFIDENCE_STEP_UP)
        else:
            confidence = max(self.MIN_CONFIDENCE, existing.confidence_score - self.CONFIDENCE_STEP_DOWN)

        existing.confidence_score = round(confidence, 4)
        existing.action_count += 1
        existing.last_updated = datetime.utcnow()
        # Flush now so a stale version fails inside the retry loop
        await db.flush()

        logger.info(
            f"Updated preference: {domain} -> {existing.preferred_action} "
            f"(confidence {existing.confidence_score}, count {existing.action_count})"
        )

    async def _get_or_create_week(self, db: AsyncSession, user_id: str) -> WeeklySummary:
        week_start = _current_week_start()
        stmt = select(WeeklySummary).where(
            WeeklySummary.user_id == user_id,
            WeeklySummary.week_start == week_start,
        )
        result = await db.execute(stmt)
        summary = result.scalar_one_or_none()
        if summary is None:
            summary = WeeklySummary(
                user_id=user_id,
                week_start=week_start,
                emails_processed=0,
                emails_kept=0,
                emails_deleted=0,
                emails_unsubscribed=0,
                auto_actions_applied=0,
            )
            db.add(summary)
        return summary

    async def _update_weekly_summary(self, db: AsyncSession, user_id: str, actions: List[LearnedAction]) -> None:
        summary = await self._get_or_create_week(db, user_id)
        summary.emails_processed += len(actions)
        summary.emails_kept += sum(1 for a in actions if a.action == "keep")
        summary.emails_deleted += sum(1 for a in actions if a.action == "delete")
        summary.emails_unsubscribed += sum(1 for a in actions if a.action == "unsubscribe")

    async def record_auto_actions(self, db: AsyncSession, user_id: str, count: int) -> None:
        """Add suggestions the user accepted automatically to this week's counters."""
        if count <= 0:
            return
        summary = await self._get_or_create_week(db, user_id)
        summary.auto_actions_applied += count
        await db.commit()

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def apply_preferences(
        self,
        db: AsyncSession,
        user_id: str,
        messages: List[Dict[str, Any]],
        min_confidence: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """
        Suggest an action for each message from stored preferences.

        Args:
            db: Async database session
            user_id: Owner of the preferences
            messages: Dicts with at least 'id' and 'sender'
            min_confidence: Lowest confidence that still produces a
                            suggestion (default: PREFERENCE_MIN_CONFIDENCE)

        Returns:
            One dict per message: id, suggested_action, confidence, reason.
            Messages without a qualifying preference get suggested_action None.
        """
        threshold = settings.PREFERENCE_MIN_CONFIDENCE if min_confidence is None else min_confidence

        stmt = select(UserPreference).where(
            UserPreference.user_id == user_id,
            UserPreference.confidence_score >= threshold,
        )
        result = await db.execute(stmt)
        by_domain = {p.sender_pattern: p for p in result.scalars().all()}

        suggestions = []
        for message in messages:
            domain = extract_domain(message.get("sender", ""))
            pref = by_domain.get(domain)
            if pref is None:
                suggestions.append({
                    "id": message.get("id"),
                    "suggested_action": None,
                    "confidence": 0.0,
                    "reason": NO_PREFERENCE_REASON,
                })
                continue

            pct = round(pref.confidence_score * 100)
            suggestions.append({
                "id": message.get("id"),
                "suggested_action": pref.preferred_action,
                "confidence": pref.confidence_score,
                "reason": f"Based on your past actions with {domain} ({pct}% confidence)",
            })

        return suggestions

    async def list_preferences(self, db: AsyncSession, user_id: str) -> List[UserPreference]:
        stmt = (
            select(UserPreference)
            .where(UserPreference.user_id == user_id)
            .order_by(UserPreference.confidence_score.desc(), UserPreference.action_count.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def delete_preference(self, db: AsyncSession, user_id: str, preference_id: int) -> bool:
        """Delete one preference owned by the user. Returns False if not found."""
        stmt = select(UserPreference).where(
            UserPreference.id == preference_id,
            UserPreference.user_id == user_id,
        )
        result = await db.execute(stmt)
        pref = result.scalar_one_or_none()
        if pref is None:
            return False

        pattern = pref.sender_pattern
        await db.delete(pref)
        await db.commit()
        logger.info(f"Deleted preference {pattern} for user {user_id}")
        return True

    async def reset_preferences(self, db: AsyncSession, user_id: str) -> int:
        """Delete every preference of the user. Returns the number removed."""
        result = await db.execute(delete(UserPreference).where(UserPreference.user_id == user_id))
        await db.commit()
        logger.info(f"Reset {result.rowcount} preferences for user {user_id}")
        return result.rowcount or 0

    async def get_weekly_summary(
        self,
        db: AsyncSession,
        user_id: str,
        week_start: Optional[date] = None,
    ) -> Optional[WeeklySummary]:
        stmt = select(WeeklySummary).where(
            WeeklySummary.user_id == user_id,
            WeeklySummary.week_start == (week_start or _current_week_start()),
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()
