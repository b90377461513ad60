from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chorequest.database.models.character import Character
from chorequest.database.models.enums import RecurrencePattern
from chorequest.database.models.streak import StreakRecord
from chorequest.exceptions import NotFoundError
from chorequest.game_rules import EngineConfig, StreakSettings
from chorequest.services.logger import get_logger
from chorequest.utils.timezone_utils import (
    TimezoneLike,
    as_naive_utc,
    days_between,
    get_zone,
    utc_now_naive,
)

logger = get_logger(__name__)

DAILY_TOLERANCE_DAYS = 2
WEEKLY_WINDOW_DAYS = 8


def calculate_streak_bonus(current_streak: int, settings: StreakSettings = StreakSettings()) -> Decimal:
    """
    Bonus fraction for a streak length: +increment per full threshold, capped.

    Example:
        >>> calculate_streak_bonus(10)
        Decimal('0.02')
        >>> calculate_streak_bonus(100)
        Decimal('0.05')
    """
    thresholds_crossed = max(current_streak, 0) // settings.threshold
    return min(thresholds_crossed * settings.increment, settings.max_bonus)


@dataclass(frozen=True)
class StreakOutcome:
    """Result of folding one completion into a streak."""

    streak: StreakRecord
    bonus: Decimal
    continued: bool


class StreakService:
    """
    Streak tracking per (character, recurring template).

    Records are created lazily on first completion with a unique-constraint
    upsert, so concurrent first completions converge on a single row.
    Streak constants come from the injected EngineConfig.

    Usage:
        >>> streaks = StreakService(EngineConfig.default())
        >>> outcome = await streaks.record_completion(
        ...     session, character.id, quest.template_id,
        ...     quest.recurrence_pattern, completed_at, "America/Chicago"
        ... )
        >>> outcome.bonus
        Decimal('0.01')
    """

    def __init__(self, config: EngineConfig):
        self.config = config

    def streak_bonus(self, current_streak: int) -> Decimal:
        return calculate_streak_bonus(current_streak, self.config.streak)

    @staticmethod
    def validate_consecutive(
        last_completed_at: Optional[datetime],
        recurrence_pattern: Any,
        now: datetime,
        timezone: TimezoneLike
    ) -> bool:
        """
        Decide whether a completion at `now` continues the streak.

        Day differences are whole calendar days in the family's timezone.
        DAILY tolerates up to 2 days (same-day repeats and a one-day gap);
        WEEKLY accepts anything under 8 days. CUSTOM and NONE cannot be checked
        without more context and always pass, as does a first completion.

        Raises:
            InvalidTimezoneError: If the timezone is unknown

        Example:
            >>> StreakService.validate_consecutive(None, "DAILY", now, "UTC")
            True
        """
        zone = get_zone(timezone)
        if last_completed_at is None:
            return True

        pattern = RecurrencePattern(getattr(recurrence_pattern, "value", recurrence_pattern))
        if pattern not in (RecurrencePattern.DAILY, RecurrencePattern.WEEKLY):
            return True

        gap = days_between(last_completed_at, now, zone)
        if pattern == RecurrencePattern.DAILY:
            return gap <= DAILY_TOLERANCE_DAYS
        return gap < WEEKLY_WINDOW_DAYS

    @staticmethod
    async def _select_streak(
        session: AsyncSession,
        character_id: str,
        template_id: str,
        for_update: bool = False
    ) -> Optional[StreakRecord]:
        query = select(StreakRecord).where(
            StreakRecord.character_id == character_id,
            StreakRecord.template_id == template_id
        ).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create_streak(
        session: AsyncSession,
        character_id: str,
        template_id: str
    ) -> StreakRecord:
        """
        Fetch the streak row, creating a zeroed one if absent.

        Uses INSERT ... ON CONFLICT DO NOTHING on (character_id, template_id)
        and re-reads the row locked, so two concurrent creators end up sharing
        the same record.

        Args:
            session: Database session (transaction managed by caller)
            character_id: Character ID
            template_id: Recurring template ID

        Returns:
            The (possibly new) StreakRecord, locked for update where supported
        """
        now = utc_now_naive()
        values = {
            "id": str(uuid4()),
            "character_id": character_id,
            "template_id": template_id,
            "current_streak": 0,
            "longest_streak": 0,
            "created_at": now,
            "updated_at": now,
        }
        conflict_columns = ["character_id", "template_id"]
        dialect = session.get_bind().dialect.name

        if dialect == "postgresql":
            statement = pg_insert(StreakRecord).values(**values).on_conflict_do_nothing(
                index_elements=conflict_columns
            )
            await session.execute(statement)
        elif dialect == "sqlite":
            statement = sqlite_insert(StreakRecord).values(**values).on_conflict_do_nothing(
                index_elements=conflict_columns
            )
            await session.execute(statement)
        elif await StreakService._select_streak(session, character_id, template_id) is None:
            try:
                async with session.begin_nested():
                    session.add(StreakRecord(**values))
            except IntegrityError:
                logger.debug(f"Streak for {character_id}/{template_id} created concurrently")

        streak = await StreakService._select_streak(
            session, character_id, template_id, for_update=True
        )
        if streak is None:
            raise NotFoundError("streak", f"{character_id}/{template_id}")
        return streak

    @staticmethod
    async def get_streak(
        session: AsyncSession,
        character_id: str,
        template_id: str
    ) -> StreakRecord:
        """
        Raises:
            NotFoundError: If the character never completed the template
        """
        streak = await StreakService._select_streak(session, character_id, template_id)
        if streak is None:
            raise NotFoundError("streak", f"{character_id}/{template_id}")
        return streak

    @staticmethod
    async def increment_streak(
        session: AsyncSession,
        character_id: str,
        template_id: str,
        completed_at: datetime
    ) -> StreakRecord:
        streak = await StreakService.get_or_create_streak(session, character_id, template_id)
        streak.current_streak += 1
        streak.longest_streak = max(streak.longest_streak, streak.current_streak)
        streak.last_completed_at = as_naive_utc(completed_at)
        streak.updated_at = utc_now_naive()
        await session.flush()

        logger.info(
            f"Streak incremented: character={character_id} template={template_id} "
            f"current={streak.current_streak} longest={streak.longest_streak}"
        )
        return streak

    @staticmethod
    async def reset_streak(
        session: AsyncSession,
        character_id: str,
        template_id: str
    ) -> StreakRecord:
        """Zero the current streak. longest_streak and last_completed_at are kept."""
        streak = await StreakService.get_or_create_streak(session, character_id, template_id)
        previous = streak.current_streak
        streak.current_streak = 0
        streak.updated_at = utc_now_naive()
        await session.flush()

        if previous:
            logger.info(
                f"Streak reset: character={character_id} template={template_id} "
                f"was={previous} longest={streak.longest_streak}"
            )
        return streak

    async def record_completion(
        self,
        session: AsyncSession,
        character_id: str,
        template_id: str,
        recurrence_pattern: Any,
        completed_at: datetime,
        timezone: TimezoneLike
    ) -> StreakOutcome:
        """
        Fold an approved completion into the streak.

        A consecutive completion increments the streak and earns the bonus for
        the new length. A broken one resets the streak to 0 and earns nothing.
        """
        streak = await self.get_or_create_streak(session, character_id, template_id)

        if self.validate_consecutive(streak.last_completed_at, recurrence_pattern, completed_at, timezone):
            streak = await self.increment_streak(session, character_id, template_id, completed_at)
            return StreakOutcome(streak=streak, bonus=self.streak_bonus(streak.current_streak), continued=True)

        streak = await self.reset_streak(session, character_id, template_id)
        return StreakOutcome(streak=streak, bonus=Decimal("0"), continued=False)

    @staticmethod
    async def get_character_streaks(session: AsyncSession, character_id: str) -> List[StreakRecord]:
        """All streaks of a character, longest current streak first."""
        result = await session.execute(
            select(StreakRecord)
            .where(StreakRecord.character_id == character_id)
            .order_by(StreakRecord.current_streak.desc(), StreakRecord.longest_streak.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_streak_leaderboard(
        session: AsyncSession,
        family_id: str,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Family streak leaderboard.

        Returns:
            List of dicts with character_id, character_name, template_id,
            current_streak and longest_streak, highest current streak first
        """
        result = await session.execute(
            select(StreakRecord, Character.name)
            .join(Character, Character.id == StreakRecord.character_id)
            .where(Character.family_id == family_id)
            .order_by(
                StreakRecord.current_streak.desc(),
                StreakRecord.longest_streak.desc(),
                Character.name.asc()
            )
            .limit(limit)
        )
        return [
            {
                "character_id": streak.character_id,
                "character_name": name,
                "template_id": streak.template_id,
                "current_streak": streak.current_streak,
                "longest_streak": streak.longest_streak,
            }
            for streak, name in result.all()
        ]
