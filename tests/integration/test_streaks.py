"""
Integration tests for streak tracking through quest approval.
"""

import asyncio
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from chorequest.database.models import Character, QuestInstance, RecurrencePattern, StreakRecord
from chorequest.exceptions import InvalidTimezoneError, NotFoundError
from chorequest.services.database_service import DatabaseService
from chorequest.services.engine import ChoreQuestEngine
from chorequest.services.streak_service import StreakService
from tests.helpers import guardian_of, reload

TEMPLATE = "tmpl-dishes"


async def approve_daily(seed, engine, family, character, completed_at: datetime):
    quest = await seed.quest(
        family,
        character,
        xp_reward=100,
        gold_reward=0,
        template_id=TEMPLATE,
        recurrence_pattern=RecurrencePattern.DAILY,
        completed_at=completed_at,
    )
    result = await engine.approve_quest(quest.id, guardian_of(family), now=completed_at + timedelta(hours=1))
    return quest, result


@pytest.mark.asyncio
class TestStreakRecord:
    """Test the streak row itself."""

    async def test_increment_then_reset(self, db, seed):
        """N increments then a reset leaves current 0 and longest N."""
        family = await seed.family()
        ada = await seed.character(family)
        day = datetime(2025, 1, 1, 18, 0)

        async with DatabaseService.get_transaction() as session:
            for offset in range(4):
                streak = await StreakService.increment_streak(session, ada.id, TEMPLATE, day + timedelta(days=offset))
            assert streak.current_streak == 4

        async with DatabaseService.get_transaction() as session:
            streak = await StreakService.reset_streak(session, ada.id, TEMPLATE)

        assert streak.current_streak == 0
        assert streak.longest_streak == 4
        assert streak.last_completed_at == datetime(2025, 1, 4, 18, 0)

    async def test_get_or_create_returns_same_row(self, db, seed):
        """Repeated get-or-create never duplicates."""
        family = await seed.family()
        ada = await seed.character(family)

        async with DatabaseService.get_transaction() as session:
            first = await StreakService.get_or_create_streak(session, ada.id, TEMPLATE)
        async with DatabaseService.get_transaction() as session:
            second = await StreakService.get_or_create_streak(session, ada.id, TEMPLATE)

        assert first.id == second.id
        assert first.current_streak == 0

    async def test_concurrent_creation_converges(self, db, seed):
        """Two first completions racing end with one streak row."""
        family = await seed.family()
        ada = await seed.character(family)

        async def create():
            async with DatabaseService.get_transaction() as session:
                return (await StreakService.get_or_create_streak(session, ada.id, TEMPLATE)).id

        ids = await asyncio.gather(create(), create())

        assert ids[0] == ids[1]
        async with DatabaseService.get_session() as session:
            assert len(await StreakService.get_character_streaks(session, ada.id)) == 1

    async def test_get_streak_missing(self, db, seed):
        """A never-completed template has no streak."""
        family = await seed.family()
        ada = await seed.character(family)
        async with DatabaseService.get_session() as session:
            with pytest.raises(NotFoundError):
                await StreakService.get_streak(session, ada.id, "never")


@pytest.mark.asyncio
class TestStreaksThroughApproval:
    """Test streak updates and bonuses applied by approve_quest."""

    async def test_fifth_day_earns_bonus(self, seed):
        """Five consecutive days: the fifth approval pays +1%."""
        engine = ChoreQuestEngine()
        family = await seed.family()
        ada = await seed.character(family)
        start = datetime(2025, 1, 1, 18, 0)

        results = []
        for offset in range(5):
            _, result = await approve_daily(seed, engine, family, ada, start + timedelta(days=offset))
            results.append(result)

        assert [r.streak_count for r in results] == [1, 2, 3, 4, 5]
        assert results[3].streak_bonus == Decimal("0")
        assert results[4].streak_bonus == Decimal("0.01")
        assert results[4].rewards.xp == 101
        assert (await reload(Character, ada.id)).xp == 501

    async def test_snapshot_stored_on_quest(self, seed):
        """streak_count and streak_bonus are copied onto the approved quest."""
        engine = ChoreQuestEngine()
        family = await seed.family()
        ada = await seed.character(family)
        start = datetime(2025, 1, 1, 18, 0)

        quest = None
        for offset in range(5):
            quest, _ = await approve_daily(seed, engine, family, ada, start + timedelta(days=offset))

        stored = await reload(QuestInstance, quest.id)
        assert stored.streak_count == 5
        assert stored.streak_bonus == pytest.approx(0.01)

    async def test_gap_resets_and_pays_no_bonus(self, seed):
        """A four-day gap resets the streak; longest is kept."""
        engine = ChoreQuestEngine()
        family = await seed.family()
        ada = await seed.character(family)
        start = datetime(2025, 1, 1, 18, 0)

        for offset in range(5):
            await approve_daily(seed, engine, family, ada, start + timedelta(days=offset))
        _, broken = await approve_daily(seed, engine, family, ada, start + timedelta(days=8))

        assert broken.streak_continued is False
        assert broken.streak_count == 0
        assert broken.streak_bonus == Decimal("0")
        assert broken.rewards.xp == 100

        async with DatabaseService.get_session() as session:
            streak = await StreakService.get_streak(session, ada.id, TEMPLATE)
        assert streak.current_streak == 0
        assert streak.longest_streak == 5

    async def test_family_timezone_decides_the_day(self, seed):
        """Completions three UTC days apart are two Chicago days apart, so the streak holds."""
        engine = ChoreQuestEngine()
        family = await seed.family(timezone="America/Chicago")
        ada = await seed.character(family)

        # 12:00 Chicago on Jan 1, then 23:00 Chicago on Jan 3
        await approve_daily(seed, engine, family, ada, datetime(2025, 1, 1, 18, 0))
        _, result = await approve_daily(seed, engine, family, ada, datetime(2025, 1, 4, 5, 0))

        assert result.streak_continued is True
        assert result.streak_count == 2

    async def test_region_name_timezone_rejected(self, seed):
        """A family zone naming a region fails the approval and rolls it back."""
        engine = ChoreQuestEngine()
        family = await seed.family(timezone="America")
        ada = await seed.character(family)

        with pytest.raises(InvalidTimezoneError):
            await approve_daily(seed, engine, family, ada, datetime(2025, 1, 1, 18, 0))

        assert await engine.get_character_streaks(ada.id) == []
        assert (await reload(Character, ada.id)).xp == 0

    async def test_ad_hoc_quests_do_not_touch_streaks(self, seed):
        """Quests without a template never create a streak."""
        engine = ChoreQuestEngine()
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada)

        result = await engine.approve_quest(quest.id, guardian_of(family))

        assert result.streak_count is None
        assert await engine.get_character_streaks(ada.id) == []

    async def test_streak_leaderboard(self, seed):
        """Leaderboard orders by current streak."""
        engine = ChoreQuestEngine()
        family = await seed.family()
        ada = await seed.character(family, name="Ada")
        bob = await seed.character(family, name="Bob")
        start = datetime(2025, 1, 1, 18, 0)

        for offset in range(3):
            await approve_daily(seed, engine, family, ada, start + timedelta(days=offset))
        await approve_daily(seed, engine, family, bob, start)

        board = await engine.get_streak_leaderboard(family.id)
        assert [(row["character_name"], row["current_streak"]) for row in board] == [("Ada", 3), ("Bob", 1)]

    async def test_streak_rows_per_template(self, seed):
        """Different templates keep separate streaks."""
        family = await seed.family()
        ada = await seed.character(family)
        async with DatabaseService.get_transaction() as session:
            await StreakService.increment_streak(session, ada.id, "tmpl-a", datetime(2025, 1, 1))
            await StreakService.increment_streak(session, ada.id, "tmpl-b", datetime(2025, 1, 1))
            await StreakService.increment_streak(session, ada.id, "tmpl-b", datetime(2025, 1, 2))

        async with DatabaseService.get_session() as session:
            streaks = await StreakService.get_character_streaks(session, ada.id)
        assert [(s.template_id, s.current_streak) for s in streaks] == [("tmpl-b", 2), ("tmpl-a", 1)]
        assert all(isinstance(s, StreakRecord) for s in streaks)
