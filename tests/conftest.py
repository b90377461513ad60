"""
Pytest configuration and shared fixtures for the ChoreQuest test suite.

Unit tests use EngineConfig.default() and plain model instances; nothing
touches a database. Integration tests get a fresh SQLite file per test through
the `db` fixture and seed rows with the `seed` helper.
"""

import os

os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_TO_FILE"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import pytest
import pytest_asyncio

from chorequest.database.models import (
    BossBattle,
    BossBattleParticipant,
    BossBattleStatus,
    Character,
    CharacterClass,
    Family,
    QuestDifficulty,
    QuestInstance,
    QuestStatus,
    QuestType,
    RecurrencePattern,
)
from chorequest.game_rules import EngineConfig
from chorequest.services.database_service import DatabaseService
from chorequest.services.event_bus import EventBus


def pytest_collection_modifyitems(config, items):
    """Mark tests by directory so `-m unit` / `-m integration` work."""
    for item in items:
        path = str(item.fspath)
        if f"{os.sep}unit{os.sep}" in path:
            item.add_marker(pytest.mark.unit)
        elif f"{os.sep}integration{os.sep}" in path:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig.default()


@pytest.fixture(autouse=True)
def clean_event_bus():
    EventBus.clear()
    yield
    EventBus.clear()


@pytest_asyncio.fixture
async def db(tmp_path):
    """
    Initialized DatabaseService on a throwaway SQLite file.

    Scope: function (clean schema per test)
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'chorequest_test.db'}"
    await DatabaseService.initialize(database_url=url, max_retries=1, retry_delay=0)
    await DatabaseService.create_tables()
    yield DatabaseService
    await DatabaseService.shutdown()


class Seeder:
    """Creates committed rows for integration tests."""

    async def _save(self, *rows: Any) -> None:
        async with DatabaseService.get_transaction() as session:
            session.add_all(rows)

    async def family(self, timezone: str = "UTC", name: str = "Testers") -> Family:
        family = Family(name=name, timezone=timezone)
        await self._save(family)
        return family

    async def character(
        self,
        family: Family,
        name: str = "Ada",
        character_class: Optional[CharacterClass] = None,
        level: int = 1,
        xp: int = 0,
        gold: int = 0,
    ) -> Character:
        character = Character(
            user_id=str(uuid4()),
            family_id=family.id,
            name=name,
            character_class=character_class,
            level=level,
            xp=xp,
            gold=gold,
        )
        await self._save(character)
        return character

    async def quest(
        self,
        family: Family,
        assignee: Optional[Character] = None,
        status: QuestStatus = QuestStatus.COMPLETED,
        xp_reward: int = 100,
        gold_reward: int = 50,
        difficulty: QuestDifficulty = QuestDifficulty.EASY,
        quest_type: QuestType = QuestType.INDIVIDUAL,
        recurrence_pattern: RecurrencePattern = RecurrencePattern.NONE,
        template_id: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        due_date: Optional[datetime] = None,
        title: str = "Feed the cat",
    ) -> QuestInstance:
        if completed_at is None and status == QuestStatus.COMPLETED:
            completed_at = datetime(2025, 1, 15, 12, 0)
        quest = QuestInstance(
            family_id=family.id,
            title=title,
            xp_reward=xp_reward,
            gold_reward=gold_reward,
            difficulty=difficulty,
            quest_type=quest_type,
            recurrence_pattern=recurrence_pattern,
            template_id=template_id,
            status=status,
            assigned_to_id=assignee.user_id if assignee else None,
            completed_at=completed_at,
            due_date=due_date,
        )
        await self._save(quest)
        return quest

    async def boss_battle(
        self,
        family: Family,
        reward_xp: int = 100,
        reward_gold: int = 100,
        honor_reward: int = 0,
        status: BossBattleStatus = BossBattleStatus.ACTIVE,
        defeated_at: Optional[datetime] = None,
        rewards_distributed: bool = False,
        participants: tuple = (),
        name: str = "Laundry Hydra",
    ) -> BossBattle:
        """participants: (character, participation_status, awarded_xp, awarded_gold) tuples"""
        battle = BossBattle(
            family_id=family.id,
            name=name,
            reward_xp=reward_xp,
            reward_gold=reward_gold,
            honor_reward=honor_reward,
            status=status,
            defeated_at=defeated_at,
            rewards_distributed=rewards_distributed,
        )
        await self._save(battle)
        rows = [
            BossBattleParticipant(
                boss_battle_id=battle.id,
                user_id=character.user_id,
                participation_status=participation_status,
                awarded_xp=awarded_xp,
                awarded_gold=awarded_gold,
            )
            for character, participation_status, awarded_xp, awarded_gold in participants
        ]
        if rows:
            await self._save(*rows)
        return battle


@pytest.fixture
def seed(db) -> Seeder:
    return Seeder()
