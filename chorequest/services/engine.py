from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from chorequest.database.models.quest_instance import QuestInstance
from chorequest.database.models.streak import StreakRecord
from chorequest.game_rules import EngineConfig
from chorequest.services.authorization import Actor
from chorequest.services.boss_battle_service import (
    BossBattleService,
    BossDistributionResult,
    ParticipantDecision,
    ParticipantStanding,
)
from chorequest.services.config_manager import ConfigManager
from chorequest.services.database_service import DatabaseService
from chorequest.services.event_bus import EventBus
from chorequest.services.logger import get_logger
from chorequest.services.quest_service import ApprovalResult, ExpirationResult, QuestService
from chorequest.services.streak_service import StreakService

logger = get_logger(__name__)


class ChoreQuestEngine:
    """
    In-process entry point for request handlers.

    Each public method is one unit of work: it opens a
    DatabaseService.get_transaction() block, loads the family's EngineConfig
    through the ConfigManager, runs the service operation and commits. Events
    are published on the EventBus only after the commit succeeds.

    Errors propagate as ChoreQuestException subclasses; the engine never
    retries. ApprovalConflictError is the one error a caller may retry as-is.

    Usage:
        >>> await DatabaseService.initialize()
        >>> engine = ChoreQuestEngine()
        >>> result = await engine.approve_quest(quest_id, actor)
        >>> result.level_up.leveled_up
        True
    """

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self.config_manager = config_manager or ConfigManager()

    async def engine_config(self, session: AsyncSession, family_id: Optional[str]) -> EngineConfig:
        return await self.config_manager.engine_config(session, family_id)

    async def _quest_service(self, session: AsyncSession, family_id: Optional[str]) -> QuestService:
        return QuestService(await self.engine_config(session, family_id))

    async def _boss_service(self, session: AsyncSession, family_id: Optional[str]) -> BossBattleService:
        return BossBattleService(await self.engine_config(session, family_id))

    async def approve_quest(
        self,
        quest_id: str,
        actor: Actor,
        now: Optional[datetime] = None
    ) -> ApprovalResult:
        """
        Approve a completed quest and pay its performer, atomically.

        Raises:
            UnauthorizedError, AlreadyApprovedError, InvalidStateTransitionError,
            ApprovalConflictError, NotFoundError
        """
        async with DatabaseService.get_transaction() as session:
            quests = await self._quest_service(session, actor.family_id)
            result = await quests.approve_quest(session, quest_id, actor, now)

        await EventBus.publish("quest_approved", result.to_dict())
        if result.level_up.leveled_up:
            await EventBus.publish("character_leveled_up", {
                "character_id": result.character_id,
                "user_id": result.user_id,
                "previous_level": result.level_up.previous_level,
                "new_level": result.level_up.new_level,
                "quest_id": quest_id,
            })
        return result

    async def start_quest(self, quest_id: str, actor: Actor, now: Optional[datetime] = None) -> QuestInstance:
        async with DatabaseService.get_transaction() as session:
            quests = await self._quest_service(session, actor.family_id)
            return await quests.start_quest(session, quest_id, actor, now)

    async def complete_quest(self, quest_id: str, actor: Actor, now: Optional[datetime] = None) -> QuestInstance:
        async with DatabaseService.get_transaction() as session:
            quests = await self._quest_service(session, actor.family_id)
            return await quests.complete_quest(session, quest_id, actor, now)

    async def deny_quest(self, quest_id: str, actor: Actor, now: Optional[datetime] = None) -> QuestInstance:
        async with DatabaseService.get_transaction() as session:
            quests = await self._quest_service(session, actor.family_id)
            return await quests.deny_quest(session, quest_id, actor, now)

    async def claim_quest(self, quest_id: str, actor: Actor, now: Optional[datetime] = None) -> QuestInstance:
        async with DatabaseService.get_transaction() as session:
            quests = await self._quest_service(session, actor.family_id)
            return await quests.claim_quest(session, quest_id, actor, now)

    async def assign_quest(
        self,
        quest_id: str,
        actor: Actor,
        assignee_user_id: str,
        now: Optional[datetime] = None
    ) -> QuestInstance:
        async with DatabaseService.get_transaction() as session:
            quests = await self._quest_service(session, actor.family_id)
            return await quests.assign_quest(session, quest_id, actor, assignee_user_id, now)

    async def release_quest(self, quest_id: str, actor: Actor, now: Optional[datetime] = None) -> QuestInstance:
        async with DatabaseService.get_transaction() as session:
            quests = await self._quest_service(session, actor.family_id)
            return await quests.release_quest(session, quest_id, actor, now)

    async def expire_overdue_quests(
        self,
        now: Optional[datetime] = None,
        family_id: Optional[str] = None
    ) -> ExpirationResult:
        """Run the due-date sweep, for one family or all of them."""
        async with DatabaseService.get_transaction() as session:
            quests = await self._quest_service(session, family_id)
            result = await quests.expire_overdue_quests(session, now, family_id)

        if result.total:
            await EventBus.publish("quests_expired", {
                "family_id": family_id,
                "expired": result.expired,
                "missed": result.missed,
                "streaks_reset": result.streaks_reset,
            })
        return result

    async def distribute_boss_rewards(
        self,
        boss_battle_id: str,
        actor: Actor,
        decisions: Optional[Mapping[str, ParticipantDecision]] = None,
        now: Optional[datetime] = None
    ) -> BossDistributionResult:
        async with DatabaseService.get_transaction() as session:
            bosses = await self._boss_service(session, actor.family_id)
            result = await bosses.distribute_rewards(session, boss_battle_id, actor, decisions, now)

        await EventBus.publish("boss_rewards_distributed", result.to_dict())
        return result

    async def get_boss_leaderboard(
        self,
        family_id: str,
        since: datetime,
        until: Optional[datetime] = None,
        limit: Optional[int] = 10
    ) -> List[ParticipantStanding]:
        async with DatabaseService.get_session() as session:
            bosses = await self._boss_service(session, family_id)
            return await bosses.get_top_participants(session, family_id, since, until, limit)

    async def get_streak_leaderboard(self, family_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        async with DatabaseService.get_session() as session:
            return await StreakService.get_streak_leaderboard(session, family_id, limit)

    async def get_character_streaks(self, character_id: str) -> List[StreakRecord]:
        async with DatabaseService.get_session() as session:
            return await StreakService.get_character_streaks(session, character_id)
