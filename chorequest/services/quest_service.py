from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from chorequest.database.models.character import Character
from chorequest.database.models.enums import QuestStatus, QuestType, TransactionType
from chorequest.database.models.family import Family
from chorequest.database.models.quest_instance import QuestInstance
from chorequest.exceptions import (
    AlreadyApprovedError,
    ApprovalConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from chorequest.game_rules import EngineConfig
from chorequest.services.authorization import (
    Actor,
    require_guardian,
    require_performer,
    require_same_family,
)
from chorequest.services.logger import get_logger
from chorequest.services.progression_service import LevelUpResult, ProgressionService
from chorequest.services.reward_service import RewardBundle, RewardService
from chorequest.services.streak_service import StreakService
from chorequest.services.transaction_logger import TransactionLogger
from chorequest.utils.timezone_utils import as_naive_utc, to_utc, utc_now

logger = get_logger(__name__)

ACTIVE_STATUSES = (QuestStatus.AVAILABLE, QuestStatus.PENDING, QuestStatus.IN_PROGRESS)


@dataclass
class ApprovalResult:
    """Everything a request handler needs to report an approval."""

    quest: QuestInstance
    character_id: str
    user_id: str
    base_rewards: RewardBundle
    rewards: RewardBundle
    streak_count: Optional[int]
    streak_bonus: Decimal
    streak_continued: Optional[bool]
    volunteer_bonus: Optional[Decimal]
    level_up: LevelUpResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quest_id": self.quest.id,
            "status": self.quest.status.value,
            "character_id": self.character_id,
            "user_id": self.user_id,
            "base_rewards": self.base_rewards.to_dict(),
            "rewards": self.rewards.to_dict(),
            "streak_count": self.streak_count,
            "streak_bonus": str(self.streak_bonus),
            "streak_continued": self.streak_continued,
            "volunteer_bonus": str(self.volunteer_bonus) if self.volunteer_bonus is not None else None,
            "level_up": self.level_up.to_dict(),
        }


@dataclass
class ExpirationResult:
    expired: List[str] = field(default_factory=list)
    missed: List[str] = field(default_factory=list)
    streaks_reset: int = 0

    @property
    def total(self) -> int:
        return len(self.expired) + len(self.missed)


class QuestService:
    """
    Quest lifecycle state machine.

    Lifecycle:
        AVAILABLE -> PENDING        claim (volunteer) or assign (guardian)
        PENDING -> IN_PROGRESS      assigned performer starts
        IN_PROGRESS -> COMPLETED    assigned performer finishes
        COMPLETED -> APPROVED       guardian approves; rewards paid exactly once
        COMPLETED -> PENDING        guardian denies
        PENDING/IN_PROGRESS -> AVAILABLE    release of a FAMILY quest
        AVAILABLE/PENDING/IN_PROGRESS -> EXPIRED/MISSED    due date passed

    Every transition is written as a compare-and-swap on (status, version), so
    a transition computed from a stale read affects zero rows instead of
    overwriting a concurrent one. Authorization is checked before state.

    All methods take the caller's session and never commit; the caller's
    transaction (DatabaseService.get_transaction) is the unit of work.

    Usage:
        >>> quests = QuestService(EngineConfig.default())
        >>> async with DatabaseService.get_transaction() as session:
        ...     result = await quests.approve_quest(session, quest_id, guardian)
        >>> result.rewards.xp
        180
    """

    TRANSITIONS: Dict[QuestStatus, FrozenSet[QuestStatus]] = {
        QuestStatus.AVAILABLE: frozenset({QuestStatus.PENDING, QuestStatus.EXPIRED, QuestStatus.MISSED}),
        QuestStatus.PENDING: frozenset({
            QuestStatus.IN_PROGRESS, QuestStatus.AVAILABLE, QuestStatus.EXPIRED, QuestStatus.MISSED
        }),
        QuestStatus.IN_PROGRESS: frozenset({
            QuestStatus.COMPLETED, QuestStatus.AVAILABLE, QuestStatus.EXPIRED, QuestStatus.MISSED
        }),
        QuestStatus.COMPLETED: frozenset({QuestStatus.APPROVED, QuestStatus.PENDING}),
        QuestStatus.APPROVED: frozenset(),
        QuestStatus.EXPIRED: frozenset(),
        QuestStatus.MISSED: frozenset(),
    }

    def __init__(
        self,
        config: EngineConfig,
        streak_service: Optional[StreakService] = None,
        reward_service: Optional[RewardService] = None,
        progression_service: Optional[ProgressionService] = None
    ):
        self.config = config
        self.streaks = streak_service or StreakService(config)
        self.rewards = reward_service or RewardService(config)
        self.progression = progression_service or ProgressionService(config)

    @classmethod
    def can_transition(cls, current: QuestStatus, target: QuestStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, frozenset())

    @classmethod
    def check_transition(cls, quest: QuestInstance, target: QuestStatus) -> None:
        """
        Raises:
            AlreadyApprovedError: If approving an APPROVED quest
            InvalidStateTransitionError: For any other illegal move
        """
        if target == QuestStatus.APPROVED and quest.status == QuestStatus.APPROVED:
            raise AlreadyApprovedError("quest", quest.id)
        if not cls.can_transition(quest.status, target):
            logger.warning(
                f"Rejected transition for quest {quest.id}: {quest.status.value} -> {target.value}"
            )
            raise InvalidStateTransitionError(quest.id, quest.status.value, target.value)

    @staticmethod
    async def get_quest(session: AsyncSession, quest_id: str, lock: bool = False) -> QuestInstance:
        """
        Raises:
            NotFoundError: If the quest does not exist
        """
        quest = await session.get(
            QuestInstance,
            quest_id,
            with_for_update=lock,
            populate_existing=True
        )
        if quest is None:
            raise NotFoundError("quest", quest_id)
        return quest

    @staticmethod
    async def _get_character_by_user(
        session: AsyncSession,
        user_id: str,
        lock: bool = False
    ) -> Optional[Character]:
        query = select(Character).where(Character.user_id == user_id)
        if lock:
            query = query.with_for_update()
        result = await session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    @staticmethod
    async def _get_character(session: AsyncSession, character_id: str, lock: bool = False) -> Optional[Character]:
        return await session.get(
            Character,
            character_id,
            with_for_update=lock,
            populate_existing=True
        )

    async def _resolve_performer(self, session: AsyncSession, quest: QuestInstance) -> Character:
        """Volunteering character first, else the assignee's character."""
        if quest.volunteered_by:
            character = await self._get_character(session, quest.volunteered_by, lock=True)
            if character is None:
                raise NotFoundError("character", quest.volunteered_by)
            return character

        if not quest.assigned_to_id:
            raise ValidationError("assigned_to_id", f"quest {quest.id} has no performer")

        character = await self._get_character_by_user(session, quest.assigned_to_id, lock=True)
        if character is None:
            raise NotFoundError("character", f"user {quest.assigned_to_id}")
        return character

    async def _family_timezone(self, session: AsyncSession, family_id: str) -> str:
        family = await session.get(Family, family_id)
        if family is not None and family.timezone:
            return family.timezone
        return self.config.default_timezone

    async def _swap_status(
        self,
        session: AsyncSession,
        quest: QuestInstance,
        target: QuestStatus,
        now: datetime,
        **values: Any
    ) -> bool:
        """
        Move the quest to `target` if its row still has the status and version we read.

        Returns:
            True if this call won; False if the row changed underneath it
        """
        result = await session.execute(
            update(QuestInstance)
            .where(
                QuestInstance.id == quest.id,
                QuestInstance.status == quest.status,
                QuestInstance.version == quest.version
            )
            .values(
                status=target,
                version=QuestInstance.version + 1,
                updated_at=as_naive_utc(now),
                **values
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await session.refresh(quest)
        return True

    async def _transition(
        self,
        session: AsyncSession,
        quest: QuestInstance,
        target: QuestStatus,
        now: datetime,
        **values: Any
    ) -> QuestInstance:
        previous = quest.status
        self.check_transition(quest, target)
        if not await self._swap_status(session, quest, target, now, **values):
            current = await self.get_quest(session, quest.id)
            raise InvalidStateTransitionError(quest.id, current.status.value, target.value)

        logger.info(f"Quest {quest.id} transitioned {previous.value} -> {target.value}")
        return quest

    async def start_quest(
        self,
        session: AsyncSession,
        quest_id: str,
        actor: Actor,
        now: Optional[datetime] = None
    ) -> QuestInstance:
        """PENDING -> IN_PROGRESS by the assigned performer."""
        quest = await self.get_quest(session, quest_id, lock=True)
        require_performer(actor, quest.family_id, quest.assigned_to_id, "start_quest")
        return await self._transition(session, quest, QuestStatus.IN_PROGRESS, now or utc_now())

    async def complete_quest(
        self,
        session: AsyncSession,
        quest_id: str,
        actor: Actor,
        now: Optional[datetime] = None
    ) -> QuestInstance:
        """IN_PROGRESS -> COMPLETED by the assigned performer; stamps completed_at."""
        now = now or utc_now()
        quest = await self.get_quest(session, quest_id, lock=True)
        require_performer(actor, quest.family_id, quest.assigned_to_id, "complete_quest")
        return await self._transition(
            session, quest, QuestStatus.COMPLETED, now,
            completed_at=as_naive_utc(now)
        )

    async def deny_quest(
        self,
        session: AsyncSession,
        quest_id: str,
        actor: Actor,
        now: Optional[datetime] = None
    ) -> QuestInstance:
        """
        COMPLETED -> PENDING by a guardian, sending the quest back for rework.

        completed_at is cleared so the quest satisfies the timestamp invariant.
        """
        quest = await self.get_quest(session, quest_id, lock=True)
        require_guardian(actor, quest.family_id, "deny_quest")
        return await self._transition(
            session, quest, QuestStatus.PENDING, now or utc_now(),
            completed_at=None
        )

    def _hold_family_quest(self, character: Character, quest: QuestInstance) -> None:
        if quest.quest_type != QuestType.FAMILY:
            return
        if character.active_family_quest_id and character.active_family_quest_id != quest.id:
            raise ValidationError(
                "active_family_quest_id",
                f"character {character.id} already holds family quest {character.active_family_quest_id}"
            )
        character.active_family_quest_id = quest.id

    async def claim_quest(
        self,
        session: AsyncSession,
        quest_id: str,
        actor: Actor,
        now: Optional[datetime] = None
    ) -> QuestInstance:
        """
        AVAILABLE -> PENDING by a family member volunteering for a FAMILY quest.

        The volunteer earns the configured volunteer bonus on approval and may
        hold only one family quest at a time.

        Raises:
            ValidationError: For non-FAMILY quests or when already holding one
        """
        quest = await self.get_quest(session, quest_id, lock=True)
        require_same_family(actor, quest.family_id, "claim_quest")
        if quest.quest_type != QuestType.FAMILY:
            raise ValidationError("quest_type", "only FAMILY quests can be claimed")

        character = await self._get_character_by_user(session, actor.user_id, lock=True)
        if character is None or character.family_id != quest.family_id:
            raise NotFoundError("character", f"user {actor.user_id}")

        self.check_transition(quest, QuestStatus.PENDING)
        self._hold_family_quest(character, quest)
        return await self._transition(
            session, quest, QuestStatus.PENDING, now or utc_now(),
            assigned_to_id=actor.user_id,
            volunteered_by=character.id,
            volunteer_bonus=float(self.config.volunteer_bonus)
        )

    async def assign_quest(
        self,
        session: AsyncSession,
        quest_id: str,
        actor: Actor,
        assignee_user_id: str,
        now: Optional[datetime] = None
    ) -> QuestInstance:
        """AVAILABLE -> PENDING by a guardian assigning a performer (no volunteer bonus)."""
        quest = await self.get_quest(session, quest_id, lock=True)
        require_guardian(actor, quest.family_id, "assign_quest")

        character = await self._get_character_by_user(session, assignee_user_id, lock=True)
        if character is None or character.family_id != quest.family_id:
            raise NotFoundError("character", f"user {assignee_user_id}")

        self.check_transition(quest, QuestStatus.PENDING)
        self._hold_family_quest(character, quest)
        return await self._transition(
            session, quest, QuestStatus.PENDING, now or utc_now(),
            assigned_to_id=assignee_user_id,
            volunteered_by=None,
            volunteer_bonus=None
        )

    async def release_quest(
        self,
        session: AsyncSession,
        quest_id: str,
        actor: Actor,
        now: Optional[datetime] = None
    ) -> QuestInstance:
        """
        PENDING/IN_PROGRESS -> AVAILABLE, returning a FAMILY quest to the board.

        Allowed for the current holder or a guardian.
        """
        quest = await self.get_quest(session, quest_id, lock=True)
        require_same_family(actor, quest.family_id, "release_quest")
        if not actor.is_guardian:
            require_performer(actor, quest.family_id, quest.assigned_to_id, "release_quest")
        if quest.quest_type != QuestType.FAMILY:
            raise ValidationError("quest_type", "only FAMILY quests can be released")

        self.check_transition(quest, QuestStatus.AVAILABLE)
        if quest.assigned_to_id:
            holder = await self._get_character_by_user(session, quest.assigned_to_id, lock=True)
            if holder is not None and holder.active_family_quest_id == quest.id:
                holder.active_family_quest_id = None

        return await self._transition(
            session, quest, QuestStatus.AVAILABLE, now or utc_now(),
            assigned_to_id=None,
            volunteered_by=None,
            volunteer_bonus=None
        )

    async def approve_quest(
        self,
        session: AsyncSession,
        quest_id: str,
        actor: Actor,
        now: Optional[datetime] = None
    ) -> ApprovalResult:
        """
        COMPLETED -> APPROVED by a guardian, paying the performer exactly once.

        Steps, all inside the caller's transaction:
            1. Lock the quest row and validate actor and status
            2. Claim the approval with UPDATE ... WHERE status=COMPLETED AND version=?
            3. Fold the completion into the streak (recurring template quests)
            4. Compute rewards, apply progression, credit the character
            5. Snapshot streak data on the quest and write the QUEST_REWARD audit entry

        Any exception after step 2 propagates and the caller's rollback undoes
        the claim together with everything else.

        Args:
            session: Database session (transaction managed by caller)
            quest_id: Quest to approve
            actor: Acting user (must be a guardian of the quest's family)
            now: Approval instant (defaults to current time)

        Returns:
            ApprovalResult with rewards, streak and level-up details

        Raises:
            UnauthorizedError: Actor is not a guardian of the family
            AlreadyApprovedError: Quest already approved (including by a concurrent call)
            InvalidStateTransitionError: Quest is not COMPLETED
            ApprovalConflictError: The data store aborted us in favour of a concurrent approval
            NotFoundError: Quest or performer missing
        """
        now = to_utc(now) if now else utc_now()

        try:
            quest = await self.get_quest(session, quest_id, lock=True)
        except OperationalError as e:
            raise ApprovalConflictError(quest_id, e) from e

        require_guardian(actor, quest.family_id, "approve_quest")
        self.check_transition(quest, QuestStatus.APPROVED)

        character = await self._resolve_performer(session, quest)
        completed_at = to_utc(quest.completed_at) if quest.completed_at else now
        approved_at = max(now, completed_at)

        try:
            claimed = await self._swap_status(
                session, quest, QuestStatus.APPROVED, now,
                approved_at=as_naive_utc(approved_at),
                completed_at=as_naive_utc(completed_at)
            )
        except OperationalError as e:
            raise ApprovalConflictError(quest_id, e) from e
        if not claimed:
            logger.warning(f"Approval of quest {quest_id} lost the race to a concurrent approval")
            raise AlreadyApprovedError("quest", quest_id)

        streak_count: Optional[int] = None
        streak_bonus = Decimal("0")
        streak_continued: Optional[bool] = None
        if quest.is_recurring():
            timezone = await self._family_timezone(session, quest.family_id)
            outcome = await self.streaks.record_completion(
                session,
                character.id,
                quest.template_id,
                quest.recurrence_pattern,
                completed_at,
                timezone
            )
            streak_count = outcome.streak.current_streak
            streak_bonus = outcome.bonus
            streak_continued = outcome.continued

        volunteer_bonus = None
        if quest.volunteered_by == character.id and quest.volunteer_bonus:
            volunteer_bonus = Decimal(str(quest.volunteer_bonus))

        base = RewardBundle.from_quest(quest)
        rewards = self.rewards.compute_reward(
            base,
            quest.difficulty,
            character.character_class,
            volunteer_bonus,
            streak_bonus
        )

        level_up = self.progression.apply_to_character(character, rewards.xp, now)
        character.gold += rewards.gold
        character.gems += rewards.gems
        character.honor_points += rewards.honor
        if character.active_family_quest_id == quest.id:
            character.active_family_quest_id = None
        character.updated_at = as_naive_utc(now)

        quest.streak_count = streak_count
        quest.streak_bonus = float(streak_bonus) if streak_count is not None else None

        await TransactionLogger.log_transaction(
            session=session,
            user_id=character.user_id,
            transaction_type=TransactionType.QUEST_REWARD,
            character_id=character.id,
            related_id=quest.id,
            description=f"Quest approved: {quest.title}",
            changes=rewards.to_dict(),
            details={
                "quest_id": quest.id,
                "approved_by": actor.user_id,
                "difficulty": quest.difficulty.value,
                "character_class": character.character_class.value if character.character_class else None,
                "base_rewards": base.to_dict(),
                "volunteer_bonus": str(volunteer_bonus) if volunteer_bonus is not None else None,
                "streak_count": streak_count,
                "streak_bonus": str(streak_bonus),
                "level_up": level_up.to_dict() if level_up.leveled_up else None,
            },
            context="approve_quest",
            timestamp=now
        )
        await session.flush()

        logger.info(
            f"Quest {quest.id} approved by {actor.user_id}: character={character.id} "
            f"rewards={rewards.to_dict()} streak={streak_count} level={level_up.new_level}"
        )

        return ApprovalResult(
            quest=quest,
            character_id=character.id,
            user_id=character.user_id,
            base_rewards=base,
            rewards=rewards,
            streak_count=streak_count,
            streak_bonus=streak_bonus,
            streak_continued=streak_continued,
            volunteer_bonus=volunteer_bonus,
            level_up=level_up,
        )

    async def expire_overdue_quests(
        self,
        session: AsyncSession,
        now: Optional[datetime] = None,
        family_id: Optional[str] = None
    ) -> ExpirationResult:
        """
        Close quests whose due date passed before they were completed.

        Recurring template quests become MISSED and break the assignee's streak
        (INDIVIDUAL quests only, longest_streak kept); ad-hoc quests become EXPIRED.
        COMPLETED quests are left for the guardian to review.

        Args:
            session: Database session (transaction managed by caller)
            now: Sweep instant (defaults to current time)
            family_id: Restrict the sweep to one family

        Returns:
            ExpirationResult with affected quest IDs
        """
        now = to_utc(now) if now else utc_now()
        query = select(QuestInstance).where(
            QuestInstance.status.in_(ACTIVE_STATUSES),
            QuestInstance.due_date.is_not(None),
            QuestInstance.due_date < as_naive_utc(now)
        )
        if family_id is not None:
            query = query.where(QuestInstance.family_id == family_id)
        result = await session.execute(
            query.order_by(QuestInstance.due_date).with_for_update()
        )
        overdue = list(result.scalars().all())

        outcome = ExpirationResult()
        for quest in overdue:
            target = QuestStatus.MISSED if quest.is_recurring() else QuestStatus.EXPIRED
            holder = None
            if quest.assigned_to_id:
                holder = await self._get_character_by_user(session, quest.assigned_to_id, lock=True)

            if not await self._swap_status(session, quest, target, now):
                logger.info(f"Quest {quest.id} changed during expiry sweep, skipped")
                continue

            (outcome.missed if target == QuestStatus.MISSED else outcome.expired).append(quest.id)

            if holder is not None and holder.active_family_quest_id == quest.id:
                holder.active_family_quest_id = None

            if (
                target == QuestStatus.MISSED
                and quest.quest_type == QuestType.INDIVIDUAL
                and holder is not None
            ):
                streak = await self.streaks.get_or_create_streak(session, holder.id, quest.template_id)
                broken_at = streak.current_streak
                await self.streaks.reset_streak(session, holder.id, quest.template_id)
                outcome.streaks_reset += 1
                await TransactionLogger.log_transaction(
                    session=session,
                    user_id=holder.user_id,
                    transaction_type=TransactionType.STREAK_RESET,
                    character_id=holder.id,
                    related_id=quest.id,
                    description=f"Streak broken: {quest.title}",
                    details={
                        "quest_id": quest.id,
                        "template_id": quest.template_id,
                        "previous_streak": broken_at,
                    },
                    context="expire_overdue_quests",
                    timestamp=now
                )

        await session.flush()
        if outcome.total:
            logger.info(
                f"Expiry sweep: {len(outcome.expired)} expired, {len(outcome.missed)} missed, "
                f"{outcome.streaks_reset} streaks reset"
            )
        return outcome
