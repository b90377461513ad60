from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from chorequest.database.models.boss_battle import BossBattle, BossBattleParticipant
from chorequest.database.models.character import Character
from chorequest.database.models.enums import (
    BossBattleStatus,
    ParticipationStatus,
    TransactionType,
)
from chorequest.exceptions import (
    AlreadyApprovedError,
    ApprovalConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from chorequest.game_rules import EngineConfig
from chorequest.services.authorization import Actor, require_guardian
from chorequest.services.logger import get_logger
from chorequest.services.progression_service import ProgressionService
from chorequest.services.reward_service import RewardBundle, RewardService, floor_product
from chorequest.services.transaction_logger import TransactionLogger
from chorequest.utils.timezone_utils import as_naive_utc, to_utc, utc_now

logger = get_logger(__name__)

DECISION_STATUSES = ("APPROVED", "PARTIAL", "DENIED")


@dataclass(frozen=True)
class ParticipantProfile:
    """Display name and class of the user behind a participant row."""

    name: str
    character_class: Any = None


@dataclass(frozen=True)
class ParticipantDecision:
    """
    Guardian's verdict for one participant.

    status: APPROVED (full class-adjusted share), PARTIAL (the given amounts,
    floored and capped at the full share) or DENIED (nothing).
    """

    status: str = "APPROVED"
    gold: Optional[float] = None
    xp: Optional[float] = None
    honor: Optional[float] = None

    def __post_init__(self):
        if str(self.status).upper() not in DECISION_STATUSES:
            raise ValidationError("status", f"unknown decision {self.status!r}")


@dataclass
class ParticipantStanding:
    user_id: str
    name: str
    total_score: Decimal = Decimal("0")
    total_xp: int = 0
    total_gold: int = 0
    battles: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "total_score": str(self.total_score),
            "total_xp": self.total_xp,
            "total_gold": self.total_gold,
            "battles": self.battles,
        }


@dataclass
class BossDistributionResult:
    boss_battle_id: str
    awards: Dict[str, RewardBundle] = field(default_factory=dict)
    statuses: Dict[str, str] = field(default_factory=dict)
    levels: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "boss_battle_id": self.boss_battle_id,
            "participants": [
                {
                    "user_id": user_id,
                    "status": self.statuses[user_id],
                    "rewards": bundle.to_dict(),
                    "level": self.levels.get(user_id),
                }
                for user_id, bundle in self.awards.items()
            ],
        }


def _ratio(awarded: int, full: int) -> Decimal:
    if full <= 0:
        return Decimal("0")
    return min(max(Decimal(awarded) / Decimal(full), Decimal("0")), Decimal("1"))


class BossBattleService:
    """
    Boss battle scoring and reward distribution.

    Scoring (read side):
        APPROVED -> 1 per battle, whatever was awarded
        PARTIAL  -> mean of awarded/full for XP and gold, each clamped to [0, 1]
        anything else -> 0
    Scores sum across battles. Ranking ties break on summed awarded XP, then
    summed awarded gold (both descending), then name ascending.

    Distribution (write side) settles a battle exactly once, guarded by a
    compare-and-swap on rewards_distributed.

    Usage:
        >>> bosses = BossBattleService(EngineConfig.default())
        >>> standings = await bosses.get_top_participants(session, family_id, since)
        >>> standings[0].name
        'Ada'
    """

    def __init__(
        self,
        config: EngineConfig,
        reward_service: Optional[RewardService] = None,
        progression_service: Optional[ProgressionService] = None
    ):
        self.config = config
        self.rewards = reward_service or RewardService(config)
        self.progression = progression_service or ProgressionService(config)

    def participation_score(
        self,
        participant: BossBattleParticipant,
        battle: BossBattle,
        performer_class: Any = None
    ) -> Decimal:
        """
        Score of one participant in one battle, in [0, 1].

        Example:
            >>> # PARTIAL with half the XP and no gold
            >>> bosses.participation_score(participant, battle)
            Decimal('0.25')
        """
        status = str(participant.participation_status or "").upper()
        if status == ParticipationStatus.APPROVED.value:
            return Decimal("1")
        if status != ParticipationStatus.PARTIAL.value:
            return Decimal("0")

        full = self.rewards.full_adjusted_reward(
            battle.reward_xp or 0, battle.reward_gold or 0, performer_class
        )
        xp_ratio = _ratio(participant.awarded_xp or 0, full.xp)
        gold_ratio = _ratio(participant.awarded_gold or 0, full.gold)
        return (xp_ratio + gold_ratio) / 2

    def rank_participants(
        self,
        battles: Iterable[BossBattle],
        participants: Iterable[BossBattleParticipant],
        profiles: Mapping[str, ParticipantProfile]
    ) -> List[ParticipantStanding]:
        """
        Aggregate and order participants across the given battles.

        Participants of battles not in `battles` are ignored. Users without a
        profile are ranked under their user ID with no class bonus.
        """
        battles_by_id = {battle.id: battle for battle in battles}
        standings: Dict[str, ParticipantStanding] = {}

        for participant in participants:
            battle = battles_by_id.get(participant.boss_battle_id)
            if battle is None:
                continue

            profile = profiles.get(participant.user_id)
            standing = standings.get(participant.user_id)
            if standing is None:
                standing = ParticipantStanding(
                    user_id=participant.user_id,
                    name=profile.name if profile else participant.user_id,
                )
                standings[participant.user_id] = standing

            standing.total_score += self.participation_score(
                participant, battle, profile.character_class if profile else None
            )
            standing.total_xp += participant.awarded_xp or 0
            standing.total_gold += participant.awarded_gold or 0
            standing.battles += 1

        return sorted(
            standings.values(),
            key=lambda s: (-s.total_score, -s.total_xp, -s.total_gold, s.name)
        )

    async def get_top_participants(
        self,
        session: AsyncSession,
        family_id: str,
        since: datetime,
        until: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[ParticipantStanding]:
        """
        Leaderboard over the family's settled battles defeated in [since, until).

        Args:
            session: Database session
            family_id: Family to rank
            since: Window start (inclusive)
            until: Window end (exclusive), defaults to now
            limit: Maximum standings to return

        Returns:
            Ordered ParticipantStanding list
        """
        until = until or utc_now()
        result = await session.execute(
            select(BossBattle).where(
                BossBattle.family_id == family_id,
                BossBattle.status == BossBattleStatus.DEFEATED,
                BossBattle.rewards_distributed.is_(True),
                BossBattle.defeated_at >= as_naive_utc(since),
                BossBattle.defeated_at < as_naive_utc(until)
            )
        )
        battles = list(result.scalars().all())
        if not battles:
            return []

        result = await session.execute(
            select(BossBattleParticipant).where(
                BossBattleParticipant.boss_battle_id.in_([battle.id for battle in battles])
            )
        )
        participants = list(result.scalars().all())

        user_ids = {participant.user_id for participant in participants}
        result = await session.execute(
            select(Character).where(Character.user_id.in_(user_ids))
        )
        profiles = {
            character.user_id: ParticipantProfile(character.name, character.character_class)
            for character in result.scalars().all()
        }

        standings = self.rank_participants(battles, participants, profiles)
        return standings[:limit] if limit is not None else standings

    def resolve_award(
        self,
        decision: ParticipantDecision,
        battle: BossBattle,
        performer_class: Any = None
    ) -> RewardBundle:
        """
        Amounts for one participant under a decision.

        APPROVED gets the full class-adjusted share (xp, gold and honor).
        PARTIAL amounts are floored, clamped to zero, and capped at that share.
        """
        status = decision.status.upper()
        if status == "DENIED":
            return RewardBundle()

        bonus = self.config.class_bonus(performer_class)
        full = self.rewards.full_adjusted_reward(battle.reward_xp or 0, battle.reward_gold or 0, performer_class)
        full_honor = floor_product(battle.honor_reward or 0, bonus.honor)
        if status == "APPROVED":
            return RewardBundle(xp=full.xp, gold=full.gold, honor=full_honor)

        def partial(requested: Optional[float], cap: int) -> int:
            if requested is None:
                return cap
            return min(max(int(Decimal(str(requested)).to_integral_value(rounding=ROUND_FLOOR)), 0), cap)

        return RewardBundle(
            xp=partial(decision.xp, full.xp),
            gold=partial(decision.gold, full.gold),
            honor=partial(decision.honor, full_honor),
        )

    async def distribute_rewards(
        self,
        session: AsyncSession,
        boss_battle_id: str,
        actor: Actor,
        decisions: Optional[Mapping[str, ParticipantDecision]] = None,
        now: Optional[datetime] = None
    ) -> BossDistributionResult:
        """
        Settle a boss battle: mark it DEFEATED and pay every participant once.

        Participants without a decision are APPROVED. DENIED participants are
        stored with participation status NONE and zero awards.

        Args:
            session: Database session (transaction managed by caller)
            boss_battle_id: Battle to settle
            actor: Acting user (must be a guardian of the battle's family)
            decisions: Per-user decisions keyed by user ID
            now: Settlement instant (defaults to current time)

        Raises:
            UnauthorizedError: Actor is not a guardian of the family
            AlreadyApprovedError: Rewards were already distributed
            InvalidStateTransitionError: Battle expired without a victory
            ApprovalConflictError: The data store aborted us for a concurrent settlement
        """
        now = to_utc(now) if now else utc_now()
        decisions = decisions or {}

        try:
            battle = await session.get(BossBattle, boss_battle_id, with_for_update=True, populate_existing=True)
        except OperationalError as e:
            raise ApprovalConflictError(boss_battle_id, e) from e
        if battle is None:
            raise NotFoundError("boss_battle", boss_battle_id)

        require_guardian(actor, battle.family_id, "distribute_boss_rewards")
        if battle.rewards_distributed:
            raise AlreadyApprovedError("boss_battle", battle.id)
        if battle.status == BossBattleStatus.EXPIRED:
            raise InvalidStateTransitionError(battle.id, battle.status.value, BossBattleStatus.DEFEATED.value)

        defeated_at = battle.defeated_at or as_naive_utc(now)
        try:
            result = await session.execute(
                update(BossBattle)
                .where(
                    BossBattle.id == battle.id,
                    BossBattle.rewards_distributed.is_(False),
                    BossBattle.version == battle.version
                )
                .values(
                    rewards_distributed=True,
                    status=BossBattleStatus.DEFEATED,
                    defeated_at=defeated_at,
                    version=BossBattle.version + 1
                )
                .execution_options(synchronize_session=False)
            )
        except OperationalError as e:
            raise ApprovalConflictError(boss_battle_id, e) from e
        if result.rowcount != 1:
            raise AlreadyApprovedError("boss_battle", battle.id)
        await session.refresh(battle)

        result = await session.execute(
            select(BossBattleParticipant)
            .where(BossBattleParticipant.boss_battle_id == battle.id)
            .order_by(BossBattleParticipant.user_id)
        )
        participants = list(result.scalars().all())

        outcome = BossDistributionResult(boss_battle_id=battle.id)
        for participant in participants:
            result = await session.execute(
                select(Character)
                .where(Character.user_id == participant.user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            character = result.scalar_one_or_none()
            decision = decisions.get(participant.user_id, ParticipantDecision())
            status = decision.status.upper()
            award = self.resolve_award(decision, battle, character.character_class if character else None)

            participant.participation_status = (
                ParticipationStatus.NONE.value if status == "DENIED" else status
            )
            participant.awarded_xp = award.xp
            participant.awarded_gold = award.gold
            participant.honor_awarded = award.honor
            participant.approved_at = as_naive_utc(now)
            participant.approved_by = actor.user_id

            level = None
            if character is not None:
                level_up = self.progression.apply_to_character(character, award.xp, now)
                character.gold += award.gold
                character.honor_points += award.honor
                character.updated_at = as_naive_utc(now)
                level = level_up.new_level
            else:
                logger.warning(f"Boss participant {participant.user_id} has no character; awards recorded only")

            await TransactionLogger.log_transaction(
                session=session,
                user_id=participant.user_id,
                transaction_type=TransactionType.BOSS_VICTORY,
                character_id=character.id if character else None,
                related_id=battle.id,
                description=f"Boss quest rewards ({status})",
                changes={"xp": award.xp, "gold": award.gold, "honor": award.honor},
                details={
                    "boss_battle_id": battle.id,
                    "decision": status,
                    "approved_by": actor.user_id,
                    "new_level": level,
                },
                context="distribute_boss_rewards",
                timestamp=now
            )

            outcome.awards[participant.user_id] = award
            outcome.statuses[participant.user_id] = participant.participation_status
            if level is not None:
                outcome.levels[participant.user_id] = level

        await session.flush()
        logger.info(
            f"Boss battle {battle.id} settled by {actor.user_id}: {len(participants)} participants"
        )
        return outcome
