from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_FLOOR, localcontext
from typing import Any, Dict, Optional

from chorequest.game_rules import EngineConfig, RESOURCES, to_decimal
from chorequest.services.logger import get_logger

logger = get_logger(__name__)

# Wide enough that products of 64-bit rewards and multipliers stay exact.
_PRECISION = 60


@dataclass(frozen=True)
class RewardBundle:
    """Amounts of each resource; used for base rewards and final payouts."""

    xp: int = 0
    gold: int = 0
    gems: int = 0
    honor: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_quest(cls, quest: Any) -> "RewardBundle":
        return cls(
            xp=quest.xp_reward or 0,
            gold=quest.gold_reward or 0,
            gems=quest.gems_reward or 0,
            honor=quest.honor_reward or 0,
        )


def floor_product(amount: int, *multipliers: Decimal) -> int:
    """
    Multiply exactly and floor to an integer.

    Example:
        >>> floor_product(100, Decimal("1.5"), Decimal("1.2"))
        180
    """
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        product = Decimal(amount)
        for multiplier in multipliers:
            product *= multiplier
        return int(product.to_integral_value(rounding=ROUND_FLOOR))


class RewardService:
    """
    Reward multiplier resolution.

    Final amount per resource =
        floor(base x difficulty x class(resource) x (1 + volunteer) x (1 + streak))

    The product is computed in Decimal and floored once at the end. All tables
    come from the injected EngineConfig.

    Usage:
        >>> rewards = RewardService(EngineConfig.default())
        >>> rewards.compute_reward(RewardBundle(xp=100), "MEDIUM", "MAGE", None, Decimal("0"))
        RewardBundle(xp=180, gold=0, gems=0, honor=0)
    """

    def __init__(self, config: EngineConfig):
        self.config = config

    def difficulty_multiplier(self, difficulty: Any) -> Decimal:
        return self.config.difficulty_multiplier(difficulty)

    def class_multiplier(self, character_class: Any, resource: str) -> Decimal:
        """Per-resource class bonus; classes without an entry get 1."""
        return self.config.class_bonus(character_class).multiplier(resource)

    def compute_reward(
        self,
        base: RewardBundle,
        difficulty: Any,
        performer_class: Any = None,
        volunteer_bonus_fraction: Optional[Any] = None,
        streak_bonus_fraction: Any = 0
    ) -> RewardBundle:
        """
        Stack all multipliers onto a quest's base rewards.

        Args:
            base: Base rewards from the quest
            difficulty: EASY, MEDIUM or HARD
            performer_class: Character class of the performer (None = no bonus)
            volunteer_bonus_fraction: Extra fraction for volunteering, None if absent
            streak_bonus_fraction: Current streak bonus fraction

        Returns:
            Final floored RewardBundle
        """
        difficulty_mult = self.difficulty_multiplier(difficulty)
        volunteer_mult = 1 + (
            to_decimal("volunteer_bonus", volunteer_bonus_fraction)
            if volunteer_bonus_fraction is not None else Decimal("0")
        )
        streak_mult = 1 + to_decimal("streak_bonus", streak_bonus_fraction or 0)
        bonus = self.config.class_bonus(performer_class)

        return RewardBundle(**{
            resource: floor_product(
                getattr(base, resource),
                difficulty_mult,
                bonus.multiplier(resource),
                volunteer_mult,
                streak_mult,
            )
            for resource in RESOURCES
        })

    def full_adjusted_reward(self, base_xp: int, base_gold: int, performer_class: Any = None) -> RewardBundle:
        """
        A boss participant's full share: base rewards times the class xp/gold bonus, floored.
        """
        bonus = self.config.class_bonus(performer_class)
        return RewardBundle(
            xp=floor_product(base_xp, bonus.xp),
            gold=floor_product(base_gold, bonus.gold),
        )
