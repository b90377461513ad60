from bisect import bisect_right
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

from chorequest.database.models.character import Character
from chorequest.exceptions import ValidationError
from chorequest.game_rules import EngineConfig
from chorequest.services.logger import get_logger
from chorequest.utils.timezone_utils import as_naive_utc

logger = get_logger(__name__)


@dataclass(frozen=True)
class LevelUpResult:
    previous_level: int
    new_level: int
    new_xp: int
    xp_gained: int
    leveled_up: bool
    levels_gained: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProgressionService:
    """
    Level-up evaluation against the injected level curve.

    XP is cumulative: a character at level L holds at least the curve's total
    threshold for L. A gain may cross several thresholds at once; each one is
    applied in order until the next is out of reach or the curve ends.
    Levels never go down.

    Usage:
        >>> progression = ProgressionService(EngineConfig.default())
        >>> progression.apply_experience(1, 0, 450)
        LevelUpResult(previous_level=1, new_level=4, new_xp=450, xp_gained=450, leveled_up=True, levels_gained=3)
    """

    def __init__(self, config: EngineConfig):
        self.curve = config.level_curve

    def apply_experience(self, current_level: int, current_xp: int, xp_gained: int) -> LevelUpResult:
        """
        Add experience and walk the curve.

        Args:
            current_level: Level before the gain (>= 1)
            current_xp: Cumulative XP before the gain
            xp_gained: Non-negative XP to add

        Returns:
            LevelUpResult; leveled_up is True iff new_level > current_level

        Raises:
            ValidationError: On negative XP or a level below 1
        """
        if xp_gained < 0:
            raise ValidationError("xp_gained", "must be non-negative")
        if current_xp < 0:
            raise ValidationError("current_xp", "must be non-negative")
        if current_level < 1:
            raise ValidationError("current_level", "must be at least 1")

        new_xp = current_xp + xp_gained
        level = current_level

        while True:
            next_threshold = self.curve.threshold_for(level + 1)
            if next_threshold is None or new_xp < next_threshold:
                break
            level += 1

        return LevelUpResult(
            previous_level=current_level,
            new_level=level,
            new_xp=new_xp,
            xp_gained=xp_gained,
            leveled_up=level > current_level,
            levels_gained=level - current_level,
        )

    def level_for_total_xp(self, total_xp: int) -> int:
        """
        Example:
            >>> ProgressionService(EngineConfig.default()).level_for_total_xp(199)
            2
        """
        return max(1, bisect_right(self.curve.thresholds, max(total_xp, 0)))

    def xp_to_next_level(self, level: int, total_xp: int) -> Optional[int]:
        """XP still needed for the next level, or None at the top of the curve."""
        next_threshold = self.curve.threshold_for(level + 1)
        if next_threshold is None:
            return None
        return max(next_threshold - total_xp, 0)

    def apply_to_character(
        self,
        character: Character,
        xp_gained: int,
        now: Optional[datetime] = None
    ) -> LevelUpResult:
        """
        Apply a gain to a locked Character row in place.

        Args:
            character: Character (must be locked by the caller's transaction)
            xp_gained: XP to add
            now: Timestamp recorded as last_level_up on a level-up
        """
        result = self.apply_experience(character.level, character.xp, xp_gained)
        character.xp = result.new_xp
        character.level = result.new_level

        if result.leveled_up:
            if now is not None:
                character.last_level_up = as_naive_utc(now)
            logger.info(
                f"Character {character.id} leveled up: "
                f"{result.previous_level} -> {result.new_level} (+{result.levels_gained})"
            )
        return result
