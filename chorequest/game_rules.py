"""
Injected game balance for the progression engine.

EngineConfig is immutable and built per tenant (see ConfigManager.engine_config),
then passed into each service constructor. Nothing here is module-level mutable
state, so two families with different tables never see each other's values.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from chorequest.database.models.enums import CharacterClass, QuestDifficulty
from chorequest.exceptions import ConfigurationError
from chorequest.utils.timezone_utils import is_valid_timezone

RESOURCES = ("xp", "gold", "gems", "honor")

DEFAULT_RULES: Dict[str, Any] = {
    "class_bonuses": {
        "MAGE": {"xp": 1.2},
        "ROGUE": {"gold": 1.15},
        "KNIGHT": {"xp": 1.05, "gold": 1.05},
        "HEALER": {"xp": 1.1, "honor": 1.25},
        "RANGER": {"gems": 1.3},
    },
    "difficulty_multipliers": {
        "EASY": 1.0,
        "MEDIUM": 1.5,
        "HARD": 2.0,
    },
    "streak": {
        "increment": 0.01,
        "threshold": 5,
        "max_bonus": 0.05,
    },
    "level_curve": {
        "type": "quadratic",
        "base": 50,
        "max_level": 100,
    },
    "volunteer_bonus": 0.2,
    "default_timezone": "UTC",
    "week_start_day": 0,
}


def to_decimal(config_key: str, value: Any) -> Decimal:
    """
    Convert a config number to Decimal through its string form.

    Going through str() keeps 1.2 as Decimal('1.2') instead of the binary
    expansion of the float.

    Raises:
        ConfigurationError: If the value is not a non-negative number
    """
    if isinstance(value, bool):
        raise ConfigurationError(config_key, f"expected a number, got {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ConfigurationError(config_key, f"expected a number, got {value!r}")
    if not result.is_finite() or result < 0:
        raise ConfigurationError(config_key, f"must be a non-negative number, got {value!r}")
    return result


@dataclass(frozen=True)
class ClassBonus:
    """Per-resource reward multipliers for one character class."""

    xp: Decimal = Decimal("1")
    gold: Decimal = Decimal("1")
    gems: Decimal = Decimal("1")
    honor: Decimal = Decimal("1")

    def multiplier(self, resource: str) -> Decimal:
        return getattr(self, resource)

    @classmethod
    def from_dict(cls, class_name: str, data: Mapping[str, Any]) -> "ClassBonus":
        unknown = set(data) - set(RESOURCES)
        if unknown:
            raise ConfigurationError(
                f"class_bonuses.{class_name}",
                f"unknown resources {sorted(unknown)}"
            )
        return cls(**{
            resource: to_decimal(f"class_bonuses.{class_name}.{resource}", value)
            for resource, value in data.items()
        })


NEUTRAL_CLASS_BONUS = ClassBonus()


@dataclass(frozen=True)
class StreakSettings:
    increment: Decimal = Decimal("0.01")
    threshold: int = 5
    max_bonus: Decimal = Decimal("0.05")

    def __post_init__(self):
        if self.threshold < 1:
            raise ConfigurationError("streak.threshold", "must be at least 1")


@dataclass(frozen=True)
class LevelCurve:
    """
    Total XP required to reach each level.

    thresholds[0] belongs to level 1 and is always 0; thresholds[n] is the
    cumulative XP needed for level n + 1. Values must strictly increase.
    """

    thresholds: Tuple[int, ...]

    def __post_init__(self):
        if not self.thresholds or self.thresholds[0] != 0:
            raise ConfigurationError("level_curve", "level 1 must start at 0 XP")
        for lower, upper in zip(self.thresholds, self.thresholds[1:]):
            if upper <= lower:
                raise ConfigurationError(
                    "level_curve",
                    f"thresholds must strictly increase ({lower} then {upper})"
                )

    @classmethod
    def quadratic(cls, base: int = 50, max_level: int = 100) -> "LevelCurve":
        """
        Curve where reaching level L costs base * (L - 1)^2 total XP.

        Example:
            >>> LevelCurve.quadratic().thresholds[:4]
            (0, 50, 200, 450)
        """
        if base < 1 or max_level < 1:
            raise ConfigurationError("level_curve", "base and max_level must be positive")
        return cls(tuple(base * (level - 1) ** 2 for level in range(1, max_level + 1)))

    @property
    def max_level(self) -> int:
        return len(self.thresholds)

    def threshold_for(self, level: int) -> Optional[int]:
        """Total XP needed to reach the level, or None past the cap."""
        if level < 1 or level > self.max_level:
            return None
        return self.thresholds[level - 1]


@dataclass(frozen=True)
class EngineConfig:
    """
    Balance tables for one tenant.

    Usage:
        >>> config = EngineConfig.default()
        >>> config.class_bonus("MAGE").xp
        Decimal('1.2')
    """

    class_bonuses: Mapping[str, ClassBonus]
    difficulty_multipliers: Mapping[str, Decimal]
    streak: StreakSettings = field(default_factory=StreakSettings)
    level_curve: LevelCurve = field(default_factory=LevelCurve.quadratic)
    volunteer_bonus: Decimal = Decimal("0.2")
    default_timezone: str = "UTC"
    week_start_day: int = 0

    def class_bonus(self, character_class: Optional[Any]) -> ClassBonus:
        if character_class is None:
            return NEUTRAL_CLASS_BONUS
        key = getattr(character_class, "value", character_class)
        return self.class_bonuses.get(key, NEUTRAL_CLASS_BONUS)

    def difficulty_multiplier(self, difficulty: Any) -> Decimal:
        key = getattr(difficulty, "value", difficulty)
        try:
            return self.difficulty_multipliers[key]
        except KeyError:
            raise ConfigurationError(
                "difficulty_multipliers", f"no multiplier for difficulty {key!r}"
            )

    @classmethod
    def default(cls) -> "EngineConfig":
        return cls.from_dict(DEFAULT_RULES)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        """
        Build and validate from the nested dict shape stored in game_config.

        Missing sections fall back to DEFAULT_RULES section by section.

        Raises:
            ConfigurationError: On any malformed value
        """
        merged = {**DEFAULT_RULES, **data}

        class_bonuses = {}
        for class_name, bonus in merged["class_bonuses"].items():
            if class_name not in CharacterClass.__members__:
                raise ConfigurationError("class_bonuses", f"unknown class {class_name!r}")
            class_bonuses[class_name] = ClassBonus.from_dict(class_name, bonus)

        difficulty_multipliers = {
            name: to_decimal(f"difficulty_multipliers.{name}", value)
            for name, value in merged["difficulty_multipliers"].items()
        }
        missing = set(QuestDifficulty.__members__) - set(difficulty_multipliers)
        if missing:
            raise ConfigurationError(
                "difficulty_multipliers", f"missing difficulties {sorted(missing)}"
            )

        streak_data = merged["streak"]
        streak = StreakSettings(
            increment=to_decimal("streak.increment", streak_data.get("increment", 0.01)),
            threshold=int(streak_data.get("threshold", 5)),
            max_bonus=to_decimal("streak.max_bonus", streak_data.get("max_bonus", 0.05)),
        )

        curve_data = merged["level_curve"]
        if "thresholds" in curve_data:
            level_curve = LevelCurve(tuple(int(xp) for xp in curve_data["thresholds"]))
        elif curve_data.get("type", "quadratic") == "quadratic":
            level_curve = LevelCurve.quadratic(
                base=int(curve_data.get("base", 50)),
                max_level=int(curve_data.get("max_level", 100)),
            )
        else:
            raise ConfigurationError("level_curve.type", f"unsupported curve {curve_data.get('type')!r}")

        default_timezone = merged["default_timezone"]
        if not is_valid_timezone(default_timezone):
            raise ConfigurationError("default_timezone", f"invalid IANA zone {default_timezone!r}")

        week_start_day = int(merged["week_start_day"])
        if not 0 <= week_start_day <= 6:
            raise ConfigurationError("week_start_day", "must be between 0 (Sunday) and 6")

        return cls(
            class_bonuses=class_bonuses,
            difficulty_multipliers=difficulty_multipliers,
            streak=streak,
            level_curve=level_curve,
            volunteer_bonus=to_decimal("volunteer_bonus", merged["volunteer_bonus"]),
            default_timezone=default_timezone,
            week_start_day=week_start_day,
        )
