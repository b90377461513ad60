from enum import Enum


class UserRole(str, Enum):
    GUILD_MASTER = "GUILD_MASTER"
    HERO = "HERO"
    YOUNG_HERO = "YOUNG_HERO"


class CharacterClass(str, Enum):
    KNIGHT = "KNIGHT"
    MAGE = "MAGE"
    RANGER = "RANGER"
    ROGUE = "ROGUE"
    HEALER = "HEALER"


class QuestStatus(str, Enum):
    """
    Quest lifecycle states.

    AVAILABLE quests sit on the family board until claimed or assigned.
    APPROVED, EXPIRED and MISSED are terminal.
    """

    AVAILABLE = "AVAILABLE"
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    APPROVED = "APPROVED"
    EXPIRED = "EXPIRED"
    MISSED = "MISSED"


class QuestDifficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class QuestCategory(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    ONE_OFF = "ONE_OFF"
    BOSS_BATTLE = "BOSS_BATTLE"


class QuestType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    FAMILY = "FAMILY"


class RecurrencePattern(str, Enum):
    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    CUSTOM = "CUSTOM"


class BossBattleStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DEFEATED = "DEFEATED"
    EXPIRED = "EXPIRED"


class ParticipationStatus(str, Enum):
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    APPROVED = "APPROVED"


class TransactionType(str, Enum):
    QUEST_REWARD = "QUEST_REWARD"
    BOSS_VICTORY = "BOSS_VICTORY"
    STREAK_RESET = "STREAK_RESET"
