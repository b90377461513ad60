from .enums import (
    BossBattleStatus,
    CharacterClass,
    ParticipationStatus,
    QuestCategory,
    QuestDifficulty,
    QuestStatus,
    QuestType,
    RecurrencePattern,
    TransactionType,
    UserRole,
)
from .family import Family
from .character import Character
from .quest_instance import QuestInstance
from .streak import StreakRecord
from .boss_battle import BossBattle, BossBattleParticipant
from .game_config import GameConfig
from .transaction_log import TransactionLog

__all__ = [
    "BossBattleStatus",
    "CharacterClass",
    "ParticipationStatus",
    "QuestCategory",
    "QuestDifficulty",
    "QuestStatus",
    "QuestType",
    "RecurrencePattern",
    "TransactionType",
    "UserRole",
    "Family",
    "Character",
    "QuestInstance",
    "StreakRecord",
    "BossBattle",
    "BossBattleParticipant",
    "GameConfig",
    "TransactionLog",
]
