from .database_service import DatabaseService
from .config_manager import ConfigManager
from .logger import get_logger
from .event_bus import EventBus
from .transaction_logger import TransactionLogger
from .authorization import Actor
from .streak_service import StreakService, calculate_streak_bonus
from .reward_service import RewardBundle, RewardService
from .progression_service import LevelUpResult, ProgressionService
from .quest_service import ApprovalResult, ExpirationResult, QuestService
from .boss_battle_service import BossBattleService, ParticipantDecision, ParticipantStanding
from .engine import ChoreQuestEngine

__all__ = [
    "DatabaseService",
    "ConfigManager",
    "get_logger",
    "EventBus",
    "TransactionLogger",
    "Actor",
    "StreakService",
    "calculate_streak_bonus",
    "RewardBundle",
    "RewardService",
    "LevelUpResult",
    "ProgressionService",
    "ApprovalResult",
    "ExpirationResult",
    "QuestService",
    "BossBattleService",
    "ParticipantDecision",
    "ParticipantStanding",
    "ChoreQuestEngine",
]
