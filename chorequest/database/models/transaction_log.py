from typing import Optional, Dict, Any
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import DateTime, Index, JSON, Text
from pydantic import NaiveDatetime

from chorequest.database.models.enums import TransactionType
from chorequest.utils.timezone_utils import utc_now_naive


class TransactionLog(SQLModel, table=True):
    """
    Append-only audit trail of every payout.

    Written in the same transaction as the stat change it describes, so an
    entry exists if and only if the payout committed.

    Attributes:
        user_id: User whose character was paid
        character_id: Character that received the change
        transaction_type: QUEST_REWARD, BOSS_VICTORY, ...
        xp_change / gold_change / gems_change / honor_change: Signed deltas
        related_id: Quest or boss battle that caused the entry
        details: Structured data (multipliers, streak, level-up metadata)
        context: Where the transaction originated (operation name)

    Indexes:
        - (user_id, timestamp) for history queries
        - (related_id, transaction_type) for payout lookups
        - timestamp for cleanup of old logs
    """

    __tablename__ = "transaction_logs"
    __table_args__ = (
        Index("ix_transaction_logs_user_time", "user_id", "timestamp"),
        Index("ix_transaction_logs_related_type", "related_id", "transaction_type"),
        Index("ix_transaction_logs_timestamp", "timestamp"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(max_length=36, index=True)
    character_id: Optional[str] = Field(default=None, max_length=36)

    transaction_type: TransactionType = Field(nullable=False)
    description: str = Field(default="", max_length=500)

    xp_change: int = Field(default=0)
    gold_change: int = Field(default=0)
    gems_change: int = Field(default=0)
    honor_change: int = Field(default=0)
    related_id: Optional[str] = Field(default=None, max_length=36)

    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    context: str = Field(default="unknown", sa_column=Column(Text, nullable=False))

    timestamp: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)

    def __repr__(self) -> str:
        return (
            f"<TransactionLog(id={self.id}, user='{self.user_id}', "
            f"type={self.transaction_type}, time={self.timestamp})>"
        )
