from typing import Optional
from uuid import uuid4
from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime, Index, UniqueConstraint
from pydantic import NaiveDatetime

from chorequest.database.models.enums import BossBattleStatus, ParticipationStatus
from chorequest.utils.timezone_utils import utc_now_naive


class BossBattle(SQLModel, table=True):
    """
    A family-wide event with a shared reward pool.

    Attributes:
        reward_gold / reward_xp / honor_reward: Base reward per full participant
        rewards_distributed: Set exactly once when payouts are made
        version: Compared and swapped by reward distribution

    Indexes:
        - (family_id, status, defeated_at) for leaderboard windows
    """

    __tablename__ = "boss_battles"
    __table_args__ = (
        Index("ix_boss_battles_family_status_defeated", "family_id", "status", "defeated_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    family_id: str = Field(foreign_key="families.id", index=True, max_length=36)
    name: str = Field(max_length=200)
    status: BossBattleStatus = Field(default=BossBattleStatus.ACTIVE)
    defeated_at: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)

    reward_gold: int = Field(default=0, ge=0)
    reward_xp: int = Field(default=0, ge=0)
    honor_reward: int = Field(default=0, ge=0)
    rewards_distributed: bool = Field(default=False)
    version: int = Field(default=1, ge=1)

    created_at: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)

    def __repr__(self) -> str:
        return (
            f"<BossBattle(id='{self.id}', name='{self.name}', status={self.status}, "
            f"distributed={self.rewards_distributed})>"
        )


class BossBattleParticipant(SQLModel, table=True):
    """
    One user's share of a boss battle.

    participation_status is kept as plain text so that rows written by other
    tools with unknown statuses still load; the scorer gives them 0.
    """

    __tablename__ = "boss_battle_participants"
    __table_args__ = (
        UniqueConstraint(
            "boss_battle_id", "user_id",
            name="uq_boss_battle_participants_battle_user"
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    boss_battle_id: str = Field(foreign_key="boss_battles.id", index=True, max_length=36)
    user_id: str = Field(index=True, max_length=36)

    participation_status: str = Field(default=ParticipationStatus.NONE.value, max_length=20)
    awarded_gold: int = Field(default=0, ge=0)
    awarded_xp: int = Field(default=0, ge=0)
    honor_awarded: int = Field(default=0, ge=0)

    approved_at: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)
    approved_by: Optional[str] = Field(default=None, max_length=36)

    def __repr__(self) -> str:
        return (
            f"<BossBattleParticipant(battle='{self.boss_battle_id}', user='{self.user_id}', "
            f"status={self.participation_status})>"
        )
