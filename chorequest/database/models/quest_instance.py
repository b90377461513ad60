from typing import Optional
from uuid import uuid4
from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime, Index
from pydantic import NaiveDatetime

from chorequest.database.models.enums import (
    QuestCategory,
    QuestDifficulty,
    QuestStatus,
    QuestType,
    RecurrencePattern,
)
from chorequest.utils.timezone_utils import utc_now_naive


class QuestInstance(SQLModel, table=True):
    """
    One occurrence of a chore, from the family board to payout.

    Created by template expansion or a guardian outside the engine; the engine
    reads it and advances its status.

    Attributes:
        xp_reward / gold_reward / gems_reward / honor_reward: Base rewards
        assigned_to_id: Performing user's ID
        volunteered_by: Character ID that claimed a FAMILY quest itself
        volunteer_bonus: Fraction granted for volunteering (None when assigned)
        template_id: Recurring template, None for ad-hoc quests
        streak_count / streak_bonus: Snapshot taken at approval
        version: Bumped on every status change; approval compares and swaps it

    Invariants:
        - completed_at set only in COMPLETED or APPROVED
        - approved_at set only in APPROVED, and never before completed_at

    Indexes:
        - (family_id, status) for board queries
        - (status, due_date) for the expiry sweep
    """

    __tablename__ = "quest_instances"
    __table_args__ = (
        Index("ix_quest_instances_family_status", "family_id", "status"),
        Index("ix_quest_instances_status_due", "status", "due_date"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    family_id: str = Field(foreign_key="families.id", index=True, max_length=36)
    title: str = Field(max_length=200)
    description: str = Field(default="", max_length=1000)

    xp_reward: int = Field(default=0, ge=0)
    gold_reward: int = Field(default=0, ge=0)
    gems_reward: int = Field(default=0, ge=0)
    honor_reward: int = Field(default=0, ge=0)

    difficulty: QuestDifficulty = Field(default=QuestDifficulty.EASY)
    category: QuestCategory = Field(default=QuestCategory.DAILY)
    quest_type: QuestType = Field(default=QuestType.INDIVIDUAL)
    recurrence_pattern: RecurrencePattern = Field(default=RecurrencePattern.NONE)
    status: QuestStatus = Field(default=QuestStatus.PENDING, index=True)

    assigned_to_id: Optional[str] = Field(default=None, index=True, max_length=36)
    volunteered_by: Optional[str] = Field(default=None, max_length=36)
    volunteer_bonus: Optional[float] = Field(default=None, ge=0)
    template_id: Optional[str] = Field(default=None, index=True, max_length=36)

    due_date: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)
    completed_at: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)
    approved_at: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)

    streak_count: Optional[int] = Field(default=None, ge=0)
    streak_bonus: Optional[float] = Field(default=None, ge=0)

    version: int = Field(default=1, ge=1)
    created_at: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)
    updated_at: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)

    def is_recurring(self) -> bool:
        """True for template quests with a recurrence pattern (streak-eligible)."""
        return (
            self.template_id is not None
            and self.recurrence_pattern != RecurrencePattern.NONE
        )

    def __repr__(self) -> str:
        return (
            f"<QuestInstance(id='{self.id}', title='{self.title}', "
            f"status={self.status}, assignee={self.assigned_to_id})>"
        )
