from typing import Optional
from uuid import uuid4
from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime, UniqueConstraint
from pydantic import NaiveDatetime

from chorequest.utils.timezone_utils import utc_now_naive


class StreakRecord(SQLModel, table=True):
    """
    Consecutive on-schedule completions of one template by one character.

    Created lazily on first completion; never deleted. current_streak may reset
    to 0, longest_streak never decreases.

    Constraints:
        - (character_id, template_id) unique, backing the create-if-absent upsert
    """

    __tablename__ = "character_quest_streaks"
    __table_args__ = (
        UniqueConstraint(
            "character_id", "template_id",
            name="uq_character_quest_streaks_character_template"
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    character_id: str = Field(foreign_key="characters.id", index=True, max_length=36)
    template_id: str = Field(index=True, max_length=36)

    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_completed_at: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)

    created_at: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)
    updated_at: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)

    def __repr__(self) -> str:
        return (
            f"<StreakRecord(character='{self.character_id}', template='{self.template_id}', "
            f"current={self.current_streak}, longest={self.longest_streak})>"
        )
