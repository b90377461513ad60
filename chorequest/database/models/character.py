from typing import Optional
from uuid import uuid4
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import DateTime, BigInteger, Index
from pydantic import NaiveDatetime

from chorequest.database.models.enums import CharacterClass
from chorequest.utils.timezone_utils import utc_now_naive


class Character(SQLModel, table=True):
    """
    A family member's game persona.

    Stats are mutated only inside an approval or boss-distribution transaction.
    xp is the cumulative total; level is derived from it by the level curve.

    Attributes:
        user_id: Owning user (one character per user)
        character_class: Archetype conferring reward multipliers (None = no bonus)
        level: Current level (>= 1, never decreases)
        xp: Cumulative experience
        gold / gems / honor_points: Currencies
        active_family_quest_id: FAMILY quest currently held (one at a time)

    Indexes:
        - user_id (unique)
        - (family_id, level) for family leaderboards
    """

    __tablename__ = "characters"
    __table_args__ = (
        Index("ix_characters_family_level", "family_id", "level"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    user_id: str = Field(unique=True, index=True, max_length=36)
    family_id: str = Field(foreign_key="families.id", index=True, max_length=36)
    name: str = Field(max_length=100)
    character_class: Optional[CharacterClass] = Field(default=None)

    level: int = Field(default=1, ge=1)
    xp: int = Field(default=0, ge=0, sa_column=Column(BigInteger, nullable=False, default=0))
    gold: int = Field(default=0, ge=0, sa_column=Column(BigInteger, nullable=False, default=0))
    gems: int = Field(default=0, ge=0)
    honor_points: int = Field(default=0, ge=0)

    active_family_quest_id: Optional[str] = Field(default=None, max_length=36)
    last_level_up: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)
    created_at: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)
    updated_at: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)

    def __repr__(self) -> str:
        return (
            f"<Character(id='{self.id}', name='{self.name}', "
            f"class={self.character_class}, level={self.level}, xp={self.xp})>"
        )
