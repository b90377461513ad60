from uuid import uuid4
from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime
from pydantic import NaiveDatetime

from chorequest.utils.timezone_utils import utc_now_naive


class Family(SQLModel, table=True):
    """
    A household: the tenant every quest, character and battle belongs to.

    Attributes:
        name: Display name
        timezone: IANA identifier used for all streak and due-date calendar math
        week_start_day: 0=Sunday ... 6=Saturday
    """

    __tablename__ = "families"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=36)
    name: str = Field(max_length=100)
    timezone: str = Field(default="UTC", max_length=64)
    week_start_day: int = Field(default=0, ge=0, le=6)
    created_at: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)

    def __repr__(self) -> str:
        return f"<Family(id='{self.id}', name='{self.name}', tz='{self.timezone}')>"
