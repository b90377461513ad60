from typing import Optional, Any
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import DateTime, JSON, UniqueConstraint
from pydantic import NaiveDatetime

from chorequest.utils.timezone_utils import utc_now_naive

GLOBAL_SCOPE = "global"


class GameConfig(SQLModel, table=True):
    """
    Balance overrides stored in the database.

    Allows balance changes without code deployment. Rows in the "global" scope
    apply to every family; rows whose scope is a family ID override them for
    that family only. ConfigManager merges and caches these values.

    Attributes:
        scope: "global" or a family ID
        config_key: Top-level key (e.g. 'class_bonuses', 'level_curve')
        config_value: JSON data containing configuration
        description: Human-readable description
        last_modified: Timestamp of last update
        modified_by: User/system that made the change
    """

    __tablename__ = "game_config"
    __table_args__ = (
        UniqueConstraint("scope", "config_key", name="uq_game_config_scope_key"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    scope: str = Field(default=GLOBAL_SCOPE, max_length=36, index=True)
    config_key: str = Field(max_length=100, index=True)

    config_value: Any = Field(sa_column=Column(JSON, nullable=False))
    description: str = Field(default="", max_length=500)

    last_modified: NaiveDatetime = Field(default_factory=utc_now_naive, nullable=False, sa_type=DateTime)
    modified_by: Optional[str] = Field(default=None, max_length=100)

    def __repr__(self) -> str:
        return (
            f"<GameConfig(scope='{self.scope}', key='{self.config_key}', "
            f"modified={self.last_modified})>"
        )
