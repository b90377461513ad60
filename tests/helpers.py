from typing import List, Optional

from chorequest.database.models import Character, Family, TransactionLog, TransactionType, UserRole
from chorequest.services.authorization import Actor
from chorequest.services.database_service import DatabaseService
from chorequest.services.transaction_logger import TransactionLogger


def guardian_of(family: Family, user_id: str = "guardian-1") -> Actor:
    return Actor(user_id=user_id, role=UserRole.GUILD_MASTER, family_id=family.id)


def hero(character: Character) -> Actor:
    return Actor(user_id=character.user_id, role=UserRole.HERO, family_id=character.family_id)


async def reload(model, record_id):
    """Fresh copy of a row from a new session."""
    async with DatabaseService.get_session() as session:
        return await session.get(model, record_id)


async def audit_entries(
    related_id: str,
    transaction_type: Optional[TransactionType] = None
) -> List[TransactionLog]:
    async with DatabaseService.get_session() as session:
        return await TransactionLogger.get_entries_for(session, related_id, transaction_type)
