from typing import Dict, Any, Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from chorequest.database.models.enums import TransactionType
from chorequest.database.models.transaction_log import TransactionLog
from chorequest.services.logger import get_logger
from chorequest.utils.timezone_utils import as_naive_utc, utc_now_naive

logger = get_logger(__name__)


class TransactionLogger:
    """
    Centralized audit logging for every payout.

    Entries are added to the caller's session and committed with the stat change
    they describe. Failures propagate: a payout whose audit entry cannot be
    written must roll back with it.

    Transaction Types:
        - QUEST_REWARD: quest approval payout
        - BOSS_VICTORY: boss battle reward distribution
        - STREAK_RESET: streak broken by a missed recurring quest

    Usage:
        >>> async with DatabaseService.get_transaction() as session:
        ...     await TransactionLogger.log_transaction(
        ...         session=session,
        ...         user_id=character.user_id,
        ...         transaction_type=TransactionType.QUEST_REWARD,
        ...         details={"quest_id": quest.id},
        ...         context="approve_quest"
        ...     )
    """

    @staticmethod
    async def log_transaction(
        session: AsyncSession,
        user_id: str,
        transaction_type: TransactionType,
        details: Dict[str, Any],
        context: Optional[str] = None,
        character_id: Optional[str] = None,
        related_id: Optional[str] = None,
        description: str = "",
        changes: Optional[Dict[str, int]] = None,
        timestamp: Optional[datetime] = None
    ) -> TransactionLog:
        """
        Add an audit entry to the current transaction.

        Args:
            session: Database session (must be part of active transaction)
            user_id: User whose character changed
            transaction_type: Kind of transaction
            details: Structured data about the transaction
            context: Where the transaction originated (operation name)
            character_id: Character that changed
            related_id: Quest or boss battle ID
            description: Short human-readable summary
            changes: Signed deltas keyed xp/gold/gems/honor
            timestamp: When it happened (defaults to now)

        Returns:
            The pending TransactionLog row
        """
        changes = changes or {}
        log_entry = TransactionLog(
            user_id=user_id,
            character_id=character_id,
            transaction_type=transaction_type,
            description=description,
            xp_change=changes.get("xp", 0),
            gold_change=changes.get("gold", 0),
            gems_change=changes.get("gems", 0),
            honor_change=changes.get("honor", 0),
            related_id=related_id,
            details=details,
            context=context or "unknown",
            timestamp=as_naive_utc(timestamp) if timestamp else utc_now_naive()
        )

        session.add(log_entry)

        logger.info(
            f"TRANSACTION: user={user_id} type={transaction_type.value} "
            f"related={related_id} changes={changes} context={context}"
        )
        return log_entry

    @staticmethod
    async def get_entries_for(
        session: AsyncSession,
        related_id: str,
        transaction_type: Optional[TransactionType] = None
    ) -> list:
        """Audit entries recorded against a quest or boss battle, oldest first."""
        query = select(TransactionLog).where(TransactionLog.related_id == related_id)
        if transaction_type is not None:
            query = query.where(TransactionLog.transaction_type == transaction_type)
        result = await session.execute(query.order_by(TransactionLog.id))
        return list(result.scalars().all())
