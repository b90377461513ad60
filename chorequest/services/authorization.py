from dataclasses import dataclass

from chorequest.database.models.enums import UserRole
from chorequest.exceptions import UnauthorizedError


@dataclass(frozen=True)
class Actor:
    """
    The authenticated user performing an operation.

    Supplied by the request handler's session layer; the engine trusts it.
    """

    user_id: str
    role: UserRole
    family_id: str

    @property
    def is_guardian(self) -> bool:
        return self.role == UserRole.GUILD_MASTER


def require_same_family(actor: Actor, family_id: str, action: str) -> None:
    if actor.family_id != family_id:
        raise UnauthorizedError(actor.user_id, action, "belongs to a different family")


def require_guardian(actor: Actor, family_id: str, action: str) -> None:
    """
    Raises:
        UnauthorizedError: Unless the actor is a Guild Master of the family
    """
    require_same_family(actor, family_id, action)
    if not actor.is_guardian:
        raise UnauthorizedError(actor.user_id, action, "requires the GUILD_MASTER role")


def require_performer(actor: Actor, family_id: str, assigned_to_id: str, action: str) -> None:
    """
    Raises:
        UnauthorizedError: Unless the actor is the quest's assigned performer
    """
    require_same_family(actor, family_id, action)
    if assigned_to_id is None or actor.user_id != assigned_to_id:
        raise UnauthorizedError(actor.user_id, action, "only the assigned performer may do this")
