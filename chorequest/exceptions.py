from typing import Optional, Any, Dict


class ChoreQuestException(Exception):
    """
    Base exception for all ChoreQuest engine errors.

    Provides structured error information with details for logging and for the
    request handler to turn into a user-facing message. The engine never formats
    user-visible text itself.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error

    Example:
        >>> raise ChoreQuestException("Something went wrong", {"quest_id": "q-1"})
    """

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class InvalidStateTransitionError(ChoreQuestException):
    """
    Raised when a quest transition is not legal from its current status.

    Args:
        quest_id: Quest instance ID
        current_status: Status the quest is in
        target_status: Status the caller tried to move it to

    Example:
        >>> raise InvalidStateTransitionError("q-1", "IN_PROGRESS", "APPROVED")
    """

    def __init__(self, quest_id: str, current_status: str, target_status: str):
        self.quest_id = quest_id
        self.current_status = current_status
        self.target_status = target_status
        message = f"Quest {quest_id} cannot move from {current_status} to {target_status}"
        super().__init__(message, {
            "quest_id": quest_id,
            "current_status": current_status,
            "target_status": target_status
        })


class AlreadyApprovedError(ChoreQuestException):
    """
    Raised when an exactly-once payout has already happened.

    Covers re-approving an APPROVED quest and re-distributing a boss battle.

    Args:
        resource_type: "quest" or "boss_battle"
        resource_id: ID of the already-settled record
    """

    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} {resource_id} has already been approved"
        super().__init__(message, {"resource_type": resource_type, "resource_id": resource_id})


class ApprovalConflictError(ChoreQuestException):
    """
    Raised when a concurrent approval held the row and the data store aborted ours.

    Nothing was written. Safe to retry; the retry will either succeed or raise
    AlreadyApprovedError.

    Args:
        resource_id: ID of the contended record
        original_error: Driver error reported by the data store
    """

    retryable = True

    def __init__(self, resource_id: str, original_error: Optional[Exception] = None):
        self.resource_id = resource_id
        self.original_error = original_error
        message = f"Concurrent approval conflict on {resource_id}"
        super().__init__(message, {
            "resource_id": resource_id,
            "error": str(original_error) if original_error else None
        })


class UnauthorizedError(ChoreQuestException):
    """
    Raised when the acting user lacks the role or ownership for an action.

    Args:
        user_id: Acting user
        action: Attempted action (approve_quest, start_quest, ...)
        reason: Why it was refused
    """

    def __init__(self, user_id: str, action: str, reason: str):
        self.user_id = user_id
        self.action = action
        message = f"User {user_id} may not {action}: {reason}"
        super().__init__(message, {"user_id": user_id, "action": action, "reason": reason})


class InvalidTimezoneError(ChoreQuestException):
    """
    Raised when an IANA timezone identifier cannot be resolved.

    Args:
        timezone: The offending identifier
    """

    def __init__(self, timezone: Any):
        self.timezone = timezone
        message = f"Invalid timezone: {timezone!r}"
        super().__init__(message, {"timezone": str(timezone)})


class NotFoundError(ChoreQuestException):
    """
    Raised when a referenced record does not exist.

    Args:
        resource_type: Kind of record (quest, character, streak, boss_battle, family)
        resource_id: Lookup key

    Example:
        >>> raise NotFoundError("quest", "q-404")
    """

    def __init__(self, resource_type: str, resource_id: Any):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} not found: {resource_id}"
        super().__init__(message, {"resource_type": resource_type, "resource_id": str(resource_id)})


class ValidationError(ChoreQuestException):
    """
    Raised when caller input fails validation.

    Args:
        field: Name of the field that failed validation
        message: Description of why validation failed
    """

    def __init__(self, field: str, message: str):
        self.field = field
        error_message = f"Validation error for {field}: {message}"
        super().__init__(error_message, {"field": field, "message": message})


class ConfigurationError(ChoreQuestException):
    """
    Raised when configuration is invalid or missing.

    Args:
        config_key: The configuration key that has issues
        message: Description of the configuration problem
    """

    def __init__(self, config_key: str, message: str):
        self.config_key = config_key
        error_message = f"Configuration error for {config_key}: {message}"
        super().__init__(error_message, {"config_key": config_key, "message": message})


class DatabaseError(ChoreQuestException):
    """
    Raised when database operations fail.

    Args:
        operation: Description of the operation that failed
        original_error: The underlying exception
    """

    def __init__(self, operation: str, original_error: Exception):
        self.operation = operation
        self.original_error = original_error
        message = f"Database error during {operation}: {str(original_error)}"
        super().__init__(message, {"operation": operation, "error": str(original_error)})
