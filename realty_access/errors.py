"""Error taxonomy for the authorization core.

Every error carries a stable ``reason`` code so the admin UI can render an
accurate message without matching on text.
"""


class AccessError(Exception):
    """Base exception for all authorization-core errors."""

    status_code = 400
    default_reason = "error"

    def __init__(self, message: str, reason: str | None = None) -> None:
        """
        Initialize AccessError.

        Args:
            message: Human readable message
            reason: Machine readable reason code
        """
        self.message = message
        self.reason = reason or self.default_reason
        super().__init__(self.message)


class Unauthenticated(AccessError):
    """No, invalid, expired or revoked credential."""

    status_code = 401
    default_reason = "unauthenticated"

    def __init__(self, message: str = "Authentication required", reason: str | None = None) -> None:
        super().__init__(message, reason)


class Unauthorized(AccessError):
    """Valid principal, but insufficient permission or inactive membership."""

    status_code = 403
    default_reason = "unauthorized"

    def __init__(self, message: str = "Permission denied", reason: str | None = None) -> None:
        super().__init__(message, reason)


class InvalidState(AccessError):
    """Operation is not allowed from the entity's current state."""

    status_code = 409
    default_reason = "invalid_state"


class NotFound(AccessError):
    """Referenced role, permission, membership or invitation does not exist."""

    status_code = 404
    default_reason = "not_found"


class Conflict(AccessError):
    """Duplicate pending invitation, already a member, duplicate key."""

    status_code = 409
    default_reason = "conflict"


class ValidationFailed(AccessError):
    """Input rejected before any state change (e.g. weak password)."""

    status_code = 400
    default_reason = "validation_failed"


class RateLimited(AccessError):
    """Too many requests from one client for a throttled route."""

    status_code = 429
    default_reason = "rate_limited"

    def __init__(self, message: str, retry_after: int, reason: str | None = None) -> None:
        super().__init__(message, reason)
        self.retry_after = retry_after
