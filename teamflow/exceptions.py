"""Error taxonomy shared by the action pipeline and the services it composes."""

from typing import Any, Dict, List, Optional


class TeamsError(Exception):
    """Base class for every domain failure.

    Attributes:
        message: Human-readable reason.
        code: Stable machine-readable identifier.
        field: Input field the error is attached to, if any.
        details: Structured extra context.
    """

    code = "teams_error"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}
        if code:
            self.code = code

    def to_errors(self) -> List[Dict[str, Any]]:
        return [{"code": self.code, "message": self.message, "field": self.field}]

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationFailed(TeamsError):
    code = "validation_failed"

    def __init__(self, message: str = "The given data was invalid.", field_errors=None, **kwargs):
        super().__init__(message, **kwargs)
        self.field_errors: Dict[str, List[str]] = field_errors or {}

    def to_errors(self) -> List[Dict[str, Any]]:
        if not self.field_errors:
            return super().to_errors()
        return [
            {"code": self.code, "message": message, "field": field}
            for field, messages in self.field_errors.items()
            for message in messages
        ]


class Forbidden(TeamsError):
    code = "forbidden"


class Conflict(TeamsError):
    code = "conflict"


class InvalidTransition(Conflict):
    code = "invalid_transition"


class AlreadyMember(Conflict):
    code = "already_member"


class LastOwnerRemoval(Conflict):
    code = "last_owner_removal"


class MemberLimitReached(Conflict):
    code = "member_limit_reached"


class DuplicatePendingInvitation(Conflict):
    code = "duplicate_pending_invitation"


class PendingInvitationLimitReached(Conflict):
    code = "pending_invitation_limit_reached"


class ResendLimitExceeded(Conflict):
    code = "resend_limit_exceeded"


class ResendTooSoon(Conflict):
    code = "resend_too_soon"


class NotFound(TeamsError):
    code = "not_found"

    def __init__(self, resource_type: str, resource_id: Any, **kwargs):
        super().__init__(f"{resource_type} {resource_id} not found", **kwargs)
        self.details.setdefault("resource_type", resource_type)
        self.details.setdefault("resource_id", str(resource_id))


class InvalidToken(TeamsError):
    code = "invalid_token"


class InvalidOrExpiredInvitation(InvalidToken):
    code = "invalid_or_expired_invitation"

    def __init__(self, message: str = "This invitation is invalid or has expired.", **kwargs):
        super().__init__(message, field=kwargs.pop("field", "token"), **kwargs)


class Expired(TeamsError):
    code = "expired"


class SideEffectFailed(TeamsError):
    code = "side_effect_failed"


class Unavailable(TeamsError):
    code = "unavailable"

    def __init__(self, message: str = "The service is temporarily unavailable.", **kwargs):
        super().__init__(message, **kwargs)
