"""Team invitation model definition."""

import uuid
from datetime import datetime
from typing import Optional

from tortoise import fields, models

from ..utils.clock import as_utc, utcnow
from .enums import InvitationStatus
from .principal import PrincipalRef


class Invitation(models.Model):
    """A time-limited, tokenized offer to join a team.

    ``pending_slot`` mirrors ``live_slot`` on memberships: set while the
    invitation is pending, cleared on any terminal transition, so at most one
    pending row exists per ``(team, email)``.
    """

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    team = fields.ForeignKeyField("models.Team", related_name="invitations", on_delete=fields.CASCADE)
    email = fields.CharField(max_length=255, index=True)
    token = fields.CharField(max_length=64, unique=True)
    role = fields.CharField(max_length=50, default="member")
    permissions = fields.JSONField(default=list)
    status = fields.CharEnumField(InvitationStatus, max_length=50, default=InvitationStatus.PENDING)
    pending_slot = fields.BooleanField(null=True, default=True)
    message = fields.TextField(null=True)
    invited_by_type = fields.CharField(max_length=100, null=True)
    invited_by_id = fields.CharField(max_length=255, null=True)
    accepted_by_type = fields.CharField(max_length=100, null=True)
    accepted_by_id = fields.CharField(max_length=255, null=True)
    expires_at = fields.DatetimeField(index=True)
    accepted_at = fields.DatetimeField(null=True)
    rejected_at = fields.DatetimeField(null=True)
    cancelled_at = fields.DatetimeField(null=True)
    resend_count = fields.IntField(default=0)
    last_sent_at = fields.DatetimeField(null=True)
    tenant_id = fields.CharField(max_length=255, null=True, index=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        """Tortoise ORM model configuration."""

        table = "team_invitations"
        unique_together = (("team", "email", "pending_slot"),)

    def __str__(self) -> str:
        """String representation of the invitation."""
        return f"<Invitation {self.email} status={self.status}>"

    @property
    def inviter(self) -> Optional[PrincipalRef]:
        return PrincipalRef.of(self.invited_by_type, self.invited_by_id)

    @property
    def acceptor(self) -> Optional[PrincipalRef]:
        return PrincipalRef.of(self.accepted_by_type, self.accepted_by_id)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return as_utc(self.expires_at) < now

    def is_actionable(self, now: Optional[datetime] = None) -> bool:
        return self.status == InvitationStatus.PENDING and not self.is_expired(now)

    def days_until_expiry(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return max(0, (as_utc(self.expires_at) - now).days)
