"""Team membership model definition."""

import uuid
from typing import List

from tortoise import fields, models

from .enums import MembershipStatus
from .principal import PrincipalRef


class Membership(models.Model):
    """Join entity linking a principal to a team with a role and permissions.

    ``live_slot`` is ``True`` for every row that has not been removed and
    ``NULL`` afterwards, so the unique index over
    ``(team, user_type, user_id, live_slot)`` only ever holds one live row
    per principal while removed history rows never collide.
    """

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    team = fields.ForeignKeyField("models.Team", related_name="memberships", on_delete=fields.CASCADE)
    user_type = fields.CharField(max_length=100)
    user_id = fields.CharField(max_length=255)
    role = fields.CharField(max_length=50, default="member")
    permissions = fields.JSONField(default=list)
    status = fields.CharEnumField(MembershipStatus, max_length=50, default=MembershipStatus.ACTIVE)
    live_slot = fields.BooleanField(null=True, default=True)
    joined_at = fields.DatetimeField(null=True)
    last_activity_at = fields.DatetimeField(null=True)
    removed_at = fields.DatetimeField(null=True)
    removed_by = fields.CharField(max_length=255, null=True)
    removal_reason = fields.TextField(null=True)
    archived_at = fields.DatetimeField(null=True)
    tenant_id = fields.CharField(max_length=255, null=True, index=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        """Tortoise ORM model configuration."""

        table = "team_members"
        unique_together = (("team", "user_type", "user_id", "live_slot"),)

    def __str__(self) -> str:
        """String representation of the membership."""
        return f"<Membership {self.user_type}:{self.user_id} role={self.role}>"

    @property
    def user(self) -> PrincipalRef:
        return PrincipalRef(kind=self.user_type, id=self.user_id)

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE

    @property
    def is_admin(self) -> bool:
        return self.role in ("owner", "admin")

    def granted(self) -> List[str]:
        return list(self.permissions or [])
