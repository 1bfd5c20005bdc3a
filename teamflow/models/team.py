"""Team model definition."""

import uuid
from typing import Any, Optional

from tortoise import fields, models

from .enums import TeamStatus, TeamType
from .principal import PrincipalRef


class Team(models.Model):
    """A collaborative group with a lifecycle state and a polymorphic owner."""

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    name = fields.CharField(max_length=255)
    slug = fields.CharField(max_length=255, unique=True)
    description = fields.TextField(null=True)
    type = fields.CharEnumField(TeamType, max_length=50, default=TeamType.PROJECT)
    status = fields.CharEnumField(TeamStatus, max_length=50, default=TeamStatus.DRAFT, index=True)
    settings = fields.JSONField(default=dict)
    tenant_id = fields.CharField(max_length=255, null=True, index=True)
    owner_type = fields.CharField(max_length=100, null=True)
    owner_id = fields.CharField(max_length=255, null=True)
    members_count = fields.IntField(default=0)
    files_count = fields.IntField(default=0)
    storage_used = fields.BigIntField(default=0)
    last_activity_at = fields.DatetimeField(null=True)
    deleted_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    memberships = fields.ReverseRelation["Membership"]
    invitations = fields.ReverseRelation["Invitation"]

    class Meta:
        """Tortoise ORM model configuration."""

        table = "teams"

    def __str__(self) -> str:
        """String representation of the team."""
        return f"<Team {self.slug} status={self.status}>"

    @property
    def owner(self) -> Optional[PrincipalRef]:
        return PrincipalRef.of(self.owner_type, self.owner_id)

    @property
    def cache_tag(self) -> str:
        return f"team:{self.id}"

    def is_owned_by(self, principal: Optional[PrincipalRef]) -> bool:
        return principal is not None and self.owner == principal

    def get_setting(self, path: str, default: Any = None) -> Any:
        node: Any = self.settings or {}
        for key in path.split("."):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node
