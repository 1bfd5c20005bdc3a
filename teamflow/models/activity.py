"""Append-only activity log."""

import uuid

from tortoise import fields, models


class ActivityLog(models.Model):
    """Audit row written inside the transaction of every mutating action."""

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    subject_type = fields.CharField(max_length=50)
    subject_id = fields.CharField(max_length=255, index=True)
    actor_type = fields.CharField(max_length=100, null=True)
    actor_id = fields.CharField(max_length=255, null=True)
    action = fields.CharField(max_length=100)
    description = fields.CharField(max_length=255, null=True)
    properties = fields.JSONField(default=dict)
    tenant_id = fields.CharField(max_length=255, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Tortoise ORM model configuration."""

        table = "team_activity_log"

    def __str__(self) -> str:
        return f"<ActivityLog {self.action} {self.subject_type}:{self.subject_id}>"
