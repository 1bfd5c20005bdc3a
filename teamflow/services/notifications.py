"""Outbound side-effect ports used by the After phase of actions."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Protocol

from ..models.principal import PrincipalRef

logger = logging.getLogger(__name__)


class NotificationKind:
    TEAM_CREATED = "team_created"
    TEAM_ACTIVATED = "team_activated"
    TEAM_SUSPENDED = "team_suspended"
    TEAM_ARCHIVED = "team_archived"
    TEAM_RESTORED = "team_restored"
    TEAM_UPDATED = "team_updated"
    MEMBER_ADDED = "member_added"
    MEMBER_JOINED = "member_joined"
    MEMBER_REMOVED = "member_removed"
    MEMBER_LEFT = "member_left"
    INVITATION = "team_invitation"
    INVITATION_SENT = "invitation_sent"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_REJECTED = "invitation_rejected"
    WELCOME = "team_welcome"


class NotificationDispatcher(Protocol):
    async def dispatch(self, recipients: Iterable[Any], kind: str, payload: Dict[str, Any]) -> None: ...


class LoggingNotificationDispatcher:
    """Writes every notification to the log instead of delivering it."""

    async def dispatch(self, recipients: Iterable[Any], kind: str, payload: Dict[str, Any]) -> None:
        recipients = [str(r) for r in recipients]
        logger.info(f"Notification {kind} -> {', '.join(recipients) or '(nobody)'}: {payload}")


class ResourceHooks(Protocol):
    """Host-provided hooks for the resources a team owns outside this package."""

    async def initialize_team_defaults(self, team_id: str) -> None: ...

    async def initialize_resources(self, team_id: str) -> None: ...

    async def revoke_sessions(self, team_id: str) -> None: ...

    async def cleanup_team_resources(self, team_id: str) -> None: ...

    async def cleanup_member_resources(self, team_id: str, user: PrincipalRef) -> None: ...

    async def archive_files(self, team_id: str) -> None: ...

    async def restore_resources(self, team_id: str) -> None: ...

    async def restore_files(self, team_id: str) -> None: ...

    async def update_search_index(self, team_id: str) -> None: ...

    async def schedule_invitation_reminder(self, invitation_id: str, remind_at: datetime) -> None: ...


class LoggingResourceHooks:
    async def initialize_team_defaults(self, team_id: str) -> None:
        logger.info(f"Initializing default resources for team {team_id}")

    async def initialize_resources(self, team_id: str) -> None:
        logger.info(f"Initializing resources for team {team_id}")

    async def revoke_sessions(self, team_id: str) -> None:
        logger.info(f"Revoking active sessions for team {team_id}")

    async def cleanup_team_resources(self, team_id: str) -> None:
        logger.info(f"Cleaning up resources for team {team_id}")

    async def cleanup_member_resources(self, team_id: str, user: PrincipalRef) -> None:
        logger.info(f"Cleaning up resources of {user} in team {team_id}")

    async def archive_files(self, team_id: str) -> None:
        logger.info(f"Archiving files for team {team_id}")

    async def restore_resources(self, team_id: str) -> None:
        logger.info(f"Restoring resources for team {team_id}")

    async def restore_files(self, team_id: str) -> None:
        logger.info(f"Restoring files for team {team_id}")

    async def update_search_index(self, team_id: str) -> None:
        logger.info(f"Updating search index for team {team_id}")

    async def schedule_invitation_reminder(self, invitation_id: str, remind_at: datetime) -> None:
        logger.info(f"Scheduled reminder for invitation {invitation_id} at {remind_at.isoformat()}")
