import logging
from typing import Dict, List, Optional

from pydantic import BaseModel
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from ..config.settings import TeamsSettings
from ..models.activity import ActivityLog
from ..models.enums import TeamStatus
from ..models.membership import Membership
from ..models.team import Team
from ..utils.clock import days_ago
from ..workflows.lifecycle import TeamWorkflow
from .cache import TagCache
from .events import DomainEvent, EventBus, EventKind
from .invitations import InvitationService
from .permissions import PermissionResolver

logger = logging.getLogger(__name__)


class CounterDrift(BaseModel):
    team_id: str
    stored: int
    actual: int


class MaintenanceReport(BaseModel):
    task: str
    dry_run: bool
    affected: int = 0
    details: List[Dict] = []


class MaintenanceService:
    """Periodic housekeeping that sits outside the request path."""

    def __init__(
        self,
        settings: TeamsSettings,
        event_bus: Optional[EventBus] = None,
        cache: Optional[TagCache] = None,
    ):
        self.settings = settings
        self.event_bus = event_bus
        self.cache = cache
        resolver = PermissionResolver(settings)
        self.invitations = InvitationService(settings, resolver)
        self.workflow = TeamWorkflow(resolver)

    async def remove_expired_invitations(self, days: int = 0, dry_run: bool = False) -> MaintenanceReport:
        expired = await self.invitations.list_expired(days)
        details = [{"invitation_id": str(i.id), "email": i.email, "team_id": str(i.team_id)} for i in expired]
        affected = await self.invitations.purge_expired(days, delete=True, dry_run=dry_run)
        return MaintenanceReport(task="remove-expired-invitations", dry_run=dry_run, affected=affected, details=details)

    async def expire_invitations(self, dry_run: bool = False) -> MaintenanceReport:
        affected = await self.invitations.purge_expired(0, delete=False, dry_run=dry_run)
        return MaintenanceReport(task="expire-invitations", dry_run=dry_run, affected=affected)

    async def cleanup(self, days: int = 30, dry_run: bool = False) -> MaintenanceReport:
        """Permanently delete teams soft-deleted more than ``days`` ago."""
        query = Team.filter(deleted_at__not_isnull=True, deleted_at__lt=days_ago(days))
        ids = [str(team_id) for team_id in await query.values_list("id", flat=True)]
        if ids and not dry_run:
            await query.delete()
            logger.info(f"Permanently deleted {len(ids)} soft-deleted teams")
        return MaintenanceReport(
            task="cleanup", dry_run=dry_run, affected=len(ids), details=[{"team_id": i} for i in ids]
        )

    async def recount_members(self, dry_run: bool = False) -> MaintenanceReport:
        """Compare ``members_count`` with the live membership rows and repair drift."""
        drift: List[CounterDrift] = []
        for team in await Team.all().only("id", "members_count"):
            actual = await Membership.filter(team_id=team.id, live_slot=True).count()
            if actual != team.members_count:
                drift.append(CounterDrift(team_id=str(team.id), stored=team.members_count, actual=actual))

        if drift and not dry_run:
            async with in_transaction():
                for item in drift:
                    await Team.filter(id=item.team_id).update(members_count=item.actual)
            logger.warning(f"Repaired members_count on {len(drift)} teams")
            await self._invalidate([f"team:{item.team_id}" for item in drift])

        return MaintenanceReport(
            task="recount", dry_run=dry_run, affected=len(drift), details=[d.model_dump() for d in drift]
        )

    async def archive_inactive(self, days: int = 30, dry_run: bool = False) -> MaintenanceReport:
        cutoff = days_ago(days)
        recently_active = set(
            await Membership.filter(last_activity_at__gt=cutoff).values_list("team_id", flat=True)
        )
        query = Team.filter(
            Q(last_activity_at__isnull=True) | Q(last_activity_at__lt=cutoff),
            status=TeamStatus.ACTIVE,
            updated_at__lt=cutoff,
            deleted_at=None,
        )
        if recently_active:
            query = query.exclude(id__in=list(recently_active))
        candidates = await query

        if dry_run or not candidates:
            return MaintenanceReport(
                task="archive-inactive",
                dry_run=dry_run,
                affected=len(candidates),
                details=[{"team_id": str(t.id), "name": t.name} for t in candidates],
            )

        reason = f"Inactive for more than {days} days"
        archived = []
        for team in candidates:
            async with in_transaction():
                await self.workflow.transition(
                    team, "archive", None, reason=reason, extra={"preserve_data": True}, check_permissions=False
                )
                if self.settings.AUDIT_ENABLED:
                    await ActivityLog.create(
                        subject_type="team",
                        subject_id=str(team.id),
                        action="team.archive",
                        description=reason,
                        properties={"previous_status": TeamStatus.ACTIVE.value, "automatic": True},
                        tenant_id=team.tenant_id,
                    )
            archived.append(team)
            await self._invalidate([team.cache_tag])
            if self.event_bus is not None:
                await self.event_bus.publish(
                    DomainEvent(
                        kind=EventKind.TEAM_ARCHIVED,
                        payload={"team_id": str(team.id), "transition": "archive", "reason": reason},
                    )
                )

        logger.info(f"Archived {len(archived)} inactive teams")
        return MaintenanceReport(
            task="archive-inactive",
            dry_run=False,
            affected=len(archived),
            details=[{"team_id": str(t.id), "name": t.name} for t in archived],
        )

    async def _invalidate(self, tags: List[str]) -> None:
        if self.cache is None or not tags:
            return
        try:
            await self.cache.invalidate_tags(tags)
        except Exception as e:
            logger.error(f"Failed to invalidate cache tags {tags}: {str(e)}")

