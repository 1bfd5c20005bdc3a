"""High-level entry point: one coroutine per operation plus cached read models."""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..actions import (
    AcceptInvitation,
    ActionPipeline,
    ActionResult,
    ActivateTeam,
    AddMember,
    ArchiveTeam,
    CancelInvitation,
    CreateTeam,
    DeclineInvitation,
    InviteMember,
    RemoveMember,
    ResendInvitation,
    RestoreTeam,
    ResumeTeam,
    SuspendTeam,
    UpdateTeam,
)
from ..exceptions import NotFound
from ..models.enums import InvitationStatus, MembershipStatus
from ..models.invitation import Invitation
from ..models.membership import Membership
from ..models.principal import PrincipalRef
from ..models.team import Team
from ..schemas.members import MemberRead
from ..schemas.teams import GlobalAnalytics, TeamAnalytics, TeamRead
from ..utils.clock import as_utc, days_ago, utcnow
from .cache import remember

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def team_read(team: Team) -> TeamRead:
    return TeamRead(
        id=str(team.id),
        name=team.name,
        slug=team.slug,
        description=team.description,
        type=str(getattr(team.type, "value", team.type)),
        status=str(getattr(team.status, "value", team.status)),
        settings=team.settings or {},
        owner=str(team.owner) if team.owner else None,
        members_count=team.members_count,
        tenant_id=team.tenant_id,
        last_activity_at=_iso(team.last_activity_at),
        created_at=_iso(team.created_at),
    )


def member_read(membership: Membership) -> MemberRead:
    return MemberRead(
        id=str(membership.id),
        team_id=str(membership.team_id),
        user=str(membership.user),
        role=membership.role,
        permissions=membership.granted(),
        status=str(getattr(membership.status, "value", membership.status)),
        joined_at=_iso(membership.joined_at),
    )


async def compute_team_analytics(team: Team) -> TeamAnalytics:
    rows = await Membership.filter(team_id=team.id).values("role", "status", "joined_at", "removed_at")
    live = [r for r in rows if r["status"] != MembershipStatus.REMOVED]
    cutoff = days_ago(30)

    return TeamAnalytics(
        team_id=str(team.id),
        name=team.name,
        status=str(getattr(team.status, "value", team.status)),
        total_members=len(live),
        active_members=sum(1 for r in live if r["status"] == MembershipStatus.ACTIVE),
        members_by_role=dict(Counter(r["role"] for r in live)),
        pending_invitations=await Invitation.filter(
            team_id=team.id, status=InvitationStatus.PENDING, expires_at__gt=utcnow()
        ).count(),
        joined_last_30_days=sum(1 for r in rows if r["joined_at"] and as_utc(r["joined_at"]) >= cutoff),
        removed_last_30_days=sum(1 for r in rows if r["removed_at"] and as_utc(r["removed_at"]) >= cutoff),
        files_count=team.files_count,
        storage_used=team.storage_used,
        created_at=_iso(team.created_at),
        last_activity_at=_iso(team.last_activity_at),
    )


async def compute_global_analytics() -> GlobalAnalytics:
    now = utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today - timedelta(days=today.weekday())
    month_start = today.replace(day=1)

    statuses = await Team.filter(deleted_at=None).values_list("status", flat=True)
    return GlobalAnalytics(
        total_teams=len(statuses),
        teams_by_status=dict(Counter(str(getattr(s, "value", s)) for s in statuses)),
        total_members=await Membership.filter(live_slot=True).count(),
        active_members=await Membership.filter(status=MembershipStatus.ACTIVE).count(),
        pending_invitations=await Invitation.filter(status=InvitationStatus.PENDING, expires_at__gt=now).count(),
        teams_created_today=await Team.filter(created_at__gte=today).count(),
        teams_created_this_week=await Team.filter(created_at__gte=week_start).count(),
        teams_created_this_month=await Team.filter(created_at__gte=month_start).count(),
    )


class TeamsService:
    def __init__(self, pipeline: ActionPipeline):
        self.pipeline = pipeline
        self.settings = pipeline.settings
        self.cache = pipeline.cache
        self.resolver = pipeline.resolver
        self.workflow = pipeline.services.workflow

    # Mutating operations

    async def create_team(
        self,
        actor: PrincipalRef,
        name: str,
        description: Optional[str] = None,
        type: str = "project",
        settings: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> ActionResult:
        payload = {"name": name, "description": description, "type": type, "settings": settings}
        return await self.pipeline.run(CreateTeam, actor, payload, tenant_id=tenant_id)

    async def activate(self, actor: PrincipalRef, team_id: str, notes: Optional[str] = None) -> ActionResult:
        return await self.pipeline.run(ActivateTeam, actor, {"team_id": str(team_id), "notes": notes})

    async def resume(self, actor: PrincipalRef, team_id: str, notes: Optional[str] = None) -> ActionResult:
        return await self.pipeline.run(ResumeTeam, actor, {"team_id": str(team_id), "notes": notes})

    async def suspend(
        self, actor: PrincipalRef, team_id: str, reason: str, suspension_until: Optional[datetime] = None
    ) -> ActionResult:
        payload = {"team_id": str(team_id), "reason": reason, "suspension_until": suspension_until}
        return await self.pipeline.run(SuspendTeam, actor, payload)

    async def archive(
        self, actor: PrincipalRef, team_id: str, reason: str, preserve_data: bool = True
    ) -> ActionResult:
        payload = {"team_id": str(team_id), "reason": reason, "preserve_data": preserve_data}
        return await self.pipeline.run(ArchiveTeam, actor, payload)

    async def restore(self, actor: PrincipalRef, team_id: str, notes: Optional[str] = None) -> ActionResult:
        return await self.pipeline.run(RestoreTeam, actor, {"team_id": str(team_id), "notes": notes})

    async def update(self, actor: PrincipalRef, team_id: str, **changes: Any) -> ActionResult:
        return await self.pipeline.run(UpdateTeam, actor, {"team_id": str(team_id), **changes})

    async def add_member(
        self,
        actor: PrincipalRef,
        team_id: str,
        user: PrincipalRef,
        role: str = "member",
        permissions: Optional[List[str]] = None,
        status: str = "active",
        send_notification: bool = True,
    ) -> ActionResult:
        payload = {
            "team_id": str(team_id),
            "user": user,
            "role": role,
            "permissions": permissions,
            "status": status,
            "send_notification": send_notification,
        }
        return await self.pipeline.run(AddMember, actor, payload)

    async def remove_member(
        self,
        actor: PrincipalRef,
        team_id: str,
        user: PrincipalRef,
        reason: Optional[str] = None,
        transfer_ownership: bool = False,
        new_owner: Optional[PrincipalRef] = None,
    ) -> ActionResult:
        payload = {
            "team_id": str(team_id),
            "user": user,
            "reason": reason,
            "transfer_ownership": transfer_ownership,
            "new_owner": new_owner,
        }
        return await self.pipeline.run(RemoveMember, actor, payload)

    async def invite(
        self,
        actor: PrincipalRef,
        team_id: str,
        email: str,
        role: str = "member",
        permissions: Optional[List[str]] = None,
        expires_at: Optional[datetime] = None,
        message: Optional[str] = None,
    ) -> ActionResult:
        payload = {
            "team_id": str(team_id),
            "email": email,
            "role": role,
            "permissions": permissions,
            "expires_at": expires_at,
            "message": message,
        }
        return await self.pipeline.run(InviteMember, actor, payload)

    async def accept_invitation(self, actor: PrincipalRef, token: str) -> ActionResult:
        return await self.pipeline.run(AcceptInvitation, actor, {"token": token})

    async def decline_invitation(self, token: str, actor: Optional[PrincipalRef] = None) -> ActionResult:
        return await self.pipeline.run(DeclineInvitation, actor, {"token": token})

    async def resend_invitation(self, actor: PrincipalRef, invitation_id: str) -> ActionResult:
        return await self.pipeline.run(ResendInvitation, actor, {"invitation_id": str(invitation_id)})

    async def cancel_invitation(self, actor: PrincipalRef, invitation_id: str) -> ActionResult:
        return await self.pipeline.run(CancelInvitation, actor, {"invitation_id": str(invitation_id)})

    # Read models

    async def _team(self, team_id: str) -> Team:
        team = await Team.get_or_none(id=team_id, deleted_at=None)
        if team is None:
            raise NotFound("Team", team_id)
        return team

    async def team_summary(self, team_id: str) -> Dict[str, Any]:
        async def load() -> Dict[str, Any]:
            return team_read(await self._team(team_id)).model_dump()

        return await remember(self.cache, f"team:{team_id}:summary", [f"team:{team_id}"], load)

    async def team_members(self, team_id: str) -> List[Dict[str, Any]]:
        async def load() -> List[Dict[str, Any]]:
            rows = await Membership.filter(team_id=team_id, live_slot=True).order_by("joined_at")
            return [member_read(m).model_dump() for m in rows]

        return await remember(self.cache, f"team:{team_id}:members", [f"team:{team_id}"], load)

    async def teams_for_user(self, user: PrincipalRef) -> List[Dict[str, Any]]:
        key = f"user:{user.id}:teams:{user.kind}"
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        team_ids = await Membership.filter(
            user_type=user.kind, user_id=user.id, status=MembershipStatus.ACTIVE
        ).values_list("team_id", flat=True)
        teams = await Team.filter(id__in=list(team_ids), deleted_at=None).order_by("name")
        value = [team_read(t).model_dump() for t in teams]
        # Renames and transitions flush team tags only.
        await self.cache.set(key, value, [user.tag, *(t.cache_tag for t in teams)])
        return value

    async def team_analytics(self, team_id: str) -> Dict[str, Any]:
        async def load() -> Dict[str, Any]:
            return (await compute_team_analytics(await self._team(team_id))).model_dump()

        return await remember(self.cache, f"team:{team_id}:analytics", [f"team:{team_id}"], load)

    async def global_analytics(self) -> Dict[str, Any]:
        return (await compute_global_analytics()).model_dump()

    async def allowed_transitions(self, team_id: str, actor: Optional[PrincipalRef]) -> List[str]:
        return await self.workflow.allowed_transitions(await self._team(team_id), actor)

    async def permissions_for(self, team_id: str, user: PrincipalRef) -> List[str]:
        return sorted(await self.resolver.resolve(await self._team(team_id), user))
