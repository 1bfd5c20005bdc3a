import logging
from typing import Any, Dict, List, Optional

from ..exceptions import Conflict, Forbidden, ValidationFailed
from ..models.enums import WILDCARD, MembershipStatus, Role, TeamStatus
from ..models.membership import Membership
from ..models.team import Team
from ..schemas.teams import TeamArchive, TeamCreate, TeamSuspend, TeamTransitionInput, TeamUpdate
from ..services.events import EventKind
from ..services.memberships import create_membership
from ..services.notifications import NotificationKind
from ..utils.clock import as_utc, utcnow
from ..utils.helpers import deep_merge, slugify
from .base import Action, ExecutionContext, SubAction

logger = logging.getLogger(__name__)


async def unique_slug(name: str, exclude_id: Any = None) -> str:
    base = slugify(name) or "team"
    candidate, suffix = base, 2
    while True:
        query = Team.filter(slug=candidate)
        if exclude_id is not None:
            query = query.exclude(id=exclude_id)
        if not await query.exists():
            return candidate
        candidate = f"{base}-{suffix}"
        suffix += 1


class CreateTeam(Action):
    name = "create_team"
    description = "Create a team in draft state owned by the actor"
    input_model = TeamCreate

    def default_settings(self) -> Dict[str, Any]:
        return {
            "visibility": "private",
            "features": ["file_sharing", "workflows"],
            "limits": {
                "max_members": self.settings.MAX_MEMBERS_PER_TEAM,
                "max_files": self.settings.MAX_FILES_PER_TEAM,
                "max_storage_gb": self.settings.MAX_STORAGE_PER_TEAM_GB,
            },
        }

    async def authorize(self) -> bool:
        if self.actor is None:
            raise Forbidden("You must be signed in to create a team.")

        owned = await Team.filter(
            owner_type=self.actor.kind, owner_id=self.actor.id, deleted_at=None
        ).exclude(status=TeamStatus.ARCHIVED).count()
        if owned >= self.settings.MAX_TEAMS_PER_USER:
            raise Conflict(
                f"You already own {owned} teams, the maximum allowed.",
                details={"limit": self.settings.MAX_TEAMS_PER_USER},
            )
        return True

    async def execute(self, ctx: ExecutionContext) -> Team:
        data: TeamCreate = self.input
        overrides = data.settings.model_dump(mode="json", exclude_none=True) if data.settings else {}

        team = await Team.create(
            name=data.name,
            slug=await unique_slug(data.name),
            description=data.description,
            type=data.type,
            status=TeamStatus.DRAFT,
            settings=deep_merge(self.default_settings(), overrides),
            owner_type=self.actor.kind,
            owner_id=self.actor.id,
            tenant_id=self.tenant_id,
            last_activity_at=utcnow(),
        )
        await create_membership(team, self.actor, Role.OWNER.value, [WILDCARD], tenant_id=self.tenant_id)
        await team.refresh_from_db()

        ctx.tag(team.cache_tag, self.actor.tag)
        ctx.record("team", team.id, "team.created", f"Created team '{team.name}'", type=team.type.value)
        ctx.emit(EventKind.TEAM_CREATED, team_id=str(team.id), name=team.name, owner=str(self.actor))
        return team

    def after(self, team: Team) -> List[Optional[SubAction]]:
        hooks = self.services.hooks

        async def recipients():
            return [self.actor]

        return [
            self.notification(
                "notify_creator", NotificationKind.TEAM_CREATED, recipients, {"team_id": str(team.id), "name": team.name}
            ),
            SubAction(name="initialize_team_defaults", run=lambda: hooks.initialize_team_defaults(str(team.id))),
        ]

    def success_message(self, team: Team) -> str:
        return f"Successfully created team '{team.name}'"


class TeamTransitionAction(Action):
    """Runs one lifecycle transition against a freshly loaded team."""

    transition: str = ""
    event_kind: str = ""
    notification_kind: str = ""
    input_model = TeamTransitionInput

    async def authorize(self) -> bool:
        team = await self.load_team(self.input.team_id)
        await self.services.workflow.guard(team, self.transition, self.actor)
        return True

    def audit_extra(self) -> Dict[str, Any]:
        return {}

    async def apply(self, team: Team, ctx: ExecutionContext) -> None:
        """Additional writes sharing the transition's transaction."""

    async def execute(self, ctx: ExecutionContext) -> Team:
        team = await self.load_team(self.input.team_id)
        previous = team.status
        reason = getattr(self.input, "reason", None)
        notes = getattr(self.input, "notes", None)

        await self.services.workflow.transition(
            team, self.transition, self.actor, reason=reason, notes=notes, extra=self.audit_extra()
        )
        await self.apply(team, ctx)

        ctx.tag(team.cache_tag)
        ctx.record(
            "team",
            team.id,
            f"team.{self.transition}",
            previous_status=TeamStatus(previous).value,
            reason=reason,
            notes=notes,
            **self.audit_extra(),
        )
        ctx.emit(
            self.event_kind,
            team_id=str(team.id),
            transition=self.transition,
            previous_status=TeamStatus(previous).value,
            status=TeamStatus(team.status).value,
            reason=reason,
        )
        return team

    def member_payload(self, team: Team) -> Dict[str, Any]:
        return {"team_id": str(team.id), "name": team.name, "status": TeamStatus(team.status).value}

    def success_message(self, team: Team) -> str:
        return f"Team '{team.name}' is now {TeamStatus(team.status).value}."


class ActivateTeam(TeamTransitionAction):
    name = "activate_team"
    transition = "activate"
    event_kind = EventKind.TEAM_ACTIVATED
    notification_kind = NotificationKind.TEAM_ACTIVATED

    def after(self, team: Team) -> List[Optional[SubAction]]:
        hooks = self.services.hooks
        return [
            self.notify_members(team.id, self.notification_kind, self.member_payload(team)),
            SubAction(name="initialize_resources", run=lambda: hooks.initialize_resources(str(team.id))),
        ]


class ResumeTeam(ActivateTeam):
    name = "resume_team"
    transition = "resume"


class SuspendTeam(TeamTransitionAction):
    name = "suspend_team"
    transition = "suspend"
    event_kind = EventKind.TEAM_SUSPENDED
    notification_kind = NotificationKind.TEAM_SUSPENDED
    input_model = TeamSuspend

    def validate(self) -> TeamSuspend:
        data = super().validate()
        if data.suspension_until is not None and as_utc(data.suspension_until) <= utcnow():
            raise ValidationFailed(
                field_errors={"suspension_until": ["The suspension end must be a date in the future."]}
            )
        return data

    def audit_extra(self) -> Dict[str, Any]:
        until = self.input.suspension_until
        return {"suspension_until": as_utc(until).isoformat() if until else None}

    def after(self, team: Team) -> List[Optional[SubAction]]:
        hooks = self.services.hooks
        payload = {**self.member_payload(team), "reason": self.input.reason}
        return [
            self.notify_members(team.id, self.notification_kind, payload),
            SubAction(name="revoke_sessions", run=lambda: hooks.revoke_sessions(str(team.id))),
        ]


class ArchiveTeam(TeamTransitionAction):
    name = "archive_team"
    transition = "archive"
    event_kind = EventKind.TEAM_ARCHIVED
    notification_kind = NotificationKind.TEAM_ARCHIVED
    input_model = TeamArchive

    def audit_extra(self) -> Dict[str, Any]:
        return {"preserve_data": self.input.preserve_data}

    async def apply(self, team: Team, ctx: ExecutionContext) -> None:
        if self.input.preserve_data:
            return
        live = Membership.filter(team_id=team.id, live_slot=True)
        users = await live.values_list("user_id", flat=True)
        await live.update(status=MembershipStatus.ARCHIVED, archived_at=utcnow())
        ctx.tag(*[f"user:{user_id}" for user_id in users])

    def after(self, team: Team) -> List[Optional[SubAction]]:
        hooks = self.services.hooks
        team_id = str(team.id)
        payload = {**self.member_payload(team), "reason": self.input.reason}
        chain = [self.notify_members(team.id, self.notification_kind, payload)]
        if not self.input.preserve_data:
            chain.append(SubAction(name="cleanup_team_resources", run=lambda: hooks.cleanup_team_resources(team_id)))
        chain.append(SubAction(name="archive_files", run=lambda: hooks.archive_files(team_id)))
        return chain


class RestoreTeam(TeamTransitionAction):
    name = "restore_team"
    transition = "restore"
    event_kind = EventKind.TEAM_RESTORED
    notification_kind = NotificationKind.TEAM_RESTORED

    async def apply(self, team: Team, ctx: ExecutionContext) -> None:
        archived = Membership.filter(team_id=team.id, status=MembershipStatus.ARCHIVED)
        users = await archived.values_list("user_id", flat=True)
        await archived.update(status=MembershipStatus.ACTIVE, archived_at=None)
        ctx.tag(*[f"user:{user_id}" for user_id in users])

    def after(self, team: Team) -> List[Optional[SubAction]]:
        hooks = self.services.hooks
        team_id = str(team.id)
        return [
            self.notify_members(team.id, self.notification_kind, self.member_payload(team)),
            SubAction(name="restore_resources", run=lambda: hooks.restore_resources(team_id)),
            SubAction(name="restore_files", run=lambda: hooks.restore_files(team_id)),
        ]


class UpdateTeam(Action):
    name = "update_team"
    description = "Rename a team or change its description and settings"
    input_model = TeamUpdate

    async def authorize(self) -> bool:
        team = await self.load_team(self.input.team_id)
        if not await self.services.resolver.has_any_permission(team, self.actor, ["update_team", "manage_team"]):
            raise Forbidden("You do not have permission to update this team.")
        if team.status == TeamStatus.ARCHIVED:
            raise Forbidden("Cannot update an archived team.", field="team_id")
        return True

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        data: TeamUpdate = self.input
        team = await self.load_team(data.team_id)
        changes: Dict[str, Any] = {}

        if data.name is not None and data.name != team.name:
            slug = slugify(data.name) or "team"
            if await Team.filter(slug=slug).exclude(id=team.id).exists():
                raise Conflict(f"A team with the slug '{slug}' already exists.", field="name")
            changes["name"] = {"from": team.name, "to": data.name}
            team.name = data.name
            team.slug = slug

        if data.description is not None and data.description != team.description:
            changes["description"] = {"from": team.description, "to": data.description}
            team.description = data.description

        if data.settings is not None:
            overrides = data.settings.model_dump(mode="json", exclude_none=True)
            if "max_members" in overrides:
                overrides["limits"] = {"max_members": overrides.pop("max_members")}
            merged = deep_merge(team.settings or {}, overrides)
            if merged != team.settings:
                changes["settings"] = sorted(overrides)
                team.settings = merged

        team.last_activity_at = utcnow()
        await team.save()

        ctx.tag(team.cache_tag)
        ctx.record("team", team.id, "team.updated", "Team updated", changes=changes)
        ctx.emit(EventKind.TEAM_UPDATED, team_id=str(team.id), changes=changes)
        return {"team": team, "changes": changes}

    def after(self, result: Dict[str, Any]) -> List[Optional[SubAction]]:
        team: Team = result["team"]
        changes = result["changes"]
        hooks = self.services.hooks
        chain = [
            self.notify_members(
                team.id,
                NotificationKind.TEAM_UPDATED,
                {"team_id": str(team.id), "updated_by": str(self.actor), "changes": sorted(changes)},
            )
        ]
        if "name" in changes:
            chain.append(SubAction(name="update_search_index", run=lambda: hooks.update_search_index(str(team.id))))
        return chain

    def success_message(self, result: Dict[str, Any]) -> str:
        return "Team has been successfully updated."
