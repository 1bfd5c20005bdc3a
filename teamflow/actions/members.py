import logging
from typing import Any, Dict, List, Optional

from ..exceptions import AlreadyMember, Conflict, Forbidden, LastOwnerRemoval, MemberLimitReached, NotFound
from ..models.enums import WILDCARD, Role, TeamStatus
from ..models.membership import Membership
from ..models.principal import PrincipalRef
from ..models.team import Team
from ..schemas.members import MemberAdd, MemberRemove
from ..services.events import EventKind
from ..services.memberships import create_membership, find_live_membership, soft_remove_membership
from ..services.notifications import NotificationKind
from .base import Action, ExecutionContext, SubAction

logger = logging.getLogger(__name__)


class AddMember(Action):
    name = "add_member"
    description = "Add a principal to a team directly"
    input_model = MemberAdd

    async def authorize(self) -> bool:
        data: MemberAdd = self.input
        resolver = self.services.resolver
        team = await self.load_team(data.team_id)

        allowed = await resolver.has_permission(team, self.actor, "manage_team_members") or (
            await resolver.has_any_role(team, self.actor, [Role.OWNER.value, Role.ADMIN.value])
        )
        if not allowed:
            raise Forbidden("You do not have permission to add members to this team.")

        if team.status == TeamStatus.ARCHIVED:
            raise Forbidden("Cannot add members to an archived team.", field="team_id")

        directory = self.services.directory
        if data.user.kind in directory.kinds() and not await directory.exists(data.user):
            raise NotFound(data.user.kind, data.user.id, field="user")

        if await self.services.invitations.has_reached_member_limit(team):
            raise MemberLimitReached("Team has reached its member limit.")

        if await find_live_membership(team.id, data.user) is not None:
            raise AlreadyMember(f"{data.user} is already a member of this team.", field="user")
        return True

    async def execute(self, ctx: ExecutionContext) -> Membership:
        data: MemberAdd = self.input
        team = await self.load_team(data.team_id)
        if await self.services.invitations.has_reached_member_limit(team):
            raise MemberLimitReached("Team has reached its member limit.")

        permissions = data.permissions or self.services.resolver.default_permissions_for_role(data.role.value)
        membership = await create_membership(
            team, data.user, data.role.value, permissions, status=data.status, tenant_id=self.tenant_id
        )

        ctx.tag(team.cache_tag, data.user.tag)
        ctx.record("team", team.id, "member.added", f"Added {data.user} as {data.role.value}", user=str(data.user))
        ctx.emit(
            EventKind.MEMBER_JOINED,
            team_id=str(team.id),
            user=str(data.user),
            role=data.role.value,
            added_by=str(self.actor) if self.actor else None,
        )
        return membership

    def after(self, membership: Membership) -> List[Optional[SubAction]]:
        data: MemberAdd = self.input
        payload = {"team_id": str(membership.team_id), "user": str(data.user), "role": membership.role}
        chain = []
        if data.send_notification:

            async def added_user():
                return [data.user]

            chain.append(self.notification("notify_added_user", NotificationKind.MEMBER_ADDED, added_user, payload))
        chain.append(self.notify_members(membership.team_id, NotificationKind.MEMBER_JOINED, payload))
        return chain

    def success_message(self, membership: Membership) -> str:
        return f"{membership.user} was added to the team as {membership.role}."


class RemoveMember(Action):
    name = "remove_member"
    description = "Remove a member, optionally handing ownership to another member"
    input_model = MemberRemove

    def is_self_removal(self) -> bool:
        return self.actor is not None and self.actor == self.input.user

    async def _check_owner_transfer(self, team: Team, target: Membership) -> Optional[Membership]:
        data: MemberRemove = self.input
        if target.role != Role.OWNER.value and not team.is_owned_by(data.user):
            return None

        if not data.transfer_ownership:
            raise LastOwnerRemoval(
                "The team owner cannot be removed without transferring ownership.",
                field="transfer_ownership",
            )
        if data.new_owner == data.user:
            raise Conflict("Ownership must be transferred to a different member.", field="new_owner")

        successor = await find_live_membership(team.id, data.new_owner)
        if successor is None or not successor.is_active:
            raise Conflict("The new owner must be an active member of the team.", field="new_owner")
        return successor

    async def authorize(self) -> bool:
        data: MemberRemove = self.input
        team = await self.load_team(data.team_id)

        target = await find_live_membership(team.id, data.user)
        if target is None:
            raise NotFound("Membership", data.user, field="user")

        if not self.is_self_removal() and not await self.services.resolver.has_any_permission(
            team, self.actor, ["remove_team_member", "manage_team_members"]
        ):
            raise Forbidden("You do not have permission to remove members from this team.")

        await self._check_owner_transfer(team, target)
        return True

    async def execute(self, ctx: ExecutionContext) -> Membership:
        data: MemberRemove = self.input
        team = await self.load_team(data.team_id)
        target = await find_live_membership(team.id, data.user)
        if target is None:
            raise NotFound("Membership", data.user, field="user")

        successor = await self._check_owner_transfer(team, target)
        if successor is not None:
            successor.role = Role.OWNER.value
            successor.permissions = [WILDCARD]
            await successor.save(update_fields=["role", "permissions", "updated_at"])
            team.owner_type = data.new_owner.kind
            team.owner_id = data.new_owner.id
            await team.save(update_fields=["owner_type", "owner_id", "updated_at"])
            ctx.tag(data.new_owner.tag)

        await soft_remove_membership(target, self.actor, data.reason)

        left = self.is_self_removal()
        ctx.tag(team.cache_tag, data.user.tag)
        ctx.record(
            "team",
            team.id,
            "member.left" if left else "member.removed",
            reason=data.reason,
            user=str(data.user),
            new_owner=str(data.new_owner) if successor else None,
        )
        ctx.emit(
            EventKind.MEMBER_LEFT if left else EventKind.MEMBER_REMOVED,
            team_id=str(team.id),
            user=str(data.user),
            removed_by=str(self.actor) if self.actor else None,
            reason=data.reason,
            new_owner=str(data.new_owner) if successor else None,
        )
        return target

    def after(self, membership: Membership) -> List[Optional[SubAction]]:
        data: MemberRemove = self.input
        hooks = self.services.hooks
        left = self.is_self_removal()
        team_id = str(membership.team_id)
        payload: Dict[str, Any] = {"team_id": team_id, "user": str(data.user), "reason": data.reason}

        async def removed_user() -> List[PrincipalRef]:
            return [data.user]

        return [
            self.notification(
                "notify_removed_user",
                NotificationKind.MEMBER_LEFT if left else NotificationKind.MEMBER_REMOVED,
                removed_user,
                payload,
            ),
            self.notify_members(team_id, NotificationKind.MEMBER_LEFT if left else NotificationKind.MEMBER_REMOVED, payload),
            SubAction(
                name="cleanup_member_resources",
                run=lambda: hooks.cleanup_member_resources(team_id, data.user),
            ),
        ]

    def success_message(self, membership: Membership) -> str:
        return f"{membership.user} was removed from the team."
