import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from ..exceptions import Forbidden, InvalidOrExpiredInvitation, NotFound, ValidationFailed
from ..models.enums import TeamStatus
from ..models.invitation import Invitation
from ..models.membership import Membership
from ..models.team import Team
from ..schemas.invitations import InvitationCreate, InvitationRef, InvitationToken
from ..services.events import EventKind
from ..services.notifications import NotificationKind
from ..utils.clock import as_utc, utcnow
from .base import Action, ExecutionContext, SubAction

logger = logging.getLogger(__name__)

INVITE_PERMISSIONS = ["invite_team_member", "manage_team_members"]


def invitation_payload(invitation: Invitation) -> Dict[str, Any]:
    return {
        "team_id": str(invitation.team_id),
        "invitation_id": str(invitation.id),
        "email": invitation.email,
        "role": invitation.role,
    }


class InvitationAction(Action):
    """Shared helpers for actions that operate on invitations."""

    async def authorize_inviter(self, team: Team) -> None:
        if not await self.services.resolver.has_any_permission(team, self.actor, INVITE_PERMISSIONS):
            raise Forbidden("You do not have permission to manage invitations for this team.")
        if team.status == TeamStatus.ARCHIVED:
            raise Forbidden("Cannot invite members to an archived team.", field="team_id")

    async def load_invitation(self, invitation_id: str) -> Invitation:
        try:
            invitation = await Invitation.get_or_none(id=invitation_id)
        except (ValueError, TypeError):
            invitation = None
        if invitation is None:
            raise NotFound("Invitation", invitation_id, field="invitation_id")
        return invitation

    def send_email(self, invitation: Invitation) -> SubAction:
        notifier = self.services.notifier
        payload = {
            **invitation_payload(invitation),
            "token": invitation.token,
            "message": invitation.message,
            "expires_at": as_utc(invitation.expires_at).isoformat(),
            "invited_by": str(self.actor) if self.actor else None,
        }
        return SubAction(
            name="send_invitation_email",
            run=lambda: notifier.dispatch([invitation.email], NotificationKind.INVITATION, payload),
            continue_on_failure=False,
        )

    def notify_inviter(self, invitation: Invitation, kind: str) -> Optional[SubAction]:
        inviter = invitation.inviter
        if inviter is None:
            return None

        async def recipients():
            return [inviter]

        return self.notification("notify_inviter", kind, recipients, invitation_payload(invitation))


class InviteMember(InvitationAction):
    name = "invite_member"
    description = "Send a tokenized invitation to join a team"
    input_model = InvitationCreate

    def validate(self) -> InvitationCreate:
        data = super().validate()
        if data.expires_at is not None and as_utc(data.expires_at) <= utcnow():
            raise ValidationFailed(field_errors={"expires_at": ["The expiry must be a date in the future."]})
        return data

    async def authorize(self) -> bool:
        team = await self.load_team(self.input.team_id)
        await self.authorize_inviter(team)
        if team.get_setting("allow_invitations", True) is False:
            raise Forbidden("Invitations are disabled for this team.", field="team_id")
        return True

    async def execute(self, ctx: ExecutionContext) -> Invitation:
        data: InvitationCreate = self.input
        team = await self.load_team(data.team_id)
        invitation = await self.services.invitations.create(
            team,
            data.email,
            role=data.role.value,
            permissions=data.permissions,
            inviter=self.actor,
            expires_at=data.expires_at,
            message=data.message,
            tenant_id=self.tenant_id,
        )

        ctx.tag(team.cache_tag)
        ctx.record("team", team.id, "invitation.sent", f"Invited {invitation.email}", role=invitation.role)
        ctx.emit(
            EventKind.INVITATION_SENT,
            **invitation_payload(invitation),
            invited_by=str(self.actor) if self.actor else None,
        )
        return invitation

    def after(self, invitation: Invitation) -> List[Optional[SubAction]]:
        hooks = self.services.hooks
        remind_at = utcnow() + timedelta(days=self.settings.INVITATION_REMINDER_AFTER_DAYS)
        return [
            self.send_email(invitation),
            self.notify_members(invitation.team_id, NotificationKind.INVITATION_SENT, invitation_payload(invitation)),
            SubAction(
                name="schedule_invitation_reminder",
                run=lambda: hooks.schedule_invitation_reminder(str(invitation.id), remind_at),
            ),
        ]

    def success_message(self, invitation: Invitation) -> str:
        return f"Invitation sent to {invitation.email}."


class AcceptInvitation(InvitationAction):
    name = "accept_invitation"
    description = "Join a team by redeeming an invitation token"
    input_model = InvitationToken

    invitation: Optional[Invitation] = None

    async def authorize(self) -> bool:
        if self.actor is None:
            raise Forbidden("You must be signed in to accept an invitation.")

        invitation = await self.services.invitations.find_by_token(self.input.token)
        if invitation is None or not invitation.is_actionable():
            raise InvalidOrExpiredInvitation()

        team = await self.load_team(invitation.team_id)
        if team.status == TeamStatus.ARCHIVED:
            raise Forbidden("This team has been archived.", field="token")

        self.invitation = invitation
        return True

    async def execute(self, ctx: ExecutionContext) -> Membership:
        membership = await self.services.invitations.accept(self.input.token, self.actor)

        ctx.tag(f"team:{membership.team_id}", self.actor.tag)
        ctx.record(
            "team",
            membership.team_id,
            "invitation.accepted",
            f"{self.actor} joined via invitation",
            invitation_id=str(self.invitation.id),
        )
        ctx.emit(
            EventKind.INVITATION_ACCEPTED,
            **invitation_payload(self.invitation),
            user=str(self.actor),
        )
        return membership

    def after(self, membership: Membership) -> List[Optional[SubAction]]:
        actor = self.actor

        async def new_member():
            return [actor]

        return [
            self.notify_inviter(self.invitation, NotificationKind.INVITATION_ACCEPTED),
            self.notification(
                "welcome_member",
                NotificationKind.WELCOME,
                new_member,
                {"team_id": str(membership.team_id), "role": membership.role},
            ),
        ]

    def success_message(self, membership: Membership) -> str:
        return "You have joined the team."


class DeclineInvitation(InvitationAction):
    name = "decline_invitation"
    description = "Reject an invitation by token"
    input_model = InvitationToken

    async def execute(self, ctx: ExecutionContext) -> Invitation:
        invitation = await self.services.invitations.decline(self.input.token)

        ctx.tag(f"team:{invitation.team_id}")
        ctx.record("invitation", invitation.id, "invitation.rejected", f"{invitation.email} declined")
        ctx.emit(EventKind.INVITATION_REJECTED, **invitation_payload(invitation))
        return invitation

    def after(self, invitation: Invitation) -> List[Optional[SubAction]]:
        return [self.notify_inviter(invitation, NotificationKind.INVITATION_REJECTED)]

    def success_message(self, invitation: Invitation) -> str:
        return "The invitation has been declined."


class ResendInvitation(InvitationAction):
    name = "resend_invitation"
    description = "Issue a fresh token for a pending invitation"
    input_model = InvitationRef

    async def authorize(self) -> bool:
        invitation = await self.load_invitation(self.input.invitation_id)
        team = await self.load_team(invitation.team_id)
        await self.authorize_inviter(team)
        return True

    async def execute(self, ctx: ExecutionContext) -> Invitation:
        invitation = await self.load_invitation(self.input.invitation_id)
        invitation = await self.services.invitations.resend(invitation)

        ctx.tag(f"team:{invitation.team_id}")
        ctx.record(
            "invitation", invitation.id, "invitation.resent", resend_count=invitation.resend_count
        )
        ctx.emit(EventKind.INVITATION_RESENT, **invitation_payload(invitation), resend_count=invitation.resend_count)
        return invitation

    def after(self, invitation: Invitation) -> List[Optional[SubAction]]:
        return [self.send_email(invitation)]

    def success_message(self, invitation: Invitation) -> str:
        return f"Invitation resent to {invitation.email}."


class CancelInvitation(InvitationAction):
    name = "cancel_invitation"
    description = "Withdraw a pending invitation"
    input_model = InvitationRef

    async def authorize(self) -> bool:
        invitation = await self.load_invitation(self.input.invitation_id)
        team = await self.load_team(invitation.team_id)
        if not await self.services.resolver.has_any_permission(team, self.actor, INVITE_PERMISSIONS):
            raise Forbidden("You do not have permission to manage invitations for this team.")
        return True

    async def execute(self, ctx: ExecutionContext) -> Invitation:
        invitation = await self.load_invitation(self.input.invitation_id)
        invitation = await self.services.invitations.cancel(invitation)

        ctx.tag(f"team:{invitation.team_id}")
        ctx.record("invitation", invitation.id, "invitation.cancelled", f"Cancelled invitation for {invitation.email}")
        ctx.emit(EventKind.INVITATION_CANCELLED, **invitation_payload(invitation))
        return invitation

    def success_message(self, invitation: Invitation) -> str:
        return "The invitation has been cancelled."
