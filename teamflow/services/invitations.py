import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from ..config.settings import TeamsSettings
from ..exceptions import (
    AlreadyMember,
    Conflict,
    DuplicatePendingInvitation,
    InvalidOrExpiredInvitation,
    MemberLimitReached,
    PendingInvitationLimitReached,
    ResendLimitExceeded,
    ResendTooSoon,
    ValidationFailed,
)
from ..models.enums import InvitationStatus
from ..models.invitation import Invitation
from ..models.membership import Membership
from ..models.principal import PrincipalRef
from ..models.team import Team
from ..utils.clock import as_utc, days_ago, utcnow
from ..utils.helpers import normalize_email, random_token
from .memberships import count_active_members, create_membership, find_live_membership
from .permissions import PermissionResolver

logger = logging.getLogger(__name__)


class InvitationService:
    """Owns invitation tokens: creation, expiry, resend, accept, decline and cancel.

    Every mutating method opens its own transaction; when called from inside an
    action's Execute phase the transaction nests into the action's.
    """

    def __init__(self, settings: TeamsSettings, resolver: PermissionResolver):
        self.settings = settings
        self.resolver = resolver

    def member_limit(self, team: Team) -> int:
        return int(team.get_setting("limits.max_members") or self.settings.MAX_MEMBERS_PER_TEAM)

    async def has_reached_member_limit(self, team: Team) -> bool:
        return await count_active_members(team.id) >= self.member_limit(team)

    async def generate_token(self) -> str:
        while True:
            token = random_token(self.settings.INVITATION_TOKEN_LENGTH)
            if not await Invitation.exists(token=token):
                return token
            logger.warning("Invitation token collision, regenerating")

    def _resolve_expiry(
        self, now: datetime, ttl: Optional[timedelta], expires_at: Optional[datetime]
    ) -> datetime:
        if expires_at is not None:
            expires_at = as_utc(expires_at)
            if expires_at <= now:
                raise ValidationFailed(field_errors={"expires_at": ["The expiry must be a date in the future."]})
            return expires_at
        if ttl is not None:
            return now + ttl
        return now + timedelta(days=self.settings.INVITATION_EXPIRES_AFTER_DAYS)

    async def _expire_stale(self, team: Team, email: str, now: datetime) -> int:
        return await Invitation.filter(
            team_id=team.id, email=email, status=InvitationStatus.PENDING, expires_at__lte=now
        ).update(status=InvitationStatus.EXPIRED, pending_slot=None)

    async def create(
        self,
        team: Team,
        email: str,
        role: str = "member",
        permissions: Optional[Iterable[str]] = None,
        inviter: Optional[PrincipalRef] = None,
        ttl: Optional[timedelta] = None,
        expires_at: Optional[datetime] = None,
        message: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Invitation:
        email = normalize_email(email)
        now = utcnow()
        expiry = self._resolve_expiry(now, ttl, expires_at)
        granted = list(permissions or []) or self.resolver.default_permissions_for_role(role)

        async with in_transaction():
            await self._expire_stale(team, email, now)

            if await Invitation.exists(team_id=team.id, email=email, status=InvitationStatus.PENDING):
                raise DuplicatePendingInvitation(
                    f"An invitation for {email} is already pending.", field="email"
                )

            if await self.has_reached_member_limit(team):
                raise MemberLimitReached("Team has reached its member limit.")

            pending = await Invitation.filter(team_id=team.id, status=InvitationStatus.PENDING).count()
            if pending >= self.settings.MAX_PENDING_INVITATIONS_PER_TEAM:
                raise PendingInvitationLimitReached("Team has too many pending invitations.")

            token = await self.generate_token()
            try:
                invitation = await Invitation.create(
                    team_id=team.id,
                    email=email,
                    token=token,
                    role=role,
                    permissions=granted,
                    status=InvitationStatus.PENDING,
                    pending_slot=True,
                    message=message,
                    invited_by_type=inviter.kind if inviter else None,
                    invited_by_id=inviter.id if inviter else None,
                    expires_at=expiry,
                    last_sent_at=now,
                    tenant_id=tenant_id,
                )
            except IntegrityError as exc:
                raise DuplicatePendingInvitation(
                    f"An invitation for {email} is already pending.", field="email"
                ) from exc

        logger.info(f"Created invitation {invitation.id} for {email} on team {team.id}")
        return invitation

    async def find_by_token(self, token: str) -> Optional[Invitation]:
        if not token:
            return None
        return await Invitation.get_or_none(token=token)

    async def _actionable(self, token: str, now: datetime) -> Invitation:
        invitation = await self.find_by_token(token)
        if invitation is None or not invitation.is_actionable(now):
            raise InvalidOrExpiredInvitation()
        return invitation

    async def accept(self, token: str, user: PrincipalRef) -> Membership:
        now = utcnow()
        async with in_transaction():
            invitation = await self._actionable(token, now)
            team = await Team.get(id=invitation.team_id)

            if await find_live_membership(team.id, user) is not None:
                raise AlreadyMember(f"{user} is already a member of this team", field="user")

            updated = await Invitation.filter(id=invitation.id, status=InvitationStatus.PENDING).update(
                status=InvitationStatus.ACCEPTED,
                pending_slot=None,
                accepted_by_type=user.kind,
                accepted_by_id=user.id,
                accepted_at=now,
            )
            if not updated:
                raise InvalidOrExpiredInvitation()

            membership = await create_membership(
                team,
                user,
                role=invitation.role,
                permissions=invitation.permissions or self.resolver.default_permissions_for_role(invitation.role),
                tenant_id=invitation.tenant_id,
            )

        logger.info(f"Invitation {invitation.id} accepted by {user}")
        return membership

    async def decline(self, token: str) -> Invitation:
        now = utcnow()
        async with in_transaction():
            invitation = await self._actionable(token, now)
            updated = await Invitation.filter(id=invitation.id, status=InvitationStatus.PENDING).update(
                status=InvitationStatus.DECLINED, pending_slot=None, rejected_at=now
            )
            if not updated:
                raise InvalidOrExpiredInvitation()
            await invitation.refresh_from_db()
        return invitation

    async def cancel(self, invitation: Invitation) -> Invitation:
        now = utcnow()
        async with in_transaction():
            updated = await Invitation.filter(id=invitation.id, status=InvitationStatus.PENDING).update(
                status=InvitationStatus.CANCELLED, pending_slot=None, cancelled_at=now
            )
            if not updated:
                raise Conflict("Only pending invitations can be cancelled.")
            await invitation.refresh_from_db()
        return invitation

    async def resend(self, invitation: Invitation) -> Invitation:
        if invitation.status != InvitationStatus.PENDING:
            raise Conflict("Only pending invitations can be resent.")

        if invitation.resend_count >= self.settings.INVITATION_RESEND_LIMIT:
            raise ResendLimitExceeded(
                f"This invitation has already been resent {invitation.resend_count} times."
            )

        now = utcnow()
        cooldown = timedelta(hours=self.settings.INVITATION_RESEND_COOLDOWN_HOURS)
        last_sent = as_utc(invitation.last_sent_at or invitation.created_at)
        if last_sent is not None and now - last_sent < cooldown:
            raise ResendTooSoon("This invitation was sent too recently to be resent.")

        async with in_transaction():
            token = await self.generate_token()
            updated = await Invitation.filter(
                id=invitation.id,
                status=InvitationStatus.PENDING,
                resend_count=invitation.resend_count,
            ).update(
                token=token,
                expires_at=now + timedelta(days=self.settings.INVITATION_EXPIRES_AFTER_DAYS),
                resend_count=invitation.resend_count + 1,
                last_sent_at=now,
            )
            if not updated:
                raise Conflict("The invitation changed while it was being resent.")
            await invitation.refresh_from_db()

        logger.info(f"Resent invitation {invitation.id} ({invitation.resend_count}/{self.settings.INVITATION_RESEND_LIMIT})")
        return invitation

    async def pending_for_team(self, team: Team) -> List[Invitation]:
        return await Invitation.filter(
            team_id=team.id, status=InvitationStatus.PENDING, expires_at__gt=utcnow()
        ).order_by("-created_at")

    async def list_expired(self, older_than_days: int = 0) -> List[Invitation]:
        cutoff = days_ago(older_than_days)
        return await Invitation.filter(
            status__in=[InvitationStatus.PENDING, InvitationStatus.EXPIRED],
            expires_at__lt=cutoff,
        ).order_by("expires_at")

    async def purge_expired(self, older_than_days: int = 0, delete: bool = False, dry_run: bool = False) -> int:
        expired = await self.list_expired(older_than_days)
        if dry_run or not expired:
            return len(expired)

        ids = [invitation.id for invitation in expired]
        async with in_transaction():
            if delete:
                await Invitation.filter(id__in=ids).delete()
            else:
                await Invitation.filter(id__in=ids, status=InvitationStatus.PENDING).update(
                    status=InvitationStatus.EXPIRED, pending_slot=None
                )
        logger.info(f"{'Deleted' if delete else 'Expired'} {len(ids)} stale invitations")
        return len(ids)
