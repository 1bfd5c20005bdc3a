from typing import Iterable, Optional

from tortoise.exceptions import IntegrityError
from tortoise.expressions import F

from ..exceptions import AlreadyMember
from ..models.enums import MembershipStatus
from ..models.membership import Membership
from ..models.principal import PrincipalRef
from ..models.team import Team
from ..utils.clock import utcnow


async def find_live_membership(team_id, user: PrincipalRef) -> Optional[Membership]:
    return await Membership.get_or_none(
        team_id=team_id, user_type=user.kind, user_id=user.id, live_slot=True
    )


async def count_active_members(team_id) -> int:
    return await Membership.filter(team_id=team_id, status=MembershipStatus.ACTIVE).count()


async def create_membership(
    team: Team,
    user: PrincipalRef,
    role: str,
    permissions: Iterable[str],
    status: MembershipStatus = MembershipStatus.ACTIVE,
    tenant_id: Optional[str] = None,
) -> Membership:
    """Insert a membership and bump ``members_count``; must run inside a transaction."""
    now = utcnow()
    try:
        membership = await Membership.create(
            team_id=team.id,
            user_type=user.kind,
            user_id=user.id,
            role=role,
            permissions=list(permissions),
            status=status,
            live_slot=True,
            joined_at=now,
            last_activity_at=now,
            tenant_id=tenant_id,
        )
    except IntegrityError as exc:
        raise AlreadyMember(f"{user} is already a member of this team", field="user") from exc

    await Team.filter(id=team.id).update(
        members_count=F("members_count") + 1, last_activity_at=now
    )
    return membership


async def soft_remove_membership(
    membership: Membership, removed_by: Optional[PrincipalRef], reason: Optional[str]
) -> Membership:
    """Mark a membership removed, free its live slot and decrement ``members_count``."""
    now = utcnow()
    membership.status = MembershipStatus.REMOVED
    membership.live_slot = None
    membership.removed_at = now
    membership.removed_by = str(removed_by) if removed_by else None
    membership.removal_reason = reason
    await membership.save(
        update_fields=["status", "live_slot", "removed_at", "removed_by", "removal_reason", "updated_at"]
    )
    await Team.filter(id=membership.team_id).update(
        members_count=F("members_count") - 1, last_activity_at=now
    )
    return membership
