import logging
from typing import FrozenSet, Iterable, List, Optional

from ..config.settings import TeamsSettings
from ..models.enums import WILDCARD, MembershipStatus
from ..models.membership import Membership
from ..models.principal import PrincipalRef
from ..models.team import Team

logger = logging.getLogger(__name__)


class PermissionResolver:
    """Computes effective capabilities for a (principal, team) pair.

    Role defaults come from ``TeamsSettings.ROLE_PERMISSIONS``; a membership's
    explicit ``permissions`` list replaces the role default. The team owner
    reference bypasses every check regardless of membership state.
    """

    def __init__(self, settings: TeamsSettings):
        self.settings = settings

    def default_permissions_for_role(self, role: str) -> List[str]:
        return self.settings.permissions_for_role(role)

    def expand(self, permissions: Iterable[str]) -> FrozenSet[str]:
        granted = frozenset(permissions)
        if WILDCARD in granted:
            return granted | frozenset(self.settings.CAPABILITIES)
        return granted

    async def get_membership(self, team: Team, user: PrincipalRef) -> Optional[Membership]:
        return await Membership.get_or_none(
            team_id=team.id,
            user_type=user.kind,
            user_id=user.id,
            status=MembershipStatus.ACTIVE,
        )

    async def resolve(self, team: Team, user: Optional[PrincipalRef]) -> FrozenSet[str]:
        if user is None:
            return frozenset()
        if team.is_owned_by(user):
            return self.expand([WILDCARD])

        membership = await self.get_membership(team, user)
        if membership is None:
            return frozenset()

        permissions = membership.permissions
        if not permissions:
            permissions = self.default_permissions_for_role(membership.role)
        return self.expand(permissions)

    async def has_permission(self, team: Team, user: Optional[PrincipalRef], capability: str) -> bool:
        resolved = await self.resolve(team, user)
        return WILDCARD in resolved or capability in resolved

    async def has_any_permission(
        self, team: Team, user: Optional[PrincipalRef], capabilities: Iterable[str]
    ) -> bool:
        resolved = await self.resolve(team, user)
        if WILDCARD in resolved:
            return True
        return any(c in resolved for c in capabilities)

    async def has_all_permissions(
        self, team: Team, user: Optional[PrincipalRef], capabilities: Iterable[str]
    ) -> bool:
        resolved = await self.resolve(team, user)
        if WILDCARD in resolved:
            return True
        return all(c in resolved for c in capabilities)

    async def has_any_role(self, team: Team, user: Optional[PrincipalRef], roles: Iterable[str]) -> bool:
        if user is None:
            return False
        membership = await self.get_membership(team, user)
        return membership is not None and membership.role in set(roles)

    async def get_role(self, team: Team, user: PrincipalRef) -> Optional[str]:
        membership = await self.get_membership(team, user)
        return membership.role if membership else None
