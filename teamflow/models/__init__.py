from .activity import ActivityLog
from .enums import (
    WILDCARD,
    InvitationStatus,
    MembershipStatus,
    Role,
    TeamStatus,
    TeamType,
)
from .invitation import Invitation
from .membership import Membership
from .principal import PrincipalRef
from .team import Team

__all__ = [
    "Team",
    "Membership",
    "Invitation",
    "ActivityLog",
    "PrincipalRef",
    "TeamStatus",
    "TeamType",
    "MembershipStatus",
    "InvitationStatus",
    "Role",
    "WILDCARD",
]
