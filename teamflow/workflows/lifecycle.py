"""Team lifecycle state machine.

Transitions are table data: each row names its source states, target state,
the capabilities that may trigger it (any one suffices) and the action class
that performs it. The machine evaluates guards and writes state; side effects
belong to the actions.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from ..exceptions import Forbidden, InvalidTransition
from ..models.enums import TeamStatus
from ..models.principal import PrincipalRef
from ..models.team import Team
from ..services.permissions import PermissionResolver
from ..utils.clock import now_iso_ms
from ..utils.helpers import deep_merge

logger = logging.getLogger(__name__)


class Transition(BaseModel):
    name: str
    sources: Tuple[TeamStatus, ...]
    target: TeamStatus
    permissions: Tuple[str, ...]
    operation: str

    class Config:
        frozen = True


TRANSITIONS: Dict[str, Transition] = {
    t.name: t
    for t in (
        Transition(
            name="activate",
            sources=(TeamStatus.DRAFT, TeamStatus.SUSPENDED),
            target=TeamStatus.ACTIVE,
            permissions=("manage_team", "activate_team"),
            operation="ActivateTeam",
        ),
        Transition(
            name="suspend",
            sources=(TeamStatus.ACTIVE,),
            target=TeamStatus.SUSPENDED,
            permissions=("manage_team", "suspend_team"),
            operation="SuspendTeam",
        ),
        Transition(
            name="resume",
            sources=(TeamStatus.SUSPENDED,),
            target=TeamStatus.ACTIVE,
            permissions=("manage_team", "activate_team"),
            operation="ResumeTeam",
        ),
        Transition(
            name="archive",
            sources=(TeamStatus.ACTIVE, TeamStatus.SUSPENDED),
            target=TeamStatus.ARCHIVED,
            permissions=("manage_team", "archive_team"),
            operation="ArchiveTeam",
        ),
        Transition(
            name="restore",
            sources=(TeamStatus.ARCHIVED,),
            target=TeamStatus.ACTIVE,
            permissions=("manage_team", "restore_team"),
            operation="RestoreTeam",
        ),
    )
}


class TeamWorkflow:
    def __init__(self, resolver: PermissionResolver, transitions: Optional[Dict[str, Transition]] = None):
        self.resolver = resolver
        self.transitions = transitions or TRANSITIONS

    def get(self, name: str) -> Transition:
        transition = self.transitions.get(name)
        if transition is None:
            raise InvalidTransition(f"Unknown transition '{name}'")
        return transition

    def can(self, team: Team, name: str) -> bool:
        transition = self.transitions.get(name)
        return transition is not None and TeamStatus(team.status) in transition.sources

    async def guard(
        self, team: Team, name: str, actor: Optional[PrincipalRef], check_permissions: bool = True
    ) -> Transition:
        transition = self.get(name)
        current = TeamStatus(team.status)
        if current not in transition.sources:
            raise InvalidTransition(
                f"Cannot {name} a team that is {current.value}",
                details={"transition": name, "status": current.value},
            )
        if check_permissions and not await self.resolver.has_any_permission(team, actor, transition.permissions):
            raise Forbidden(f"You do not have permission to {name} this team")
        return transition

    async def transition(
        self,
        team: Team,
        name: str,
        actor: Optional[PrincipalRef],
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        check_permissions: bool = True,
    ) -> Team:
        """Guard, then write the new status and audit record; call inside a transaction."""
        transition = await self.guard(team, name, actor, check_permissions=check_permissions)
        previous = TeamStatus(team.status)

        record = {
            "previous_status": previous.value,
            "actor": str(actor) if actor else None,
            "reason": reason,
            "notes": notes,
            "at": now_iso_ms(),
            **(extra or {}),
        }
        merged = deep_merge(team.settings or {}, {"lifecycle": {name: record}})

        updated = await Team.filter(id=team.id, status=previous).update(
            status=transition.target, settings=merged
        )
        if not updated:
            raise InvalidTransition(
                f"Team changed state while trying to {name} it",
                details={"transition": name, "status": previous.value},
            )

        team.status = transition.target
        team.settings = merged
        logger.info(f"Team {team.id} transitioned {previous.value} -> {transition.target.value} via {name}")
        return team

    async def allowed_transitions(self, team: Team, actor: Optional[PrincipalRef]) -> List[str]:
        allowed = []
        for name, transition in self.transitions.items():
            if not self.can(team, name):
                continue
            if await self.resolver.has_any_permission(team, actor, transition.permissions):
                allowed.append(name)
        return allowed
