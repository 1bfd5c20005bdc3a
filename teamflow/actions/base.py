import logging
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Set, Type, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..config.settings import TeamsSettings
from ..exceptions import NotFound, TeamsError, ValidationFailed
from ..models.enums import MembershipStatus
from ..models.membership import Membership
from ..models.principal import PrincipalRef
from ..models.team import Team
from ..services.events import DomainEvent
from ..services.invitations import InvitationService
from ..services.notifications import NotificationDispatcher, ResourceHooks
from ..services.permissions import PermissionResolver
from ..services.principals import PrincipalDirectory
from ..workflows.lifecycle import TeamWorkflow

logger = logging.getLogger(__name__)


class ErrorDetail(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    step: Optional[str] = None
    fatal: bool = False


class Success(BaseModel):
    ok: Literal[True] = True
    data: Any = None
    message: Optional[str] = None
    warnings: List[ErrorDetail] = Field(default_factory=list)

    class Config:
        arbitrary_types_allowed = True


class Failure(BaseModel):
    ok: Literal[False] = False
    errors: List[ErrorDetail] = Field(default_factory=list)

    @classmethod
    def from_error(cls, error: TeamsError) -> "Failure":
        return cls(errors=[ErrorDetail(**e) for e in error.to_errors()])

    @property
    def code(self) -> Optional[str]:
        return self.errors[0].code if self.errors else None

    @property
    def message(self) -> Optional[str]:
        return self.errors[0].message if self.errors else None


ActionResult = Union[Success, Failure]


class SubAction(BaseModel):
    """One post-commit side effect; run in order after the transaction commits."""

    name: str
    run: Callable[[], Awaitable[Any]]
    continue_on_failure: bool = True

    class Config:
        arbitrary_types_allowed = True


class Services:
    """Collaborators shared by every action run through one pipeline."""

    def __init__(
        self,
        settings: TeamsSettings,
        resolver: PermissionResolver,
        invitations: InvitationService,
        workflow: TeamWorkflow,
        directory: PrincipalDirectory,
        notifier: NotificationDispatcher,
        hooks: ResourceHooks,
    ):
        self.settings = settings
        self.resolver = resolver
        self.invitations = invitations
        self.workflow = workflow
        self.directory = directory
        self.notifier = notifier
        self.hooks = hooks


class ExecutionContext:
    """Collects what an Execute phase produces besides its return value.

    Exactly one domain event may be emitted; cache tags and activity records
    are applied by the pipeline once the transaction commits.
    """

    def __init__(self, action: str, actor: Optional[PrincipalRef], tenant_id: Optional[str]):
        self.action = action
        self.actor = actor
        self.tenant_id = tenant_id
        self.event: Optional[DomainEvent] = None
        self.tags: Set[str] = set()
        self.activity: List[Dict[str, Any]] = []

    def emit(self, kind: str, **payload: Any) -> DomainEvent:
        if self.event is not None:
            raise RuntimeError(f"{self.action} already emitted {self.event.kind}")
        self.event = DomainEvent(kind=kind, payload=payload, actor=self.actor)
        return self.event

    def tag(self, *tags: str) -> None:
        self.tags.update(t for t in tags if t)

    def record(
        self,
        subject_type: str,
        subject_id: Any,
        action: str,
        description: Optional[str] = None,
        **properties: Any,
    ) -> None:
        self.activity.append(
            {
                "subject_type": subject_type,
                "subject_id": str(subject_id),
                "action": action,
                "description": description,
                "properties": properties,
            }
        )


class Action:
    """Base class for a domain operation.

    Subclasses set ``name`` and ``input_model`` and override ``authorize``,
    ``execute`` and ``after``. ``validate`` performs no I/O.
    """

    name: str = ""
    description: str = ""
    input_model: Type[BaseModel]

    def __init__(
        self,
        services: Services,
        actor: Optional[PrincipalRef],
        payload: Dict[str, Any],
        tenant_id: Optional[str] = None,
    ):
        self.services = services
        self.settings = services.settings
        self.actor = actor
        self.payload = payload
        self.tenant_id = tenant_id
        self.input: Any = None

    def validate(self) -> BaseModel:
        try:
            return self.input_model.model_validate(self.payload)
        except PydanticValidationError as exc:
            field_errors: Dict[str, List[str]] = {}
            for error in exc.errors():
                field = ".".join(str(part) for part in error["loc"]) or "__root__"
                field_errors.setdefault(field, []).append(error["msg"])
            raise ValidationFailed(field_errors=field_errors) from exc

    async def authorize(self) -> bool:
        return True

    async def execute(self, ctx: ExecutionContext) -> Any:
        raise NotImplementedError

    def after(self, result: Any) -> List[Optional[SubAction]]:
        return []

    def success_message(self, result: Any) -> Optional[str]:
        return None

    async def load_team(self, team_id: str) -> Team:
        try:
            team = await Team.get_or_none(id=team_id, deleted_at=None)
        except (ValueError, TypeError):
            team = None
        if team is None:
            raise NotFound("Team", team_id, field="team_id")
        return team

    async def active_member_refs(self, team_id: Any) -> List[PrincipalRef]:
        rows = await Membership.filter(team_id=team_id, status=MembershipStatus.ACTIVE).values(
            "user_type", "user_id"
        )
        return [PrincipalRef(kind=row["user_type"], id=row["user_id"]) for row in rows]

    def notification(
        self,
        name: str,
        kind: str,
        recipients: Callable[[], Awaitable[List[Any]]],
        payload: Dict[str, Any],
        continue_on_failure: bool = True,
    ) -> Optional[SubAction]:
        if not self.settings.NOTIFICATIONS_ENABLED:
            return None

        async def run() -> None:
            await self.services.notifier.dispatch(await recipients(), kind, payload)

        return SubAction(name=name, run=run, continue_on_failure=continue_on_failure)

    def notify_members(self, team_id: Any, kind: str, payload: Dict[str, Any]) -> Optional[SubAction]:
        return self.notification(
            "notify_members", kind, lambda: self.active_member_refs(team_id), payload
        )
