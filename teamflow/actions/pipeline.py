import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Type

from tortoise.exceptions import (
    DBConnectionError,
    IntegrityError,
    OperationalError,
    TransactionManagementError,
)
from tortoise.transactions import in_transaction

from ..config.settings import TeamsSettings, get_settings
from ..exceptions import Conflict, Forbidden, SideEffectFailed, TeamsError, Unavailable
from ..models.activity import ActivityLog
from ..models.principal import PrincipalRef
from ..services.cache import InMemoryTagCache, TagCache
from ..services.events import EventBus
from ..services.invitations import InvitationService
from ..services.notifications import (
    LoggingNotificationDispatcher,
    LoggingResourceHooks,
    NotificationDispatcher,
    ResourceHooks,
)
from ..services.permissions import PermissionResolver
from ..services.principals import InMemoryPrincipalDirectory, PrincipalDirectory
from ..utils.clock import monotonic_start_ns, since_ms
from ..workflows.lifecycle import TeamWorkflow
from .base import (
    Action,
    ActionResult,
    ErrorDetail,
    ExecutionContext,
    Failure,
    Services,
    SubAction,
    Success,
)

logger = logging.getLogger(__name__)

INFRASTRUCTURE_ERRORS = (
    OperationalError,
    DBConnectionError,
    TransactionManagementError,
    asyncio.TimeoutError,
    ConnectionError,
)


class ActionPipeline:
    """Runs actions through validate, authorize, execute and after.

    Phases 1-3 either succeed or produce a ``Failure``; nothing committed in
    Execute survives a failure. Once committed, cache tags are flushed, the
    domain event is published and the after-phase sub-actions run; their
    failures only become warnings on the ``Success``.
    """

    def __init__(
        self,
        settings: Optional[TeamsSettings] = None,
        event_bus: Optional[EventBus] = None,
        cache: Optional[TagCache] = None,
        notifier: Optional[NotificationDispatcher] = None,
        hooks: Optional[ResourceHooks] = None,
        directory: Optional[PrincipalDirectory] = None,
    ):
        self.settings = settings or get_settings()
        self.event_bus = event_bus or EventBus()
        self.cache = cache or InMemoryTagCache(default_ttl=self.settings.CACHE_TTL_SECONDS)

        resolver = PermissionResolver(self.settings)
        self.services = Services(
            settings=self.settings,
            resolver=resolver,
            invitations=InvitationService(self.settings, resolver),
            workflow=TeamWorkflow(resolver),
            directory=directory or InMemoryPrincipalDirectory(),
            notifier=notifier or LoggingNotificationDispatcher(),
            hooks=hooks or LoggingResourceHooks(),
        )
        self._background: Set[asyncio.Task] = set()

    @property
    def resolver(self) -> PermissionResolver:
        return self.services.resolver

    async def run(
        self,
        action_cls: Type[Action],
        actor: Optional[PrincipalRef],
        payload: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> ActionResult:
        if not self.settings.TENANCY_ENABLED:
            tenant_id = None

        action = action_cls(self.services, actor, payload or {}, tenant_id)
        ctx = ExecutionContext(action.name, actor, tenant_id)
        start = monotonic_start_ns()

        try:
            action.input = action.validate()

            allowed = await action.authorize()
            if allowed is False:
                raise Forbidden("This action is unauthorized.")

            async with in_transaction():
                data = await action.execute(ctx)
                if ctx.event is None:
                    raise RuntimeError(f"{action.name} completed without emitting a domain event")
                await self._write_activity(ctx)

        except TeamsError as exc:
            logger.info(f"{action.name} rejected: {exc}")
            return Failure.from_error(exc)
        except IntegrityError as exc:
            logger.warning(f"{action.name} hit a uniqueness conflict: {str(exc)}")
            return Failure.from_error(Conflict("The change conflicts with existing data."))
        except INFRASTRUCTURE_ERRORS as exc:
            logger.error(f"{action.name} failed on infrastructure: {str(exc)}")
            return Failure.from_error(Unavailable())
        except Exception as exc:
            logger.exception(f"Unexpected error while running {action.name}: {str(exc)}")
            return Failure.from_error(TeamsError("An unexpected error occurred.", code="unexpected_error"))

        await self._after_commit(ctx)
        logger.info(f"{action.name} committed {ctx.event.kind} in {since_ms(start):.1f} ms")

        warnings = await self._run_after(action, data)
        return Success(data=data, message=action.success_message(data), warnings=warnings)

    async def _write_activity(self, ctx: ExecutionContext) -> None:
        if not self.settings.AUDIT_ENABLED:
            return
        actor = ctx.actor
        for record in ctx.activity:
            await ActivityLog.create(
                actor_type=actor.kind if actor else None,
                actor_id=actor.id if actor else None,
                tenant_id=ctx.tenant_id,
                **record,
            )

    async def _after_commit(self, ctx: ExecutionContext) -> None:
        if ctx.tags:
            try:
                await self.cache.invalidate_tags(sorted(ctx.tags))
            except Exception as e:
                logger.error(f"Failed to invalidate cache tags {sorted(ctx.tags)}: {str(e)}")
        try:
            await self.event_bus.publish(ctx.event)
        except Exception as e:
            logger.error(f"Failed to publish {ctx.event.kind}: {str(e)}")

    async def _run_after(self, action: Action, data: Any) -> List[ErrorDetail]:
        try:
            chain = [sub for sub in action.after(data) if sub is not None]
        except Exception as e:
            logger.exception(f"Could not build after-phase for {action.name}: {str(e)}")
            return [ErrorDetail(code=SideEffectFailed.code, message=str(e), step="after")]

        if not chain:
            return []

        if not self.settings.AFTER_PHASE_BLOCKING:
            task = asyncio.create_task(self.run_chain(action.name, chain))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            return []

        return await self.run_chain(action.name, chain)

    async def run_chain(self, action_name: str, chain: List[SubAction]) -> List[ErrorDetail]:
        warnings: List[ErrorDetail] = []
        for index, sub in enumerate(chain):
            try:
                await sub.run()
            except Exception as e:
                fatal = not sub.continue_on_failure
                logger.error(f"Sub-action {sub.name} of {action_name} failed: {str(e)}")
                warnings.append(
                    ErrorDetail(
                        code=SideEffectFailed.code,
                        message=f"{sub.name} failed: {str(e)}",
                        step=sub.name,
                        fatal=fatal,
                    )
                )
                if fatal:
                    skipped = [s.name for s in chain[index + 1 :]]
                    if skipped:
                        logger.warning(f"Skipping {', '.join(skipped)} after {sub.name} failed")
                    break
        return warnings

    async def drain(self) -> None:
        """Wait for background after-phase chains to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
