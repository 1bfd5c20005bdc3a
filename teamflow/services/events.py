import asyncio
import json
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis
from pydantic import BaseModel, Field

from ..config.settings import TeamsSettings
from ..models.principal import PrincipalRef
from ..models.team import Team
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


class EventKind:
    TEAM_CREATED = "TeamCreated"
    TEAM_ACTIVATED = "TeamActivated"
    TEAM_SUSPENDED = "TeamSuspended"
    TEAM_ARCHIVED = "TeamArchived"
    TEAM_RESTORED = "TeamRestored"
    TEAM_UPDATED = "TeamUpdated"
    MEMBER_JOINED = "MemberJoined"
    MEMBER_LEFT = "MemberLeft"
    MEMBER_REMOVED = "MemberRemoved"
    INVITATION_SENT = "InvitationSent"
    INVITATION_ACCEPTED = "InvitationAccepted"
    INVITATION_REJECTED = "InvitationRejected"
    INVITATION_RESENT = "InvitationResent"
    INVITATION_CANCELLED = "InvitationCancelled"

    MEMBERSHIP_CHANGES = (MEMBER_JOINED, MEMBER_LEFT, MEMBER_REMOVED, INVITATION_ACCEPTED)


class DomainEvent(BaseModel):
    kind: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    actor: Optional[PrincipalRef] = None
    occurred_at: datetime = Field(default_factory=utcnow)
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def team_id(self) -> Optional[str]:
        value = self.payload.get("team_id")
        return str(value) if value is not None else None


EventHandler = Callable[[DomainEvent], Awaitable[None]]

ALL_EVENTS = "*"


class EventBus:
    """In-process fan-out of domain events.

    Handlers run in subscription order. A failing handler is logged and the
    remaining handlers still run; ``publish`` never raises.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, kind: str, handler: EventHandler) -> None:
        self._handlers[kind].append(handler)

    def handlers_for(self, kind: str) -> List[EventHandler]:
        return [*self._handlers.get(kind, []), *self._handlers.get(ALL_EVENTS, [])]

    async def publish(self, event: DomainEvent) -> None:
        for handler in self.handlers_for(event.kind):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Event handler {getattr(handler, '__qualname__', handler)} failed for {event.kind}: {str(e)}")


class RecordingEventBus(EventBus):
    """Keeps every published event; handy for scripts and assertions."""

    def __init__(self) -> None:
        super().__init__()
        self.published: List[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.published.append(event)
        await super().publish(event)

    def kinds(self) -> List[str]:
        return [event.kind for event in self.published]


class RedisEventForwarder:
    """Relays every domain event onto a Redis pub/sub channel."""

    def __init__(self, settings: TeamsSettings, client: Optional[redis.Redis] = None):
        self.settings = settings
        self.channel = settings.EVENTS_CHANNEL or f"{settings.CACHE_PREFIX}:events"
        self._client = client
        self._lock = asyncio.Lock()

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = redis.from_url(
                        self.settings.REDIS_URL, encoding="utf-8", decode_responses=True
                    )
        return self._client

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(ALL_EVENTS, self)

    async def __call__(self, event: DomainEvent) -> None:
        r = await self.get_client()
        try:
            await r.publish(self.channel, json.dumps(event.model_dump(mode="json"), ensure_ascii=False))
        except Exception as e:
            logger.error(f"Error publishing to Redis channel {self.channel}: {str(e)}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class TeamMetricsListener:
    """Touches ``Team.last_activity_at`` whenever membership or settings change."""

    KINDS = (*EventKind.MEMBERSHIP_CHANGES, EventKind.TEAM_UPDATED)

    def attach(self, bus: EventBus) -> None:
        for kind in self.KINDS:
            bus.subscribe(kind, self)

    async def __call__(self, event: DomainEvent) -> None:
        team_id = event.team_id
        if team_id is None:
            return
        await Team.filter(id=team_id).update(last_activity_at=event.occurred_at)
        logger.debug(f"Updated activity timestamp for team {team_id} after {event.kind}")
