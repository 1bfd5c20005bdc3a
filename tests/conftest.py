"""Shared fixtures: an in-memory SQLite database per test and a wired pipeline."""

from typing import Any, Dict, List, Tuple

import pytest
import pytest_asyncio
from tortoise import Tortoise

from teamflow.actions import ActionPipeline, CreateTeam, Success
from teamflow.config.database import init_db
from teamflow.config.settings import TeamsSettings
from teamflow.models import PrincipalRef, Team
from teamflow.services.cache import InMemoryTagCache
from teamflow.services.events import RecordingEventBus
from teamflow.services.principals import InMemoryPrincipalDirectory
from teamflow.services.teams import TeamsService


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[List[str], str, Dict[str, Any]]] = []
        self.fail_kinds: set = set()

    async def dispatch(self, recipients, kind, payload) -> None:
        if kind in self.fail_kinds:
            raise RuntimeError(f"{kind} delivery failed")
        self.sent.append(([str(r) for r in recipients], kind, payload))

    def kinds(self) -> List[str]:
        return [kind for _, kind, _ in self.sent]


class RecordingHooks:
    def __init__(self) -> None:
        self.calls: List[Tuple[str, tuple]] = []
        self.fail: set = set()

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)

        async def hook(*args):
            if name in self.fail:
                raise RuntimeError(f"{name} failed")
            self.calls.append((name, args))

        return hook

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def settings() -> TeamsSettings:
    return TeamsSettings(_env_file=None, CACHE_BACKEND="memory", MAX_MEMBERS_PER_TEAM=100)


@pytest_asyncio.fixture
async def db():
    await init_db("sqlite://:memory:")
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def owner() -> PrincipalRef:
    return PrincipalRef(kind="user", id="owner-1")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def hooks() -> RecordingHooks:
    return RecordingHooks()


@pytest.fixture
def bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def cache() -> InMemoryTagCache:
    return InMemoryTagCache()


@pytest.fixture
def pipeline(db, settings, bus, cache, notifier, hooks) -> ActionPipeline:
    return ActionPipeline(
        settings,
        event_bus=bus,
        cache=cache,
        notifier=notifier,
        hooks=hooks,
        directory=InMemoryPrincipalDirectory(),
    )


@pytest.fixture
def service(pipeline) -> TeamsService:
    return TeamsService(pipeline)


@pytest_asyncio.fixture
async def draft_team(pipeline, owner) -> Team:
    result = await pipeline.run(CreateTeam, owner, {"name": "Platform Team", "type": "project"})
    assert isinstance(result, Success), result
    return result.data


@pytest_asyncio.fixture
async def active_team(service, draft_team, owner) -> Team:
    result = await service.activate(owner, str(draft_team.id))
    assert isinstance(result, Success), result
    return await Team.get(id=draft_team.id)
