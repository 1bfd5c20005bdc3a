"""Tests for teamflow.services.cache and teamflow.services.events."""

import json

import pytest

from teamflow.models import Team
from teamflow.services.cache import InMemoryTagCache, RedisTagCache, build_cache, remember
from teamflow.services.events import (
    ALL_EVENTS,
    DomainEvent,
    EventBus,
    RedisEventForwarder,
    TeamMetricsListener,
)


class TestInMemoryTagCache:
    """Test cases for InMemoryTagCache."""

    @pytest.mark.asyncio
    async def test_invalidate_drops_every_key_under_tag(self):
        """Keys sharing a tag go together; untagged keys stay."""
        cache = InMemoryTagCache()
        await cache.set("summary", {"a": 1}, ["team:1"])
        await cache.set("members", [1, 2], ["team:1", "user:9"])
        await cache.set("other", "x", ["team:2"])

        await cache.invalidate_tags(["team:1"])

        assert await cache.get("summary") is None
        assert await cache.get("members") is None
        assert await cache.get("other") == "x"
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_expired_entries_are_misses(self):
        """An entry past its ttl reads as missing."""
        cache = InMemoryTagCache()
        await cache.set("stale", 1, [], ttl=-1)

        assert await cache.get("stale") is None

    @pytest.mark.asyncio
    async def test_remember_loads_once(self, mocker):
        """remember only calls the loader on a miss."""
        cache = InMemoryTagCache()
        loader = mocker.AsyncMock(return_value={"n": 1})

        first = await remember(cache, "k", ["t"], loader)
        second = await remember(cache, "k", ["t"], loader)

        assert first == second == {"n": 1}
        loader.assert_awaited_once()


class TestRedisTagCache:
    """Test cases for RedisTagCache against a mocked client."""

    @pytest.fixture
    def client(self, mocker):
        client = mocker.MagicMock()
        client.get = mocker.AsyncMock(return_value=None)
        client.smembers = mocker.AsyncMock(return_value={"summary", "members"})
        client.delete = mocker.AsyncMock()
        pipe = mocker.MagicMock()
        pipe.execute = mocker.AsyncMock()
        client.pipeline.return_value.__aenter__.return_value = pipe
        client.pipe = pipe
        return client

    @pytest.mark.asyncio
    async def test_set_writes_value_and_tag_sets(self, settings, client):
        """Values are JSON encoded and each tag set receives the key."""
        cache = RedisTagCache(settings, client=client)

        await cache.set("summary", {"a": 1}, ["team:1", "user:2"], ttl=60)

        client.pipe.set.assert_called_once_with("teams:key:summary", json.dumps({"a": 1}), ex=60)
        client.pipe.sadd.assert_any_call("teams:tag:team:1", "summary")
        client.pipe.sadd.assert_any_call("teams:tag:user:2", "summary")
        client.pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, settings, client):
        """Stored JSON comes back decoded; missing keys are None."""
        cache = RedisTagCache(settings, client=client)
        assert await cache.get("missing") is None

        client.get.return_value = json.dumps({"a": 1})
        assert await cache.get("summary") == {"a": 1}
        client.get.assert_awaited_with("teams:key:summary")

    @pytest.mark.asyncio
    async def test_invalidate_deletes_members_and_tag(self, settings, client):
        """Invalidation deletes every key in the tag set, then the set."""
        cache = RedisTagCache(settings, client=client)

        await cache.invalidate_tags(["team:1"])

        client.smembers.assert_awaited_once_with("teams:tag:team:1")
        deleted_keys = set(client.delete.await_args_list[0].args)
        assert deleted_keys == {"teams:key:summary", "teams:key:members"}
        client.delete.assert_awaited_with("teams:tag:team:1")

    def test_build_cache_picks_backend(self, settings):
        """CACHE_BACKEND selects the implementation."""
        assert isinstance(build_cache(settings), InMemoryTagCache)
        redis_settings = settings.model_copy(update={"CACHE_BACKEND": "redis"})
        assert isinstance(build_cache(redis_settings), RedisTagCache)


class TestEventBus:
    """Test cases for EventBus and its listeners."""

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        """Handlers after a failing one still run."""
        bus = EventBus()
        seen = []

        async def broken(event):
            raise RuntimeError("boom")

        async def healthy(event):
            seen.append(event.kind)

        bus.subscribe("TeamCreated", broken)
        bus.subscribe("TeamCreated", healthy)
        bus.subscribe(ALL_EVENTS, healthy)

        await bus.publish(DomainEvent(kind="TeamCreated", payload={"team_id": "1"}))
        await bus.publish(DomainEvent(kind="TeamUpdated"))

        assert seen == ["TeamCreated", "TeamCreated", "TeamUpdated"]

    def test_event_ids_are_unique(self):
        """Every event gets its own id and timestamp."""
        first, second = DomainEvent(kind="A"), DomainEvent(kind="A")

        assert first.id != second.id
        assert first.occurred_at.tzinfo is not None
        assert DomainEvent(kind="A", payload={"team_id": 5}).team_id == "5"

    @pytest.mark.asyncio
    async def test_redis_forwarder_publishes_json(self, settings, mocker):
        """Forwarded events land on the configured channel as JSON."""
        client = mocker.AsyncMock()
        forwarder = RedisEventForwarder(settings, client=client)
        bus = EventBus()
        forwarder.attach(bus)

        await bus.publish(DomainEvent(kind="MemberJoined", payload={"team_id": "t1", "user": "user:1"}))

        channel, message = client.publish.await_args.args
        assert channel == "teams:events"
        body = json.loads(message)
        assert body["kind"] == "MemberJoined"
        assert body["payload"]["user"] == "user:1"

    @pytest.mark.asyncio
    async def test_redis_forwarder_swallows_publish_errors(self, settings, mocker):
        """A Redis outage is logged, not raised."""
        client = mocker.AsyncMock()
        client.publish.side_effect = ConnectionError("redis down")
        forwarder = RedisEventForwarder(settings.model_copy(update={"EVENTS_CHANNEL": "audit"}), client=client)

        await forwarder(DomainEvent(kind="TeamCreated"))

        assert client.publish.await_args.args[0] == "audit"

    @pytest.mark.asyncio
    async def test_metrics_listener_touches_last_activity(self, draft_team):
        """Membership changes refresh the team's last activity timestamp."""
        await Team.filter(id=draft_team.id).update(last_activity_at=None)
        bus = EventBus()
        TeamMetricsListener().attach(bus)

        await bus.publish(DomainEvent(kind="TeamSuspended", payload={"team_id": str(draft_team.id)}))
        assert (await Team.get(id=draft_team.id)).last_activity_at is None

        await bus.publish(DomainEvent(kind="MemberJoined", payload={"team_id": str(draft_team.id)}))
        assert (await Team.get(id=draft_team.id)).last_activity_at is not None
