# tests/test_registry.py - Live session bookkeeping and fan-out
import asyncio
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.websockets import WebSocketState

from app.realtime.backplane import RedisBackplane
from app.realtime.gateway import SessionGateway
from app.realtime.protocol import make_event
from app.realtime.registry import ConnectionRegistry


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail
        self.client_state = WebSocketState.CONNECTED
        self.close_code = None

    async def send_json(self, payload):
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(payload)

    async def close(self, code=1000, reason=""):
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.mark.asyncio
async def test_every_session_of_a_user_receives(registry):
    user_id = uuid.uuid4()
    phone, laptop = FakeWebSocket(), FakeWebSocket()
    await registry.register(user_id, "parent", phone)
    await registry.register(user_id, "parent", laptop)

    delivered = await registry.deliver(f"user:{user_id}", make_event("new_message", {"id": 1}))

    assert delivered == 2
    assert phone.sent[0]["type"] == "new_message"
    assert laptop.sent[0]["data"] == {"id": 1}
    assert registry.stats() == {"active_users": 1, "total_connections": 2}


@pytest.mark.asyncio
async def test_role_and_all_targets(registry):
    teacher_ws, student_ws = FakeWebSocket(), FakeWebSocket()
    await registry.register(uuid.uuid4(), "teacher", teacher_ws)
    await registry.register(uuid.uuid4(), "student", student_ws)

    assert await registry.deliver("role:teacher", {"type": "x"}) == 1
    assert student_ws.sent == []

    assert await registry.deliver("all", {"type": "y"}) == 2
    assert await registry.deliver("role:parent", {"type": "z"}) == 0


@pytest.mark.asyncio
async def test_unknown_or_malformed_targets_reach_nobody(registry):
    await registry.register(uuid.uuid4(), "teacher", FakeWebSocket())

    assert await registry.deliver("user:not-a-uuid", {"type": "x"}) == 0
    assert await registry.deliver("room:42", {"type": "x"}) == 0


@pytest.mark.asyncio
async def test_dead_session_is_dropped_silently(registry):
    user_id = uuid.uuid4()
    alive, dead = FakeWebSocket(), FakeWebSocket(fail=True)
    await registry.register(user_id, "student", alive)
    dead_session = await registry.register(user_id, "student", dead)

    assert await registry.deliver(f"user:{user_id}", {"type": "ping"}) == 1
    assert dead_session.closed is True
    assert registry.stats()["total_connections"] == 1

    # Next emit only targets the survivor
    assert await registry.deliver(f"user:{user_id}", {"type": "ping"}) == 1
    assert len(alive.sent) == 2


@pytest.mark.asyncio
async def test_unregister_removes_user_and_role_groups(registry):
    user_id = uuid.uuid4()
    session = await registry.register(user_id, "teacher", FakeWebSocket())
    assert registry.is_online(user_id)

    await registry.unregister(session)
    # Second call is a no-op
    await registry.unregister(session)

    assert not registry.is_online(user_id)
    assert registry.sessions_for("role:teacher") == []
    assert registry.stats() == {"active_users": 0, "total_connections": 0}


@pytest.mark.asyncio
async def test_close_shuts_every_session(registry):
    sockets = [FakeWebSocket(), FakeWebSocket()]
    for ws in sockets:
        await registry.register(uuid.uuid4(), "parent", ws)

    await registry.close()

    assert [ws.close_code for ws in sockets] == [1001, 1001]
    assert registry.sessions_for("all") == []


@pytest.mark.asyncio
async def test_registry_leaves_connect_logging_to_gateway(registry, caplog):
    caplog.set_level(logging.INFO, logger="app.realtime.registry")

    session = await registry.register(uuid.uuid4(), "parent", FakeWebSocket())
    await registry.unregister(session)

    assert [r for r in caplog.records if r.name == "app.realtime.registry"] == []


class FakePubSub:
    """Stand-in for a redis.asyncio PubSub whose stream can be made to fail"""

    def __init__(self, error: Exception = None):
        self.error = error
        self.psubscribe = AsyncMock()
        self.punsubscribe = AsyncMock()
        self.aclose = AsyncMock()
        self._idle = asyncio.Event()

    async def listen(self):
        if self.error is not None:
            raise self.error
        await self._idle.wait()
        yield {"type": "pmessage"}


def make_redis(*pubsubs):
    client = AsyncMock()
    client.ping.return_value = True
    client.publish.return_value = 2
    client.pubsub = MagicMock(side_effect=list(pubsubs))
    return client


async def wait_until(predicate, attempts: int = 200):
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


class TestRedisBackplane:

    @pytest.mark.asyncio
    async def test_publish_uses_prefixed_channel(self, registry):
        client = AsyncMock()
        client.publish.return_value = 2
        backplane = RedisBackplane(registry, client, prefix="live")
        payload = make_event("new_announcement", {"id": 7})

        assert await backplane.publish("all", payload) == 2
        channel, body = client.publish.await_args.args
        assert channel == "live:all"
        assert json.loads(body)["event"]["data"] == {"id": 7}
        assert json.loads(body)["exclude"] is None

    @pytest.mark.asyncio
    async def test_dispatch_delivers_to_local_sessions(self, registry):
        user_id = uuid.uuid4()
        ws = FakeWebSocket()
        await registry.register(user_id, "parent", ws)
        backplane = RedisBackplane(registry, AsyncMock(), prefix="live")

        delivered = await backplane.dispatch({
            "type": "pmessage",
            "pattern": "live:*",
            "channel": f"live:user:{user_id}",
            "data": json.dumps({"event": {"type": "new_message", "data": {"id": 3}}, "exclude": None}),
        })

        assert delivered == 1
        assert ws.sent == [{"type": "new_message", "data": {"id": 3}}]

    @pytest.mark.asyncio
    async def test_dispatch_skips_excluded_connection(self, registry):
        user_id = uuid.uuid4()
        origin_ws, other_ws = FakeWebSocket(), FakeWebSocket()
        origin = await registry.register(user_id, "parent", origin_ws)
        await registry.register(user_id, "parent", other_ws)
        backplane = RedisBackplane(registry, AsyncMock(), prefix="live")

        delivered = await backplane.dispatch({
            "type": "pmessage",
            "channel": f"live:user:{user_id}",
            "data": json.dumps({"event": {"type": "user_typing"}, "exclude": origin.connection_id}),
        })

        assert delivered == 1
        assert origin_ws.sent == []
        assert other_ws.sent == [{"type": "user_typing"}]

    @pytest.mark.asyncio
    async def test_dispatch_ignores_other_messages(self, registry):
        await registry.register(uuid.uuid4(), "parent", FakeWebSocket())
        backplane = RedisBackplane(registry, AsyncMock(), prefix="live")

        assert await backplane.dispatch({"type": "psubscribe", "channel": "live:*", "data": 1}) == 0
        assert await backplane.dispatch({"type": "pmessage", "channel": "live:all", "data": "{oops"}) == 0
        assert await backplane.dispatch({"type": "pmessage", "channel": "live:all", "data": "{}"}) == 0

    @pytest.mark.asyncio
    async def test_dead_listener_falls_back_to_local_delivery(self, registry):
        client = make_redis(FakePubSub(error=ConnectionError("connection reset by peer")))
        backplane = RedisBackplane(registry, client, prefix="live", min_delay=60, max_delay=60)
        gateway = SessionGateway(registry=registry, backplane=backplane)

        await gateway.start()
        assert await wait_until(lambda: not backplane.listening)

        ws = FakeWebSocket()
        user_id = uuid.uuid4()
        await registry.register(user_id, "parent", ws)
        client.publish.reset_mock()

        fanout = await gateway.emit_to_user(user_id, "new_message", {"id": 11})

        assert fanout.delivered == 1
        assert ws.sent[0]["data"] == {"id": 11}
        client.publish.assert_not_awaited()

        health = await gateway.health()
        assert health["redis_connected"] is True
        assert health["backplane_listening"] is False

        await gateway.close()

    @pytest.mark.asyncio
    async def test_listener_resubscribes_after_failure(self, registry):
        broken = FakePubSub(error=ConnectionError("connection reset by peer"))
        healthy = FakePubSub()
        client = make_redis(broken, healthy)
        backplane = RedisBackplane(registry, client, prefix="live", min_delay=0.01, max_delay=0.01)

        await backplane.start()
        assert await wait_until(lambda: client.pubsub.call_count == 2 and backplane.listening)

        healthy.psubscribe.assert_awaited_once_with("live:*")
        broken.aclose.assert_awaited()

        await backplane.close()
        healthy.punsubscribe.assert_awaited_once_with("live:*")



class TestGateway:

    @pytest.mark.asyncio
    async def test_falls_back_to_local_when_backplane_down(self, registry):
        backplane = AsyncMock()
        backplane.start.side_effect = ConnectionError("redis unreachable")
        gateway = SessionGateway(registry=registry, backplane=backplane)

        await gateway.start()
        assert gateway.backplane is None

        ws = FakeWebSocket()
        user_id = uuid.uuid4()
        await registry.register(user_id, "teacher", ws)
        fanout = await gateway.emit_to_user(user_id, "user_typing", {"sender_name": "Anna Nowak"})

        assert fanout.delivered == 1
        assert not fanout.missed
        assert ws.sent[0]["data"]["sender_name"] == "Anna Nowak"

    @pytest.mark.asyncio
    async def test_publish_failure_delivers_locally(self, registry):
        backplane = AsyncMock()
        backplane.listening = True
        backplane.publish.side_effect = ConnectionError("lost connection")
        gateway = SessionGateway(registry=registry, backplane=backplane)

        ws = FakeWebSocket()
        await registry.register(uuid.uuid4(), "student", ws)

        fanout = await gateway.broadcast_all("new_announcement", {"id": 1})
        assert fanout.delivered == 1
        assert ws.sent[0]["type"] == "new_announcement"

    @pytest.mark.asyncio
    async def test_missed_when_nobody_is_online(self, registry):
        gateway = SessionGateway(registry=registry)

        fanout = await gateway.emit_to_role("parent", "new_announcement", {"id": 1})
        assert fanout.missed

    def test_connection_attempts_are_limited(self, registry):
        gateway = SessionGateway(registry=registry)
        user_id = uuid.uuid4()

        allowed = [gateway.check_rate_limit(user_id) for _ in range(11)]
        assert allowed == [True] * 10 + [False]
        assert gateway.check_rate_limit(uuid.uuid4()) is True

    def test_expired_attempt_windows_are_pruned(self, registry):
        gateway = SessionGateway(registry=registry)
        gone, current = uuid.uuid4(), uuid.uuid4()

        gateway.check_rate_limit(gone)
        gateway._attempts[gone]["reset_time"] = datetime.now(timezone.utc) - timedelta(seconds=1)

        # Another user's attempt clears the stale window
        assert gateway.check_rate_limit(current) is True
        assert gone not in gateway._attempts
        assert current in gateway._attempts

    @pytest.mark.asyncio
    async def test_emit_can_skip_origin_session(self, registry):
        gateway = SessionGateway(registry=registry)
        user_id = uuid.uuid4()
        origin_ws, other_ws = FakeWebSocket(), FakeWebSocket()
        origin = await registry.register(user_id, "teacher", origin_ws)
        await registry.register(user_id, "teacher", other_ws)

        fanout = await gateway.emit_to_user(user_id, "user_typing", {}, exclude=origin.connection_id)

        assert fanout.delivered == 1
        assert origin_ws.sent == []
        assert gateway.is_online(user_id)

    @pytest.mark.asyncio
    async def test_authenticate_rejections(self, client, make_user):
        from app.auth.security import create_access_token
        from app.core.errors import AuthenticationError

        gateway = SessionGateway(registry=ConnectionRegistry())

        with pytest.raises(AuthenticationError, match="Authentication required"):
            await gateway.authenticate(None)
        with pytest.raises(AuthenticationError, match="Invalid token"):
            await gateway.authenticate("garbage")
        with pytest.raises(AuthenticationError, match="Token expired"):
            await gateway.authenticate(create_access_token(sub=uuid.uuid4(), expires_minutes=-1))
        with pytest.raises(AuthenticationError, match="User not found"):
            await gateway.authenticate(create_access_token(sub=uuid.uuid4()))

        user, _, token = make_user("parent")
        assert (await gateway.authenticate(token)).id == user.id
