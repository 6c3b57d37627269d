from __future__ import annotations

import asyncio
import json

from websockets.asyncio.client import connect
from websockets.asyncio.server import serve

from bridge.errors import PeerClosed, PeerUnresponsive
from bridge.heartbeat import HeartbeatSupervisor
from bridge.legs import WebSocketLeg
from bridge.registry import SessionRegistry
from bridge.session import Session, SessionState
from bridge.translator import get_protocol
from fakes import CANDIDATES, FakeDialer, FakeLeg, adopt_leg, settle, start_event


def _run(coro):
    return asyncio.run(coro)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


async def _idle(connection) -> None:
    await connection.wait_closed()


async def _loopback(handler):
    server = await serve(handler, "127.0.0.1", 0)
    port = next(iter(server.sockets)).getsockname()[1]
    client = await connect(f"ws://127.0.0.1:{port}/", ping_interval=None)
    return server, client


async def _shutdown(server, client) -> None:
    await client.close()
    server.close()
    await server.wait_closed()


async def _drain(leg: WebSocketLeg) -> list:
    return [message async for message in leg.messages()]


def test_pong_marks_leg_alive_again():
    async def scenario():
        server, client = await _loopback(_idle)
        try:
            leg = WebSocketLeg(client, label="agent")
            leg.is_alive = False

            await leg.ping()
            await _wait_for(lambda: leg.is_alive)

            assert not leg.closed
        finally:
            await _shutdown(server, client)

    _run(scenario())


def test_messages_end_with_the_peer_close_code():
    async def handler(connection):
        await connection.send("hello")
        await connection.close(1001, "bye")

    async def scenario():
        server, client = await _loopback(handler)
        try:
            leg = WebSocketLeg(client, label="call")

            assert await asyncio.wait_for(_drain(leg), timeout=2) == ["hello"]

            assert leg.closed
            assert not leg.is_alive
            cause = leg.close_cause()
            assert isinstance(cause, PeerClosed)
            assert cause.code == 1001
            assert cause.reason == "bye"
        finally:
            await _shutdown(server, client)

    _run(scenario())


def test_send_json_after_peer_closed_returns_false():
    async def handler(connection):
        await connection.close()

    async def scenario():
        server, client = await _loopback(handler)
        try:
            leg = WebSocketLeg(client, label="agent")
            await asyncio.wait_for(client.wait_closed(), timeout=2)

            assert await leg.send_json({"user_audio_chunk": "AAAA"}) is False
            assert leg.closed
            assert await leg.send_json({"user_audio_chunk": "BBBB"}) is False
        finally:
            await _shutdown(server, client)

    _run(scenario())


def test_send_json_writes_one_text_frame():
    received: list[str] = []

    async def handler(connection):
        async for message in connection:
            received.append(message)

    async def scenario():
        server, client = await _loopback(handler)
        try:
            leg = WebSocketLeg(client, label="agent")
            assert await leg.send_json({"type": "user_activity"}) is True
            await _wait_for(lambda: received)
        finally:
            await _shutdown(server, client)

        assert [json.loads(message) for message in received] == [{"type": "user_activity"}]

    _run(scenario())


def test_abort_drops_the_socket_with_unresponsive_cause():
    async def scenario():
        server, client = await _loopback(_idle)
        try:
            leg = WebSocketLeg(client, label="call")
            reader = asyncio.create_task(_drain(leg))
            await settle()

            leg.abort(PeerUnresponsive("call missed a liveness probe"))

            assert await asyncio.wait_for(reader, timeout=2) == []
            assert leg.closed
            assert isinstance(leg.close_cause(), PeerUnresponsive)
        finally:
            await _shutdown(server, client)

    _run(scenario())


def test_supervisor_termination_tears_down_the_session():
    async def handler(connection):
        await connection.send(json.dumps(start_event("MZ7")))
        await connection.wait_closed()

    async def scenario():
        server, client = await _loopback(handler)
        try:
            registry = SessionRegistry()
            supervisor = HeartbeatSupervisor(interval=20)
            agent = FakeLeg("agent")
            call = WebSocketLeg(client, label="call")
            session = Session(
                call,
                registry=registry,
                dialer=FakeDialer(agent),
                candidates=lambda: CANDIDATES,
                protocol=get_protocol("elevenlabs"),
                supervisor=supervisor,
                leg_factory=adopt_leg,
            )
            supervisor.track(call)
            await registry.add(session)
            runner = asyncio.create_task(session.run())
            await _wait_for(lambda: session.state is SessionState.ACTIVE)

            # The previous ping on the call leg went unanswered.
            call.is_alive = False
            await supervisor.sweep()
            await asyncio.wait_for(runner, timeout=2)

            assert isinstance(call.close_cause(), PeerUnresponsive)
            assert session.state is SessionState.CLOSED
            assert agent.close_calls == [(1000, "call ended")]
            assert len(registry) == 0
            assert len(supervisor) == 0
        finally:
            await _shutdown(server, client)

    _run(scenario())
