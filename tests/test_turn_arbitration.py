import asyncio
from types import SimpleNamespace

from turnstream.agent.executor import ExecutionGuard
from turnstream.arbitration.arbiter import Routing, TurnArbiter, is_cancel_command
from turnstream.arbitration.queue import BUFFER_SIZE, ChannelQueueRegistry
from turnstream.arbitration.ticker import TurnTicker
from turnstream.bus.events import ChatEvent, StreamChunk, TypingEvent
from turnstream.delivery.registry import StreamRegistry


class _FakeTransport:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def send(self, content: str):
        self.calls.append(("send", content))
        return SimpleNamespace(content=content)

    async def reply(self, parent, content: str):
        self.calls.append(("reply", content))
        return SimpleNamespace(content=content)

    async def edit(self, handle, content: str) -> None:
        self.calls.append(("edit", content))

    async def react(self, handle, emoji: str) -> None:
        pass

    async def remove_reaction(self, handle, emoji: str) -> None:
        pass


class _FakeInjector:
    def __init__(self, gate: asyncio.Event | None = None) -> None:
        self.gate = gate
        self.calls: list[tuple[str, str, str | None]] = []

    async def inject(self, session_key, text, *, on_stream, sender=None, channel_id=None):
        self.calls.append((session_key, text, sender))
        if self.gate is not None:
            await self.gate.wait()
        on_stream(StreamChunk(type="text", content=f"reply to {sender}"))
        return f"reply to {sender}"

    def cancel_inject(self, session_key: str) -> bool:
        return False


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _event(
    content: str,
    *,
    sender: str = "alice",
    message_id: str = "m1",
    is_agent: bool = False,
    mentions_self: bool = False,
    is_direct: bool = False,
    transport=None,
) -> ChatEvent:
    return ChatEvent(
        channel="discord",
        channel_id="c1",
        sender_id=sender,
        sender_name=sender,
        content=content,
        is_agent=is_agent,
        mentions_self=mentions_self,
        is_direct=is_direct,
        message_id=message_id,
        message=SimpleNamespace(id=message_id),
        transport=transport or _FakeTransport(),
    )


def _arbiter(injector, clock=None, **kwargs) -> tuple[TurnArbiter, ChannelQueueRegistry, StreamRegistry]:
    queues = ChannelQueueRegistry()
    streams = StreamRegistry()
    guard = ExecutionGuard(injector, queues, streams)
    arbiter = TurnArbiter(queues, guard, clock=clock or _Clock(), **kwargs)
    return arbiter, queues, streams


async def _settle() -> None:
    await asyncio.sleep(0.02)


async def test_agent_mention_fires_once_after_cooldown() -> None:
    injector = _FakeInjector()
    clock = _Clock()
    arbiter, queues, _ = _arbiter(injector, clock)

    routing = await arbiter.handle_event(_event("hey bot", sender="agent-a", is_agent=True, mentions_self=True))
    assert routing is Routing.QUEUED
    assert injector.calls == []

    clock.now = 4.9
    assert arbiter.sweep() == []
    clock.now = 5.0
    assert arbiter.sweep() == ["c1"]
    assert arbiter.sweep() == []
    await _settle()

    assert len(injector.calls) == 1
    assert injector.calls[0][2] == "agent-a"
    clock.now = 60.0
    assert arbiter.sweep() == []
    await _settle()
    assert len(injector.calls) == 1
    assert queues.get("c1").pending is None


async def test_human_typing_holds_queued_reply() -> None:
    injector = _FakeInjector()
    clock = _Clock()
    arbiter, queues, _ = _arbiter(injector, clock)

    await arbiter.handle_event(_event("ping", sender="agent-a", is_agent=True, mentions_self=True))
    for t in (2.0, 8.0, 14.0):
        clock.now = t
        arbiter.note_typing(TypingEvent("discord", "c1", "bob"))

    for t in (5.0, 10.0, 20.0, 28.9):
        assert arbiter.sweep(now=t) == []
    assert queues.get("c1").pending is not None

    assert arbiter.sweep(now=29.0) == ["c1"]
    await _settle()
    assert len(injector.calls) == 1


async def test_agent_typing_does_not_hold_replies() -> None:
    injector = _FakeInjector()
    clock = _Clock()
    arbiter, _, _ = _arbiter(injector, clock)

    await arbiter.handle_event(_event("ping", sender="agent-a", is_agent=True, mentions_self=True))
    clock.now = 4.0
    arbiter.note_typing(TypingEvent("discord", "c1", "agent-b", is_agent=True))

    assert arbiter.sweep(now=5.0) == ["c1"]
    await _settle()


async def test_human_mention_preempts_pending_agent_reply() -> None:
    injector = _FakeInjector()
    clock = _Clock()
    arbiter, queues, _ = _arbiter(injector, clock)

    await arbiter.handle_event(
        _event("your turn", sender="agent-a", message_id="m1", is_agent=True, mentions_self=True)
    )
    clock.now = 1.0
    routing = await arbiter.handle_event(_event("actually, me first", sender="alice", message_id="m2", mentions_self=True))

    assert routing is Routing.EXECUTED
    assert queues.get("c1").pending is None
    assert [call[2] for call in injector.calls] == ["alice"]

    assert arbiter.sweep(now=100.0) == []
    await _settle()
    assert len(injector.calls) == 1


async def test_direct_message_executes_immediately() -> None:
    injector = _FakeInjector()
    arbiter, _, _ = _arbiter(injector)

    routing = await arbiter.handle_event(_event("hello", is_direct=True))

    assert routing is Routing.EXECUTED
    assert len(injector.calls) == 1


async def test_only_one_pending_reply_per_channel() -> None:
    injector = _FakeInjector()
    clock = _Clock()
    arbiter, queues, _ = _arbiter(injector, clock)

    await arbiter.handle_event(_event("first", sender="agent-a", message_id="m1", is_agent=True, mentions_self=True))
    clock.now = 3.0
    await arbiter.handle_event(_event("second", sender="agent-b", message_id="m2", is_agent=True, mentions_self=True))

    pending = queues.get("c1").pending
    assert pending.trigger.sender_name == "agent-b"
    assert pending.ready_at == 8.0

    assert arbiter.sweep(now=7.9) == []
    assert arbiter.sweep(now=8.0) == ["c1"]
    await _settle()
    assert [call[2] for call in injector.calls] == ["agent-b"]


async def test_ambient_traffic_is_buffered_only() -> None:
    injector = _FakeInjector()
    arbiter, queues, _ = _arbiter(injector)

    assert await arbiter.handle_event(_event("lunch?", sender="bob", message_id="m1")) is Routing.BUFFERED
    assert (
        await arbiter.handle_event(_event("status ok", sender="agent-a", message_id="m2", is_agent=True))
        is Routing.BUFFERED
    )
    assert (
        await arbiter.handle_event(_event("hi", sender="mallory", message_id="m3", mentions_self=True), allowed=False)
        is Routing.BUFFERED
    )

    assert injector.calls == []
    assert [m.content for m in queues.get("c1").buffer] == ["lunch?", "status ok", "hi"]


async def test_buffer_keeps_most_recent_entries() -> None:
    arbiter, queues, _ = _arbiter(_FakeInjector())

    for i in range(BUFFER_SIZE + 5):
        await arbiter.handle_event(_event(f"msg {i}", sender="bob", message_id=f"m{i}"))

    buffer = queues.get("c1").buffer
    assert len(buffer) == BUFFER_SIZE
    assert buffer[0].content == "msg 5"
    assert buffer[-1].content == f"msg {BUFFER_SIZE + 4}"


async def test_context_is_prepended_and_cleared_after_reply() -> None:
    injector = _FakeInjector()
    arbiter, queues, _ = _arbiter(injector)

    await arbiter.handle_event(_event("lunch?", sender="bob", message_id="m1"))
    await arbiter.handle_event(_event("pizza", sender="carol", message_id="m2"))
    await arbiter.handle_event(_event("what do you think", sender="alice", message_id="m3", mentions_self=True))

    assert injector.calls[0][1] == "[Recent messages]\nbob: lunch?\ncarol: pizza\n\nalice: what do you think"
    assert len(queues.get("c1").buffer) == 0

    await arbiter.handle_event(_event("and now?", sender="alice", message_id="m4", mentions_self=True))
    assert injector.calls[1][1] == "and now?"


async def test_trigger_while_responding_is_dropped() -> None:
    gate = asyncio.Event()
    injector = _FakeInjector(gate=gate)
    clock = _Clock()
    arbiter, queues, streams = _arbiter(injector, clock)

    first = asyncio.create_task(arbiter.handle_event(_event("one", message_id="m1", mentions_self=True)))
    await asyncio.sleep(0)
    assert queues.get("c1").responding

    assert await arbiter.handle_event(_event("two", message_id="m2", mentions_self=True)) is Routing.DROPPED

    await arbiter.handle_event(_event("me too", sender="agent-a", message_id="m3", is_agent=True, mentions_self=True))
    assert arbiter.sweep(now=10.0) == []
    assert len(streams) == 1

    gate.set()
    assert await first is Routing.EXECUTED
    assert len(injector.calls) == 1

    assert arbiter.sweep(now=10.0) == ["c1"]
    await _settle()
    assert len(injector.calls) == 2


async def test_cancel_command_reports_outcome() -> None:
    injector = _FakeInjector()
    arbiter, _, _ = _arbiter(injector)
    transport = _FakeTransport()

    await arbiter.handle_event(_event("ping", sender="agent-a", message_id="m1", is_agent=True, mentions_self=True))
    routing = await arbiter.handle_event(_event("!cancel", message_id="m2", mentions_self=True, transport=transport))
    assert routing is Routing.CANCEL_REQUESTED
    assert transport.calls == [("reply", "Dropped the queued reply.")]

    await arbiter.handle_event(_event("/cancel", message_id="m3", is_direct=True, transport=transport))
    assert transport.calls[-1] == ("reply", "Nothing to cancel.")
    assert injector.calls == []


def test_cancel_command_detection() -> None:
    assert is_cancel_command("/cancel")
    assert is_cancel_command("  !CANCEL ")
    assert not is_cancel_command("please cancel that")
    assert not is_cancel_command("")


async def test_shutdown_stops_fired_replies() -> None:
    gate = asyncio.Event()
    injector = _FakeInjector(gate=gate)
    clock = _Clock()
    arbiter, queues, streams = _arbiter(injector, clock)

    await arbiter.handle_event(_event("ping", sender="agent-a", is_agent=True, mentions_self=True))
    assert arbiter.sweep(now=5.0) == ["c1"]
    await asyncio.sleep(0)
    assert len(injector.calls) == 1

    await arbiter.shutdown()

    assert len(queues) == 0
    assert len(streams) == 0


async def test_ticker_fires_ready_replies() -> None:
    injector = _FakeInjector()
    arbiter, _, _ = _arbiter(injector, clock=_Clock(), cooldown_s=0.0)
    ticker = TurnTicker(arbiter, interval_s=0.01)

    await arbiter.handle_event(_event("ping", sender="agent-a", is_agent=True, mentions_self=True))
    await ticker.start()
    await asyncio.sleep(0.05)
    ticker.stop()

    assert len(injector.calls) == 1
    status = ticker.status()
    assert status["fired_total"] == 1
    assert status["running"] is False


async def test_disabled_ticker_does_not_start() -> None:
    arbiter, _, _ = _arbiter(_FakeInjector())
    ticker = TurnTicker(arbiter, enabled=False)

    await ticker.start()

    assert ticker.status()["running"] is False
