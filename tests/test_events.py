import asyncio

import pytest

from agent_runtime.runtime.events import EventStream, TokenDelta, TurnCompleted, TurnStarted


@pytest.mark.asyncio
async def test_subscribers_see_events_in_order():
    stream = EventStream(turn_id="turn_1", session_id="sess_1")
    a = stream.subscribe()
    b = stream.subscribe()

    await stream.publish(TurnStarted())
    await stream.publish(TokenDelta(text="x"))
    await stream.publish(TurnCompleted())

    for sub in (a, b):
        events = [ev async for ev in sub]
        assert [e.type for e in events] == ["turn_started", "token_delta", "turn_completed"]
        assert [e.seq for e in events] == [0, 1, 2]
        assert {(e.turn_id, e.session_id) for e in events} == {("turn_1", "sess_1")}
    assert stream.closed


@pytest.mark.asyncio
async def test_late_subscriber_only_sees_later_events():
    stream = EventStream(turn_id="t", session_id="s")
    await stream.publish(TurnStarted())
    late = stream.subscribe()
    await stream.publish(TurnCompleted())

    assert [e.type for e in [ev async for ev in late]] == ["turn_completed"]


@pytest.mark.asyncio
async def test_subscribe_after_close_ends_immediately():
    stream = EventStream(turn_id="t", session_id="s")
    await stream.publish(TurnCompleted())

    assert [ev async for ev in stream.subscribe()] == []
    with pytest.raises(RuntimeError):
        await stream.publish(TokenDelta(text="too late"))


@pytest.mark.asyncio
async def test_close_without_terminal_ends_subscribers():
    stream = EventStream(turn_id="t", session_id="s")
    sub = stream.subscribe()
    await stream.publish(TurnStarted())
    await stream.close()

    assert [e.type for e in [ev async for ev in sub]] == ["turn_started"]


@pytest.mark.asyncio
async def test_publish_waits_for_slow_subscriber():
    stream = EventStream(turn_id="t", session_id="s", max_buffer=1)
    sub = stream.subscribe()

    await stream.publish(TokenDelta(text="a"))
    pending = asyncio.ensure_future(stream.publish(TokenDelta(text="b")))
    await asyncio.sleep(0.02)
    assert not pending.done()

    first = await sub.__anext__()
    await asyncio.wait_for(pending, timeout=1)
    second = await sub.__anext__()
    assert (first.text, second.text) == ("a", "b")


@pytest.mark.asyncio
async def test_closed_subscription_does_not_block_publisher():
    stream = EventStream(turn_id="t", session_id="s", max_buffer=1)
    sub = stream.subscribe()
    await stream.publish(TokenDelta(text="a"))
    sub.close()

    await asyncio.wait_for(stream.publish(TokenDelta(text="b")), timeout=1)
    assert [ev async for ev in sub] == []


def test_event_to_dict_carries_payload():
    ev = TokenDelta(text="hi", turn_id="t", session_id="s", seq=3)
    assert ev.to_dict() == {"type": "token_delta", "turn_id": "t", "session_id": "s", "seq": 3, "text": "hi"}
