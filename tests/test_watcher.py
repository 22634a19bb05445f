"""
Incoming call watcher tests.
"""
import asyncio

import pytest

from call_signaling.session import CallType, call_document_path
from call_signaling.watcher import IncomingCallWatcher


DOC = call_document_path("case-1")


@pytest.mark.asyncio
async def test_rings_once_and_clears_once(store):
    rings, clears = [], []
    watcher = IncomingCallWatcher(store, "case-1", rings.append, lambda: clears.append(True))
    await watcher.start()
    assert rings == []

    await store.set_document(DOC, {"status": "calling", "callType": "audio", "callerName": "Dr. Jansen"})
    await store.update_document(DOC, {"status": "accepted"})
    await store.update_document(DOC, {"status": "connected"})

    assert len(rings) == 1
    assert rings[0].call_type is CallType.AUDIO
    assert rings[0].caller_name == "Dr. Jansen"
    assert watcher.ringing

    await store.update_document(DOC, {"status": "ended"})
    await store.delete_document(DOC)

    assert clears == [True]
    assert not watcher.ringing


@pytest.mark.asyncio
async def test_existing_call_rings_on_start(store):
    await store.set_document(DOC, {"status": "calling"})
    rings = []
    watcher = IncomingCallWatcher(store, "case-1", rings.append)
    await watcher.start()

    assert len(rings) == 1
    assert rings[0].call_type is CallType.VIDEO


@pytest.mark.asyncio
async def test_stop_unsubscribes(store):
    rings = []
    watcher = IncomingCallWatcher(store, "case-1", rings.append)
    await watcher.start()
    watcher.stop()
    watcher.stop()

    await store.set_document(DOC, {"status": "calling"})
    assert rings == []
    assert store.subscriber_count(DOC) == 0


@pytest.mark.asyncio
async def test_async_handlers(store):
    rang = asyncio.Event()

    async def on_ring(_session):
        rang.set()

    watcher = IncomingCallWatcher(store, "case-1", on_ring)
    await watcher.start()
    await store.set_document(DOC, {"status": "calling"})

    await asyncio.wait_for(rang.wait(), timeout=1)


@pytest.mark.asyncio
async def test_handler_tasks_held_until_done(store):
    release = asyncio.Event()
    finished = []

    async def on_ring(_session):
        await release.wait()
        finished.append("ring")

    watcher = IncomingCallWatcher(store, "case-1", on_ring)
    await watcher.start()
    await store.set_document(DOC, {"status": "calling"})

    assert len(watcher._tasks) == 1
    task = next(iter(watcher._tasks))

    release.set()
    await asyncio.wait_for(task, timeout=1)
    await asyncio.sleep(0)

    assert finished == ["ring"]
    assert watcher._tasks == set()


@pytest.mark.asyncio
async def test_failing_async_handler_is_logged(store, caplog):
    async def on_ring(_session):
        raise RuntimeError("screen unavailable")

    watcher = IncomingCallWatcher(store, "case-1", on_ring)
    await watcher.start()
    await store.set_document(DOC, {"status": "calling"})

    task = next(iter(watcher._tasks))
    with pytest.raises(RuntimeError):
        await asyncio.wait_for(task, timeout=1)
    await asyncio.sleep(0)

    assert watcher._tasks == set()
    assert any(r.getMessage() == "Call screen handler failed" for r in caplog.records)
