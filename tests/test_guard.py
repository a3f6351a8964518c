import asyncio

import pytest

from kindred.domain.context.context_manager import ContextManager
from kindred.domain.context.memory.conversation_store import ConversationStore
from kindred.domain.exceptions import EngineConstructionError, HealthCheckError
from kindred.domain.models import ChatMessage
from kindred.domain.orchestration.core.engine import ChatEngine
from kindred.domain.orchestration.core.guard import EngineRegistry
from kindred.domain.orchestration.core.rwlock import RWLock

from .fakes import ScriptedCompletionProvider, ident


class CountingFactory:
    """Engine factory that counts constructions and can be told to fail"""

    def __init__(self, failures: int = 0, delay: float = 0):
        self.failures = failures
        self.delay = delay
        self.built = []

    async def __call__(self, user_id, store=None):
        await asyncio.sleep(self.delay)
        if self.failures:
            self.failures -= 1
            raise HealthCheckError("vector size mismatch", expected=16, actual=8)

        context = ContextManager(store=store if store is not None else ConversationStore())
        engine = ChatEngine(context, ScriptedCompletionProvider([]), user_id=user_id)
        self.built.append(user_id)
        return engine


@pytest.mark.asyncio
async def test_readers_share_and_writers_exclude():
    lock = RWLock()
    order = []

    async def reader(name):
        async with lock.read():
            order.append(f"{name} in")
            await asyncio.sleep(0.01)
            order.append(f"{name} out")

    async def writer():
        async with lock.write():
            order.append("w in")
            await asyncio.sleep(0.01)
            order.append("w out")

    await asyncio.gather(reader("r1"), reader("r2"))
    assert order[:2] == ["r1 in", "r2 in"]

    order.clear()
    await asyncio.gather(writer(), reader("r1"))
    assert order == ["w in", "w out", "r1 in", "r1 out"]


@pytest.mark.asyncio
async def test_waiting_writer_blocks_new_readers():
    lock = RWLock()
    order = []

    await lock.acquire_read()

    async def writer():
        async with lock.write():
            order.append("writer")

    async def late_reader():
        async with lock.read():
            order.append("reader")

    writer_task = asyncio.create_task(writer())
    await asyncio.sleep(0)
    reader_task = asyncio.create_task(late_reader())
    await asyncio.sleep(0)

    assert order == []
    await lock.release_read()
    await asyncio.gather(writer_task, reader_task)

    assert order == ["writer", "reader"]


@pytest.mark.asyncio
async def test_cancelled_writer_releases_queued_readers():
    lock = RWLock()
    await lock.acquire_read()

    writer_task = asyncio.create_task(lock.acquire_write())
    await asyncio.sleep(0)
    reader_task = asyncio.create_task(lock.acquire_read())
    await asyncio.sleep(0)

    writer_task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await writer_task

    await asyncio.wait_for(reader_task, timeout=1)
    assert lock.readers == 2


@pytest.mark.asyncio
async def test_concurrent_first_use_builds_one_engine():
    factory = CountingFactory(delay=0.01)
    registry = EngineRegistry(factory)
    engines = []

    async def use():
        async with registry.lock(7) as guard:
            async with guard.read() as engine:
                engines.append(engine)

    await asyncio.gather(*(use() for _ in range(5)))

    assert factory.built == [7]
    assert all(engine is engines[0] for engine in engines)


@pytest.mark.asyncio
async def test_writes_to_one_user_are_serialized():
    registry = EngineRegistry(CountingFactory())
    active = 0
    peak = 0

    async def turn(i):
        nonlocal active, peak
        async with registry.lock(1) as guard:
            async with guard.write() as engine:
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                engine.store.add(ChatMessage.user(str(i)), ident(i))
                active -= 1

    await asyncio.gather(*(turn(i) for i in range(4)))

    assert peak == 1
    async with registry.lock(1) as guard:
        async with guard.read() as engine:
            assert len(engine.store) == 4


@pytest.mark.asyncio
async def test_users_do_not_block_each_other():
    registry = EngineRegistry(CountingFactory())
    for user_id in (1, 2):
        async with registry.lock(user_id):
            pass

    release = asyncio.Event()
    events = []

    async def long_turn():
        async with registry.lock(1) as guard:
            async with guard.write():
                events.append("user 1 holding")
                await release.wait()

    async def other_user():
        async with registry.lock(2) as guard:
            async with guard.write():
                events.append("user 2 done")
        release.set()

    await asyncio.wait_for(asyncio.gather(long_turn(), other_user()), timeout=1)

    assert events == ["user 1 holding", "user 2 done"]


@pytest.mark.asyncio
async def test_failed_construction_is_not_cached():
    factory = CountingFactory(failures=1)
    registry = EngineRegistry(factory)

    with pytest.raises(EngineConstructionError) as excinfo:
        async with registry.lock(3):
            pass

    assert excinfo.value.user_id == 3
    assert isinstance(excinfo.value.__cause__, HealthCheckError)
    assert 3 not in registry

    async with registry.lock(3) as guard:
        assert guard.user_id == 3
    assert factory.built == [3]


@pytest.mark.asyncio
async def test_reset_replaces_engine():
    factory = CountingFactory()
    registry = EngineRegistry(factory)

    async with registry.lock(1) as guard:
        async with guard.write() as engine:
            engine.store.add(ChatMessage.user("hi"), ident(1))
            original = engine

    await registry.reset(1, keep_context=True)
    async with registry.lock(1) as guard:
        async with guard.read() as engine:
            assert engine is not original
            assert len(engine.store) == 1

    await registry.reset(1)
    async with registry.lock(1) as guard:
        async with guard.read() as engine:
            assert len(engine.store) == 0


@pytest.mark.asyncio
async def test_shutdown_waits_for_in_flight_turn():
    registry = EngineRegistry(CountingFactory())
    events = []

    async with registry.lock(1):
        pass

    async def slow_turn():
        async with registry.lock(1) as guard:
            async with guard.write():
                events.append("turn start")
                await asyncio.sleep(0.02)
                events.append("turn end")

    turn_task = asyncio.create_task(slow_turn())
    await asyncio.sleep(0.005)
    await registry.shutdown()
    events.append("shutdown done")
    await turn_task

    assert events == ["turn start", "turn end", "shutdown done"]


@pytest.mark.asyncio
async def test_new_user_does_not_queue_existing_users_behind_a_long_turn():
    registry = EngineRegistry(CountingFactory())
    for user_id in (1, 2):
        async with registry.lock(user_id):
            pass

    holding = asyncio.Event()
    release = asyncio.Event()
    events = []

    async def long_turn():
        async with registry.lock(1) as guard:
            async with guard.write():
                holding.set()
                await release.wait()

    async def turn(user_id):
        async with registry.lock(user_id) as guard:
            async with guard.write():
                events.append(f"user {user_id} done")

    long_task = asyncio.create_task(long_turn())
    await holding.wait()

    # User 3 needs the table exclusively to build its engine
    await asyncio.wait_for(asyncio.gather(turn(3), turn(2)), timeout=1)

    assert sorted(events) == ["user 2 done", "user 3 done"]
    assert not long_task.done()

    release.set()
    await long_task


@pytest.mark.asyncio
async def test_reset_waits_for_in_flight_turn_then_swaps_engine():
    registry = EngineRegistry(CountingFactory())
    async with registry.lock(1) as guard:
        async with guard.read() as engine:
            original = engine

    holding = asyncio.Event()
    release = asyncio.Event()

    async def long_turn():
        async with registry.lock(1) as guard:
            async with guard.write() as engine:
                holding.set()
                await release.wait()
                engine.store.add(ChatMessage.user("hi"), ident(1))

    long_task = asyncio.create_task(long_turn())
    await holding.wait()

    reset_task = asyncio.create_task(registry.reset(1, keep_context=True))
    await asyncio.sleep(0.01)
    assert not reset_task.done()

    release.set()
    await asyncio.gather(long_task, reset_task)

    async with registry.lock(1) as guard:
        async with guard.read() as engine:
            assert engine is not original
            assert [m.content for m in engine.store.messages()] == ["hi"]


@pytest.mark.asyncio
async def test_failed_reset_keeps_the_old_engine():
    factory = CountingFactory()
    registry = EngineRegistry(factory)
    async with registry.lock(1) as guard:
        async with guard.read() as engine:
            original = engine

    factory.failures = 1
    with pytest.raises(EngineConstructionError):
        await registry.reset(1)

    async with registry.lock(1) as guard:
        async with guard.read() as engine:
            assert engine is original
