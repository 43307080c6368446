import asyncio

from Param_Flow.engine import (
    EngineHandle,
    EngineStatus,
    get_engine_handle,
    reset_engine_handle,
    set_engine_handle,
)

from conftest import FakeEngine


def test_ensure_ready_is_single_flight():
    created = []

    def factory():
        engine = FakeEngine(init_delay=0.01)
        created.append(engine)
        return engine

    handle = EngineHandle(factory)

    async def scenario():
        return await asyncio.gather(*(handle.ensure_ready() for _ in range(5)))

    results = asyncio.run(scenario())
    assert results == [EngineStatus.READY] * 5
    assert len(created) == 1
    assert created[0].init_calls == 1
    assert handle.engine is created[0]


def test_ready_handle_does_not_reinitialise():
    engine = FakeEngine()
    handle = EngineHandle(engine=engine)
    asyncio.run(handle.ensure_ready())
    asyncio.run(handle.ensure_ready())
    assert engine.init_calls == 1


def test_failure_records_reason_and_retry_recovers():
    engine = FakeEngine(init_error=RuntimeError("wasm fetch failed"))
    handle = EngineHandle(engine=engine)

    assert asyncio.run(handle.ensure_ready()) is EngineStatus.FAILED
    assert handle.reason == "wasm fetch failed"
    assert handle.engine is None

    engine.init_error = None
    assert asyncio.run(handle.ensure_ready()) is EngineStatus.READY
    assert handle.reason is None
    assert engine.init_calls == 2


def test_initialisation_timeout_fails():
    handle = EngineHandle(engine=FakeEngine(init_delay=1.0), init_timeout=0.01)
    assert asyncio.run(handle.ensure_ready()) is EngineStatus.FAILED
    assert "timed out" in handle.reason


def test_missing_factory_fails_cleanly():
    handle = EngineHandle()
    assert asyncio.run(handle.ensure_ready()) is EngineStatus.FAILED
    assert handle.reason == "no evaluation engine configured"


def test_listeners_observe_transitions():
    seen = []
    handle = EngineHandle(engine=FakeEngine())
    handle.subscribe(lambda status, reason: seen.append(status))
    asyncio.run(handle.ensure_ready())
    asyncio.run(handle.reset())
    assert seen == [
        EngineStatus.INITIALIZING,
        EngineStatus.READY,
        EngineStatus.UNINITIALIZED,
    ]


def test_reset_shuts_down_and_discards_factory_engine():
    created = []

    def factory():
        created.append(FakeEngine())
        return created[-1]

    handle = EngineHandle(factory)
    asyncio.run(handle.ensure_ready())
    asyncio.run(handle.reset())

    assert handle.status is EngineStatus.UNINITIALIZED
    assert created[0].shutdowns == 1
    asyncio.run(handle.ensure_ready())
    assert len(created) == 2


def test_reset_supersedes_running_initialisation():
    handle = EngineHandle(engine=FakeEngine(init_delay=0.5))

    async def scenario():
        pending = asyncio.ensure_future(handle.ensure_ready())
        await asyncio.sleep(0)
        await handle.reset()
        return await pending

    asyncio.run(scenario())
    assert handle.status is EngineStatus.UNINITIALIZED


def test_process_handle_singleton():
    first = get_engine_handle(FakeEngine)
    assert get_engine_handle() is first

    replacement = EngineHandle(FakeEngine)
    set_engine_handle(replacement)
    assert get_engine_handle() is replacement

    asyncio.run(reset_engine_handle())
    assert get_engine_handle() is not replacement
