import asyncio
import copy
import sys
from pathlib import Path

# Ensure package import for tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from Param_Flow.config import Config
from Param_Flow.engine.base import EvaluationEngine
from Param_Flow.engine.handle import EngineHandle, set_engine_handle
from Param_Flow.errors import EvaluationError

_CONFIG_KEYS = (
    "history_limit",
    "dirty_propagation",
    "evaluation_policy",
    "engine_url",
    "engine_token",
    "engine_init_timeout",
    "log_level",
    "journal_dir",
    "logging_mode",
    "config_file",
)


class FakeEngine(EvaluationEngine):
    """Scriptable in-memory engine.

    ``fail_with`` makes every evaluation raise :class:`EvaluationError`;
    ``gate`` lets a test hold an evaluation open until it is set.
    """

    def __init__(self, *, init_error=None, init_delay=0.0):
        self.init_error = init_error
        self.init_delay = init_delay
        self.init_calls = 0
        self.evaluations = []
        self.cancelled = 0
        self.invocations = []
        self.fail_with = None
        self.gate = None
        self.started = None
        self.shutdowns = 0

    async def init(self):
        self.init_calls += 1
        if self.init_delay:
            await asyncio.sleep(self.init_delay)
        if self.init_error is not None:
            raise self.init_error

    async def evaluate(self, document, dirty_ids):
        self.evaluations.append(set(dirty_ids))
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise EvaluationError(self.fail_with)

    def cancel_all(self):
        self.cancelled += 1

    async def invoke(self, op_name, payload):
        self.invocations.append((op_name, payload))
        return {"op": op_name, "payload": payload}

    async def shutdown(self):
        self.shutdowns += 1


@pytest.fixture(autouse=True)
def _restore_config():
    """Reset mutable :class:`Config` state and the engine singleton."""

    saved = {key: getattr(Config, key) for key in _CONFIG_KEYS}
    saved_logs = copy.deepcopy(Config.log_files)
    set_engine_handle(None)
    yield
    for key, value in saved.items():
        setattr(Config, key, value)
    Config.log_files = saved_logs
    set_engine_handle(None)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def ready_handle(fake_engine):
    """Engine handle already initialised with :func:`fake_engine`."""

    handle = EngineHandle(engine=fake_engine)
    asyncio.run(handle.ensure_ready())
    return handle
