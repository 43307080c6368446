"""Lifecycle handle for the process-wide evaluation engine.

The handle is an explicit state machine::

    UNINITIALIZED -> INITIALIZING -> READY
                                  -> FAILED(reason)

Initialization is single-flight: every caller of :meth:`EngineHandle.ensure_ready`
made while an attempt is running awaits that same attempt. A failed handle can
be retried; success clears the previous failure reason.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

from ..config import Config
from ..journal import log_entry
from ..logging_models import EngineLog, EnginePayload
from .base import EvaluationEngine

logger = logging.getLogger(__name__)

_UNSET = object()


class EngineStatus(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


EngineFactory = Callable[[], EvaluationEngine]
StatusListener = Callable[[EngineStatus, Optional[str]], None]


class EngineHandle:
    """Own one :class:`EvaluationEngine` and its initialization state.

    Parameters
    ----------
    factory:
        Callable creating the engine on the first initialization attempt.
    engine:
        Pre-built engine to initialise instead of calling ``factory``.
    init_timeout:
        Seconds allowed for ``engine.init()``; defaults to
        :attr:`Config.engine_init_timeout`. ``None`` disables the timeout.
    """

    def __init__(
        self,
        factory: EngineFactory | None = None,
        *,
        engine: EvaluationEngine | None = None,
        init_timeout: float | None | object = _UNSET,
    ) -> None:
        self._factory = factory
        self._engine = engine
        self._init_timeout = (
            Config.engine_init_timeout if init_timeout is _UNSET else init_timeout
        )
        self._status = EngineStatus.UNINITIALIZED
        self._reason: str | None = None
        self._lock = threading.Lock()
        self._init_task: asyncio.Future | None = None
        self._generation = 0
        self._listeners: List[StatusListener] = []

    # ------------------------------------------------------------------
    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def reason(self) -> str | None:
        """Failure reason while the handle is ``FAILED``."""
        return self._reason

    @property
    def engine(self) -> EvaluationEngine | None:
        """Return the engine only once it is ready for use."""
        if self._status is EngineStatus.READY:
            return self._engine
        return None

    def is_ready(self) -> bool:
        return self._status is EngineStatus.READY

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Call ``listener(status, reason)`` on every transition."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    async def ensure_ready(self) -> EngineStatus:
        """Initialise the engine unless ready, sharing any running attempt.

        Never raises on engine failure; the resulting status and
        :attr:`reason` describe the outcome.
        """

        with self._lock:
            if self._status is EngineStatus.READY:
                return self._status
            task = self._init_task
            if task is None or task.done():
                self._generation += 1
                self._transition(EngineStatus.INITIALIZING, None)
                task = asyncio.ensure_future(self._initialize(self._generation))
                self._init_task = task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return self._status
            raise

    async def _initialize(self, generation: int) -> EngineStatus:
        try:
            engine = self._engine if self._engine is not None else self._create()
            if self._init_timeout is None:
                await engine.init()
            else:
                await asyncio.wait_for(engine.init(), timeout=self._init_timeout)
        except asyncio.CancelledError:
            self._finish(generation, EngineStatus.FAILED, "initialization cancelled")
            raise
        except asyncio.TimeoutError:
            reason = f"initialization timed out after {self._init_timeout}s"
            logger.error("Failed to initialize evaluation engine: %s", reason)
            return self._finish(generation, EngineStatus.FAILED, reason)
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.error("Failed to initialize evaluation engine: %s", reason)
            return self._finish(generation, EngineStatus.FAILED, reason)
        with self._lock:
            if generation == self._generation:
                self._engine = engine
        logger.info("Evaluation engine initialized")
        return self._finish(generation, EngineStatus.READY, None)

    def _create(self) -> EvaluationEngine:
        if self._factory is None:
            raise RuntimeError("no evaluation engine configured")
        return self._factory()

    def _finish(
        self, generation: int, status: EngineStatus, reason: str | None
    ) -> EngineStatus:
        with self._lock:
            if generation != self._generation:
                # superseded by reset(); leave the newer state alone
                return self._status
            self._transition(status, reason)
            return status

    async def reset(self) -> None:
        """Tear the engine down and return to ``UNINITIALIZED``."""

        with self._lock:
            task, self._init_task = self._init_task, None
            engine = self._engine if self._status is EngineStatus.READY else None
            self._generation += 1
            if self._factory is not None:
                self._engine = None
            self._transition(EngineStatus.UNINITIALIZED, None)
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if engine is not None:
            try:
                await engine.shutdown()
            except Exception:
                logger.warning("Engine shutdown failed", exc_info=True)

    def _transition(self, status: EngineStatus, reason: str | None) -> None:
        self._status = status
        self._reason = reason
        label = {
            EngineStatus.READY: "engine_ready",
            EngineStatus.FAILED: "engine_failed",
            EngineStatus.UNINITIALIZED: "engine_reset",
        }.get(status)
        if label is not None:
            log_entry(
                "engine",
                label,
                EngineLog(payload=EnginePayload(status=status.value, reason=reason)),
            )
        for listener in list(self._listeners):
            listener(status, reason)


_active_handle: EngineHandle | None = None
_handle_lock = threading.Lock()


def get_engine_handle(factory: EngineFactory | None = None) -> EngineHandle:
    """Return the process-wide handle, creating it on first use."""
    global _active_handle
    with _handle_lock:
        if _active_handle is None:
            _active_handle = EngineHandle(factory)
        elif factory is not None and _active_handle._factory is None:
            _active_handle._factory = factory
        return _active_handle


def set_engine_handle(handle: EngineHandle | None) -> None:
    """Replace the process-wide handle."""
    global _active_handle
    with _handle_lock:
        _active_handle = handle


async def reset_engine_handle() -> None:
    """Tear down and forget the process-wide handle."""
    global _active_handle
    with _handle_lock:
        handle, _active_handle = _active_handle, None
    if handle is not None:
        await handle.reset()
