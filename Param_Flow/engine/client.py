"""Remote evaluation engine reached over a WebSocket using msgpack frames.

Every request carries an ``id`` and the server answers with a ``Result``
frame echoing it::

    -> {"type": "Evaluate", "id": 3, "graph": {...}, "dirty": ["a", "b"]}
    <- {"type": "Result", "id": 3, "ok": false, "error": "fillet failed"}

``Cancel`` is fire-and-forget and has no reply.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from typing import Any, Dict, Optional, Set

import msgpack
import websockets
from websockets.exceptions import ConnectionClosed

from ..config import Config
from ..errors import EngineConnectError, EvaluationError
from ..graph.model import GraphDocument
from .base import EvaluationEngine

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1


def pack(message: Dict[str, Any]) -> bytes:
    """Serialize ``message`` for the wire."""
    return msgpack.packb(message, use_bin_type=True)


def unpack(data: bytes) -> Dict[str, Any]:
    """Deserialize a wire frame."""
    return msgpack.unpackb(data, raw=False)


class WebSocketEngine(EvaluationEngine):
    """:class:`EvaluationEngine` backed by a remote worker process."""

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        request_timeout: float | None = None,
    ) -> None:
        """Initialize the client.

        Parameters
        ----------
        url:
            WebSocket server URL. Defaults to :attr:`Config.engine_url`.
        token:
            Optional session token sent with the hello handshake.
        request_timeout:
            Seconds to wait for any single reply; ``None`` waits forever.
        """
        self.url = url or Config.engine_url
        self.token = token if token is not None else (Config.engine_token or "")
        self.request_timeout = request_timeout
        self.connection: Optional[Any] = None
        self._recv_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._background: Set[asyncio.Task] = set()

    async def init(self) -> None:
        """Open the connection, perform the hello handshake and start the engine."""
        if not self.url:
            raise EngineConnectError("no engine URL configured")
        try:
            self.connection = await websockets.connect(
                self.url, ping_interval=Config.engine_ping_interval
            )
            await self.connection.send(
                pack({"type": "Hello", "v": PROTOCOL_VERSION, "token": self.token})
            )
            msg = unpack(await self.connection.recv())
            if msg.get("type") != "Hello":
                raise EngineConnectError("handshake failed")
        except (OSError, ConnectionClosed) as e:
            await self._drop_connection()
            raise EngineConnectError(str(e)) from e
        except EngineConnectError:
            await self._drop_connection()
            raise
        self._recv_task = asyncio.create_task(self._receiver())
        await self._request({"type": "Init"})

    async def evaluate(self, document: GraphDocument, dirty_ids: Set[str]) -> None:
        await self._request(
            {"type": "Evaluate", "graph": document.to_dict(), "dirty": sorted(dirty_ids)}
        )

    def cancel_all(self) -> None:
        if self.connection is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Cancel not sent: no running event loop")
            return
        task = loop.create_task(self._send({"type": "Cancel"}))
        self._background.add(task)
        task.add_done_callback(self._background_done)

    async def invoke(self, op_name: str, payload: Any) -> Any:
        return await self._request({"type": "Invoke", "op": op_name, "payload": payload})

    async def shutdown(self) -> None:
        """Close the WebSocket connection and fail outstanding requests."""
        if self._recv_task is not None:
            self._recv_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recv_task
            self._recv_task = None
        await self._drop_connection()
        self._fail_pending("engine connection closed")

    # ------------------------------------------------------------------
    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Cancel request failed: %s", exc)

    async def _send(self, message: Dict[str, Any]) -> None:
        if self.connection is None:
            raise EngineConnectError("engine not connected")
        await self.connection.send(pack(message))

    async def _request(self, message: Dict[str, Any]) -> Any:
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send({**message, "id": request_id})
            if self.request_timeout is None:
                reply = await future
            else:
                reply = await asyncio.wait_for(future, self.request_timeout)
        finally:
            self._pending.pop(request_id, None)
        if not reply.get("ok", False):
            raise EvaluationError(
                str(reply.get("error") or "engine request failed"), reply.get("node")
            )
        return reply.get("result")

    async def _receiver(self) -> None:
        """Background task routing replies to their pending requests."""
        assert self.connection is not None
        try:
            while self.connection is not None:
                msg = unpack(await self.connection.recv())
                if msg.get("type") != "Result":
                    logger.debug("Ignoring engine message %s", msg.get("type"))
                    continue
                future = self._pending.get(msg.get("id"))
                if future is not None and not future.done():
                    future.set_result(msg)
        except (asyncio.CancelledError, ConnectionClosed):
            pass
        finally:
            self._fail_pending("engine connection closed")

    async def _drop_connection(self) -> None:
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(EvaluationError(reason))
