"""Logical streaming channel for optimization requests.

The manager is transport agnostic: a websocket handler (or a test) feeds
requests in and subscribes to the emitted :class:`StreamMessage` objects.
Reconnection is the transport's concern.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from .config import StreamingConfig
from .errors import StreamError

LOGGER = logging.getLogger(__name__)

MESSAGE_SUGGESTIONS = "suggestions"
MESSAGE_ERROR = "error"
MESSAGE_STATUS = "status"
MESSAGE_HEARTBEAT = "heartbeat"

OptimizeFn = Callable[[Any, Any], Union[Any, Awaitable[Any]]]
Listener = Callable[["StreamMessage"], Union[None, Awaitable[None]]]


@dataclass
class StreamMessage:
    type: str
    request_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "request_id": self.request_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


class StreamingManager:
    def __init__(self, optimize_fn: OptimizeFn, config: Optional[StreamingConfig] = None) -> None:
        self._config = config or StreamingConfig()
        self._config.validate()
        self._optimize_fn = optimize_fn
        self._listeners: List[Listener] = []
        self._requests: Dict[str, asyncio.Task] = {}
        self._latencies: Deque[float] = deque(maxlen=self._config.latency_window)
        self._heartbeat: Optional[asyncio.Task] = None
        self._connected = False
        self._last_heartbeat: Optional[float] = None
        self._message_count = 0
        self._error_count = 0
        self._completed = 0
        self._cancelled = 0

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        self._connected = True
        self._last_heartbeat = time.time()
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())
        LOGGER.info("Streaming manager connected")
        await self._emit(StreamMessage(MESSAGE_STATUS, payload=self.status()))

    async def disconnect(self) -> None:
        if not self._connected:
            return
        for request_id in list(self._requests):
            self.cancel(request_id)
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            try:
                await self._heartbeat
            except asyncio.CancelledError:
                pass
            self._heartbeat = None
        self._connected = False
        LOGGER.info("Streaming manager disconnected")
        await self._emit(StreamMessage(MESSAGE_STATUS, payload=self.status()))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable removes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def stream_optimization(self, request_id: str, scaling_config: Any, usage_data: Any) -> asyncio.Task:
        if not self._connected:
            raise StreamError("Streaming manager is not connected", hint="Call connect() first")
        if request_id in self._requests:
            raise StreamError(f"Request {request_id} is already in progress")
        task = asyncio.create_task(self._run(request_id, scaling_config, usage_data))
        self._requests[request_id] = task

        def _done(finished: asyncio.Task) -> None:
            # a cancelled id may already have been resubmitted
            if self._requests.get(request_id) is finished:
                del self._requests[request_id]

        task.add_done_callback(_done)
        return task

    def cancel(self, request_id: str) -> bool:
        task = self._requests.pop(request_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        self._cancelled += 1
        LOGGER.debug("Cancelled stream request %s", request_id)
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "connected": self._connected,
            "last_heartbeat": self._last_heartbeat,
            "message_count": self._message_count,
            "error_count": self._error_count,
            "latency_ms": self._latencies[-1] if self._latencies else 0.0,
        }

    def performance_metrics(self) -> Dict[str, Any]:
        average = sum(self._latencies) / len(self._latencies) if self._latencies else 0.0
        return {
            "average_latency_ms": average,
            "completed_requests": self._completed,
            "failed_requests": self._error_count,
            "cancelled_requests": self._cancelled,
            "active_requests": len(self._requests),
        }

    async def _run(self, request_id: str, scaling_config: Any, usage_data: Any) -> StreamMessage:
        started = time.perf_counter()
        try:
            if inspect.iscoroutinefunction(self._optimize_fn):
                produced = await self._optimize_fn(scaling_config, usage_data)
            else:
                produced = await asyncio.to_thread(self._optimize_fn, scaling_config, usage_data)
                if inspect.isawaitable(produced):
                    produced = await produced
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error_count += 1
            LOGGER.warning("Stream request %s failed: %s", request_id, exc)
            message = StreamMessage(MESSAGE_ERROR, request_id, {"error": str(exc)})
        else:
            self._completed += 1
            payload = produced.as_dict() if hasattr(produced, "as_dict") else dict(produced)
            message = StreamMessage(MESSAGE_SUGGESTIONS, request_id, payload)
        self._latencies.append((time.perf_counter() - started) * 1000.0)
        await self._emit(message)
        return message

    async def _heartbeat_loop(self) -> None:
        interval = self._config.heartbeat_interval.total_seconds()
        while True:
            await asyncio.sleep(interval)
            self._last_heartbeat = time.time()
            await self._emit(StreamMessage(MESSAGE_HEARTBEAT, payload={"timestamp": self._last_heartbeat}))

    async def _emit(self, message: StreamMessage) -> None:
        self._message_count += 1
        for listener in list(self._listeners):
            try:
                outcome = listener(message)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                LOGGER.exception("Stream listener failed on %s message", message.type)


__all__ = [
    "StreamingManager",
    "StreamMessage",
    "MESSAGE_SUGGESTIONS",
    "MESSAGE_ERROR",
    "MESSAGE_STATUS",
    "MESSAGE_HEARTBEAT",
]
