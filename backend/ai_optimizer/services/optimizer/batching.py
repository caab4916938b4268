"""Asynchronous priority batch processing.

Items move through ``queued -> batched -> processing`` and end either
``succeeded`` or ``failed``; a failed attempt with retries left goes back to
``queued`` after ``retry_delay * retry_count``.  ``add_item`` returns a
:class:`BatchHandle` that resolves to the item's single terminal
:class:`BatchResult`, so callers never subscribe to a global event bus.

A dispatcher coroutine forms batches whenever the queue holds at least
``min_batch_size`` items or the oldest queued item has waited ``max_wait``.
Batches run as tasks, at most ``max_concurrent_batches`` at a time.
"""
from __future__ import annotations

import asyncio
import bisect
import inspect
import itertools
import logging
import math
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Set, Union

import psutil

from . import metrics
from .config import BatchConfig
from .errors import BatchCancelledError, BatchItemError, BatchTimeoutError

LOGGER = logging.getLogger(__name__)

ProcessFn = Callable[[List[Any]], Union[Sequence[Any], Awaitable[Sequence[Any]]]]

_BYTES_PER_MB = 1024 * 1024


@dataclass
class BatchItem:
    id: str
    payload: Any
    priority: int = 0
    enqueued_at: float = field(default_factory=time.time)
    retry_count: int = 0
    max_retries: int = 3
    metadata: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0


@dataclass(frozen=True)
class BatchResult:
    id: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    processing_time: float = 0.0
    retry_count: int = 0


@dataclass
class Batch:
    id: str
    items: List[BatchItem]
    created_at: float = field(default_factory=time.time)

    @property
    def size(self) -> int:
        return len(self.items)


@dataclass
class BatchStatistics:
    total_batches: int = 0
    total_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    average_batch_size: float = 0.0
    average_processing_time: float = 0.0
    throughput: float = 0.0
    error_rate: float = 0.0


@dataclass(frozen=True)
class ProgressSnapshot:
    total: int
    processed: int
    failed: int
    pending: int
    percentage: float
    estimated_time_remaining: float
    average_processing_time: float


class ProgressTracker:
    """Count terminal outcomes and project the remaining time."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.total = 0
        self.processed = 0
        self.failed = 0
        self._elapsed = 0.0

    def add(self, count: int = 1) -> None:
        self.total += count

    def record(self, success: bool, processing_time: float) -> None:
        if success:
            self.processed += 1
        else:
            self.failed += 1
        self._elapsed += processing_time

    def snapshot(self) -> ProgressSnapshot:
        done = self.processed + self.failed
        pending = max(self.total - done, 0)
        average = self._elapsed / done if done else 0.0
        return ProgressSnapshot(
            total=self.total,
            processed=self.processed,
            failed=self.failed,
            pending=pending,
            percentage=(done / self.total * 100.0) if self.total else 0.0,
            estimated_time_remaining=average * pending,
            average_processing_time=average,
        )


class MemoryMonitor:
    """Track memory usage in megabytes against a pressure threshold."""

    def __init__(self, threshold_mb: float, *, auto_sample: bool = False, history: int = 100) -> None:
        self.threshold_mb = threshold_mb
        self.auto_sample = auto_sample
        self._samples: Deque[float] = deque(maxlen=history)

    def record_usage(self, usage_mb: float) -> None:
        self._samples.append(float(usage_mb))

    def sample(self) -> float:
        usage = psutil.Process().memory_info().rss / _BYTES_PER_MB
        self.record_usage(usage)
        return usage

    def current_usage(self) -> float:
        if self.auto_sample:
            return self.sample()
        return self._samples[-1] if self._samples else 0.0

    def under_pressure(self) -> bool:
        return self.current_usage() > self.threshold_mb


class BatchSizeOptimizer:
    """Learn a throughput-maximizing batch size from recorded batches."""

    def __init__(self, *, min_samples: int = 10, max_history: int = 100) -> None:
        self._min_samples = min_samples
        self._max_history = max_history
        self._history: List[Dict[str, float]] = []

    def record_batch(self, batch_size: int, processing_time: float, success_rate: float, memory_usage_mb: float = 0.0) -> None:
        self._history.append(
            {
                "batch_size": float(batch_size),
                "processing_time": max(processing_time, 1e-9),
                "success_rate": success_rate,
                "memory_usage_mb": memory_usage_mb,
            }
        )
        if len(self._history) > self._max_history:
            self._history = self._history[-(self._max_history // 2) :]

    def optimize_batch_size(self, current: int) -> int:
        if len(self._history) < self._min_samples:
            return current
        throughput: Dict[int, float] = {}
        for entry in self._history:
            size = int(entry["batch_size"])
            rate = entry["batch_size"] / entry["processing_time"]
            throughput[size] = (throughput[size] + rate) / 2 if size in throughput else rate
        return max(throughput.items(), key=lambda item: item[1])[0]

    def recommendations(self, memory_threshold_mb: float = 100.0) -> Dict[str, Any]:
        if not self._history:
            return {"optimal_batch_size": 0, "recommended_concurrency": 2, "notes": []}
        count = len(self._history)
        average_size = sum(entry["batch_size"] for entry in self._history) / count
        success_rate = sum(entry["success_rate"] for entry in self._history) / count
        memory = sum(entry["memory_usage_mb"] for entry in self._history) / count
        notes: List[str] = []
        if memory > memory_threshold_mb:
            notes.append("Consider reducing batch size")
            notes.append("Enable memory-aware processing")
        if success_rate < 0.9:
            notes.append("Increase retry attempts")
            notes.append("Implement circuit breaker pattern")
        return {
            "optimal_batch_size": round(average_size),
            "recommended_concurrency": 4 if success_rate > 0.95 else 2,
            "notes": notes,
        }


class BatchHandle:
    """Awaitable reference to a queued item."""

    def __init__(self, processor: "BatchProcessor", item_id: str) -> None:
        self._processor = processor
        self.id = item_id

    def done(self) -> bool:
        return self._processor.result_for(self.id) is not None

    def result(self) -> Optional[BatchResult]:
        return self._processor.result_for(self.id)

    def __await__(self):
        return self._processor.wait_for(self.id).__await__()

    def __repr__(self) -> str:
        return f"BatchHandle(id={self.id!r}, done={self.done()})"


class BatchProcessor:
    """Priority queue feeding a caller-supplied batch function."""

    def __init__(
        self,
        process_fn: ProcessFn,
        config: Optional[BatchConfig] = None,
        *,
        memory_monitor: Optional[MemoryMonitor] = None,
        size_optimizer: Optional[BatchSizeOptimizer] = None,
    ) -> None:
        self._config = config or BatchConfig()
        self._config.validate()
        self._process_fn = process_fn
        self._memory = memory_monitor or MemoryMonitor(
            self._config.memory_threshold_mb, auto_sample=self._config.sample_memory
        )
        self.size_optimizer = size_optimizer or BatchSizeOptimizer()

        self._queue: List[BatchItem] = []
        self._items: Dict[str, BatchItem] = {}
        self._results: Dict[str, BatchResult] = {}
        self._waiters: Dict[str, List[asyncio.Future]] = defaultdict(list)
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._retry_tasks: Set[asyncio.Task] = set()
        self._changed = asyncio.Event()
        self._sequence = itertools.count()
        self._generation = 0

        self._stats = BatchStatistics()
        self._processing_seconds = 0.0
        self._progress = ProgressTracker()

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def add_item(
        self,
        payload: Any,
        *,
        priority: int = 0,
        max_retries: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BatchHandle:
        item = BatchItem(
            id=f"item_{uuid.uuid4().hex}",
            payload=payload,
            priority=priority,
            max_retries=self._config.max_retries if max_retries is None else max_retries,
            metadata=dict(metadata or {}),
        )
        self._items[item.id] = item
        self._progress.add()
        self._enqueue(item)
        LOGGER.debug("Queued %s priority=%s queue size=%s", item.id, priority, len(self._queue))
        return BatchHandle(self, item.id)

    def result_for(self, item_id: str) -> Optional[BatchResult]:
        return self._results.get(item_id)

    async def wait_for(self, item_id: str) -> BatchResult:
        if item_id in self._results:
            return self._results[item_id]
        if item_id not in self._items:
            raise BatchCancelledError(f"Item {item_id} is not tracked by this processor")
        future = asyncio.get_running_loop().create_future()
        self._waiters[item_id].append(future)
        return await future

    async def process_all(self, timeout: Optional[float] = None) -> Dict[str, BatchResult]:
        """Run until the queue and in-flight batches are both empty."""

        if timeout is None:
            timeout = self._config.process_timeout.total_seconds()
        try:
            await asyncio.wait_for(self._drive(), timeout)
        except asyncio.TimeoutError as exc:
            raise BatchTimeoutError(
                f"Batch processing did not finish within {timeout:.1f}s",
                hint=f"{len(self._queue)} queued, {len(self._in_flight)} in flight",
            ) from exc
        return dict(self._results)

    def cancel(self) -> None:
        """Drop queued, retrying and in-flight work.

        Running batch functions are not interrupted; their results are
        discarded when they eventually complete.
        """

        self._generation += 1
        dropped = list(self._items)
        self._queue.clear()
        for task in self._retry_tasks:
            task.cancel()
        self._retry_tasks.clear()
        self._in_flight.clear()
        self._items.clear()
        for item_id in dropped:
            for future in self._waiters.pop(item_id, []):
                if not future.done():
                    future.set_exception(BatchCancelledError(f"Item {item_id} was cancelled"))
        self._progress.reset()
        self._changed.set()
        LOGGER.info("Cancelled batch processing; dropped %s items", len(dropped))

    def get_progress(self) -> ProgressSnapshot:
        return self._progress.snapshot()

    def statistics(self) -> BatchStatistics:
        return BatchStatistics(**vars(self._stats))

    def _enqueue(self, item: BatchItem) -> None:
        item.sequence = next(self._sequence)
        if self._config.enable_priority:
            bisect.insort(self._queue, item, key=lambda queued: (-queued.priority, queued.sequence))
        else:
            self._queue.append(item)
        self._changed.set()

    def _effective_batch_size(self) -> int:
        cap = self._config.max_batch_size
        if self._memory.under_pressure():
            reduced = max(self._config.min_batch_size, math.floor(cap * 0.5))
            LOGGER.debug("Memory pressure detected; batch cap %s -> %s", cap, reduced)
            cap = reduced
        return cap

    def _oldest_age(self, now: float) -> float:
        return now - min(item.enqueued_at for item in self._queue)

    def _create_batch(self) -> Optional[Batch]:
        if not self._queue:
            return None
        if (
            len(self._queue) < self._config.min_batch_size
            and self._oldest_age(time.time()) < self._config.max_wait.total_seconds()
        ):
            return None
        size = self._effective_batch_size()
        items = self._queue[:size]
        del self._queue[:size]
        return Batch(id=f"batch_{uuid.uuid4().hex}", items=items)

    def _next_deadline(self) -> Optional[float]:
        if not self._queue or len(self._in_flight) >= self._config.max_concurrent_batches:
            return None
        remaining = self._config.max_wait.total_seconds() - self._oldest_age(time.time())
        return max(remaining, 0.001)

    async def _drive(self) -> None:
        generation = self._generation
        while generation == self._generation:
            if not self._queue and not self._in_flight and not self._retry_tasks:
                return
            if len(self._in_flight) < self._config.max_concurrent_batches:
                batch = self._create_batch()
                if batch is not None:
                    self._launch(batch)
                    continue
            self._changed.clear()
            try:
                await asyncio.wait_for(self._changed.wait(), self._next_deadline())
            except asyncio.TimeoutError:
                pass

    def _launch(self, batch: Batch) -> None:
        LOGGER.debug("Starting %s with %s items", batch.id, batch.size)
        task = asyncio.create_task(self._run_batch(batch, self._generation))
        self._in_flight[batch.id] = task

        def _done(_: asyncio.Task, batch_id: str = batch.id) -> None:
            self._in_flight.pop(batch_id, None)
            self._changed.set()

        task.add_done_callback(_done)

    async def _run_batch(self, batch: Batch, generation: int) -> None:
        metrics.batches_total.inc()
        started = time.perf_counter()
        error: Optional[Exception] = None
        outputs: List[Any] = []
        payloads = [item.payload for item in batch.items]
        try:
            if inspect.iscoroutinefunction(self._process_fn):
                produced = await self._process_fn(payloads)
            else:
                # sync functions run in a worker thread
                produced = await asyncio.to_thread(self._process_fn, payloads)
                if inspect.isawaitable(produced):
                    produced = await produced
            outputs = list(produced)
            if len(outputs) != batch.size:
                raise BatchItemError(
                    f"Batch function returned {len(outputs)} results for {batch.size} payloads"
                )
        except Exception as exc:
            error = exc
        elapsed = time.perf_counter() - started
        metrics.batch_duration_seconds.observe(elapsed)

        if generation != self._generation:
            LOGGER.debug("Discarding results of cancelled %s", batch.id)
            return

        self._record_batch(batch, elapsed, error)
        if error is None:
            for item, output in zip(batch.items, outputs):
                self._finish(item, BatchResult(item.id, True, output, None, elapsed, item.retry_count))
            return

        LOGGER.warning("%s failed: %s", batch.id, error)
        for item in batch.items:
            if item.retry_count < item.max_retries:
                item.retry_count += 1
                self._schedule_retry(item, self._config.retry_delay.total_seconds() * item.retry_count)
            else:
                self._finish(item, BatchResult(item.id, False, None, str(error), elapsed, item.retry_count))

    def _schedule_retry(self, item: BatchItem, delay: float) -> None:
        metrics.batch_retries_total.inc()
        LOGGER.debug("Retrying %s (attempt %s/%s) in %.3fs", item.id, item.retry_count, item.max_retries, delay)
        generation = self._generation

        async def _requeue() -> None:
            await asyncio.sleep(delay)
            if generation == self._generation and item.id in self._items:
                self._enqueue(item)

        task = asyncio.create_task(_requeue())
        self._retry_tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._retry_tasks.discard(finished)
            self._changed.set()

        task.add_done_callback(_done)

    def _record_batch(self, batch: Batch, elapsed: float, error: Optional[Exception]) -> None:
        stats = self._stats
        stats.total_batches += 1
        stats.total_items += batch.size
        self._processing_seconds += elapsed
        stats.average_batch_size = stats.total_items / stats.total_batches
        stats.average_processing_time = self._processing_seconds / stats.total_batches
        self.size_optimizer.record_batch(
            batch.size,
            elapsed,
            0.0 if error is not None else 1.0,
            self._memory.current_usage(),
        )

    def _finish(self, item: BatchItem, result: BatchResult) -> None:
        self._results[item.id] = result
        self._items.pop(item.id, None)
        self._progress.record(result.success, result.processing_time)

        stats = self._stats
        if result.success:
            stats.successful_items += 1
        else:
            stats.failed_items += 1
        if self._processing_seconds > 0:
            stats.throughput = stats.successful_items / self._processing_seconds
        stats.error_rate = stats.failed_items / stats.total_items if stats.total_items else 0.0
        metrics.batch_items_total.labels(outcome="succeeded" if result.success else "failed").inc()

        for future in self._waiters.pop(item.id, []):
            if not future.done():
                future.set_result(result)


__all__ = [
    "BatchItem",
    "BatchResult",
    "Batch",
    "BatchStatistics",
    "ProgressSnapshot",
    "ProgressTracker",
    "MemoryMonitor",
    "BatchSizeOptimizer",
    "BatchHandle",
    "BatchProcessor",
]
