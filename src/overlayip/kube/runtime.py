"""
Level-triggered reconcile loop.

Watch events are reduced to object names and pushed onto a WorkQueue; a
bounded pool of workers pops names and calls the reconciler. The queue
guarantees a name is never reconciled by two workers at once: a name that
is re-added while in flight is parked and queued again once the current
attempt finishes.

Outcome handling per attempt:
    - success, no requeue     -> forget backoff, drop until the next event
    - requeue=True            -> re-add with per-key exponential backoff
    - requeue_after=N         -> re-add after N seconds
    - ConflictError           -> re-add immediately (fresh read, recompute)
    - any other exception     -> log, re-add with backoff
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol

from overlayip.exceptions import ConflictError
from overlayip.kube.store import ResourceStore
from overlayip.models.enums import ResourceKind
from overlayip.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)

# Delay before reopening a watch stream that failed
WATCH_RETRY_SECONDS = 5.0


@dataclass(frozen=True)
class ReconcileResult:
    """What the reconciler wants to happen to the key next."""

    requeue: bool = False
    requeue_after: float | None = None


class Reconciler(Protocol):
    async def reconcile(self, name: str) -> ReconcileResult: ...


# =============================================================================
# Work Queue
# =============================================================================


class WorkQueue:
    """
    De-duplicating queue of object names with per-key backoff.

    Must be used from a single event loop. ``add`` is idempotent for a
    key that is already waiting.
    """

    def __init__(self, base_delay: float = 0.5, max_delay: float = 300.0):
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._waiting: set[str] = set()
        self._processing: set[str] = set()
        self._dirty: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._shutdown = False

    def __len__(self) -> int:
        return len(self._waiting)

    def add(self, key: str) -> None:
        """Queue ``key`` now, unless it is already waiting."""
        if self._shutdown:
            return
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._waiting:
            return
        self._waiting.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        """Queue ``key`` after ``delay`` seconds. An earlier pending timer wins."""
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        existing = self._timers.get(key)
        if existing is not None and existing.when() <= loop.time() + delay:
            return
        if existing is not None:
            existing.cancel()
        self._timers[key] = loop.call_later(delay, self._fire_timer, key)

    def _fire_timer(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: str) -> float:
        """Queue ``key`` with exponential backoff. Returns the delay used."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the backoff for ``key``."""
        self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str:
        key = await self._queue.get()
        self._waiting.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        """Mark processing of ``key`` finished; re-queue it if it was re-added meanwhile."""
        self._processing.discard(key)
        self._queue.task_done()
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def shutdown(self) -> None:
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()


# =============================================================================
# Controller
# =============================================================================


class Controller:
    """Runs a reconciler over a WorkQueue with a fixed number of workers."""

    def __init__(
        self,
        name: str,
        reconciler: Reconciler,
        workers: int = 1,
        queue: WorkQueue | None = None,
    ):
        self.name = name
        self.reconciler = reconciler
        self.workers = workers
        self.queue = queue or WorkQueue()

    def enqueue(self, key: str) -> None:
        self.queue.add(key)

    async def process_one(self) -> None:
        """Pop one key and reconcile it."""
        key = await self.queue.get()
        try:
            await self._reconcile_key(key)
        finally:
            self.queue.done(key)

    async def _reconcile_key(self, key: str) -> None:
        try:
            result = await self.reconciler.reconcile(key)
        except asyncio.CancelledError:
            raise
        except ConflictError as e:
            logger.debug(f"[{self.name}] {key}: {e}, retrying with a fresh read")
            self.queue.add(key)
            return
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.warning(
                f"[{self.name}] reconcile of {key} failed "
                f"(attempt {self.queue.failures(key)}, retry in {delay:.1f}s): {e}"
            )
            logger.debug(f"[{self.name}] {key} traceback:\n{format_traceback(e)}")
            return

        if result.requeue_after is not None:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            delay = self.queue.add_rate_limited(key)
            logger.debug(f"[{self.name}] {key} requeued in {delay:.1f}s")
        else:
            self.queue.forget(key)

    async def _worker(self, worker_id: int) -> None:
        logger.debug(f"[{self.name}] worker {worker_id} started")
        while True:
            await self.process_one()

    async def run(self) -> None:
        """Run workers until cancelled."""
        logger.info(f"Starting controller {self.name} with {self.workers} worker(s)")
        tasks = [
            asyncio.create_task(self._worker(i), name=f"{self.name}-worker-{i}")
            for i in range(self.workers)
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            self.queue.shutdown()


# =============================================================================
# Watch Sources
# =============================================================================


def enqueue_name(event_type: str, obj: dict[str, Any]) -> Iterable[str]:
    """Map an event to the object's own name."""
    return [obj["metadata"]["name"]]


def enqueue_owner(kind: str) -> Callable[[str, dict[str, Any]], Iterable[str]]:
    """Map an event to the names of the object's controller owners of ``kind``."""

    def _mapper(event_type: str, obj: dict[str, Any]) -> Iterable[str]:
        refs = obj.get("metadata", {}).get("ownerReferences") or []
        return [
            ref["name"]
            for ref in refs
            if ref.get("kind") == kind and ref.get("controller")
        ]

    return _mapper


class WatchSource:
    """
    Feeds a controller's queue from a store watch.

    The store's watch is blocking, so it runs in a daemon thread and hands
    keys to the event loop with ``call_soon_threadsafe``. The stream is
    reopened whenever it ends or fails.
    """

    def __init__(
        self,
        store: ResourceStore,
        kind: ResourceKind,
        controller: Controller,
        mapper: Callable[[str, dict[str, Any]], Iterable[str]] = enqueue_name,
        field_selector: str | None = None,
    ):
        self.store = store
        self.kind = kind
        self.controller = controller
        self.mapper = mapper
        self.field_selector = field_selector

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _run_sync(self, loop: asyncio.AbstractEventLoop) -> None:
        while not self._stop.is_set():
            try:
                for event_type, obj in self.store.watch(self.kind, self.field_selector):
                    if self._stop.is_set():
                        return
                    if event_type == "ERROR":
                        logger.warning(f"{self.kind.value} watch error event: {obj}")
                        break
                    for key in self.mapper(event_type, obj):
                        loop.call_soon_threadsafe(self.controller.enqueue, key)
            except Exception as e:
                if self._stop.is_set():
                    return
                logger.error(
                    f"{self.kind.value} watch failed: {e}. "
                    f"Reconnecting in {WATCH_RETRY_SECONDS:.0f} seconds."
                )
                time.sleep(WATCH_RETRY_SECONDS)

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._thread = threading.Thread(
            target=self._run_sync,
            args=(loop,),
            daemon=True,
            name=f"watch-{self.kind.plural}-{self.controller.name}",
        )
        self._thread.start()
        logger.info(f"Watching {self.kind.value} for {self.controller.name}")

    def stop(self) -> None:
        self._stop.set()


# =============================================================================
# Manager
# =============================================================================


class Manager:
    """Starts controllers and their watch sources together."""

    def __init__(self):
        self.controllers: list[Controller] = []
        self.sources: list[WatchSource] = []

    def add(self, controller: Controller, *sources: WatchSource) -> None:
        self.controllers.append(controller)
        self.sources.extend(sources)

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        for source in self.sources:
            source.start(loop)
        try:
            await asyncio.gather(*(c.run() for c in self.controllers))
        finally:
            for source in self.sources:
                source.stop()
            logger.info("Manager stopped")
