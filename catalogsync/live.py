"""
Push-based observable values.

LiveData holds the latest value and replays it to every new observer.
Subclasses can react to becoming active (first observer) or inactive
(last observer gone), which is how query-backed and mapped values stay
lazy: nothing is computed while nobody is listening.

Delivery goes through a dispatcher, a callable that receives a
zero-argument function and arranges for it to run. The default runs it
inline; loop_dispatcher() hands it to an asyncio event loop thread.
"""

from __future__ import annotations

import asyncio
import threading
from concurrent.futures import Executor, Future
from typing import AsyncIterator, Callable, Generic, List, Optional, TypeVar

from .errors import PersistenceError
from .logger import get_logger

T = TypeVar("T")
R = TypeVar("R")

Observer = Callable[[T], None]
Dispatcher = Callable[[Callable[[], None]], None]

logger = get_logger()

_UNSET = object()


def _log_failed_drain(future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Live query worker crashed", error=repr(exc))


class InlineExecutor(Executor):
    """Executor that runs each task immediately on the submitting thread."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


def inline_dispatcher(fn: Callable[[], None]) -> None:
    fn()


def loop_dispatcher(loop: asyncio.AbstractEventLoop) -> Dispatcher:
    """Deliver updates on the thread running `loop`."""

    def dispatch(fn: Callable[[], None]) -> None:
        loop.call_soon_threadsafe(fn)

    return dispatch


class Subscription(Generic[T]):
    """Handle returned by LiveData.observe(). Dispose it to stop receiving values."""

    def __init__(self, source: "LiveData[T]", observer: Observer) -> None:
        self._source = source
        self._observer = observer
        self.active = True

    def _deliver(self, value: T) -> None:
        if not self.active:
            return
        try:
            self._observer(value)
        except Exception as e:
            logger.error("Live observer raised", error=repr(e))

    def dispose(self) -> None:
        if not self.active:
            return
        self.active = False
        self._source._remove(self)

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


class LiveData(Generic[T]):
    """Read-only observable holding the latest value."""

    def __init__(self, dispatcher: Optional[Dispatcher] = None) -> None:
        self._lock = threading.RLock()
        self._subscriptions: List[Subscription[T]] = []
        self._value = _UNSET
        self._dispatcher = dispatcher or inline_dispatcher

    @property
    def value(self) -> Optional[T]:
        """Latest value, or None before the first emission."""
        value = self._value
        return None if value is _UNSET else value

    @property
    def has_observers(self) -> bool:
        with self._lock:
            return bool(self._subscriptions)

    def observe(self, observer: Observer) -> Subscription[T]:
        sub = Subscription(self, observer)
        with self._lock:
            first = not self._subscriptions
            self._subscriptions.append(sub)
            latest = self._value
        if latest is not _UNSET:
            self._dispatch(sub, latest)
        if first:
            self._on_active()
        return sub

    async def updates(self) -> AsyncIterator[T]:
        """
        Iterate over values from an event loop.

        The latest value is yielded first. Intermediate values are dropped
        if the consumer falls behind; it always ends on the newest one.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def push(value: T) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, value)

        sub = self.observe(push)
        try:
            while True:
                value = await queue.get()
                while not queue.empty():
                    value = queue.get_nowait()
                yield value
        finally:
            sub.dispose()

    def _remove(self, sub: Subscription[T]) -> None:
        with self._lock:
            if sub not in self._subscriptions:
                return
            self._subscriptions.remove(sub)
            last = not self._subscriptions
        if last:
            self._on_inactive()

    def _set_value(self, value: T) -> None:
        with self._lock:
            self._value = value
            subs = list(self._subscriptions)
        for sub in subs:
            self._dispatch(sub, value)

    def _dispatch(self, sub: Subscription[T], value: T) -> None:
        self._dispatcher(lambda: sub._deliver(value))

    def _on_active(self) -> None:
        pass

    def _on_inactive(self) -> None:
        pass


class MappedLiveData(LiveData[R]):
    """Projection of another LiveData, subscribed to it only while observed."""

    def __init__(self, source: LiveData[T], transform: Callable[[T], R]) -> None:
        super().__init__()
        self._source = source
        self._transform = transform
        self._upstream: Optional[Subscription[T]] = None

    def _on_active(self) -> None:
        self._upstream = self._source.observe(lambda v: self._set_value(self._transform(v)))

    def _on_inactive(self) -> None:
        upstream, self._upstream = self._upstream, None
        if upstream is not None:
            upstream.dispose()


def map_live(source: LiveData[T], transform: Callable[[T], R]) -> LiveData[R]:
    return MappedLiveData(source, transform)


class QueryLiveData(LiveData[T]):
    """
    LiveData backed by a query that is re-run on invalidate().

    The query runs on `executor` (inline when None), only while there is at
    least one observer, and never concurrently with itself. Invalidations
    that arrive while a query is running collapse into one more run.
    A query failing with PersistenceError keeps the last value.
    """

    def __init__(
        self,
        query: Callable[[], T],
        *,
        executor: Optional[Executor] = None,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        super().__init__(dispatcher)
        self._query = query
        self._executor = executor
        self._dirty = False
        self._running = False

    def invalidate(self) -> None:
        with self._lock:
            if not self._subscriptions:
                return
            self._dirty = True
            if self._running:
                return
            self._running = True
        if self._executor is None:
            self._drain()
        else:
            future = self._executor.submit(self._drain)
            future.add_done_callback(_log_failed_drain)

    def _on_active(self) -> None:
        self.invalidate()

    def _drain(self) -> None:
        try:
            while True:
                with self._lock:
                    if not self._dirty or not self._subscriptions:
                        self._running = False
                        return
                    self._dirty = False
                try:
                    value = self._query()
                except PersistenceError as e:
                    logger.warning("Live query failed, keeping last snapshot", error=str(e))
                    continue
                self._set_value(value)
        except BaseException:
            with self._lock:
                self._running = False
            raise
