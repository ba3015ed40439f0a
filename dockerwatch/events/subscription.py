"""Lifecycle object for a single event stream subscription."""
from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from dockerwatch.cancellation import CancelToken
from dockerwatch.errors import StreamError, SubscriptionDisposedError
from dockerwatch.models import ContainerEvent
from dockerwatch.runtime import EventFilters

logger = logging.getLogger(__name__)

# Consumers may be plain functions or coroutine functions
EventCallback = Callable[[ContainerEvent], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[StreamError], Union[None, Awaitable[None]]]


class SubscriptionState(str, Enum):
    """Subscription lifecycle states. Transitions only move forward."""

    ACTIVE = "active"
    STOPPED = "stopped"
    DISPOSED = "disposed"


async def _invoke(callback: Callable[[Any], Any], arg: Any) -> None:
    result = callback(arg)
    if inspect.isawaitable(result):
        await result


class EventSubscription:
    """An open event subscription with a single consumer slot.

    The ``on_event`` slot can be set, replaced or cleared at any time.
    Each dispatch reads the slot once, under the lock, right before
    invoking it; a dispatch that already captured a callback finishes
    with it even if the slot is replaced concurrently.

    ``stop()`` clears the slot and then cancels the stream, so no new
    dispatch begins once it returns. ``dispose()`` also releases the
    cancellation token; after that every operation except ``dispose()``
    raises ``SubscriptionDisposedError``.
    """

    def __init__(self, filters: EventFilters, cancel: CancelToken):
        self.filters = filters
        self._lock = threading.Lock()
        self._cancel: CancelToken | None = cancel
        self._state = SubscriptionState.ACTIVE
        self._on_event: EventCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._error: StreamError | None = None
        self._reader_task: asyncio.Task | None = None
        self._dispatch_tasks: set[asyncio.Task] = set()

    def _check_not_disposed(self) -> None:
        if self._state == SubscriptionState.DISPOSED:
            raise SubscriptionDisposedError("Event subscription has been disposed")

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state == SubscriptionState.ACTIVE

    @property
    def error(self) -> StreamError | None:
        """The failure that terminated the stream, if any."""
        self._check_not_disposed()
        return self._error

    @property
    def on_event(self) -> EventCallback | None:
        self._check_not_disposed()
        return self._on_event

    @on_event.setter
    def on_event(self, callback: EventCallback | None) -> None:
        with self._lock:
            self._check_not_disposed()
            if self._state != SubscriptionState.ACTIVE:
                # A stopped subscription never delivers again
                return
            self._on_event = callback

    @property
    def on_error(self) -> ErrorCallback | None:
        self._check_not_disposed()
        return self._on_error

    @on_error.setter
    def on_error(self, callback: ErrorCallback | None) -> None:
        with self._lock:
            self._check_not_disposed()
            self._on_error = callback

    def _mark_stopped(self) -> CancelToken | None:
        """Clear the slot and move ACTIVE -> STOPPED. Caller holds the lock.

        Returns the token to cancel once the lock is released, or None if
        the subscription was no longer active.
        """
        if self._state != SubscriptionState.ACTIVE:
            return None
        self._on_event = None
        self._state = SubscriptionState.STOPPED
        return self._cancel

    @staticmethod
    def _cancel_stream(cancel: CancelToken | None) -> None:
        if cancel is not None:
            cancel.cancel()
            logger.info("Event subscription stopped")

    def stop(self) -> None:
        """Stop delivery and tear down the underlying stream. Idempotent."""
        with self._lock:
            self._check_not_disposed()
            cancel = self._mark_stopped()
        self._cancel_stream(cancel)

    def dispose(self) -> None:
        """Stop if needed and release all resources. Idempotent."""
        with self._lock:
            if self._state == SubscriptionState.DISPOSED:
                return
            cancel = self._mark_stopped()
            self._state = SubscriptionState.DISPOSED
            self._on_error = None
            self._cancel = None
            self._reader_task = None
        self._cancel_stream(cancel)

    async def wait_closed(self) -> None:
        """Wait for the stream reader and in-flight dispatches to finish."""
        self._check_not_disposed()
        if self._reader_task is not None:
            await asyncio.shield(self._reader_task)
        if self._dispatch_tasks:
            await asyncio.gather(*list(self._dispatch_tasks), return_exceptions=True)

    def __enter__(self) -> "EventSubscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    # -- used by EventMonitor --

    def _attach_reader(self, task: asyncio.Task) -> None:
        self._reader_task = task

    def _track(self, task: asyncio.Task) -> None:
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    def _capture_callback(self) -> EventCallback | None:
        with self._lock:
            if self._state != SubscriptionState.ACTIVE:
                return None
            return self._on_event

    async def _dispatch(self, event: ContainerEvent) -> bool:
        """Deliver ``event`` to the current consumer.

        Returns False if there was no consumer and the event was discarded.
        """
        callback = self._capture_callback()
        if callback is None:
            logger.debug(f"Discarding {event.event_type} event for {event.container_id[:12]}: no consumer")
            return False

        try:
            await _invoke(callback, event)
        except Exception as e:
            logger.error(f"Error in event callback: {e}")
        return True

    async def _fail(self, error: StreamError) -> None:
        """Terminate the subscription after a stream failure."""
        with self._lock:
            if self._state == SubscriptionState.DISPOSED:
                return
            self._error = error
            on_error = self._on_error
            cancel = self._mark_stopped()

        self._cancel_stream(cancel)

        if on_error is None:
            return
        try:
            await _invoke(on_error, error)
        except Exception as e:
            logger.error(f"Error in subscription error callback: {e}")
