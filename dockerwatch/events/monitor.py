"""Docker event monitor.

Subscribes to the daemon's event stream for container ``start`` and
``die`` events and dispatches enriched ``ContainerEvent`` objects.

The blocking stream read runs on its own daemon thread. Each notification is
handed back to the event loop, which spawns an independent task to look
the container up and dispatch the result, so a slow lookup never holds
up the reader. Lookups may finish out of order, so consumers can see
events in a different order than the daemon emitted them.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Any

from dockerwatch.cancellation import CancelToken
from dockerwatch.config import settings
from dockerwatch.directory import ContainerDirectory
from dockerwatch.errors import StreamError, TransportError
from dockerwatch.events.subscription import ErrorCallback, EventCallback, EventSubscription
from dockerwatch.models import Container, ContainerEvent
from dockerwatch.runtime import EventFilters, RuntimeClient
from dockerwatch.threads import run_in_thread

logger = logging.getLogger(__name__)


def _as_stream_error(error: Exception) -> StreamError:
    """Wrap a reader failure for the error channel, keeping the original as cause."""
    if isinstance(error, StreamError):
        return error
    wrapped = StreamError(f"Docker event stream failed: {error}")
    wrapped.__cause__ = error
    return wrapped


def parse_notification(raw: dict[str, Any]) -> tuple[str, str, str, datetime]:
    """Extract (type, action, container id, timestamp) from a raw event."""
    event_type = raw.get("Type", "")
    # Handle compound actions like "exec_start: /bin/sh"
    action = (raw.get("Action") or raw.get("status") or "").split(":")[0]
    actor = raw.get("Actor") or {}
    container_id = raw.get("id") or actor.get("ID", "")

    # Timestamp is nanoseconds since epoch
    timestamp_ns = raw.get("timeNano", 0)
    if timestamp_ns:
        timestamp = datetime.fromtimestamp(timestamp_ns / 1e9, tz=timezone.utc)
    else:
        timestamp = datetime.now(timezone.utc)

    return event_type, action, container_id, timestamp


class EventMonitor:
    """Starts event subscriptions against a shared runtime client."""

    def __init__(
        self,
        client: RuntimeClient,
        directory: ContainerDirectory | None = None,
        max_concurrent_lookups: int | None = None,
    ):
        self._client = client
        self._directory = directory or ContainerDirectory(client)
        if max_concurrent_lookups is None:
            max_concurrent_lookups = settings.max_concurrent_lookups
        self._max_concurrent_lookups = max_concurrent_lookups

    def start(
        self,
        filters: EventFilters | None = None,
        on_event: EventCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> EventSubscription:
        """Open a subscription. Must be called from a running event loop.

        The filters are fixed for the life of the subscription.
        """
        loop = asyncio.get_running_loop()
        filters = filters or EventFilters()
        cancel = CancelToken()

        subscription = EventSubscription(filters, cancel)
        subscription.on_event = on_event
        subscription.on_error = on_error

        task = loop.create_task(self._read_loop(subscription, filters, cancel))
        subscription._attach_reader(task)
        logger.info(f"Event subscription started: {filters.to_docker()}")
        return subscription

    async def _read_loop(
        self,
        subscription: EventSubscription,
        filters: EventFilters,
        cancel: CancelToken,
    ) -> None:
        loop = asyncio.get_running_loop()
        semaphore = (
            asyncio.Semaphore(self._max_concurrent_lookups)
            if self._max_concurrent_lookups > 0
            else None
        )

        def on_notification(raw: dict[str, Any]) -> None:
            # Called from the reader thread
            loop.call_soon_threadsafe(self._spawn_dispatch, subscription, filters, raw, semaphore)

        try:
            await run_in_thread(
                self._client.subscribe_events,
                filters,
                on_notification,
                cancel,
                name="dockerwatch-events",
            )
        except asyncio.CancelledError:
            cancel.cancel()
            raise
        except (TransportError, StreamError) as e:
            logger.error(f"Docker event stream failed: {e}")
            await subscription._fail(_as_stream_error(e))
            return
        except Exception as e:
            logger.exception(f"Unexpected error in Docker event stream: {e}")
            await subscription._fail(_as_stream_error(e))
            return

        if not cancel.cancelled:
            logger.warning("Docker events stream ended")
            await subscription._fail(StreamError("Docker event stream ended"))

    def _spawn_dispatch(
        self,
        subscription: EventSubscription,
        filters: EventFilters,
        raw: dict[str, Any],
        semaphore: asyncio.Semaphore | None,
    ) -> None:
        if not subscription.active:
            return

        event_type, action, container_id, timestamp = parse_notification(raw)
        if not filters.matches(event_type, action):
            logger.debug(f"Ignoring {event_type} event {action!r}")
            return

        task = asyncio.get_running_loop().create_task(
            self._enrich_and_dispatch(subscription, container_id, action, timestamp, semaphore)
        )
        subscription._track(task)

    async def _enrich_and_dispatch(
        self,
        subscription: EventSubscription,
        container_id: str,
        action: str,
        timestamp: datetime,
        semaphore: asyncio.Semaphore | None,
    ) -> None:
        async with semaphore or contextlib.nullcontext():
            container = await self._lookup(container_id)

        logger.debug(
            f"Docker event: {action}",
            extra={"container_id": container_id, "event_type": action},
        )
        event = ContainerEvent(
            container_id=container_id,
            event_type=action,
            container=container,
            timestamp=timestamp,
        )
        await subscription._dispatch(event)

    async def _lookup(self, container_id: str) -> Container | None:
        """Look a container up, degrading any failure to a miss."""
        try:
            return await self._directory.lookup(container_id)
        except Exception as e:
            logger.warning(f"Container lookup failed for {container_id[:12]}: {e}")
            return None
