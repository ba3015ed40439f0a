"""dockerwatch service.

Observes container lifecycle events on the local Docker daemon and runs
ad-hoc commands inside running containers:
- An event subscription started at startup records ``start``/``die``
  events and optionally forwards them to a configured URL
- ``POST /containers/{id}/exec`` runs a command and returns its output
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException

from dockerwatch.config import settings
from dockerwatch.directory import ContainerDirectory
from dockerwatch.errors import ContainerNotFoundError, StreamError, TransportError
from dockerwatch.events import EventMonitor, EventSubscription
from dockerwatch.exec_session import ExecSession
from dockerwatch.logging_config import setup_logging
from dockerwatch.models import ContainerEvent
from dockerwatch.runtime import DockerRuntimeClient, RuntimeClient
from dockerwatch.schemas import (
    ContainerInfo,
    EventInfo,
    ExecRequest,
    ExecResponse,
    HealthResponse,
    MonitorStatus,
)
from dockerwatch.version import __version__

setup_logging()
logger = logging.getLogger(__name__)

# Shared runtime client (lazy initialized)
_runtime_client: RuntimeClient | None = None

# Service-wide event subscription
_subscription: EventSubscription | None = None

# Most recent events, newest last
_recent_events: deque[ContainerEvent] = deque(maxlen=settings.recent_events_limit)


def get_runtime_client() -> RuntimeClient:
    """Lazy-initialize the shared Docker client."""
    global _runtime_client
    if _runtime_client is None:
        _runtime_client = DockerRuntimeClient.from_settings()
    return _runtime_client


async def forward_event(event: ContainerEvent) -> None:
    """POST an event to the configured forwarding URL."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                settings.event_forward_url,
                json=event.to_dict(),
                timeout=settings.event_forward_timeout,
            )
            if response.status_code < 300:
                logger.debug(f"Forwarded event: {event.event_type} for {event.container_id[:12]}")
            else:
                logger.warning(f"Failed to forward event: HTTP {response.status_code}")
    except httpx.HTTPError as e:
        logger.error(f"Error forwarding event: {e}")


async def record_event(event: ContainerEvent) -> None:
    """Event consumer for the service subscription."""
    _recent_events.append(event)
    name = event.container.name if event.container else "<removed>"
    logger.info(f"Container {event.event_type}: {name} ({event.container_id[:12]})")
    if settings.event_forward_url:
        await forward_event(event)


def log_stream_error(error: StreamError) -> None:
    logger.error(f"Event monitoring stopped: {error}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the event subscription on startup, tear it down on shutdown."""
    global _subscription, _runtime_client

    logger.info(f"dockerwatch {__version__} starting...")
    logger.info(f"Docker URL: {settings.docker_url}")

    if settings.watch_events:
        try:
            monitor = EventMonitor(get_runtime_client())
            _subscription = monitor.start(on_event=record_event, on_error=log_stream_error)
        except TransportError as e:
            logger.error(f"Failed to start event monitor: {e}")

    yield

    if _subscription is not None:
        _subscription.stop()
        try:
            await asyncio.wait_for(_subscription.wait_closed(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for event subscription to close")
        _subscription.dispose()
        _subscription = None

    if _runtime_client is not None:
        _runtime_client.close()
        _runtime_client = None

    logger.info("dockerwatch shutting down")


app = FastAPI(
    title="dockerwatch",
    version=__version__,
    lifespan=lifespan,
)


def _container_info(container) -> ContainerInfo:
    return ContainerInfo(**container.to_dict())


@app.get("/health")
def health() -> HealthResponse:
    if _subscription is None:
        monitor = MonitorStatus.DISABLED
    elif _subscription.active:
        monitor = MonitorStatus.ACTIVE
    else:
        monitor = MonitorStatus.STOPPED
    return HealthResponse(monitor=monitor)


@app.get("/containers")
async def list_running_containers() -> list[ContainerInfo]:
    """List running containers."""
    directory = ContainerDirectory(get_runtime_client())
    try:
        containers = await directory.running_containers()
    except TransportError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [_container_info(c) for c in containers]


@app.get("/events/recent")
def recent_events() -> list[EventInfo]:
    """Recently observed container events, newest last."""
    events = []
    for event in list(_recent_events):
        data = event.to_dict()
        container = data.pop("container")
        events.append(
            EventInfo(**data, container=ContainerInfo(**container) if container else None)
        )
    return events


@app.post("/containers/{container_id}/exec")
async def exec_in_container(container_id: str, request: ExecRequest) -> ExecResponse:
    """Run a command in a container and return its output."""
    session = ExecSession(get_runtime_client())
    try:
        result = await session.run(container_id, request.cmd)
    except ContainerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransportError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except StreamError as e:
        raise HTTPException(status_code=504, detail=str(e))

    with result:
        return ExecResponse(
            status=result.status.value,
            exit_code=result.exit_code,
            stdout=result.stdout.read().decode("utf-8", errors="replace"),
            stderr=result.stderr.read().decode("utf-8", errors="replace"),
        )
