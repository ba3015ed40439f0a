"""Docker daemon transport.

``RuntimeClient`` is the boundary the monitor, directory and exec session
talk to. ``DockerRuntimeClient`` implements it on top of the docker SDK.
All methods block. Async callers run short calls with ``asyncio.to_thread``
and the long-lived stream reads on dedicated threads (``dockerwatch.threads``).

Blocking reads (the event stream and the exec attach socket) are tied to
a ``CancelToken``: cancelling the token closes the underlying socket so
the worker thread's read returns instead of hanging until the daemon
sends more data.
"""
from __future__ import annotations

import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

import docker
import requests
import urllib3
from docker.utils.socket import frames_iter

from dockerwatch.cancellation import CancelToken
from dockerwatch.config import settings
from dockerwatch.errors import ContainerNotFoundError, StreamError, TransportError

logger = logging.getLogger(__name__)

# Stream ids used in the multiplexed attach wire format
STDOUT = 1
STDERR = 2

# Errors raised by the SDK or its HTTP stack for daemon/connection failures
_TRANSPORT_ERRORS = (
    docker.errors.DockerException,
    requests.exceptions.RequestException,
    urllib3.exceptions.HTTPError,
    OSError,
)

# A raw multiplexed frame: (stream id, payload)
Frame = tuple[int, bytes]


@dataclass(frozen=True)
class EventFilters:
    """Server-side filters for the daemon event stream.

    The category and action sets are fixed: only container ``start`` and
    ``die`` events are ever requested. Label selectors (``key`` or
    ``key=value``) narrow the stream further.
    """

    types: frozenset[str] = frozenset({"container"})
    actions: frozenset[str] = frozenset({"start", "die"})
    labels: tuple[str, ...] = ()

    def __post_init__(self):
        if "container" not in self.types:
            raise ValueError("Event filters must include the 'container' type")
        if self.actions != frozenset({"start", "die"}):
            raise ValueError("Event filters must select exactly the 'start' and 'die' actions")

    def to_docker(self) -> dict[str, list[str]]:
        """Encode as the ``filters`` mapping the docker SDK expects."""
        filters = {
            "type": sorted(self.types),
            "event": sorted(self.actions),
        }
        if self.labels:
            filters["label"] = list(self.labels)
        return filters

    def matches(self, event_type: str, action: str) -> bool:
        return event_type in self.types and action in self.actions


@dataclass(frozen=True)
class ExecConfig:
    """Parameters for creating an exec context.

    User and privilege settings are fixed: every exec runs as root in
    privileged mode with stdout/stderr attached and no TTY.
    """

    cmd: list[str] = field(default_factory=list)
    user: str = "root"
    privileged: bool = True
    attach_stdout: bool = True
    attach_stderr: bool = True
    attach_stdin: bool = False
    tty: bool = False
    detach: bool = False


class RuntimeClient(ABC):
    """Abstract transport to the container runtime daemon.

    Implementations must be safe to share between concurrent monitor
    subscriptions and exec sessions.
    """

    @abstractmethod
    def list_containers(self, include_stopped: bool = False) -> list[dict[str, Any]]:
        """Return raw daemon container records."""

    @abstractmethod
    def subscribe_events(
        self,
        filters: EventFilters,
        on_notification: Callable[[dict[str, Any]], None],
        cancel: CancelToken,
    ) -> None:
        """Read the event stream, calling ``on_notification`` per event.

        Blocks until ``cancel`` fires or the stream ends. Raises
        ``TransportError`` if the subscription cannot be opened and
        ``StreamError`` if reading fails afterwards.
        """

    @abstractmethod
    def create_exec(self, container_id: str, config: ExecConfig) -> str:
        """Create an exec context and return its ID."""

    @abstractmethod
    def attach_exec(self, exec_id: str, cancel: CancelToken | None = None) -> Iterator[Frame]:
        """Start the exec and return an iterator over its multiplexed frames."""

    def close(self) -> None:
        """Release the transport."""


def _close_quietly(closeable) -> None:
    try:
        closeable.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing stream: {e}")


def _shutdown_socket(sock) -> None:
    """Shut down a raw attach socket so blocked reads see end-of-stream."""
    raw = getattr(sock, "_sock", sock)
    try:
        raw.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


def _release_socket(sock) -> None:
    _shutdown_socket(sock)
    _close_quietly(sock)
    response = getattr(sock, "_response", None)
    if response is not None:
        _close_quietly(response)


class DockerRuntimeClient(RuntimeClient):
    """``RuntimeClient`` backed by ``docker.DockerClient``."""

    def __init__(self, client: docker.DockerClient):
        self._client = client

    @classmethod
    def from_settings(cls) -> "DockerRuntimeClient":
        """Connect using the configured daemon URL."""
        try:
            client = docker.DockerClient(
                base_url=settings.docker_url,
                version=settings.docker_api_version,
                timeout=settings.docker_timeout,
            )
        except docker.errors.DockerException as e:
            raise TransportError(f"Cannot connect to Docker at {settings.docker_url}: {e}") from e
        logger.info(f"Connected to Docker at {settings.docker_url}")
        return cls(client)

    def list_containers(self, include_stopped: bool = False) -> list[dict[str, Any]]:
        try:
            return self._client.api.containers(all=include_stopped)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Failed to list containers: {e}") from e

    def subscribe_events(
        self,
        filters: EventFilters,
        on_notification: Callable[[dict[str, Any]], None],
        cancel: CancelToken,
    ) -> None:
        if cancel.cancelled:
            return

        try:
            stream = self._client.api.events(decode=True, filters=filters.to_docker())
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Failed to subscribe to Docker events: {e}") from e

        unregister = cancel.add_callback(lambda: _close_quietly(stream))
        try:
            for event in stream:
                if cancel.cancelled:
                    break
                on_notification(event)
        except (*_TRANSPORT_ERRORS, ValueError) as e:
            # Closing the stream on cancellation surfaces as a read error
            if cancel.cancelled:
                return
            raise StreamError(f"Docker event stream failed: {e}") from e
        finally:
            unregister()
            if not cancel.cancelled:
                _close_quietly(stream)

    def create_exec(self, container_id: str, config: ExecConfig) -> str:
        try:
            response = self._client.api.exec_create(
                container_id,
                config.cmd,
                stdout=config.attach_stdout,
                stderr=config.attach_stderr,
                stdin=config.attach_stdin,
                tty=config.tty,
                privileged=config.privileged,
                user=config.user,
            )
        except docker.errors.NotFound as e:
            raise ContainerNotFoundError(container_id) from e
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Failed to create exec in {container_id}: {e}", container_id) from e
        return response["Id"]

    def attach_exec(self, exec_id: str, cancel: CancelToken | None = None) -> Iterator[Frame]:
        try:
            sock = self._client.api.exec_start(exec_id, detach=False, tty=False, socket=True)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Failed to attach to exec {exec_id}: {e}", exec_id) from e

        # The exec may run far longer than the API timeout
        raw = getattr(sock, "_sock", sock)
        if hasattr(raw, "settimeout"):
            raw.settimeout(None)

        unregister = cancel.add_callback(lambda: _shutdown_socket(sock)) if cancel else None
        return self._frames(exec_id, sock, cancel, unregister)

    def _frames(self, exec_id, sock, cancel, unregister) -> Iterator[Frame]:
        try:
            for stream_id, data in frames_iter(sock, tty=False):
                yield stream_id, data
        except (*_TRANSPORT_ERRORS, ValueError) as e:
            if cancel is not None and cancel.cancelled:
                return
            raise StreamError(f"Exec {exec_id} stream failed: {e}") from e
        finally:
            if unregister is not None:
                unregister()
            _release_socket(sock)

    def close(self) -> None:
        _close_quietly(self._client)
