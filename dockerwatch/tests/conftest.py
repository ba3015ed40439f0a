"""Shared fixtures: an in-memory runtime client and container directory."""
from __future__ import annotations

import asyncio
import queue
import threading
from typing import Any, Callable, Iterator

import pytest

from dockerwatch.cancellation import CancelToken
from dockerwatch.models import Container
from dockerwatch.runtime import EventFilters, ExecConfig, Frame, RuntimeClient

_END = object()


def container_record(container_id: str, image: str = "nginx:latest", state: str = "running") -> dict:
    """A raw record as returned by ``/containers/json``."""
    return {
        "Id": container_id,
        "Image": image,
        "State": state,
        "Mounts": [
            {"Source": "/srv/data", "Destination": "/data", "Mode": "rw", "RW": True},
        ],
    }


def notification(container_id: str, action: str, event_type: str = "container") -> dict:
    """A raw Docker event as decoded from the events stream."""
    return {
        "Type": event_type,
        "Action": action,
        "status": action,
        "id": container_id,
        "Actor": {"ID": container_id, "Attributes": {"image": "nginx:latest"}},
        "timeNano": 1700000000000000000,
    }


class FakeRuntimeClient(RuntimeClient):
    """Runtime client fed by the test instead of a Docker daemon.

    Events pushed with ``push_event`` are delivered by ``subscribe_events``
    running in a worker thread, which blocks until the test pushes more,
    ends the stream, or the cancel token fires.
    """

    def __init__(self):
        self.containers: dict[str, dict] = {}
        self.subscribed_filters: EventFilters | None = None
        self.subscribe_error: Exception | None = None
        self.stream_closed = threading.Event()
        self._events: queue.Queue = queue.Queue()
        self._lock = threading.Lock()

        self.exec_configs: list[tuple[str, ExecConfig]] = []
        self.exec_frames: list[Frame] = []
        self.create_error: Exception | None = None
        self.attach_error: Exception | None = None
        self.attach_cancel: CancelToken | None = None
        self.block_after_frames = False
        self.frames_started = threading.Event()
        self.frames_closed = threading.Event()
        self.open_streams = 0

    def add_container(self, container_id: str, **kwargs) -> None:
        self.containers[container_id] = container_record(container_id, **kwargs)

    def push_event(self, raw: dict) -> None:
        self._events.put(raw)

    def end_stream(self) -> None:
        self._events.put(_END)

    def fail_stream(self, error: Exception) -> None:
        self._events.put(error)

    def list_containers(self, include_stopped: bool = False) -> list[dict[str, Any]]:
        records = list(self.containers.values())
        if not include_stopped:
            records = [r for r in records if r["State"] == "running"]
        return records

    def subscribe_events(
        self,
        filters: EventFilters,
        on_notification: Callable[[dict[str, Any]], None],
        cancel: CancelToken,
    ) -> None:
        self.subscribed_filters = filters
        if self.subscribe_error is not None:
            raise self.subscribe_error

        unregister = cancel.add_callback(lambda: self._events.put(_END))
        try:
            while not cancel.cancelled:
                item = self._events.get()
                if item is _END:
                    break
                if isinstance(item, Exception):
                    raise item
                on_notification(item)
        finally:
            unregister()
            self.stream_closed.set()

    def create_exec(self, container_id: str, config: ExecConfig) -> str:
        if self.create_error is not None:
            raise self.create_error
        self.exec_configs.append((container_id, config))
        return f"exec-{len(self.exec_configs)}"

    def attach_exec(self, exec_id: str, cancel: CancelToken | None = None) -> Iterator[Frame]:
        if self.attach_error is not None:
            raise self.attach_error
        self.attach_cancel = cancel
        return self._frames(cancel)

    def _frames(self, cancel: CancelToken | None) -> Iterator[Frame]:
        with self._lock:
            self.open_streams += 1
        try:
            self.frames_started.set()
            yield from self.exec_frames
            if self.block_after_frames and cancel is not None:
                cancel.wait()
        finally:
            with self._lock:
                self.open_streams -= 1
            self.frames_closed.set()


class FakeDirectory:
    """Container directory whose lookups the test can hold open.

    ``gate(container_id)`` makes lookups for that container wait until
    ``release(container_id)`` is called.
    """

    def __init__(self, containers: dict[str, Container] | None = None):
        self.containers = containers or {}
        self.errors: dict[str, Exception] = {}
        self.lookups: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._gates: dict[str, asyncio.Event] = {}

    def gate(self, container_id: str) -> None:
        self._gates[container_id] = asyncio.Event()

    def release(self, container_id: str) -> None:
        self._gates[container_id].set()

    async def lookup(self, container_id: str) -> Container | None:
        self.lookups.append(container_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self._gates.get(container_id)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(0)
            if container_id in self.errors:
                raise self.errors[container_id]
            return self.containers.get(container_id)
        finally:
            self.in_flight -= 1


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met within timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def fake_client():
    client = FakeRuntimeClient()
    yield client
    # Unblock any reader thread left running by a failed test
    client.end_stream()


@pytest.fixture
def fake_directory():
    return FakeDirectory()
