"""Tests for the docker SDK backed runtime client."""

import socket
import struct
import threading
from unittest.mock import MagicMock, patch

import docker
import pytest
import requests

from dockerwatch.cancellation import CancelToken
from dockerwatch.errors import ContainerNotFoundError, StreamError, TransportError
from dockerwatch.runtime import STDERR, STDOUT, DockerRuntimeClient, EventFilters, ExecConfig


def _frame(stream_id: int, payload: bytes) -> bytes:
    """Encode one frame of the Docker multiplexed stream format."""
    return struct.pack(">BxxxL", stream_id, len(payload)) + payload


@pytest.fixture
def docker_client():
    return MagicMock()


@pytest.fixture
def runtime(docker_client):
    return DockerRuntimeClient(docker_client)


# --- list_containers ---

def test_list_containers_passes_all_flag(runtime, docker_client):
    docker_client.api.containers.return_value = [{"Id": "c1"}]

    assert runtime.list_containers(include_stopped=True) == [{"Id": "c1"}]
    docker_client.api.containers.assert_called_once_with(all=True)


def test_list_containers_translates_errors(runtime, docker_client):
    docker_client.api.containers.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(TransportError):
        runtime.list_containers()


# --- create_exec ---

def test_create_exec_sends_policy(runtime, docker_client):
    docker_client.api.exec_create.return_value = {"Id": "exec123"}

    exec_id = runtime.create_exec("c1", ExecConfig(cmd=["id", "-u"]))

    assert exec_id == "exec123"
    docker_client.api.exec_create.assert_called_once_with(
        "c1",
        ["id", "-u"],
        stdout=True,
        stderr=True,
        stdin=False,
        tty=False,
        privileged=True,
        user="root",
    )


def test_create_exec_missing_container(runtime, docker_client):
    docker_client.api.exec_create.side_effect = docker.errors.NotFound("No such container: c1")

    with pytest.raises(ContainerNotFoundError) as exc_info:
        runtime.create_exec("c1", ExecConfig(cmd=["true"]))

    assert exc_info.value.resource_id == "c1"


def test_create_exec_api_error(runtime, docker_client):
    docker_client.api.exec_create.side_effect = docker.errors.APIError("container is not running")

    with pytest.raises(TransportError):
        runtime.create_exec("c1", ExecConfig(cmd=["true"]))


# --- attach_exec ---

def test_attach_exec_rejected(runtime, docker_client):
    docker_client.api.exec_start.side_effect = docker.errors.APIError("conflict")

    with pytest.raises(TransportError):
        runtime.attach_exec("exec1")


def test_attach_exec_parses_wire_frames(runtime, docker_client):
    """Test that frames are read from a real socket in wire order."""
    ours, theirs = socket.socketpair()
    docker_client.api.exec_start.return_value = ours
    theirs.sendall(_frame(STDOUT, b"A") + _frame(STDERR, b"X") + _frame(STDOUT, b"B"))
    theirs.close()

    frames = list(runtime.attach_exec("exec1"))

    assert frames == [(STDOUT, b"A"), (STDERR, b"X"), (STDOUT, b"B")]
    docker_client.api.exec_start.assert_called_once_with(
        "exec1", detach=False, tty=False, socket=True
    )
    assert ours.fileno() == -1


def test_attach_exec_cancel_unblocks_read(runtime, docker_client):
    """Test that cancelling the token ends a read that is waiting on the daemon."""
    ours, theirs = socket.socketpair()
    docker_client.api.exec_start.return_value = ours
    theirs.sendall(_frame(STDOUT, b"first"))
    cancel = CancelToken()

    frames = runtime.attach_exec("exec1", cancel)
    assert next(frames) == (STDOUT, b"first")

    timer = threading.Timer(0.1, cancel.cancel)
    timer.start()
    try:
        assert list(frames) == []
    finally:
        timer.cancel()
        theirs.close()


# --- subscribe_events ---

class _FakeEventStream:
    def __init__(self, events):
        self._events = events
        self.closed = False

    def __iter__(self):
        return iter(self._events)

    def close(self):
        self.closed = True


def test_subscribe_events_delivers_notifications(runtime, docker_client):
    stream = _FakeEventStream([{"id": "c1", "Action": "start"}, {"id": "c2", "Action": "die"}])
    docker_client.api.events.return_value = stream
    received = []

    runtime.subscribe_events(EventFilters(), received.append, CancelToken())

    assert [e["id"] for e in received] == ["c1", "c2"]
    docker_client.api.events.assert_called_once_with(
        decode=True,
        filters={"type": ["container"], "event": ["die", "start"]},
    )
    assert stream.closed


def test_subscribe_events_cancel_closes_stream(runtime, docker_client):
    cancel = CancelToken()
    stream = _FakeEventStream([{"id": "c1"}, {"id": "c2"}])
    docker_client.api.events.return_value = stream
    received = []

    def on_notification(event):
        received.append(event)
        cancel.cancel()

    runtime.subscribe_events(EventFilters(), on_notification, cancel)

    assert len(received) == 1
    assert stream.closed


def test_subscribe_events_already_cancelled(runtime, docker_client):
    cancel = CancelToken()
    cancel.cancel()

    runtime.subscribe_events(EventFilters(), lambda e: None, cancel)

    docker_client.api.events.assert_not_called()


def test_subscribe_events_open_failure(runtime, docker_client):
    docker_client.api.events.side_effect = docker.errors.APIError("daemon down")

    with pytest.raises(TransportError):
        runtime.subscribe_events(EventFilters(), lambda e: None, CancelToken())


def test_subscribe_events_read_failure(runtime, docker_client):
    def broken_stream():
        yield {"id": "c1", "Action": "start"}
        raise requests.exceptions.ChunkedEncodingError("connection broken")

    stream = MagicMock()
    stream.__iter__.return_value = broken_stream()
    docker_client.api.events.return_value = stream

    with pytest.raises(StreamError):
        runtime.subscribe_events(EventFilters(), lambda e: None, CancelToken())
    stream.close.assert_called_once()


# --- from_settings ---

def test_from_settings_connection_failure():
    with patch("dockerwatch.runtime.docker.DockerClient") as mock_client:
        mock_client.side_effect = docker.errors.DockerException("socket missing")

        with pytest.raises(TransportError):
            DockerRuntimeClient.from_settings()


def test_close_closes_docker_client(runtime, docker_client):
    runtime.close()

    docker_client.close.assert_called_once()
