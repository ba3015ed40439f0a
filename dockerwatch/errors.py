"""Exception types raised by the runtime client, monitor and exec session."""

from __future__ import annotations


class DockerWatchError(Exception):
    """Base class for all service errors."""


class TransportError(DockerWatchError):
    """The daemon rejected a request or could not be reached.

    Raised for list, exec-create and exec-attach calls. Never retried.
    """

    def __init__(self, message: str, resource_id: str | None = None):
        self.resource_id = resource_id
        super().__init__(message)


class ContainerNotFoundError(TransportError):
    """The daemon reported that the target container does not exist."""

    def __init__(self, container_id: str):
        super().__init__(f"Container {container_id} not found", container_id)


class StreamError(DockerWatchError):
    """Reading or demultiplexing an event or exec stream failed."""


class ExecCancelledError(StreamError):
    """The exec was cancelled before its output stream reached end-of-stream.

    ``exec_id`` is None when cancellation came before the exec was created.
    """

    def __init__(self, container_id: str, exec_id: str | None = None):
        self.container_id = container_id
        self.exec_id = exec_id
        if exec_id is None:
            message = f"Exec in container {container_id} cancelled before it was created"
        else:
            message = f"Exec {exec_id} in container {container_id} cancelled before completion"
        super().__init__(message)


class SubscriptionDisposedError(RuntimeError):
    """An operation was attempted on a disposed event subscription."""
