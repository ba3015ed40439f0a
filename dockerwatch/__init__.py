"""Observe Docker container lifecycle events and exec commands in containers."""

from dockerwatch.cancellation import CancelToken
from dockerwatch.directory import ContainerDirectory
from dockerwatch.errors import (
    ContainerNotFoundError,
    DockerWatchError,
    ExecCancelledError,
    StreamError,
    SubscriptionDisposedError,
    TransportError,
)
from dockerwatch.events import EventMonitor, EventSubscription, SubscriptionState
from dockerwatch.exec_session import ExecSession, demultiplex
from dockerwatch.models import Container, ContainerEvent, ExecResult, ExecStatus, MountPoint
from dockerwatch.runtime import DockerRuntimeClient, EventFilters, ExecConfig, RuntimeClient
from dockerwatch.version import __version__

__all__ = [
    "CancelToken",
    "Container",
    "ContainerDirectory",
    "ContainerEvent",
    "ContainerNotFoundError",
    "DockerRuntimeClient",
    "DockerWatchError",
    "EventFilters",
    "EventMonitor",
    "EventSubscription",
    "ExecCancelledError",
    "ExecConfig",
    "ExecResult",
    "ExecSession",
    "ExecStatus",
    "MountPoint",
    "RuntimeClient",
    "StreamError",
    "SubscriptionDisposedError",
    "SubscriptionState",
    "TransportError",
    "__version__",
    "demultiplex",
]
