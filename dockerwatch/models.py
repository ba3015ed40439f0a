"""Domain types for observed containers, events and exec results."""
from __future__ import annotations

import io
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class MountPoint:
    """A host-path to container-path binding."""

    source: str
    destination: str
    mode: str = ""
    rw: bool = True

    @classmethod
    def from_docker(cls, record: dict[str, Any]) -> "MountPoint":
        return cls(
            source=record.get("Source", ""),
            destination=record.get("Destination", ""),
            mode=record.get("Mode", ""),
            rw=bool(record.get("RW", True)),
        )


@dataclass(frozen=True)
class Container:
    """Immutable snapshot of a container as reported by the daemon.

    Attributes:
        id: Daemon-assigned container ID
        name: Display name, taken from the image reference (not unique)
        mounts: Mount points in daemon order
        state: Daemon state string ("running", "exited", ...)
    """

    id: str
    name: str
    mounts: tuple[MountPoint, ...] = ()
    state: str = ""

    @classmethod
    def from_docker(cls, record: dict[str, Any]) -> "Container":
        """Build a snapshot from a ``/containers/json`` record."""
        return cls(
            id=record.get("Id", ""),
            name=record.get("Image", ""),
            mounts=tuple(MountPoint.from_docker(m) for m in record.get("Mounts") or []),
            state=record.get("State", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state,
            "mounts": [
                {
                    "source": m.source,
                    "destination": m.destination,
                    "mode": m.mode,
                    "rw": m.rw,
                }
                for m in self.mounts
            ],
        }


@dataclass
class ContainerEvent:
    """A container lifecycle event enriched with a container snapshot.

    ``container`` is None when the container was gone before the lookup
    completed.
    """

    container_id: str
    event_type: str
    container: Container | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "container": self.container.to_dict() if self.container else None,
        }


class ExecStatus(str, Enum):
    """Completion status of an exec, derived from stderr output."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class ExecResult:
    """Captured output of an exec.

    The caller owns both buffers and should release them with ``close()``
    or by using the result as a context manager.
    """

    stdout: io.BytesIO
    stderr: io.BytesIO
    status: ExecStatus

    @classmethod
    def from_buffers(cls, stdout: io.BytesIO, stderr: io.BytesIO) -> "ExecResult":
        """Rewind both buffers and derive the status.

        Any stderr output at all means failure, whatever the command's
        real exit code was.
        """
        has_stderr = stderr.seek(0, io.SEEK_END) > 0
        stdout.seek(0)
        stderr.seek(0)
        return cls(
            stdout=stdout,
            stderr=stderr,
            status=ExecStatus.FAILURE if has_stderr else ExecStatus.SUCCESS,
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.status == ExecStatus.SUCCESS else 1

    @property
    def closed(self) -> bool:
        return self.stdout.closed and self.stderr.closed

    def close(self) -> None:
        self.stdout.close()
        self.stderr.close()

    def __enter__(self) -> "ExecResult":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
