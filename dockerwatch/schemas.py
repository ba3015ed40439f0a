"""HTTP request/response schemas.

These Pydantic models define the JSON exchanged with clients of the
service's HTTP API.
"""

from enum import Enum

from pydantic import BaseModel, Field

from dockerwatch.version import __version__


class MonitorStatus(str, Enum):
    """State of the service's event subscription."""
    ACTIVE = "active"
    STOPPED = "stopped"
    DISABLED = "disabled"


class HealthResponse(BaseModel):
    status: str = "ok"
    monitor: MonitorStatus
    version: str = __version__


class MountInfo(BaseModel):
    source: str
    destination: str
    mode: str = ""
    rw: bool = True


class ContainerInfo(BaseModel):
    """Snapshot of a container."""
    id: str
    name: str
    state: str = ""
    mounts: list[MountInfo] = Field(default_factory=list)


class EventInfo(BaseModel):
    """An observed container lifecycle event."""
    container_id: str
    event_type: str
    timestamp: str
    container: ContainerInfo | None = None


class ExecRequest(BaseModel):
    """Command to run inside a container."""
    cmd: list[str] = Field(..., min_length=1)


class ExecResponse(BaseModel):
    """Captured exec output.

    ``status`` is "failure" whenever anything was written to stderr.
    """
    status: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
