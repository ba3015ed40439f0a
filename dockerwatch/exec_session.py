"""Run a command inside a container and capture its output.

The daemon multiplexes stdout and stderr over a single attach stream as
tagged frames. ``ExecSession`` drains that stream into two buffers and
derives the completion status from them: any stderr output counts as
failure, regardless of the command's real exit code. Commands that log
diagnostics to stderr but succeed are therefore reported as failed.
"""
from __future__ import annotations

import asyncio
import io
import logging
from typing import Iterable

from dockerwatch.cancellation import CancelToken
from dockerwatch.errors import ExecCancelledError, StreamError
from dockerwatch.models import ExecResult
from dockerwatch.runtime import STDERR, STDOUT, ExecConfig, Frame, RuntimeClient
from dockerwatch.threads import run_in_thread

logger = logging.getLogger(__name__)


def demultiplex(frames: Iterable[Frame]) -> tuple[io.BytesIO, io.BytesIO]:
    """Split multiplexed frames into stdout and stderr buffers.

    Per-stream order is preserved; frames for the two streams may arrive
    interleaved in any order. Raises ``StreamError`` on an unknown stream id.
    """
    stdout = io.BytesIO()
    stderr = io.BytesIO()
    targets = {STDOUT: stdout, STDERR: stderr}

    try:
        for stream_id, payload in frames:
            target = targets.get(stream_id)
            if target is None:
                raise StreamError(f"Unexpected stream id {stream_id} in exec output")
            target.write(payload)
    except BaseException:
        stdout.close()
        stderr.close()
        raise

    return stdout, stderr


class ExecSession:
    """Executes one-off commands in running containers.

    Sessions share nothing but the runtime client, so any number may run
    concurrently against the same or different containers.
    """

    def __init__(self, client: RuntimeClient):
        self._client = client

    def _drain(self, container_id: str, exec_id: str, cancel: CancelToken) -> tuple[io.BytesIO, io.BytesIO]:
        frames = self._client.attach_exec(exec_id, cancel)
        try:
            stdout, stderr = demultiplex(frames)
        finally:
            close = getattr(frames, "close", None)
            if close is not None:
                close()

        if cancel.cancelled:
            stdout.close()
            stderr.close()
            raise ExecCancelledError(container_id, exec_id)
        return stdout, stderr

    async def run(
        self,
        container_id: str,
        cmd: list[str],
        cancel: CancelToken | None = None,
    ) -> ExecResult:
        """Run ``cmd`` in ``container_id`` and wait for it to finish.

        There is no timeout; pass a ``CancelToken`` (or cancel the awaiting
        task) to abort. The attach socket is closed before the
        cancellation surfaces.

        Raises:
            TransportError: exec creation or attach was rejected
            StreamError: the output stream could not be fully drained
        """
        cancel = cancel or CancelToken()
        if cancel.cancelled:
            raise ExecCancelledError(container_id)

        config = ExecConfig(cmd=list(cmd))
        exec_id = await asyncio.to_thread(self._client.create_exec, container_id, config)
        logger.info(
            f"Created exec {exec_id[:12]}: {cmd}",
            extra={"container_id": container_id, "exec_id": exec_id},
        )

        try:
            stdout, stderr = await run_in_thread(
                self._drain, container_id, exec_id, cancel, name=f"dockerwatch-exec-{exec_id[:12]}"
            )
        except asyncio.CancelledError:
            # The worker thread is still blocked on the socket; closing it
            # lets the thread finish.
            cancel.cancel()
            raise

        # Both buffers are positioned at their end after the drain
        stdout_bytes, stderr_bytes = stdout.tell(), stderr.tell()
        result = ExecResult.from_buffers(stdout, stderr)
        logger.info(
            f"Exec {exec_id[:12]} finished: {result.status.value}",
            extra={
                "container_id": container_id,
                "exec_id": exec_id,
                "stdout_bytes": stdout_bytes,
                "stderr_bytes": stderr_bytes,
            },
        )
        return result
