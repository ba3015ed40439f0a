"""Container lookups used to enrich raw daemon events."""
from __future__ import annotations

import asyncio
import logging

from dockerwatch.models import Container
from dockerwatch.runtime import RuntimeClient

logger = logging.getLogger(__name__)


class ContainerDirectory:
    """Maps container IDs to fresh ``Container`` snapshots.

    Every call queries the daemon; snapshots are never cached.
    """

    def __init__(self, client: RuntimeClient):
        self._client = client

    async def _all_containers(self) -> list[Container]:
        records = await asyncio.to_thread(self._client.list_containers, True)
        return [Container.from_docker(record) for record in records]

    async def lookup(self, container_id: str) -> Container | None:
        """Return the container with ``container_id``, or None if it is gone.

        Accepts either the full ID or an unambiguous prefix, since event
        notifications and users may quote either.
        """
        containers = await self._all_containers()
        for container in containers:
            if container.id == container_id:
                return container

        matches = [c for c in containers if container_id and c.id.startswith(container_id)]
        if len(matches) == 1:
            return matches[0]

        logger.debug(f"Container {container_id} not found")
        return None

    async def running_containers(self) -> list[Container]:
        """Return snapshots of all running containers."""
        return [c for c in await self._all_containers() if c.state == "running"]
