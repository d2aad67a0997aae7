"""Instance data directory management.

Destroying an instance without purge keeps its data directory for
lifecycle.storage_retention_seconds so it can be recovered by an
operator; the janitor removes it afterwards.
"""

import asyncio
import logging
import shutil
from datetime import timedelta

from gamehub.config import LifecycleConfig
from gamehub.core.models import utc_now
from gamehub.lifecycle.repository import InstanceRepository
from gamehub.logging_schema import LogEvent
from gamehub.runtimes.docker.naming import ResourceNaming

logger = logging.getLogger(__name__)


class StorageManager:
    """Purges per-instance data directories."""

    def __init__(
        self,
        naming: ResourceNaming,
        repository: InstanceRepository,
        config: LifecycleConfig,
    ) -> None:
        self._naming = naming
        self._repository = repository
        self._config = config

    async def purge(self, instance_id: str) -> bool:
        """Delete the instance's data directory. Returns False if absent."""
        path = self._naming.data_dir(instance_id)
        if not path.exists():
            return False
        await asyncio.to_thread(shutil.rmtree, path)
        logger.info(
            "Instance data purged",
            extra={
                "event": LogEvent.STORAGE_PURGED,
                "instance_id": instance_id,
                "path": str(path),
            },
        )
        return True

    async def purge_expired(self) -> int:
        """Purge data of instances destroyed longer ago than the retention."""
        cutoff = utc_now() - timedelta(seconds=self._config.storage_retention_seconds)
        purged = 0
        for instance in await self._repository.list_purgeable(cutoff):
            if await self.purge(instance.id):
                purged += 1
            await self._repository.update(instance.id, storage_purged_at=utc_now())
        return purged


async def run_storage_gc(storage: StorageManager, interval: float) -> None:
    """Periodically purge expired instance data until cancelled."""
    while True:
        try:
            purged = await storage.purge_expired()
            if purged:
                logger.info(
                    "Storage GC completed",
                    extra={"event": LogEvent.GC_COMPLETED, "purged_count": purged},
                )
        except Exception as exc:
            logger.exception(
                "Storage GC failed",
                extra={"event": LogEvent.GC_FAILED, "error": str(exc)},
            )
        await asyncio.sleep(interval)
