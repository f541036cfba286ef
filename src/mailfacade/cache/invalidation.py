# mailfacade/cache/invalidation.py
from __future__ import annotations

import logging

from mailfacade.cache.facade import EmailCache
from mailfacade.models import EmailOperation
from mailfacade.models.operation import FOLDER_COUNT_CHANGING, NEEDS_TARGET
from mailfacade.perf.batch import BATCH_SIZE, process_batch

logger = logging.getLogger(__name__)


class CacheInvalidator:
    """
    Scrubs cache entries a mailbox mutation may have made stale.

    Invalidation is conservative: every list and search page of the touched
    folder goes, not just the pages that contained the uids. Call it only
    after the mutation has succeeded so a refill sees the new state.
    """

    def __init__(self, cache: EmailCache, *, batch_size: int = BATCH_SIZE):
        self.cache = cache
        self.batch_size = batch_size

    async def invalidate(self, operation: EmailOperation, folder: str) -> None:
        try:
            await self._invalidate(operation, folder)
        except Exception as e:
            logger.warning(
                "Cache invalidation failed for %s on %s: %s", operation.type.value, folder, e
            )

    async def _invalidate(self, operation: EmailOperation, folder: str) -> None:
        await process_batch(
            operation.uids, lambda uid: self.cache.delete_email(uid, folder), batch_size=self.batch_size
        )

        await self.cache.clear_folder_lists(folder)

        if operation.type in NEEDS_TARGET and operation.target_folder and operation.target_folder != folder:
            await self.cache.clear_folder_lists(operation.target_folder)

        if operation.type in FOLDER_COUNT_CHANGING:
            await self.cache.clear_folders()

        logger.debug(
            "Invalidated cache for %s on %s (%d uids)", operation.type.value, folder, len(operation.uids)
        )
