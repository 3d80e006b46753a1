"""
Items Repository.

Responsibilities:
- Expose the cached catalog as a live, read-only list of domain items.
- Refresh the cache from the remote source.

Non-Responsibilities:
- No retries (the scheduler decides).
- No direct SQL.

Invariant:
A refresh fetches completely before it writes anything, so a failed
fetch leaves the store untouched.
"""

import asyncio
from typing import List

from .live import LiveData, map_live
from .logger import get_logger
from .models import Item, as_database_model, as_domain_model
from .network import RemoteSource
from .store import ItemStore

logger = get_logger()


class ItemsRepository:
    """
    Mediates between the remote source and the item store.

    Both collaborators are passed in; the repository holds no global state.
    """

    def __init__(self, store: ItemStore, remote: RemoteSource):
        self._store = store
        self._remote = remote
        # The store query only runs while this has observers.
        self._items = map_live(store.observe_all(), as_domain_model)

    @property
    def current_items(self) -> LiveData[List[Item]]:
        return self._items

    async def refresh(self) -> None:
        """
        Fetch the latest catalog and replace the cached snapshot with it.

        TransientNetworkError and PermanentError from the fetch, and
        PersistenceError from the write, propagate unchanged.
        """
        remote_items = await self._remote.fetch_latest()
        rows = as_database_model(remote_items)
        await asyncio.to_thread(self._store.write, rows)
        logger.record_items_written(len(rows))
        logger.info("Offline cache refreshed", items=len(rows))
