"""
Offline item store.

Responsibilities:
- Persist the current snapshot of catalog items.
- Replace the snapshot atomically on write.
- Notify live queries once per completed write.

Non-Responsibilities:
- No fetching.
- No mapping from remote payloads.

Invariant:
After any sequence of writes, a read returns exactly the rows of the last
write, in the order they were written.
"""

import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import CachedItem, init_database, utcnow
from .errors import PersistenceError
from .live import Dispatcher, LiveData, QueryLiveData
from .logger import get_logger
from .models import ItemRow

logger = get_logger()

# Keeps each multi-row INSERT well under the SQLite bind parameter limit
INSERT_CHUNK_SIZE = 100


def _dedupe(items: Sequence[ItemRow]) -> List[ItemRow]:
    """Last occurrence of a url wins; the first occurrence keeps its position."""
    by_url: Dict[str, ItemRow] = {}
    for item in items:
        by_url[item.url] = item
    return list(by_url.values())


class ItemStore:
    """
    SQLite-backed store holding the current item snapshot.

    Live queries run on `executor` and deliver through `dispatcher`. Without
    an executor the store owns a single worker thread for them.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        executor: Optional[Executor] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self._engine = engine
        self._Session = sessionmaker(bind=engine, expire_on_commit=False)
        self._owns_executor = executor is None
        if executor is None:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="catalogsync-query")
        self._executor = executor
        self._dispatcher = dispatcher
        self._listeners: List[Callable[[], None]] = []
        self._listeners_lock = threading.Lock()
        self._live: Optional[QueryLiveData] = None

    @classmethod
    def open(cls, db_path: Path, **kwargs) -> "ItemStore":
        """Create the database at db_path if needed and return a store on it."""
        try:
            engine = init_database(db_path)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Cannot open item store at {db_path}: {e}") from e
        return cls(engine, **kwargs)

    def write(self, items: Sequence[ItemRow]) -> None:
        """
        Replace the stored snapshot with `items` in one transaction.

        Rows with a matching url are overwritten, rows missing from `items`
        are removed. Duplicate urls in `items` are tolerated.

        Raises:
            PersistenceError: If the database cannot be written
        """
        rows = _dedupe(items)
        urls = [row.url for row in rows]

        session = self._Session()
        try:
            stale = session.query(CachedItem)
            if urls:
                stale = stale.filter(CachedItem.url.notin_(urls))
            removed = stale.delete(synchronize_session=False)

            now = utcnow()
            for start in range(0, len(rows), INSERT_CHUNK_SIZE):
                stmt = sqlite_insert(CachedItem).values([
                    {
                        "url": row.url,
                        "position": position,
                        "updated": row.updated,
                        "title": row.title,
                        "description": row.description,
                        "thumbnail": row.thumbnail,
                        "cached_at": now,
                    }
                    for position, row in enumerate(rows[start:start + INSERT_CHUNK_SIZE], start)
                ])
                stmt = stmt.on_conflict_do_update(
                    index_elements=["url"],
                    set_={
                        "position": stmt.excluded.position,
                        "updated": stmt.excluded.updated,
                        "title": stmt.excluded.title,
                        "description": stmt.excluded.description,
                        "thumbnail": stmt.excluded.thumbnail,
                        "cached_at": stmt.excluded.cached_at,
                    },
                )
                session.execute(stmt)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Item store write failed", error=str(e), rows=len(rows))
            raise PersistenceError(f"Item store write failed: {e}") from e
        finally:
            session.close()

        logger.debug("Item store written", rows=len(rows), removed=removed)
        self._notify()

    def read_all(self) -> List[ItemRow]:
        """
        Return the current snapshot.

        Raises:
            PersistenceError: If the database cannot be read
        """
        session = self._Session()
        try:
            cached = session.query(CachedItem).order_by(CachedItem.position, CachedItem.url).all()
            return [
                ItemRow(
                    url=c.url,
                    updated=c.updated,
                    title=c.title,
                    description=c.description,
                    thumbnail=c.thumbnail,
                )
                for c in cached
            ]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Item store read failed: {e}") from e
        finally:
            session.close()

    def count(self) -> int:
        session = self._Session()
        try:
            return session.query(CachedItem).count()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Item store read failed: {e}") from e
        finally:
            session.close()

    def observe_all(self) -> LiveData[List[ItemRow]]:
        """
        Live snapshot of the store.

        Emits the current rows when first observed and once after every
        completed write. The same instance is returned on every call.
        """
        with self._listeners_lock:
            if self._live is None:
                self._live = QueryLiveData(
                    self.read_all,
                    executor=self._executor,
                    dispatcher=self._dispatcher,
                )
                self._listeners.append(self._live.invalidate)
            return self._live

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback invoked after every completed write."""
        with self._listeners_lock:
            self._listeners.append(callback)

    def _notify(self) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback()
            except Exception as e:
                logger.error("Item store listener raised", error=repr(e))

    @property
    def engine(self) -> Engine:
        return self._engine

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        self._engine.dispose()
