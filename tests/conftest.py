"""
Pytest configuration and shared fixtures.
"""

import asyncio
import pytest
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from catalogsync.logger import get_logger

# Created before any catalogsync module asks for it, so test runs do not
# write log files into the working tree.
get_logger(level="DEBUG", enable_file=False, enable_console=False)

from catalogsync.database import init_database
from catalogsync.live import InlineExecutor
from catalogsync.models import RemoteItem
from catalogsync.repository import ItemsRepository
from catalogsync.store import ItemStore


def make_remote_item(key: str, **overrides) -> RemoteItem:
    fields = {
        "title": f"Video {key}",
        "description": f"All about {key}.",
        "url": f"https://www.youtube.com/watch?v={key}",
        "updated": "2018-06-07T17:09:43+00:00",
        "thumbnail": f"https://i4.ytimg.com/vi/{key}/hqdefault.jpg",
    }
    fields.update(overrides)
    return RemoteItem(**fields)


class FakeRemoteSource:
    """
    In-memory remote source.

    `result` is either a list of RemoteItem to return or an exception to raise.
    """

    def __init__(self, result: Union[List[RemoteItem], BaseException, None] = None):
        self.result = result if result is not None else []
        self.calls = 0

    async def fetch_latest(self) -> List[RemoteItem]:
        self.calls += 1
        if isinstance(self.result, BaseException):
            raise self.result
        return list(self.result)

    def close(self) -> None:
        pass



class BlockingRemoteSource:
    """Remote whose fetch waits until the awaiting task is cancelled."""

    def __init__(self):
        self._started: Optional[asyncio.Event] = None

    @property
    def started(self) -> asyncio.Event:
        # Created lazily so it binds to the running test loop
        if self._started is None:
            self._started = asyncio.Event()
        return self._started

    async def fetch_latest(self) -> List[RemoteItem]:
        self.started.set()
        await asyncio.Event().wait()
        return []

    def close(self) -> None:
        pass


@pytest.fixture
def items() -> Dict[str, RemoteItem]:
    """Remote items keyed A..D."""
    return {key: make_remote_item(key) for key in "ABCD"}


@pytest.fixture
def sample_payload() -> Dict[str, Any]:
    """Catalog response body with three entries."""
    return {
        "videos": [
            {
                "title": "Android Jetpack: LiveData",
                "description": "LiveData is an observable data holder class.",
                "url": "https://www.youtube.com/watch?v=OMcDk2_4LSk",
                "updated": "2018-06-07T17:09:43+00:00",
                "thumbnail": "https://i4.ytimg.com/vi/OMcDk2_4LSk/hqdefault.jpg",
                "closedCaptions": None,
            },
            {
                "title": "Android Jetpack: Room",
                "description": "Room provides an abstraction layer over SQLite.",
                "url": "https://www.youtube.com/watch?v=SKWh4ckvFPM",
                "updated": "2018-06-07T17:09:43+00:00",
                "thumbnail": "https://i4.ytimg.com/vi/SKWh4ckvFPM/hqdefault.jpg",
            },
            {
                "title": "Android Jetpack: WorkManager",
                "description": "WorkManager schedules deferrable background work.",
                "url": "https://www.youtube.com/watch?v=IrKoBFLwTN0",
                "updated": "2018-05-09T15:00:00+00:00",
                "thumbnail": "https://i4.ytimg.com/vi/IrKoBFLwTN0/hqdefault.jpg",
                "closedCaptions": "https://example.com/captions/IrKoBFLwTN0.vtt",
            },
        ]
    }


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "catalog.db"


@pytest.fixture
def engine(db_path):
    engine = init_database(db_path)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> ItemStore:
    """Store whose live queries run inline, for deterministic emissions."""
    return ItemStore(engine, executor=InlineExecutor())


@pytest.fixture
def remote() -> FakeRemoteSource:
    return FakeRemoteSource()


@pytest.fixture
def blocking_remote() -> BlockingRemoteSource:
    return BlockingRemoteSource()


@pytest.fixture
def repository(store, remote) -> ItemsRepository:
    return ItemsRepository(store, remote)
