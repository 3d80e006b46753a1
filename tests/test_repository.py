"""
Tests for the items repository.
"""

import asyncio
import pytest

from catalogsync.errors import PermanentError, PersistenceError, TransientNetworkError
from catalogsync.models import Item
from catalogsync.repository import ItemsRepository


def item_urls(item_list):
    return [item.url for item in item_list]


class TestRefresh:
    """Test refreshing the cache from the remote source."""

    @pytest.mark.asyncio
    async def test_refresh_writes_snapshot(self, repository, remote, store, items):
        remote.result = [items["A"], items["B"], items["C"]]

        await repository.refresh()

        assert [row.url for row in store.read_all()] == [items[k].url for k in "ABC"]
        assert remote.calls == 1

    @pytest.mark.asyncio
    async def test_second_refresh_replaces_snapshot(self, repository, remote, store, items):
        remote.result = [items["A"], items["B"], items["C"]]
        await repository.refresh()

        remote.result = [items["A"], items["D"]]
        await repository.refresh()

        assert [row.url for row in store.read_all()] == [items["A"].url, items["D"].url]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        TransientNetworkError("connection reset"),
        PermanentError("malformed response"),
    ])
    async def test_failed_fetch_leaves_store_unchanged(self, repository, remote, store, items, error):
        remote.result = [items["A"], items["B"]]
        await repository.refresh()
        before = store.read_all()

        remote.result = error
        with pytest.raises(type(error)):
            await repository.refresh()

        assert store.read_all() == before

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self, store, remote, items):
        class FailingStore:
            def observe_all(self):
                return store.observe_all()

            def write(self, rows):
                raise PersistenceError("disk full")

        remote.result = [items["A"]]
        repository = ItemsRepository(FailingStore(), remote)

        with pytest.raises(PersistenceError):
            await repository.refresh()


class TestRefreshCancellation:
    """Test cancelling a refresh while the fetch is in flight."""

    @pytest.mark.asyncio
    async def test_cancel_during_fetch_leaves_store_unchanged(self, store, remote, blocking_remote, items):
        remote.result = [items["A"], items["B"]]
        await ItemsRepository(store, remote).refresh()
        before = store.read_all()

        repository = ItemsRepository(store, blocking_remote)
        received = []
        repository.current_items.observe(received.append)

        task = asyncio.create_task(repository.refresh())
        await blocking_remote.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert store.read_all() == before
        assert len(received) == 1


class TestCurrentItems:
    """Test the live view of cached items."""

    @pytest.mark.asyncio
    async def test_emits_once_per_refresh(self, repository, remote, items):
        received = []
        repository.current_items.observe(received.append)

        remote.result = [items["A"], items["B"], items["C"]]
        await repository.refresh()

        assert len(received) == 2
        assert received[0] == []
        assert item_urls(received[1]) == [items[k].url for k in "ABC"]

    @pytest.mark.asyncio
    async def test_reflects_latest_refresh(self, repository, remote, items):
        received = []
        repository.current_items.observe(received.append)

        remote.result = [items["A"], items["B"], items["C"]]
        await repository.refresh()
        remote.result = [items["A"], items["D"]]
        await repository.refresh()

        assert item_urls(received[-1]) == [items["A"].url, items["D"].url]
        assert len(received) == 3

    @pytest.mark.asyncio
    async def test_failed_refresh_does_not_emit(self, repository, remote, items):
        received = []
        repository.current_items.observe(received.append)

        remote.result = TransientNetworkError("offline")
        with pytest.raises(TransientNetworkError):
            await repository.refresh()

        assert received == [[]]

    @pytest.mark.asyncio
    async def test_items_are_domain_models(self, repository, remote, items):
        remote.result = [items["A"]]
        await repository.refresh()

        received = []
        repository.current_items.observe(received.append)

        (item,) = received[0]
        assert isinstance(item, Item)
        assert item.title == items["A"].title
        assert item.short_description == items["A"].description

    def test_store_not_queried_until_observed(self, store, remote):
        reads = []
        original = store.read_all

        def counting_read_all():
            reads.append(1)
            return original()

        store.read_all = counting_read_all
        repository = ItemsRepository(store, remote)
        live = repository.current_items
        assert reads == []

        sub = live.observe(lambda value: None)
        assert reads == [1]
        sub.dispose()
