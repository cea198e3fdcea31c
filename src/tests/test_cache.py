"""Tests for the document cache: shared loads, timeouts, invalidation."""

import asyncio

import pytest

from treewiki.core.cache import DocumentCache
from treewiki.core.errors import TransientIOError
from treewiki.core.models import WikiDocument
from treewiki.core.storage import MemoryDocumentStore


class CountingStore(MemoryDocumentStore):
    """Memory store that counts fetches and can be slowed or broken."""

    def __init__(self, delay: float = 0.0, fail_times: int = 0, payload=None):
        super().__init__()
        self.delay = delay
        self.fail_times = fail_times
        self.fetches = 0
        self.raw_payload = payload

    async def fetch_document(self):
        self.fetches += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times:
            self.fail_times -= 1
            raise TransientIOError("connection refused")
        if self.raw_payload is not None:
            return WikiDocument.from_payload(self.raw_payload)
        return await super().fetch_document()


class GatedStore(MemoryDocumentStore):
    """Memory store whose first fetch takes its snapshot, then waits."""

    def __init__(self):
        super().__init__()
        self.fetching = asyncio.Event()
        self.gate = asyncio.Event()
        self.fetches = 0

    async def fetch_document(self):
        self.fetches += 1
        document = await super().fetch_document()
        if self.fetches == 1:
            self.fetching.set()
            await self.gate.wait()
        return document


def titled(title):
    return WikiDocument.from_payload(
        {"menus": [{"id": "m", "title": title}], "pages": []}
    )


class TestSharedLoad:
    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_fetch(self):
        store = CountingStore(delay=0.02)
        cache = DocumentCache(store, timeout=1.0)
        results = await asyncio.gather(*(cache.load() for _ in range(5)))
        assert store.fetches == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_cached_document_reused(self):
        store = CountingStore()
        cache = DocumentCache(store)
        await cache.load()
        await cache.load()
        assert store.fetches == 1
        assert cache.is_loaded

    @pytest.mark.asyncio
    async def test_concurrent_loaders_share_the_failure(self):
        store = CountingStore(delay=0.02, fail_times=1)
        cache = DocumentCache(store, timeout=1.0)
        results = await asyncio.gather(
            cache.load(), cache.load(), return_exceptions=True
        )
        assert store.fetches == 1
        assert all(isinstance(r, TransientIOError) for r in results)

    @pytest.mark.asyncio
    async def test_failed_load_is_retried_next_time(self):
        store = CountingStore(fail_times=1)
        cache = DocumentCache(store)
        with pytest.raises(TransientIOError):
            await cache.load()
        document = await cache.load()
        assert document.menus == []
        assert store.fetches == 2


class TestDegradedRead:
    @pytest.mark.asyncio
    async def test_timeout_reads_as_empty(self):
        cache = DocumentCache(CountingStore(delay=1.0), timeout=0.02)
        document = await cache.read()
        assert document == WikiDocument()
        assert cache.degraded is True
        assert "timed out" in cache.last_error
        assert not cache.is_loaded

    @pytest.mark.asyncio
    async def test_recovery_clears_degraded_flag(self):
        cache = DocumentCache(CountingStore(fail_times=1))
        await cache.read()
        assert cache.degraded is True
        await cache.read()
        assert cache.degraded is False
        assert cache.last_error is None

    @pytest.mark.asyncio
    async def test_malformed_document_is_a_load_failure(self):
        store = CountingStore(payload={"menus": "nope"})
        cache = DocumentCache(store)
        with pytest.raises(TransientIOError):
            await cache.load()

    @pytest.mark.asyncio
    async def test_update_path_refuses_failed_load(self):
        cache = DocumentCache(CountingStore(delay=1.0), timeout=0.02)
        await cache.read()
        with pytest.raises(TransientIOError):
            await cache.load_for_update()


class TestWrites:
    @pytest.mark.asyncio
    async def test_update_copy_is_private(self):
        cache = DocumentCache(CountingStore())
        document = await cache.load_for_update()
        document.pages.append(
            WikiDocument.from_payload(
                {"menus": [], "pages": [{"id": "a", "title": "A"}]}
            ).pages[0]
        )
        assert (await cache.load()).pages == []

    @pytest.mark.asyncio
    async def test_commit_invalidates(self):
        store = CountingStore()
        cache = DocumentCache(store)
        document = await cache.load_for_update()
        await cache.commit(document)
        assert not cache.is_loaded
        await cache.load()
        assert store.fetches == 2

    @pytest.mark.asyncio
    async def test_commit_timeout(self):
        class SlowWrites(CountingStore):
            async def replace_document(self, document):
                await asyncio.sleep(1.0)

        cache = DocumentCache(SlowWrites(), timeout=0.02)
        document = await cache.load_for_update()
        with pytest.raises(TransientIOError):
            await cache.commit(document)

    @pytest.mark.asyncio
    async def test_write_during_fetch_is_not_cached_over(self):
        store = GatedStore()
        await store.replace_document(titled("OLD"))
        cache = DocumentCache(store, timeout=1.0)

        reader = asyncio.ensure_future(cache.read())
        await store.fetching.wait()
        await cache.commit(titled("NEW"))
        store.gate.set()

        assert (await reader).menus[0].title == "NEW"
        assert (await cache.load()).menus[0].title == "NEW"
        assert (await cache.load_for_update()).menus[0].title == "NEW"
        assert store.fetches == 2

    @pytest.mark.asyncio
    async def test_invalidate_starts_a_fresh_fetch(self):
        store = GatedStore()
        cache = DocumentCache(store, timeout=1.0)
        stale = asyncio.ensure_future(cache.load())
        await store.fetching.wait()
        cache.invalidate()
        fresh = await cache.load()
        assert fresh.menus == []
        assert store.fetches == 2
        store.gate.set()
        await stale
        assert cache.is_loaded
