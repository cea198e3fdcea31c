"""Loaded-document cache sitting between the tree engine and a store.

Concurrent loaders share one in-flight fetch. Every gateway call is bounded
by a timeout. Reads degrade to the empty document when the store fails;
writes never do, so a failed read can't turn into a destructive write.
The cache is dropped after every successful write, and a fetch that was
already running when the write landed never repopulates it.
"""

import asyncio
import logging

from treewiki.core.errors import TransientIOError, ValidationError
from treewiki.core.models import WikiDocument
from treewiki.core.storage import DocumentStore

logger = logging.getLogger(__name__)


class DocumentCache:
    """Owns the cached document for one store."""

    def __init__(self, store: DocumentStore, timeout: float = 8.0) -> None:
        self.store = store
        self.timeout = timeout
        self._document: WikiDocument | None = None
        self._inflight: asyncio.Task[WikiDocument] | None = None
        # Bumped by every invalidation; fetches started under an older
        # generation are not cached.
        self._generation = 0
        self.degraded: bool = False
        self.last_error: str | None = None

    @property
    def is_loaded(self) -> bool:
        return self._document is not None

    def invalidate(self) -> None:
        """Forget the cached document so the next read refetches it."""
        self._document = None
        self._inflight = None
        self._generation += 1

    async def _fetch_once(self, generation: int) -> WikiDocument:
        try:
            document = await asyncio.wait_for(
                self.store.fetch_document(), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise TransientIOError(
                f"Fetching the document timed out after {self.timeout:g}s"
            ) from exc
        except ValidationError as exc:
            raise TransientIOError(f"Stored document is malformed: {exc.message}") from exc
        finally:
            if generation == self._generation:
                self._inflight = None
        if generation != self._generation:
            logger.debug("Discarding document fetched before the last write")
            return document
        self._document = document
        self.degraded = False
        self.last_error = None
        return document

    async def load(self) -> WikiDocument:
        """Return the document, fetching it if needed.

        A caller whose fetch was overtaken by a write fetches again, so the
        result never predates a write that finished before it returns.

        Raises:
            TransientIOError: if the store failed or timed out.
        """
        while True:
            if self._document is not None:
                return self._document
            if self._inflight is None:
                self._inflight = asyncio.ensure_future(
                    self._fetch_once(self._generation)
                )
            generation = self._generation
            document = await asyncio.shield(self._inflight)
            if generation == self._generation:
                return document

    async def read(self) -> WikiDocument:
        """Return the document, or an empty one if the store failed."""
        try:
            return await self.load()
        except TransientIOError as exc:
            logger.warning("Document load failed, serving empty state: %s", exc.message)
            self.degraded = True
            self.last_error = exc.message
            return WikiDocument()

    async def load_for_update(self) -> WikiDocument:
        """Return a private copy of the document for mutation.

        Raises:
            TransientIOError: if the document cannot be loaded. The caller
                must abort instead of writing.
        """
        document = await self.load()
        return document.model_copy(deep=True)

    async def commit(self, document: WikiDocument) -> None:
        """Persist ``document`` as the new whole document."""
        try:
            await asyncio.wait_for(
                self.store.replace_document(document), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise TransientIOError(
                f"Saving the document timed out after {self.timeout:g}s"
            ) from exc
        self.invalidate()
        logger.info(
            "Document saved: %d menus, %d pages",
            len(document.menus),
            len(document.pages),
        )
