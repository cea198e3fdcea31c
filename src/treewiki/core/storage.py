"""Document store abstraction.

A store holds exactly one addressable resource, the wiki document. Every
write replaces it wholesale; there is no versioning and the last write wins.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import yaml

from treewiki.core.errors import ConfigurationError, TransientIOError, ValidationError
from treewiki.core.models import WikiDocument

logger = logging.getLogger(__name__)


def load_seed(seed_file: Path | None) -> WikiDocument:
    """Return the bootstrap document.

    YAML is a superset of JSON, so one loader covers both seed formats.
    Without a seed file the empty document is used.
    """
    if seed_file is None:
        return WikiDocument()
    try:
        data = yaml.safe_load(seed_file.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read seed file {seed_file}: {exc}") from exc
    return WikiDocument.from_payload(data)


class DocumentStore(ABC):
    """Abstract single-document store."""

    def __init__(self, seed_file: Path | None = None):
        self.seed_file = seed_file

    @abstractmethod
    async def fetch_document(self) -> WikiDocument:
        """Return the stored document, bootstrapping it on first access."""
        ...

    @abstractmethod
    async def replace_document(self, document: WikiDocument) -> None:
        """Replace the stored document wholesale."""
        ...


class MemoryDocumentStore(DocumentStore):
    """Process-local store, used for tests and demos."""

    def __init__(self, seed_file: Path | None = None):
        super().__init__(seed_file)
        self._payload: dict[str, Any] | None = None
        self.updated_at: datetime | None = None

    async def fetch_document(self) -> WikiDocument:
        if self._payload is None:
            self._payload = load_seed(self.seed_file).to_payload()
        return WikiDocument.from_payload(self._payload)

    async def replace_document(self, document: WikiDocument) -> None:
        self._payload = document.to_payload()
        self.updated_at = datetime.now(timezone.utc)


class FileDocumentStore(DocumentStore):
    """JSON file store.

    The file carries an ``updatedAt`` stamp next to ``menus`` and ``pages``;
    it is metadata only and is never part of the returned document.
    """

    def __init__(self, path: Path, seed_file: Path | None = None):
        super().__init__(seed_file)
        self.path = path

    def _write(self, document: WikiDocument) -> None:
        payload = document.to_payload()
        payload["updatedAt"] = datetime.now(timezone.utc).isoformat()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        tmp_path.replace(self.path)

    async def fetch_document(self) -> WikiDocument:
        try:
            if not self.path.exists():
                document = load_seed(self.seed_file)
                self._write(document)
                logger.info("Bootstrapped document store at %s", self.path)
                return document
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.exception("Failed to read %s", self.path)
            raise TransientIOError(f"Failed to read data: {exc}") from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TransientIOError(f"Corrupt data file {self.path}: {exc}") from exc
        return WikiDocument.from_payload(data)

    async def replace_document(self, document: WikiDocument) -> None:
        try:
            self._write(document)
        except OSError as exc:
            logger.exception("Failed to write %s", self.path)
            raise TransientIOError(f"Failed to save data: {exc}") from exc
        logger.info("Data saved to %s", self.path)


class HttpDocumentStore(DocumentStore):
    """Store backed by another TreeWiki instance's data endpoints."""

    def __init__(self, base_url: str, timeout: float = 8.0):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def fetch_document(self) -> WikiDocument:
        try:
            async with self._client() as client:
                resp = await client.get("/api/get-data")
        except httpx.HTTPError as exc:
            raise TransientIOError(f"Document store unreachable: {exc}") from exc
        if resp.status_code != 200:
            raise TransientIOError(
                f"Document store returned {resp.status_code}: {resp.text[:200]}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise TransientIOError(f"Document store sent invalid JSON: {exc}") from exc
        return WikiDocument.from_payload(payload)

    async def replace_document(self, document: WikiDocument) -> None:
        try:
            async with self._client() as client:
                resp = await client.post("/api/save-data", json=document.to_payload())
        except httpx.HTTPError as exc:
            raise TransientIOError(f"Document store unreachable: {exc}") from exc
        if resp.status_code == 400:
            try:
                message = resp.json().get("error", "Invalid data structure")
            except (ValueError, AttributeError):
                message = "Invalid data structure"
            raise ValidationError(message)
        if resp.status_code != 200:
            raise TransientIOError(
                f"Document store returned {resp.status_code}: {resp.text[:200]}"
            )


def open_store(
    url: str | None, seed_file: Path | None = None, timeout: float = 8.0
) -> DocumentStore:
    """Build a store from its location string.

    Raises:
        ConfigurationError: if ``url`` is missing or blank.
    """
    if not url or not url.strip():
        raise ConfigurationError("TREEWIKI_STORE_URL is not configured")
    url = url.strip()
    if url.startswith("memory://"):
        return MemoryDocumentStore(seed_file)
    if url.startswith(("http://", "https://")):
        return HttpDocumentStore(url, timeout=timeout)
    if url.startswith("file://"):
        url = url.removeprefix("file://")
    return FileDocumentStore(Path(url), seed_file)
