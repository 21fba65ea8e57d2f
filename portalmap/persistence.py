"""
BlobStore interface for pluggable map storage.

The portal map only needs a key/value store of text blobs: one saved map per
key. This module provides the abstract BlobStore interface, two concrete
stores and the MapRepository that connects a store to the engine through the
snapshot codec.

Included implementations:
1. InMemoryBlobStore - Dict-based storage, data lost on exit (testing, prototyping)
2. JsonFileBlobStore - One ``<key>.json`` file per key (desktop use, debugging)

Async design rationale:
- Stores may sit on slow media; async keeps the scheduler and UI responsive
- initialize() and close() manage backend lifecycle (directories, handles)
- The engine itself stays synchronous; only the I/O around it is async

Usage pattern:
    store = JsonFileBlobStore("portal_maps")
    await store.initialize()

    repository = MapRepository(store)
    await repository.save(engine)
    report = await repository.load(engine)

    await store.close()
"""

import asyncio
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .codec import dumps_snapshot, load_into
from .config import Config
from .engine import GraphStateEngine
from .logging_utils import log_error, log_success, log_warn
from .schemas import SanitizeReport


class BlobStore(ABC):
    """Abstract base class for text blob storage.

    Method categories:
    1. Lifecycle: initialize(), close()
    2. Blobs: get(), put(), delete()

    Implement this interface for browser storage bridges, Redis, S3, etc.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create directories, open connections)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Return the blob stored under ``key``.

        Returns:
            Stored text, or None if nothing is stored under the key
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous blob."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is not an error."""
        pass


class InMemoryBlobStore(BlobStore):
    """Dict-backed store. Data survives close() so tests can inspect it."""

    def __init__(self):
        self.blobs: Dict[str, str] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def get(self, key: str) -> Optional[str]:
        return self.blobs.get(key)

    async def put(self, key: str, value: str) -> None:
        self.blobs[key] = value

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)


class JsonFileBlobStore(BlobStore):
    """File-based store: ``{base_path}/{key}.json``.

    All file I/O runs in a worker thread (asyncio.to_thread). Transient
    OSErrors (a file briefly locked by a sync client, a flaky network drive)
    are retried a few times before propagating.
    """

    _SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")

    def __init__(self, base_path: Path | str | None = None, *, max_attempts: int = 3, retry_wait: float = 0.1):
        self.base_path = Path(base_path) if base_path is not None else Config.STORE_DIR
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        # Nothing to clean up for file storage
        return None

    async def get(self, key: str) -> Optional[str]:
        path = self._path(key)

        def _read() -> Optional[str]:
            if not path.exists():
                return None
            return path.read_text("utf-8")

        return await self._with_retry(_read)

    async def put(self, key: str, value: str) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so a crash never leaves a half-written map
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(value, "utf-8")
            tmp.replace(path)

        await self._with_retry(_write)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await self._with_retry(lambda: path.unlink(missing_ok=True))

    def _path(self, key: str) -> Path:
        if not self._SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key {key!r}: use letters, digits, '.', '_' or '-'")
        return self.base_path / f"{key}.json"

    async def _with_retry(self, func):
        # FileNotFoundError is a definite answer, not a transient failure
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(OSError) & retry_if_not_exception_type(FileNotFoundError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_wait),
            reraise=True,
        ):
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                if attempt_number > 1:
                    log_warn(f"Storage retry {attempt_number}/{self.max_attempts} under {self.base_path}")
                return await asyncio.to_thread(func)
        raise RuntimeError("Storage retry mechanism exited unexpectedly")


class MapRepository:
    """Saves and restores the engine's graph through a BlobStore."""

    def __init__(self, store: BlobStore, key: Optional[str] = None):
        self.store = store
        self.key = key or Config.MAP_STORAGE_KEY

    async def save(self, engine: GraphStateEngine) -> None:
        snapshot = engine.snapshot
        try:
            await self.store.put(self.key, dumps_snapshot(snapshot))
        except Exception as exc:
            log_error(f"Failed to save map: {exc}")
            raise
        log_success(
            f"Map saved ({len(snapshot.nodes)} zones, {len(snapshot.edges)} links) under '{self.key}'."
        )

    async def load(self, engine: GraphStateEngine) -> Optional[SanitizeReport]:
        """Load the stored map into ``engine``.

        Returns:
            The sanitize report, or None when no map is stored (engine untouched)

        Raises:
            SnapshotDecodeError: Stored data is corrupt (engine untouched)
        """
        payload = await self.store.get(self.key)
        if payload is None:
            log_warn(f"No saved map found under '{self.key}'.")
            return None
        try:
            report = load_into(engine, payload)
        except Exception as exc:
            log_error(f"Failed to parse map data from '{self.key}': {exc}")
            raise
        log_success(f"Map loaded from '{self.key}'.")
        return report

    async def delete(self) -> None:
        await self.store.delete(self.key)
