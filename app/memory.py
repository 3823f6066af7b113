"""
Conversation state storage for the QnA bot

This module handles:
- The storage interface the dialog controller reads and writes through
- Optimistic concurrency with per-record etags
- An in-memory backend and a durable JSON file backend
"""

import asyncio
import contextlib
import hashlib
import logging
import os
import tempfile
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Dict, Optional
from pydantic import ValidationError as PydanticValidationError
from app.config import Settings
from app.errors import ConcurrencyError, StorageError
from app.models import ConversationState, utcnow

logger = logging.getLogger(__name__)

WILDCARD_ETAG = "*"


class _LockSlot:
    __slots__ = ("lock", "waiters")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.waiters = 0


class KeyedLock:
    """Per-key asyncio locks, dropped once no task holds or waits on them."""

    def __init__(self):
        self._slots: Dict[str, _LockSlot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _LockSlot()
        slot.waiters += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.waiters -= 1
            if slot.waiters == 0:
                self._slots.pop(key, None)


class BaseStorage(ABC):
    """
    Per-conversation state store.

    ``put`` compares the incoming state's etag with the stored one: a
    mismatch raises ConcurrencyError and nothing is written. An etag of None
    creates the record or, if it already exists, overwrites it; "*" always
    overwrites.
    """

    def __init__(self):
        self._locks = KeyedLock()

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        """Return the stored state, or None if the conversation is unknown."""

    @abstractmethod
    async def put(self, conversation_id: str, state: ConversationState) -> ConversationState:
        """Store the state and return it with its new etag."""

    @abstractmethod
    async def delete(self, conversation_id: str) -> bool:
        """Remove the state; returns False if nothing was stored."""

    def _check_etag(self, conversation_id: str, incoming: Optional[str], stored: Optional[ConversationState]) -> None:
        if stored is None or incoming is None or incoming == WILDCARD_ETAG:
            return
        if incoming != stored.etag:
            raise ConcurrencyError(conversation_id, incoming, stored.etag)

    @staticmethod
    def _stamp(conversation_id: str, state: ConversationState) -> ConversationState:
        return state.model_copy(
            update={"conversation_id": conversation_id, "etag": uuid.uuid4().hex, "updated_at": utcnow()},
            deep=True,
        )


class MemoryStorage(BaseStorage):
    """In-process storage; state is lost when the process exits."""

    def __init__(self):
        super().__init__()
        self._records: Dict[str, ConversationState] = {}
        logger.info("Memory storage initialized")

    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        stored = self._records.get(conversation_id)
        return stored.model_copy(deep=True) if stored is not None else None

    async def put(self, conversation_id: str, state: ConversationState) -> ConversationState:
        async with self._locks.hold(conversation_id):
            self._check_etag(conversation_id, state.etag, self._records.get(conversation_id))
            stored = self._stamp(conversation_id, state)
            self._records[conversation_id] = stored
            return stored.model_copy(deep=True)

    async def delete(self, conversation_id: str) -> bool:
        async with self._locks.hold(conversation_id):
            return self._records.pop(conversation_id, None) is not None

    def __len__(self) -> int:
        return len(self._records)


class FileStorage(BaseStorage):
    """
    Stores each conversation as a JSON file, replaced atomically on write.

    File IO runs on worker threads. Cancelling a ``put`` after its write has
    started does not stop the write: the caller sees CancelledError while the
    new record still lands whole.
    """

    def __init__(self, directory: str):
        super().__init__()
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory {self.directory}: {e}") from e
        logger.info(f"File storage initialized at {self.directory}")

    def _path_for(self, conversation_id: str) -> Path:
        digest = hashlib.sha256(conversation_id.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _read(self, conversation_id: str) -> Optional[ConversationState]:
        path = self._path_for(conversation_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read state for conversation {conversation_id}: {e}") from e

        try:
            return ConversationState.model_validate_json(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Corrupt state file for conversation {conversation_id}: {e}") from e

    def _write(self, conversation_id: str, state: ConversationState) -> None:
        path = self._path_for(conversation_id)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json())
            os.replace(tmp_path, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise StorageError(f"Failed to write state for conversation {conversation_id}: {e}") from e

    def _unlink(self, conversation_id: str) -> bool:
        try:
            self._path_for(conversation_id).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete state for conversation {conversation_id}: {e}") from e

    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        return await asyncio.to_thread(self._read, conversation_id)

    async def put(self, conversation_id: str, state: ConversationState) -> ConversationState:
        async with self._locks.hold(conversation_id):
            current = await asyncio.to_thread(self._read, conversation_id)
            self._check_etag(conversation_id, state.etag, current)
            stored = self._stamp(conversation_id, state)
            await asyncio.to_thread(self._write, conversation_id, stored)
            return stored

    async def delete(self, conversation_id: str) -> bool:
        async with self._locks.hold(conversation_id):
            return await asyncio.to_thread(self._unlink, conversation_id)


def create_storage(settings: Settings) -> BaseStorage:
    """
    Create the storage backend selected by ``settings.storage_backend``.

    Args:
        settings: Application settings

    Returns:
        BaseStorage: Configured storage backend
    """
    backend = settings.storage_backend.lower()
    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        return FileStorage(settings.storage_directory)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
