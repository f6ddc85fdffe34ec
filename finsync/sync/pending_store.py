"""
Pending Operation Store

Durable FIFO queue of transaction-create operations recorded while the
backend was unreachable (or while a sync pass was in flight).

GUARANTEES:
- list() returns operations in enqueue order; this is the replay order
- every mutation is a read-modify-write under one lock, so an enqueue
  racing a drain never loses either side's change
- a corrupt queue raises instead of being silently reset

The queue has no capacity bound. Operations that exhaust their retries
are moved to a dead-letter list instead of disappearing.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from finsync.config import get_settings
from finsync.models.sync import DroppedOperation, PendingTransaction
from finsync.services.storage import (
    CorruptRecordError,
    DuplicateError,
    KeyValueStorage,
    NotFoundError,
)


logger = structlog.get_logger(__name__)

PENDING_KEY = "pending_transactions"
DROPPED_KEY = "dropped_transactions"

_pending_list = TypeAdapter(list[PendingTransaction])
_dropped_list = TypeAdapter(list[DroppedOperation])


class PendingOperationStore:
    """Queue of PendingTransaction records persisted under fixed keys."""

    def __init__(
        self,
        storage: KeyValueStorage,
        max_retries: Optional[int] = None,
    ):
        self._storage = storage
        self._max_retries = (
            max_retries if max_retries is not None else get_settings().sync.max_retries
        )
        self._lock = asyncio.Lock()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    async def _load(self) -> list[PendingTransaction]:
        raw = await self._storage.get_item(PENDING_KEY)
        if not raw:
            return []
        try:
            return _pending_list.validate_json(raw)
        except ValidationError as e:
            logger.error("pending_queue_corrupt", error=str(e))
            raise CorruptRecordError(PENDING_KEY, str(e))

    async def _save(self, operations: list[PendingTransaction]) -> None:
        await self._storage.set_item(
            PENDING_KEY,
            json.dumps([op.model_dump(mode="json") for op in operations]),
        )

    async def _load_dropped(self) -> list[DroppedOperation]:
        raw = await self._storage.get_item(DROPPED_KEY)
        if not raw:
            return []
        try:
            return _dropped_list.validate_json(raw)
        except ValidationError as e:
            logger.error("dead_letter_list_corrupt", error=str(e))
            raise CorruptRecordError(DROPPED_KEY, str(e))

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    async def enqueue(self, operation: PendingTransaction) -> PendingTransaction:
        """
        Append an operation to the end of the queue.

        Raises:
            DuplicateError: If an operation with the same local id is queued
        """
        async with self._lock:
            operations = await self._load()
            if any(op.local_id == operation.local_id for op in operations):
                raise DuplicateError(f"Operation already queued: {operation.local_id}")
            operations.append(operation)
            await self._save(operations)
        logger.debug("operation_enqueued", local_id=operation.local_id, queued=len(operations))
        return operation

    async def list(self) -> list[PendingTransaction]:
        """All queued operations, oldest first."""
        return await self._load()

    async def get(self, local_id: str) -> Optional[PendingTransaction]:
        for op in await self._load():
            if op.local_id == local_id:
                return op
        return None

    async def remove(self, local_id: str) -> bool:
        """Remove an operation. Returns False if it was not queued."""
        async with self._lock:
            operations = await self._load()
            remaining = [op for op in operations if op.local_id != local_id]
            if len(remaining) == len(operations):
                return False
            await self._save(remaining)
        return True

    async def update_retry_count(
        self,
        local_id: str,
        new_count: int,
        last_error: Optional[str] = None,
    ) -> PendingTransaction:
        """
        Set the retry count of a queued operation, keeping its position.

        Raises:
            NotFoundError: If the operation is not queued
        """
        async with self._lock:
            operations = await self._load()
            for index, op in enumerate(operations):
                if op.local_id == local_id:
                    updated = op.model_copy(update={
                        "retry_count": new_count,
                        "last_error": last_error,
                    })
                    operations[index] = updated
                    await self._save(operations)
                    return updated
        raise NotFoundError(f"Pending operation not found: {local_id}")

    async def count(self) -> int:
        return len(await self._load())

    def should_retry(self, operation: PendingTransaction) -> bool:
        """True while the operation has failed fewer than max_retries times."""
        return operation.retry_count < self._max_retries

    async def clear(self) -> None:
        """Remove every queued operation unconditionally."""
        async with self._lock:
            await self._storage.remove_item(PENDING_KEY)
        logger.warning("pending_queue_cleared")

    # ------------------------------------------------------------------
    # Dead-letter list
    # ------------------------------------------------------------------

    async def drop(self, local_id: str, reason: str) -> Optional[DroppedOperation]:
        """
        Move an operation from the queue to the dead-letter list.

        The dead-letter entry is written before the queue entry is removed,
        so a failure in between leaves a duplicate, never a loss.
        """
        async with self._lock:
            operations = await self._load()
            target = next((op for op in operations if op.local_id == local_id), None)
            if target is None:
                return None
            dropped = DroppedOperation(operation=target, reason=reason)
            dead_letters = await self._load_dropped()
            dead_letters.append(dropped)
            await self._storage.set_item(
                DROPPED_KEY,
                json.dumps([entry.model_dump(mode="json") for entry in dead_letters]),
            )
            await self._save([op for op in operations if op.local_id != local_id])
        return dropped

    async def list_dropped(self) -> list[DroppedOperation]:
        return await self._load_dropped()

    async def dropped_count(self) -> int:
        return len(await self._load_dropped())

    async def clear_dropped(self) -> None:
        async with self._lock:
            await self._storage.remove_item(DROPPED_KEY)
