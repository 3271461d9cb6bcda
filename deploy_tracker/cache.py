"""
In-memory entity cache with in-flight request deduplication.

Concurrent ``get`` calls for an id that is not cached share one fetch: the
first caller starts it and records it in the in-flight ledger, later callers
await the same task. The ledger entry is removed as soon as that fetch
settles, whether it succeeded, failed or was cancelled.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResourceCache(Generic[T]):
    """
    Map of entity id -> entity, keyed by each entity's ``id`` attribute.

    Args:
        fetch: Coroutine function loading one entity by id. A cache without
            a fetcher only serves what was upserted into it.
        merge: Optional ``merge(existing, incoming)`` applied on upsert
        name: Label used in log messages
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[T]] | None = None,
        merge: Callable[[T, T], T] | None = None,
        name: str = "resource",
    ):
        self._fetch = fetch
        self._merge = merge
        self.name = name
        self._entries: dict[str, T] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._errors: dict[str, Exception] = {}

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, entity_id: str) -> T | None:
        """Return the cached entity without fetching."""
        return self._entries.get(entity_id)

    def values(self) -> list[T]:
        return list(self._entries.values())

    def is_loading(self, entity_id: str) -> bool:
        return entity_id in self._inflight

    def last_error(self, entity_id: str) -> Exception | None:
        return self._errors.get(entity_id)

    def upsert(self, entity: T) -> T:
        """Insert or replace an entity by id and return the stored value."""
        entity_id = entity.id
        existing = self._entries.get(entity_id)
        if existing is not None and self._merge is not None:
            entity = self._merge(existing, entity)
        self._entries[entity_id] = entity
        return entity

    def put(self, entity: T) -> T:
        """Store an entity as-is, bypassing the merge hook."""
        self._entries[entity.id] = entity
        return entity

    def replace_all(self, entities: Iterable[T]) -> list[T]:
        """Replace the whole cache with a fresh listing, keeping its order."""
        previous = self._entries
        self._entries = {}
        for entity in entities:
            existing = previous.get(entity.id)
            if existing is not None and self._merge is not None:
                entity = self._merge(existing, entity)
            self._entries[entity.id] = entity
        return self.values()

    def remove(self, entity_id: str) -> None:
        self._entries.pop(entity_id, None)

    def invalidate(self, entity_id: str) -> None:
        """
        Drop the cached entry and its in-flight ledger entry.

        A fetch already running still resolves its waiters, but its result
        is not written back.
        """
        self._entries.pop(entity_id, None)
        self._errors.pop(entity_id, None)
        self._inflight.pop(entity_id, None)

    def cancel(self, entity_id: str) -> bool:
        """Cancel the in-flight fetch for an id. Its waiters receive None."""
        task = self._inflight.get(entity_id)
        if task is None or task.done():
            return False
        # A task cancelled before it first runs never reaches _load's cleanup
        del self._inflight[entity_id]
        task.cancel()
        return True

    async def get(self, entity_id: str, refresh: bool = False) -> T | None:
        """
        Return the entity, fetching it at most once across concurrent callers.

        Args:
            entity_id: Id of the entity
            refresh: Ignore a cached value (an in-flight fetch is still shared)

        Returns:
            The entity, or None if the shared fetch was cancelled

        Raises:
            LookupError: If nothing is cached and the cache has no fetcher
            Exception: Whatever the fetch raised; every waiter gets the same one
        """
        if not refresh and entity_id in self._entries:
            return self._entries[entity_id]

        task = self._inflight.get(entity_id)
        if task is None:
            if self._fetch is None:
                raise LookupError(f"{self.name} {entity_id} is not cached")
            task = asyncio.create_task(self._load(entity_id))
            self._inflight[entity_id] = task

        try:
            # Shielded so one waiter going away does not cancel the others
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    async def _load(self, entity_id: str) -> T:
        current = asyncio.current_task()
        try:
            entity = await self._fetch(entity_id)
        except asyncio.CancelledError:
            logger.debug(f"Fetch of {self.name} {entity_id} cancelled")
            raise
        except Exception as e:
            if self._inflight.get(entity_id) is current:
                self._errors[entity_id] = e
            logger.warning(f"Failed to fetch {self.name} {entity_id}: {e}")
            raise
        else:
            # Invalidated while in flight: waiters get the value, the cache does not
            if entity is not None and self._inflight.get(entity_id) is current:
                self._errors.pop(entity_id, None)
                entity = self.upsert(entity)
            return entity
        finally:
            if self._inflight.get(entity_id) is current:
                del self._inflight[entity_id]
