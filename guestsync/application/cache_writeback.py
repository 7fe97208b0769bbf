from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from guestsync.domain.models import (
    CachedEntity,
    CachedGuest,
    EntityKind,
    mark_pending,
    normalize_entity,
    normalize_guest,
)
from guestsync.domain.ports import LocalCacheStore
from guestsync.domain.sync_errors import StorageUnavailableError

logger = logging.getLogger(__name__)


class CacheWriteBack:
    """Cache writes that must never fail the caller.

    The cache only speeds up reads; a storage failure here is logged and the
    surrounding mutation or replay carries on.
    """

    def __init__(self, cache: LocalCacheStore) -> None:
        self._cache = cache

    async def read_all(self, kind: EntityKind) -> list[CachedEntity]:
        try:
            return await self._cache.get_all(kind)
        except StorageUnavailableError as exc:
            logger.warning("cache_read_skipped kind=%s reason=%s", kind.value, exc)
            return []

    async def read(self, kind: EntityKind, entity_id: str) -> CachedEntity | None:
        try:
            return await self._cache.get(kind, entity_id)
        except StorageUnavailableError as exc:
            logger.warning("cache_read_skipped kind=%s id=%s reason=%s", kind.value, entity_id, exc)
            return None

    async def store(self, kind: EntityKind, entity: CachedEntity) -> None:
        try:
            await self._cache.upsert(kind, entity)
        except StorageUnavailableError as exc:
            logger.warning("cache_write_skipped kind=%s id=%s reason=%s", kind.value, entity.id, exc)

    async def store_all(self, kind: EntityKind, entities: Iterable[CachedEntity]) -> None:
        entities = list(entities)
        try:
            await self._cache.replace_all(kind, entities)
        except StorageUnavailableError as exc:
            logger.warning("cache_replace_skipped kind=%s count=%s reason=%s", kind.value, len(entities), exc)

    async def discard(self, kind: EntityKind, entity_id: str) -> None:
        try:
            await self._cache.remove(kind, entity_id)
        except StorageUnavailableError as exc:
            logger.warning("cache_remove_skipped kind=%s id=%s reason=%s", kind.value, entity_id, exc)

    async def store_confirmed(self, kind: EntityKind, raw: Mapping[str, Any]) -> CachedEntity | None:
        """Upserts the server representation; bodies without an id are ignored."""
        try:
            entity = normalize_entity(kind, {**raw, "pending_sync": False})
        except ValueError:
            logger.warning("server_entity_without_id kind=%s", kind.value)
            return None
        await self.store(kind, entity)
        return entity

    async def replace_temporary(
        self, kind: EntityKind, temp_id: str | None, raw: Mapping[str, Any]
    ) -> CachedEntity | None:
        if temp_id:
            await self.discard(kind, temp_id)
        return await self.store_confirmed(kind, raw)

    async def patch_guests(
        self,
        ids: Iterable[str],
        changes: Mapping[str, Any],
        *,
        pending: bool,
    ) -> list[CachedGuest]:
        patched: list[CachedGuest] = []
        for guest_id in ids:
            cached = await self.read(EntityKind.GUESTS, guest_id)
            if not isinstance(cached, CachedGuest):
                continue
            updated = mark_pending(cached.with_changes(changes), pending)
            await self.store(EntityKind.GUESTS, updated)
            patched.append(updated)
        return patched

    async def apply_bulk_response(
        self, ids: Iterable[str], changes: Mapping[str, Any], body: Any
    ) -> list[CachedGuest]:
        """Uses `updatedGuests` from the server when present, else patches the cached copies."""
        returned = body.get("updatedGuests") if isinstance(body, Mapping) else None
        if not isinstance(returned, list):
            return await self.patch_guests(ids, changes, pending=False)
        stored: list[CachedGuest] = []
        for item in returned:
            if not isinstance(item, Mapping):
                continue
            try:
                guest = normalize_guest({**item, "pending_sync": False})
            except ValueError:
                continue
            await self.store(EntityKind.GUESTS, guest)
            stored.append(guest)
        return stored
