from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar

from guestsync.application.cache_writeback import CacheWriteBack
from guestsync.core.errors import ValidationError
from guestsync.core.metrics import MetricsRegistry, metrics_registry
from guestsync.core.observability import OperationContext
from guestsync.domain.actions import ActionKind
from guestsync.domain.models import (
    CachedEntity,
    CachedGroup,
    CachedGuest,
    EntityKind,
    generate_temp_id,
    group_api_fields,
    guest_api_fields,
    mark_pending,
    normalize_entity,
    normalize_group,
    normalize_guest,
)
from guestsync.domain.ports import ConnectivityState, GuestApiPort, HapticFeedback, PendingActionQueue
from guestsync.domain.sync_errors import NetworkUnavailableError
from guestsync.domain.sync_models import MutationResult

logger = logging.getLogger(__name__)

_T = TypeVar("_T")
_UNREACHED = object()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class GuestSyncService:
    """Offline-aware entry point for every guest and group mutation.

    Online, a call goes straight to the API and the confirmed entity is
    mirrored into the cache. When the network is down (or already known to
    be down) the change is written optimistically with `pending_sync` set
    and appended to the pending queue for the coordinator to replay.
    Rejections from the server are raised to the caller, never queued.
    """

    def __init__(
        self,
        api: GuestApiPort,
        writeback: CacheWriteBack,
        queue: PendingActionQueue,
        *,
        connectivity: ConnectivityState | None = None,
        haptics: HapticFeedback | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._api = api
        self._writeback = writeback
        self._queue = queue
        self._connectivity = connectivity
        self._haptics = haptics
        self._metrics = metrics or metrics_registry

    # Reads

    async def fetch_guests(self) -> list[CachedGuest]:
        guests = await self._fetch(EntityKind.GUESTS, self._api.list_guests)
        return [guest for guest in guests if isinstance(guest, CachedGuest) and not guest.deleted]

    async def fetch_groups(self) -> list[CachedGroup]:
        groups = await self._fetch(EntityKind.GROUPS, self._api.list_groups)
        return [group for group in groups if isinstance(group, CachedGroup) and not group.deleted]

    async def pending_count(self) -> int:
        return await self._queue.count()

    # Guests

    async def add_guest(self, data: Mapping[str, Any]) -> MutationResult:
        fields = guest_api_fields(data)
        if not str(fields.get("name") or "").strip():
            raise ValidationError("Guest name is required.", field="name")
        with OperationContext("add_guest"):
            created = await self._attempt("add_guest", lambda: self._api.create_guest(fields))
            if created is not _UNREACHED:
                entity = await self._writeback.store_confirmed(EntityKind.GUESTS, created)
                return MutationResult(entity=entity, queued=False)
            temp_id = generate_temp_id()
            guest = normalize_guest({**fields, "id": temp_id, "created_at": _now_iso(), "pending_sync": True})
            await self._writeback.store(EntityKind.GUESTS, guest)
            return await self._queue_action(ActionKind.ADD_GUEST, {**fields, "tempId": temp_id}, guest)

    async def update_guest(self, guest_id: str, data: Mapping[str, Any]) -> MutationResult:
        fields = guest_api_fields(data)
        with OperationContext("update_guest"):
            updated = await self._attempt("update_guest", lambda: self._api.update_guest(guest_id, fields))
            if updated is not _UNREACHED:
                entity = await self._writeback.store_confirmed(EntityKind.GUESTS, updated)
                if entity is None:
                    patched = await self._writeback.patch_guests([guest_id], fields, pending=False)
                    entity = patched[0] if patched else None
                return MutationResult(entity=entity, queued=False)
            patched = await self._optimistic_patch(EntityKind.GUESTS, guest_id, fields)
            return await self._queue_action(ActionKind.UPDATE_GUEST, {"id": guest_id, "data": fields}, patched)

    async def delete_guest(self, guest_id: str) -> MutationResult:
        with OperationContext("delete_guest"):
            deleted = await self._attempt("delete_guest", lambda: self._api.delete_guest(guest_id))
            if deleted is not _UNREACHED:
                await self._writeback.discard(EntityKind.GUESTS, guest_id)
                return MutationResult(entity=None, queued=False)
            cached = await self._writeback.read(EntityKind.GUESTS, guest_id)
            tombstone = None
            if isinstance(cached, CachedGuest):
                tombstone = mark_pending(replace(cached, deleted=True))
                await self._writeback.store(EntityKind.GUESTS, tombstone)
            return await self._queue_action(ActionKind.DELETE_GUEST, {"id": guest_id}, tombstone)

    async def bulk_update_guests(self, ids: Sequence[str], data: Mapping[str, Any]) -> MutationResult:
        ids = [guest_id for guest_id in ids if guest_id]
        if not ids:
            raise ValidationError("No guest ids provided.", field="ids")
        fields = guest_api_fields(data)
        with OperationContext("bulk_update_guests"):
            body = await self._attempt("bulk_update_guests", lambda: self._api.bulk_update_guests(ids, fields))
            if body is not _UNREACHED:
                await self._writeback.apply_bulk_response(ids, fields, body)
                return MutationResult(entity=None, queued=False)
            await self._writeback.patch_guests(ids, fields, pending=True)
            return await self._queue_action(ActionKind.BULK_UPDATE_GUESTS, {"ids": list(ids), "data": fields}, None)

    # Groups

    async def create_group(self, data: Mapping[str, Any]) -> MutationResult:
        fields = group_api_fields(data)
        if not fields.get("name"):
            raise ValidationError("Group name is required.", field="name")
        with OperationContext("create_group"):
            created = await self._attempt("create_group", lambda: self._api.create_group(fields))
            if created is not _UNREACHED:
                entity = await self._writeback.store_confirmed(EntityKind.GROUPS, created)
                return MutationResult(entity=entity, queued=False)
            temp_id = generate_temp_id()
            group = normalize_group({**fields, "id": temp_id, "created_at": _now_iso(), "pending_sync": True})
            await self._writeback.store(EntityKind.GROUPS, group)
            return await self._queue_action(ActionKind.CREATE_GROUP, {**fields, "tempId": temp_id}, group)

    async def update_group(self, group_id: str, data: Mapping[str, Any]) -> MutationResult:
        fields = group_api_fields(data)
        with OperationContext("update_group"):
            updated = await self._attempt("update_group", lambda: self._api.update_group(group_id, fields))
            if updated is not _UNREACHED:
                entity = await self._writeback.store_confirmed(EntityKind.GROUPS, updated)
                return MutationResult(entity=entity, queued=False)
            patched = await self._optimistic_patch(EntityKind.GROUPS, group_id, fields)
            return await self._queue_action(ActionKind.UPDATE_GROUP, {"id": group_id, "data": fields}, patched)

    async def delete_group(self, group_id: str) -> MutationResult:
        with OperationContext("delete_group"):
            deleted = await self._attempt("delete_group", lambda: self._api.delete_group(group_id))
            if deleted is not _UNREACHED:
                await self._writeback.discard(EntityKind.GROUPS, group_id)
                return MutationResult(entity=None, queued=False)
            cached = await self._writeback.read(EntityKind.GROUPS, group_id)
            tombstone = None
            if isinstance(cached, CachedGroup):
                tombstone = mark_pending(replace(cached, deleted=True))
                await self._writeback.store(EntityKind.GROUPS, tombstone)
            return await self._queue_action(ActionKind.DELETE_GROUP, {"id": group_id}, tombstone)

    # Internals

    def _reachable(self) -> bool:
        return self._connectivity is None or self._connectivity.is_online

    async def _attempt(self, operation: str, call: Callable[[], Awaitable[_T]]) -> _T | object:
        """Runs the API call; returns `_UNREACHED` when the server cannot be reached."""
        if not self._reachable():
            logger.info("mutation_queued_offline operation=%s", operation)
            return _UNREACHED
        try:
            return await call()
        except NetworkUnavailableError as exc:
            logger.warning("mutation_queued_network_error operation=%s reason=%s", operation, exc)
            if self._connectivity is not None:
                self._connectivity.report_unreachable()
            return _UNREACHED
        except Exception:
            if self._haptics is not None:
                self._haptics.error()
            raise

    async def _fetch(
        self, kind: EntityKind, call: Callable[[], Awaitable[list[dict[str, Any]]]]
    ) -> list[CachedEntity]:
        if self._reachable():
            try:
                raw_items = await call()
            except NetworkUnavailableError as exc:
                logger.warning("fetch_fallback_to_cache kind=%s reason=%s", kind.value, exc)
                if self._connectivity is not None:
                    self._connectivity.report_unreachable()
            else:
                fetched = [entity for entity in (_safe_normalize(kind, item) for item in raw_items) if entity]
                merged = await self._merge_pending(kind, fetched)
                await self._writeback.store_all(kind, merged)
                return merged
        return await self._writeback.read_all(kind)

    async def _merge_pending(self, kind: EntityKind, fetched: list[CachedEntity]) -> list[CachedEntity]:
        """Keeps local changes still waiting in the queue on top of a fresh server list."""
        pending = {entity.id: entity for entity in await self._writeback.read_all(kind) if entity.pending_sync}
        if not pending:
            return fetched
        merged = [pending.pop(entity.id, entity) for entity in fetched]
        merged.extend(pending.values())
        return merged

    async def _optimistic_patch(
        self, kind: EntityKind, entity_id: str, fields: Mapping[str, Any]
    ) -> CachedEntity | None:
        cached = await self._writeback.read(kind, entity_id)
        if cached is None:
            return None
        patched = mark_pending(cached.with_changes(fields))
        await self._writeback.store(kind, patched)
        return patched

    async def _queue_action(
        self, kind: ActionKind, payload: Mapping[str, Any], entity: CachedEntity | None
    ) -> MutationResult:
        action = await self._queue.enqueue(kind, payload)
        self._metrics.increment("actions_queued")
        return MutationResult(entity=entity, queued=True, seq=action.seq)


def _safe_normalize(kind: EntityKind, raw: Mapping[str, Any]) -> CachedEntity | None:
    try:
        return normalize_entity(kind, raw)
    except ValueError:
        logger.warning("server_entity_without_id kind=%s", kind.value)
        return None
