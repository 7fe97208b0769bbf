from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Mapping

from guestsync.application.cache_writeback import CacheWriteBack
from guestsync.domain.actions import ActionKind, PendingAction
from guestsync.domain.models import EntityKind, is_temp_id, mark_pending
from guestsync.domain.ports import GuestApiPort, IdAliasStore
from guestsync.domain.sync_errors import StorageUnavailableError, UnknownSyncError

logger = logging.getLogger(__name__)

_LOCAL_ONLY_KEYS = frozenset({"tempId", "id", "_id", "pending_sync", "pendingSync", "_pendingSync"})


def _target_id(action: PendingAction) -> str:
    value = action.payload.get("id")
    if not isinstance(value, str) or not value:
        raise UnknownSyncError(f"Pending action {action.seq} ({action.kind.value}) has no target id")
    return value


def _data(action: PendingAction) -> dict[str, Any]:
    data = action.payload.get("data")
    return dict(data) if isinstance(data, Mapping) else {}


def _create_body(action: PendingAction) -> dict[str, Any]:
    return {key: value for key, value in action.payload.items() if key not in _LOCAL_ONLY_KEYS}


class ActionDispatcher:
    """Replays one pending action against the API and mirrors the result locally.

    API errors propagate unchanged so the caller can classify them; cache and
    alias writes after a confirmed call are best effort.
    """

    def __init__(self, api: GuestApiPort, writeback: CacheWriteBack, aliases: IdAliasStore) -> None:
        self._api = api
        self._writeback = writeback
        self._aliases = aliases
        self._handlers: dict[ActionKind, Callable[[PendingAction], Awaitable[None]]] = {
            ActionKind.ADD_GUEST: self._add_guest,
            ActionKind.UPDATE_GUEST: self._update_guest,
            ActionKind.DELETE_GUEST: self._delete_guest,
            ActionKind.BULK_UPDATE_GUESTS: self._bulk_update_guests,
            ActionKind.CREATE_GROUP: self._create_group,
            ActionKind.UPDATE_GROUP: self._update_group,
            ActionKind.DELETE_GROUP: self._delete_group,
        }

    async def replay(self, action: PendingAction) -> None:
        await self._handlers[action.kind](action)

    async def resolve_temporary_ids(self, action: PendingAction) -> PendingAction:
        """Returns the action with confirmed temporary ids swapped for server ids."""
        if not any(is_temp_id(entity_id) for entity_id in action.referenced_ids()):
            return action
        aliases = await self._aliases.all_aliases()
        if not aliases:
            return action
        payload = _rewrite_ids(action.payload, aliases)
        if payload == action.payload:
            return action
        return replace(action, payload=payload)

    async def _add_guest(self, action: PendingAction) -> None:
        created = await self._api.create_guest(_create_body(action))
        await self._confirm_create(action, created)

    async def _update_guest(self, action: PendingAction) -> None:
        guest_id = _target_id(action)
        data = _data(action)
        updated = await self._api.update_guest(guest_id, data)
        if await self._writeback.store_confirmed(EntityKind.GUESTS, updated) is None:
            await self._writeback.patch_guests([guest_id], data, pending=False)

    async def _delete_guest(self, action: PendingAction) -> None:
        guest_id = _target_id(action)
        await self._api.delete_guest(guest_id)
        await self._writeback.discard(EntityKind.GUESTS, guest_id)

    async def _bulk_update_guests(self, action: PendingAction) -> None:
        ids = [item for item in action.payload.get("ids") or [] if isinstance(item, str)]
        data = _data(action)
        body = await self._api.bulk_update_guests(ids, data)
        await self._writeback.apply_bulk_response(ids, data, body)

    async def _create_group(self, action: PendingAction) -> None:
        created = await self._api.create_group(_create_body(action))
        await self._confirm_create(action, created)

    async def _update_group(self, action: PendingAction) -> None:
        group_id = _target_id(action)
        data = _data(action)
        updated = await self._api.update_group(group_id, data)
        if await self._writeback.store_confirmed(EntityKind.GROUPS, updated) is None:
            cached = await self._writeback.read(EntityKind.GROUPS, group_id)
            if cached is not None:
                await self._writeback.store(EntityKind.GROUPS, mark_pending(cached.with_changes(data), False))

    async def _delete_group(self, action: PendingAction) -> None:
        group_id = _target_id(action)
        await self._api.delete_group(group_id)
        await self._writeback.discard(EntityKind.GROUPS, group_id)

    async def _confirm_create(self, action: PendingAction, created: Mapping[str, Any]) -> None:
        kind = action.kind.entity_kind
        temp_id = action.payload.get("tempId")
        temp_id = temp_id if isinstance(temp_id, str) and temp_id else None
        entity = await self._writeback.replace_temporary(kind, temp_id, created)
        if entity is None or temp_id is None:
            return
        try:
            await self._aliases.record(temp_id, entity.id, kind)
        except StorageUnavailableError as exc:
            logger.warning("alias_not_recorded temp_id=%s server_id=%s reason=%s", temp_id, entity.id, exc)
            return
        logger.info("temporary_id_confirmed kind=%s temp_id=%s server_id=%s", kind.value, temp_id, entity.id)


def _rewrite_ids(payload: Mapping[str, Any], aliases: Mapping[str, str]) -> dict[str, Any]:
    def resolve(value: Any) -> Any:
        return aliases.get(value, value) if isinstance(value, str) else value

    rewritten = dict(payload)
    for key in ("id", "groupId"):
        if key in rewritten:
            rewritten[key] = resolve(rewritten[key])
    if isinstance(rewritten.get("ids"), list):
        rewritten["ids"] = [resolve(item) for item in rewritten["ids"]]
    data = rewritten.get("data")
    if isinstance(data, Mapping) and "groupId" in data:
        rewritten["data"] = {**data, "groupId": resolve(data["groupId"])}
    return rewritten
