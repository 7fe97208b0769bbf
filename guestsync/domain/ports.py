from __future__ import annotations

from typing import Any, Iterable, Mapping, Protocol, Sequence

from guestsync.domain.actions import ActionKind, PendingAction
from guestsync.domain.models import CachedEntity, EntityKind


class LocalCacheStore(Protocol):
    async def get_all(self, kind: EntityKind) -> list[CachedEntity]:
        ...

    async def get(self, kind: EntityKind, entity_id: str) -> CachedEntity | None:
        ...

    async def replace_all(self, kind: EntityKind, entities: Iterable[CachedEntity]) -> None:
        ...

    async def upsert(self, kind: EntityKind, entity: CachedEntity) -> None:
        ...

    async def remove(self, kind: EntityKind, entity_id: str) -> None:
        ...


class PendingActionQueue(Protocol):
    async def enqueue(self, kind: ActionKind, payload: Mapping[str, Any]) -> PendingAction:
        ...

    async def list_pending(self) -> list[PendingAction]:
        ...

    async def dequeue(self, seq: int) -> None:
        ...

    async def count(self) -> int:
        ...

    async def rewrite_payload(self, seq: int, payload: Mapping[str, Any]) -> None:
        ...


class IdAliasStore(Protocol):
    async def record(self, temp_id: str, server_id: str, kind: EntityKind) -> None:
        ...

    async def all_aliases(self) -> dict[str, str]:
        ...


class GuestApiPort(Protocol):
    async def list_guests(self) -> list[dict[str, Any]]:
        ...

    async def create_guest(self, data: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def update_guest(self, guest_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def delete_guest(self, guest_id: str) -> Any:
        ...

    async def bulk_update_guests(self, ids: Sequence[str], data: Mapping[str, Any]) -> Any:
        ...

    async def list_groups(self) -> list[dict[str, Any]]:
        ...

    async def create_group(self, data: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def update_group(self, group_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def delete_group(self, group_id: str) -> Any:
        ...


class ConnectivityProbe(Protocol):
    async def check(self) -> bool:
        ...


class ConnectivityState(Protocol):
    @property
    def is_online(self) -> bool:
        ...

    def report_unreachable(self) -> None:
        ...


class SyncNotifier(Protocol):
    def notify_sync_completed(self, changes: int) -> None:
        ...


class HapticFeedback(Protocol):
    def success(self) -> None:
        ...

    def error(self) -> None:
        ...


class LocalDbProbe(Protocol):
    def check(self) -> dict[str, tuple[bool, str, str]]:
        ...
