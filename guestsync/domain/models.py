from __future__ import annotations

import random
import string
import time
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Mapping, Union

TEMP_ID_PREFIX = "temp_"


class EntityKind(str, Enum):
    GUESTS = "guests"
    GROUPS = "groups"


@dataclass(frozen=True)
class CachedGuest:
    """Local mirror of a server guest.

    `id` is either the server id or a temporary id produced by
    `generate_temp_id`; `pending_sync` stays true until the server confirms
    the latest local change.
    """

    id: str
    name: str
    phone: str = ""
    email: str = ""
    invited: bool = False
    group_id: str | None = None
    deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    pending_sync: bool = False

    def to_record(self) -> dict[str, Any]:
        return asdict(self)

    def with_changes(self, changes: Mapping[str, Any]) -> "CachedGuest":
        merged = {**self.to_record(), **_guest_changes(changes)}
        return normalize_guest(merged)


@dataclass(frozen=True)
class CachedGroup:
    id: str
    name: str
    deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    pending_sync: bool = False

    def to_record(self) -> dict[str, Any]:
        return asdict(self)

    def with_changes(self, changes: Mapping[str, Any]) -> "CachedGroup":
        merged = {**self.to_record(), **{key: value for key, value in changes.items() if key == "name"}}
        return normalize_group(merged)


CachedEntity = Union[CachedGuest, CachedGroup]


def generate_temp_id(now_ms: int | None = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"{TEMP_ID_PREFIX}{timestamp}_{suffix}"


def is_temp_id(entity_id: object) -> bool:
    return isinstance(entity_id, str) and entity_id.startswith(TEMP_ID_PREFIX)


def _clean_text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: object) -> str | None:
    text = _clean_text(value)
    return text or None


def _entity_id(raw: Mapping[str, Any]) -> str:
    value = raw.get("id") or raw.get("_id")
    if not value:
        raise ValueError("Entity without id cannot be cached")
    return str(value)


def _group_reference(raw: Mapping[str, Any]) -> str | None:
    value = raw.get("group_id", raw.get("groupId"))
    if isinstance(value, Mapping):
        value = value.get("_id") or value.get("id")
    return _optional_text(value)


def _pending_flag(raw: Mapping[str, Any]) -> bool:
    for key in ("pending_sync", "pendingSync", "_pendingSync"):
        if key in raw:
            return bool(raw[key])
    return False


def _split_legacy_contact(raw: Mapping[str, Any]) -> tuple[str, str]:
    phone = _clean_text(raw.get("phone"))
    email = _clean_text(raw.get("email"))
    contact = _clean_text(raw.get("contact"))
    if contact and not phone and not email:
        if "@" in contact:
            email = contact
        else:
            phone = contact
    return phone, email


def _guest_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    renamed: dict[str, Any] = {}
    for key, value in changes.items():
        if key == "groupId":
            renamed["group_id"] = value
        elif key in {"_id", "id", "pending_sync", "pendingSync", "_pendingSync"}:
            continue
        else:
            renamed[key] = value
    return renamed


def normalize_guest(raw: Mapping[str, Any]) -> CachedGuest:
    """Maps any historical guest shape (server JSON or older cache rows) onto `CachedGuest`."""
    phone, email = _split_legacy_contact(raw)
    return CachedGuest(
        id=_entity_id(raw),
        name=_clean_text(raw.get("name")),
        phone=phone,
        email=email,
        invited=bool(raw.get("invited", False)),
        group_id=_group_reference(raw),
        deleted=bool(raw.get("deleted", False)),
        created_at=_optional_text(raw.get("created_at", raw.get("createdAt"))),
        updated_at=_optional_text(raw.get("updated_at", raw.get("updatedAt"))),
        pending_sync=_pending_flag(raw),
    )


def normalize_group(raw: Mapping[str, Any]) -> CachedGroup:
    return CachedGroup(
        id=_entity_id(raw),
        name=_clean_text(raw.get("name")),
        deleted=bool(raw.get("deleted", False)),
        created_at=_optional_text(raw.get("created_at", raw.get("createdAt"))),
        updated_at=_optional_text(raw.get("updated_at", raw.get("updatedAt"))),
        pending_sync=_pending_flag(raw),
    )


def normalize_entity(kind: EntityKind, raw: Mapping[str, Any]) -> CachedEntity:
    if kind is EntityKind.GUESTS:
        return normalize_guest(raw)
    return normalize_group(raw)


def mark_pending(entity: CachedEntity, pending: bool = True) -> CachedEntity:
    return replace(entity, pending_sync=pending)


_GUEST_API_FIELDS = ("name", "phone", "email", "invited", "groupId")


def guest_api_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    """Keeps only the fields the guests endpoint accepts, in its camelCase naming."""
    fields: dict[str, Any] = {}
    for key, value in data.items():
        api_key = "groupId" if key == "group_id" else key
        if api_key in _GUEST_API_FIELDS:
            fields[api_key] = value.strip() if isinstance(value, str) else value
    return fields


def group_api_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    if "name" not in data:
        return {}
    return {"name": _clean_text(data["name"])}
