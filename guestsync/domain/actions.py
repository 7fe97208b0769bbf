from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from guestsync.domain.models import EntityKind


class ActionKind(str, Enum):
    ADD_GUEST = "add-guest"
    UPDATE_GUEST = "update-guest"
    DELETE_GUEST = "delete-guest"
    BULK_UPDATE_GUESTS = "bulk-update-guests"
    CREATE_GROUP = "create-group"
    UPDATE_GROUP = "update-group"
    DELETE_GROUP = "delete-group"

    @classmethod
    def parse(cls, value: str) -> "ActionKind":
        """Accepts both the stored value and the legacy upper-case names (`ADD_GUEST`)."""
        normalized = str(value).strip()
        try:
            return cls(normalized)
        except ValueError:
            legacy = normalized.upper().replace("-", "_")
            if legacy in cls.__members__:
                return cls.__members__[legacy]
            raise

    @property
    def entity_kind(self) -> EntityKind:
        if self in _GROUP_ACTIONS:
            return EntityKind.GROUPS
        return EntityKind.GUESTS


_GROUP_ACTIONS = frozenset({ActionKind.CREATE_GROUP, ActionKind.UPDATE_GROUP, ActionKind.DELETE_GROUP})


@dataclass(frozen=True)
class PendingAction:
    seq: int
    kind: ActionKind
    payload: dict[str, Any]
    created_at: str

    def referenced_ids(self) -> list[str]:
        """Entity ids the payload points at: the target, bulk targets and group references."""
        candidates: list[Any] = [self.payload.get("id"), self.payload.get("groupId")]
        bulk_ids = self.payload.get("ids")
        if isinstance(bulk_ids, list):
            candidates.extend(bulk_ids)
        data = self.payload.get("data")
        if isinstance(data, Mapping):
            candidates.append(data.get("groupId"))
        return [candidate for candidate in candidates if isinstance(candidate, str) and candidate]
