from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from guestsync.domain.actions import ActionKind
from guestsync.domain.models import CachedEntity
from guestsync.domain.sync_errors import SyncErrorCategory


class SyncState(str, Enum):
    IDLE = "IDLE"
    DRAINING = "DRAINING"


@dataclass(frozen=True)
class ReplayFailure:
    seq: int
    kind: ActionKind
    category: SyncErrorCategory
    message: str
    status_code: int | None = None


@dataclass(frozen=True)
class DrainReport:
    started_at: str
    finished_at: str
    attempted: int = 0
    succeeded: int = 0
    failures: tuple[ReplayFailure, ...] = ()
    replayed_seqs: tuple[int, ...] = ()
    skipped: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def remaining(self) -> int:
        return self.attempted - self.succeeded

    @classmethod
    def skipped_report(cls) -> "DrainReport":
        now = datetime.now().isoformat()
        return cls(started_at=now, finished_at=now, skipped=True)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MutationResult:
    entity: CachedEntity | None
    queued: bool
    seq: int | None = None


@dataclass(frozen=True)
class HealthCheckItem:
    key: str
    status: str
    message: str
    action_id: str
    category: str


@dataclass(frozen=True)
class HealthReport:
    generated_at: str
    checks: tuple[HealthCheckItem, ...] = field(default_factory=tuple)

    @property
    def healthy(self) -> bool:
        return all(check.status != "ERROR" for check in self.checks)
