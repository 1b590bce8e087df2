from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class QueueActionOutcome:
    action_id: str
    entity_type: str
    action: str
    record_id: str
    succeeded: bool
    error: str | None = None


@dataclass(frozen=True)
class QueueReplayReport:
    outcomes: tuple[QueueActionOutcome, ...] = ()
    skipped: bool = False

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return self.processed - self.succeeded

    @property
    def failed_action_ids(self) -> tuple[str, ...]:
        return tuple(outcome.action_id for outcome in self.outcomes if not outcome.succeeded)

    def to_dict(self) -> dict[str, Any]:
        return {
            "skipped": self.skipped,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "outcomes": [asdict(outcome) for outcome in self.outcomes],
        }


@dataclass(frozen=True)
class CollectionMergeSummary:
    collection: str
    local_count: int
    remote_count: int
    merged_count: int
    local_wins: int = 0
    local_only: int = 0


@dataclass(frozen=True)
class FullSyncReport:
    status: str
    started_at: str
    finished_at: str
    collections: tuple[CollectionMergeSummary, ...] = ()
    queue: QueueReplayReport = field(default_factory=QueueReplayReport)

    @classmethod
    def skipped(cls, at: str) -> "FullSyncReport":
        return cls(status="SKIPPED", started_at=at, finished_at=at, queue=QueueReplayReport(skipped=True))

    @property
    def was_skipped(self) -> bool:
        return self.status == "SKIPPED"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "collections": [asdict(item) for item in self.collections],
            "queue": self.queue.to_dict(),
        }
