from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from pharmapos.domain.models import Record
from pharmapos.domain.time_utils import parse_timestamp


@dataclass(frozen=True)
class MergeOutcome:
    records: list[Record]
    local_wins: int
    local_only: int


def local_is_newer(local: Record, remote: Record) -> bool:
    """El local solo gana si ambos traen ``updatedAt`` y el suyo es estrictamente posterior."""
    local_updated = parse_timestamp(local.get("updatedAt"))
    remote_updated = parse_timestamp(remote.get("updatedAt"))
    if local_updated is None or remote_updated is None:
        return False
    return local_updated > remote_updated


def merge_records(local: Iterable[Record], remote: Iterable[Record]) -> MergeOutcome:
    merged: dict[str, Record] = {}
    for record in remote:
        merged[str(record["id"])] = record
    local_wins = 0
    local_only = 0
    for record in local:
        record_id = str(record["id"])
        existing = merged.get(record_id)
        if existing is None:
            merged[record_id] = record
            local_only += 1
        elif local_is_newer(record, existing):
            merged[record_id] = record
            local_wins += 1
    return MergeOutcome(records=list(merged.values()), local_wins=local_wins, local_only=local_only)
