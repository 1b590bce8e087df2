from __future__ import annotations

from pharmapos.domain.sync_models import FullSyncReport, QueueActionOutcome, QueueReplayReport


def _outcome(action_id: str, succeeded: bool) -> QueueActionOutcome:
    return QueueActionOutcome(
        action_id=action_id,
        entity_type="sale",
        action="create",
        record_id=f"r-{action_id}",
        succeeded=succeeded,
        error=None if succeeded else "boom",
    )


def test_queue_replay_report_cuenta_exitos_y_fallos() -> None:
    report = QueueReplayReport(outcomes=(_outcome("1", True), _outcome("2", False), _outcome("3", True)))

    assert report.processed == 3
    assert report.succeeded == 2
    assert report.failed == 1
    assert report.failed_action_ids == ("2",)
    assert report.to_dict()["outcomes"][1]["error"] == "boom"


def test_full_sync_report_skipped() -> None:
    report = FullSyncReport.skipped("2024-03-01T10:00:00Z")

    assert report.was_skipped
    assert report.queue.skipped
    assert report.to_dict()["collections"] == []
