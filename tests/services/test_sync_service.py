"""End-to-end tests for sync cycles against an in-process remote."""

from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy.orm import Session

from tasksync.db.time import as_utc, utcnow
from tasksync.models import OutboxEntry, Task
from tasksync.models.outbox import (
    OUTBOX_STATE_DEAD,
    OUTBOX_STATE_QUARANTINED,
    OUTBOX_STATE_QUEUED,
)
from tasksync.models.task import (
    SYNC_STATUS_ERROR,
    SYNC_STATUS_FAILED,
    SYNC_STATUS_IN_PROGRESS,
    SYNC_STATUS_PENDING,
    SYNC_STATUS_SYNCED,
)
from tasksync.services.outbox import OutboxQueue
from tasksync.services.reconciler import CONFLICT_ADVISORY
from tasksync.services.sync_service import HELD_BACK, MISSING_RESPONSE_ITEM, partition
from tasksync.services.task_service import TaskService


def _entries(db: Session, record_id: str) -> list[OutboxEntry]:
    return OutboxQueue(db).entries_for(record_id)


def _messages(result) -> list[str]:
    return [issue.message for issue in result.errors]


@pytest.mark.asyncio
async def test_empty_outbox_is_a_successful_no_op(dispatcher, remote_stub) -> None:
    result = await dispatcher.sync()

    assert result.success is True
    assert result.synced_items == 0
    assert result.failed_items == 0
    assert result.errors == []
    assert remote_stub.batches == []


@pytest.mark.asyncio
async def test_batch_preserves_fifo_order_and_wire_format(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    first = task_service.create_task("A")
    second = task_service.create_task("B")
    first_id, second_id = first.id, second.id
    first_entry_id = _entries(db_session, first_id)[0].id
    second_entry_id = _entries(db_session, second_id)[0].id

    await dispatcher.sync()

    assert remote_stub.submitted_record_ids() == [[first_id, second_id]]
    body = remote_stub.batches[0]
    assert body["checksum"].startswith(f"2-{first_entry_id}-{second_entry_id}-")
    assert "client_timestamp" in body
    item = body["items"][0]
    assert item["operation"] == "create"
    assert item["retry_count"] == 0
    assert item["data"]["title"] == "A"


@pytest.mark.asyncio
async def test_success_marks_record_synced_and_drains_outbox(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task = task_service.create_task("Write report")
    task_id = task.id
    remote_stub.then(
        remote_stub.fixed(
            {"processed_items": [{"client_id": task_id, "server_id": "srv-1", "status": "success"}]}
        )
    )

    result = await dispatcher.sync()

    assert result.success is True
    assert result.synced_items == 1
    stored = db_session.get(Task, task_id)
    assert stored.sync_status == SYNC_STATUS_SYNCED
    assert stored.server_id == "srv-1"
    assert stored.last_synced_at is not None
    assert _entries(db_session, task_id) == []


@pytest.mark.asyncio
async def test_conflict_applies_server_resolution_and_logs_advisory(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task = task_service.create_task("Local title")
    task_id = task.id
    remote_stub.then(
        remote_stub.fixed(
            {
                "processed_items": [
                    {
                        "client_id": task_id,
                        "server_id": "srv-7",
                        "status": "conflict",
                        "resolved_data": {
                            "title": "Server Wins",
                            "completed": 1,
                            "updated_at": "2030-01-01T00:00:00Z",
                        },
                    }
                ]
            }
        )
    )

    result = await dispatcher.sync()

    assert result.success is True
    assert result.synced_items == 1
    assert _messages(result) == [CONFLICT_ADVISORY]
    stored = db_session.get(Task, task_id)
    assert stored.title == "Server Wins"
    assert stored.completed is True
    assert stored.sync_status == SYNC_STATUS_SYNCED
    assert as_utc(stored.updated_at).year == 2030
    assert _entries(db_session, task_id) == []


@pytest.mark.asyncio
async def test_retries_are_bounded_then_entry_goes_dead(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task = task_service.create_task("Flaky")
    task_id = task.id
    remote_stub.default = remote_stub.transport_error

    for attempt in range(1, 4):
        result = await dispatcher.sync()
        assert result.success is False
        assert result.failed_items == 0
        entry = _entries(db_session, task_id)[0]
        assert entry.retry_count == attempt
        assert entry.state == OUTBOX_STATE_QUEUED
        assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_ERROR
        assert _messages(result)[0].startswith(f"Temp failure (attempt {attempt}):")

    result = await dispatcher.sync()

    assert result.success is False
    assert result.failed_items == 1
    assert _messages(result)[0].startswith("Permanent failure:")
    entry = _entries(db_session, task_id)[0]
    assert entry.retry_count == 4
    assert entry.state == OUTBOX_STATE_DEAD
    assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_FAILED

    # Dead entries are no longer dispatched.
    result = await dispatcher.sync()
    assert len(remote_stub.batches) == 4
    assert result.success is True
    assert result.synced_items == 0


@pytest.mark.asyncio
async def test_failed_batch_does_not_stop_later_batches(
    db_session: Session, task_service: TaskService, make_dispatcher, remote_stub
) -> None:
    ids = [task_service.create_task(title).id for title in ("one", "two", "three")]
    remote_stub.then(remote_stub.success, remote_stub.transport_error, remote_stub.success)

    result = await make_dispatcher(batch_size=1).sync()

    assert remote_stub.submitted_record_ids() == [[ids[0]], [ids[1]], [ids[2]]]
    assert result.synced_items == 2
    assert result.success is False
    assert db_session.get(Task, ids[0]).sync_status == SYNC_STATUS_SYNCED
    assert db_session.get(Task, ids[1]).sync_status == SYNC_STATUS_ERROR
    assert db_session.get(Task, ids[2]).sync_status == SYNC_STATUS_SYNCED
    assert _entries(db_session, ids[1])[0].retry_count == 1


@pytest.mark.asyncio
async def test_missing_response_item_counts_as_retry(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    answered = task_service.create_task("answered").id
    skipped = task_service.create_task("skipped").id
    remote_stub.then(
        remote_stub.fixed(
            {
                "processed_items": [
                    {"client_id": answered, "server_id": "srv-a", "status": "success"},
                    {"client_id": "someone-else", "server_id": "srv-x", "status": "success"},
                ]
            }
        )
    )

    result = await dispatcher.sync()

    assert result.synced_items == 1
    assert result.failed_items == 0
    assert result.success is True
    assert _messages(result) == [f"Temp failure (attempt 1): {MISSING_RESPONSE_ITEM}"]
    entry = _entries(db_session, skipped)[0]
    assert entry.retry_count == 1
    assert entry.error_message == MISSING_RESPONSE_ITEM
    assert db_session.get(Task, skipped).sync_status == SYNC_STATUS_ERROR
    assert db_session.get(Task, answered).sync_status == SYNC_STATUS_SYNCED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("payload", "status_code", "expected"),
    [
        ({"foo": 1}, 200, "Server response missing 'processed_items'"),
        ({"error": "boom"}, 500, "Batch processing failed: remote responded with 500"),
    ],
)
async def test_unusable_response_fails_whole_batch(
    db_session: Session,
    task_service: TaskService,
    dispatcher,
    remote_stub,
    payload,
    status_code,
    expected,
) -> None:
    ids = [task_service.create_task(title).id for title in ("x", "y")]
    remote_stub.then(remote_stub.fixed(payload, status_code))

    result = await dispatcher.sync()

    assert result.success is False
    assert result.synced_items == 0
    assert _messages(result) == [f"Temp failure (attempt 1): {expected}"] * 2
    for task_id in ids:
        assert _entries(db_session, task_id)[0].retry_count == 1
        assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_ERROR


@pytest.mark.asyncio
async def test_non_json_response_fails_whole_batch(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task_id = task_service.create_task("x").id
    remote_stub.then(lambda request, body: httpx.Response(200, text="<html>oops</html>"))

    result = await dispatcher.sync()

    assert result.success is False
    assert "body is not JSON" in _messages(result)[0]
    assert _entries(db_session, task_id)[0].retry_count == 1


@pytest.mark.asyncio
async def test_item_level_error_only_affects_that_item(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    good = task_service.create_task("good").id
    bad = task_service.create_task("bad").id
    remote_stub.then(
        remote_stub.fixed(
            {
                "processed_items": [
                    {"client_id": good, "server_id": "srv-g", "status": "success"},
                    {"client_id": bad, "status": "error", "error": "Validation failed"},
                ]
            }
        )
    )

    result = await dispatcher.sync()

    assert result.success is True
    assert result.synced_items == 1
    assert _messages(result) == ["Temp failure (attempt 1): Validation failed"]
    assert db_session.get(Task, bad).sync_status == SYNC_STATUS_ERROR
    assert _entries(db_session, bad)[0].error_message == "Validation failed"


@pytest.mark.asyncio
async def test_unknown_status_is_treated_as_item_error(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task_id = task_service.create_task("odd").id
    remote_stub.then(
        remote_stub.fixed({"processed_items": [{"client_id": task_id, "status": "maybe"}]})
    )

    result = await dispatcher.sync()

    assert result.synced_items == 0
    assert _messages(result) == ["Temp failure (attempt 1): Unknown server error"]
    assert _entries(db_session, task_id)[0].retry_count == 1


@pytest.mark.asyncio
async def test_corrupt_payload_is_quarantined_without_blocking_others(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    broken = task_service.create_task("broken").id
    healthy = task_service.create_task("healthy").id
    entry = _entries(db_session, broken)[0]
    entry.payload = "{not json"
    db_session.commit()

    result = await dispatcher.sync()

    assert remote_stub.submitted_record_ids() == [[healthy]]
    assert result.synced_items == 1
    assert result.failed_items == 1
    assert result.success is False
    assert _messages(result)[0].startswith("Corrupt payload:")
    entry = _entries(db_session, broken)[0]
    assert entry.state == OUTBOX_STATE_QUARANTINED
    assert db_session.get(Task, broken).sync_status == SYNC_STATUS_FAILED


@pytest.mark.asyncio
async def test_record_left_in_progress_is_resent(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task = task_service.create_task("interrupted")
    task_id = task.id
    task.sync_status = SYNC_STATUS_IN_PROGRESS
    db_session.commit()

    result = await dispatcher.sync()

    assert remote_stub.submitted_record_ids() == [[task_id]]
    assert result.synced_items == 1
    assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_SYNCED


@pytest.mark.asyncio
async def test_requeued_dead_entry_is_sent_again(
    db_session: Session, task_service: TaskService, make_dispatcher, remote_stub
) -> None:
    task_id = task_service.create_task("second chance").id
    dispatcher = make_dispatcher(max_retries=0)
    remote_stub.then(remote_stub.transport_error)

    result = await dispatcher.sync()
    assert result.failed_items == 1
    entry = _entries(db_session, task_id)[0]
    assert entry.state == OUTBOX_STATE_DEAD

    requeued = OutboxQueue(db_session).requeue(entry.id)
    assert requeued is not None
    assert requeued.retry_count == 0
    assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_PENDING

    result = await dispatcher.sync()

    assert result.success is True
    assert result.synced_items == 1
    assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_SYNCED


@pytest.mark.asyncio
async def test_resolution_only_writes_allow_listed_fields(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task_id = task_service.create_task("original").id
    remote_stub.then(
        remote_stub.fixed(
            {
                "processed_items": [
                    {
                        "client_id": task_id,
                        "server_id": "srv-5",
                        "status": "success",
                        "resolved_data": {
                            "id": "hijacked",
                            "title": "renamed",
                            "sync_status": "pending",
                            "created_at": "1999-01-01T00:00:00Z",
                            "completed": "definitely",
                        },
                    }
                ]
            }
        )
    )

    await dispatcher.sync()

    stored = db_session.get(Task, task_id)
    assert stored is not None
    assert stored.title == "renamed"
    assert stored.sync_status == SYNC_STATUS_SYNCED
    assert stored.completed is False
    assert as_utc(stored.created_at).year != 1999


@pytest.mark.asyncio
async def test_success_without_resolved_timestamp_advances_updated_at(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task = task_service.create_task("stamp")
    task_id = task.id
    before = as_utc(task.updated_at)

    await dispatcher.sync()

    stored = db_session.get(Task, task_id)
    assert as_utc(stored.updated_at) >= before
    assert as_utc(stored.last_synced_at) <= utcnow()


@pytest.mark.asyncio
async def test_server_id_falls_back_to_resolved_payload(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task_id = task_service.create_task("fallback").id
    remote_stub.then(
        remote_stub.fixed(
            {
                "processed_items": [
                    {"client_id": task_id, "status": "success", "resolved_data": {"id": "srv-99"}}
                ]
            }
        )
    )

    await dispatcher.sync()

    assert db_session.get(Task, task_id).server_id == "srv-99"


@pytest.mark.asyncio
async def test_entries_for_the_same_record_are_matched_in_order(
    db_session: Session, task_service: TaskService, dispatcher, remote_stub
) -> None:
    task_id = task_service.create_task("draft").id
    task_service.update_task(task_id, {"title": "final"})

    result = await dispatcher.sync()

    batch = remote_stub.batches[0]
    assert [item["operation"] for item in batch["items"]] == ["create", "update"]
    assert result.synced_items == 2
    assert _entries(db_session, task_id) == []


@pytest.mark.asyncio
async def test_connectivity_probe_reflects_remote_health(dispatcher, remote_stub) -> None:
    assert await dispatcher.check_connectivity() is True

    remote_stub.healthy = False

    assert await dispatcher.check_connectivity() is False


def test_partition_keeps_order() -> None:
    assert partition([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert partition([], 3) == []


def test_stored_payload_is_a_json_object(db_session: Session, task_service: TaskService) -> None:
    task_id = task_service.create_task("snapshot", "details").id

    entry = _entries(db_session, task_id)[0]
    data = json.loads(entry.payload)

    assert data["id"] == task_id
    assert data["description"] == "details"
    assert data["sync_status"] == SYNC_STATUS_PENDING


@pytest.mark.asyncio
async def test_failed_record_stays_failed_while_its_create_is_dead(
    db_session: Session, task_service: TaskService, make_dispatcher, remote_stub
) -> None:
    task_id = task_service.create_task("never arrived").id
    dispatcher = make_dispatcher(max_retries=0, batch_size=1)
    remote_stub.then(remote_stub.transport_error)

    await dispatcher.sync()
    create_entry_id = _entries(db_session, task_id)[0].id
    assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_FAILED

    task_service.update_task(task_id, {"title": "edited offline"})
    result = await dispatcher.sync()

    assert len(remote_stub.batches) == 1
    assert _messages(result) == [HELD_BACK]
    assert result.synced_items == 0
    assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_FAILED
    update_entry = _entries(db_session, task_id)[1]
    assert update_entry.state == OUTBOX_STATE_QUEUED
    assert update_entry.retry_count == 0

    OutboxQueue(db_session).requeue(create_entry_id)
    result = await dispatcher.sync()

    assert remote_stub.submitted_record_ids()[1:] == [[task_id], [task_id]]
    assert [batch["items"][0]["operation"] for batch in remote_stub.batches[1:]] == [
        "create",
        "update",
    ]
    assert result.synced_items == 2
    assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_SYNCED
    assert _entries(db_session, task_id) == []


@pytest.mark.asyncio
async def test_later_entry_in_same_batch_is_held_when_earlier_one_dies(
    db_session: Session, task_service: TaskService, make_dispatcher, remote_stub
) -> None:
    task_id = task_service.create_task("draft").id
    task_service.update_task(task_id, {"completed": True})
    remote_stub.then(
        remote_stub.fixed(
            {
                "processed_items": [
                    {"client_id": task_id, "status": "error", "error": "Rejected"},
                    {"client_id": task_id, "server_id": "srv-1", "status": "success"},
                ]
            }
        )
    )

    result = await make_dispatcher(max_retries=0).sync()

    assert result.synced_items == 0
    assert result.failed_items == 1
    assert _messages(result) == ["Permanent failure: Rejected", HELD_BACK]
    stored = db_session.get(Task, task_id)
    assert stored.sync_status == SYNC_STATUS_FAILED
    assert stored.server_id is None
    assert [entry.state for entry in _entries(db_session, task_id)] == [
        OUTBOX_STATE_DEAD,
        OUTBOX_STATE_QUEUED,
    ]


@pytest.mark.asyncio
async def test_requeue_keeps_record_failed_while_another_entry_is_parked(
    db_session: Session, task_service: TaskService, make_dispatcher, remote_stub
) -> None:
    task_id = task_service.create_task("twice broken").id
    task_service.update_task(task_id, {"title": "again"})
    remote_stub.then(remote_stub.transport_error)

    await make_dispatcher(max_retries=0).sync()
    first, second = _entries(db_session, task_id)
    assert (first.state, second.state) == (OUTBOX_STATE_DEAD, OUTBOX_STATE_DEAD)

    OutboxQueue(db_session).requeue(second.id)

    assert db_session.get(Task, task_id).sync_status == SYNC_STATUS_FAILED
