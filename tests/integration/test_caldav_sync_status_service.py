"""
@file: tests/integration/test_caldav_sync_status_service.py
@description: Интеграционные тесты хранилища состояний на SQLite в памяти
@dependencies: pytest, aiosqlite, sqlmodel
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from caldav_sync.models.caldav_sync_status import CaldavItemType, CaldavSyncState, CaldavSyncStatus, RETRYABLE_STATES
from caldav_sync.services.caldav_sync_status_service import NO_TARGET_MESSAGE, backoff_threshold

FLOOR = timedelta(minutes=1)


async def create_pending(store, user_id="user-a", item_id=None, title="Pasta"):
    return await store.upsert_pending(user_id, item_id or uuid4(), CaldavItemType.RECIPE, uuid4(), title)


@pytest.mark.asyncio
async def test_upsert_creates_pending_row(store):
    row = await create_pending(store)

    assert row.sync_status == CaldavSyncState.PENDING
    assert row.retry_count == 0
    assert row.caldav_event_uid is None
    assert await store.get_by_item_id("user-a", row.item_id) is not None


@pytest.mark.asyncio
async def test_upsert_resets_existing_row(store):
    row = await create_pending(store, title="Old")
    await store.mark_synced("user-a", row.item_id, "uid-1")
    planned_item_id = uuid4()

    updated = await store.upsert_pending("user-a", row.item_id, CaldavItemType.RECIPE, planned_item_id, "New")

    assert updated.id == row.id
    assert updated.event_title == "New"
    assert updated.planned_item_id == planned_item_id
    assert updated.sync_status == CaldavSyncState.PENDING
    assert updated.caldav_event_uid is None
    rows, total = await store.list_by_user("user-a")
    assert total == 1


@pytest.mark.asyncio
async def test_mark_synced(store):
    row = await create_pending(store)
    await store.mark_failed("user-a", row.item_id, "boom")

    synced = await store.mark_synced("user-a", row.item_id, "uid-1", expected_statuses=RETRYABLE_STATES)

    assert synced.sync_status == CaldavSyncState.SYNCED
    assert synced.caldav_event_uid == "uid-1"
    assert synced.error_message is None
    assert synced.last_sync_at is not None


@pytest.mark.asyncio
async def test_mark_synced_requires_uid(store):
    row = await create_pending(store)
    with pytest.raises(ValueError):
        await store.mark_synced("user-a", row.item_id, "")


@pytest.mark.asyncio
async def test_mark_failed_increments_retry_count(store):
    row = await create_pending(store)

    first = await store.mark_failed("user-a", row.item_id, "first")
    second = await store.mark_failed("user-a", row.item_id, "x" * 900)

    assert first.retry_count == 1
    assert second.retry_count == 2
    assert second.sync_status == CaldavSyncState.FAILED
    assert len(second.error_message) == 500
    assert second.error_message.endswith("...")


@pytest.mark.asyncio
async def test_compare_and_set_rejects_removed_row(store):
    row = await create_pending(store)
    await store.mark_removed("user-a", row.item_id)

    assert await store.mark_synced("user-a", row.item_id, "uid-1", expected_statuses=RETRYABLE_STATES) is None
    assert await store.mark_failed("user-a", row.item_id, "late", expected_statuses=RETRYABLE_STATES) is None

    current = await store.get_by_item_id("user-a", row.item_id)
    assert current.sync_status == CaldavSyncState.REMOVED
    assert current.retry_count == 0


@pytest.mark.asyncio
async def test_mark_no_target_keeps_pending(store):
    row = await create_pending(store)

    updated = await store.mark_no_target("user-a", row.item_id)

    assert updated.sync_status == CaldavSyncState.PENDING
    assert updated.error_message == NO_TARGET_MESSAGE
    assert updated.retry_count == 0
    assert updated.last_sync_at is not None


@pytest.mark.asyncio
async def test_mark_on_missing_row_returns_none(store):
    assert await store.mark_removed("nobody", uuid4()) is None


@pytest.mark.asyncio
async def test_list_retryable_excludes_exhausted_rows(store):
    fresh = await create_pending(store)
    failing = await create_pending(store)
    exhausted = await create_pending(store)
    synced = await create_pending(store)
    await store.mark_failed("user-a", failing.item_id, "once")
    for _ in range(3):
        await store.mark_failed("user-a", exhausted.item_id, "again")
    await store.mark_synced("user-a", synced.item_id, "uid-1")

    later = datetime.now(timezone.utc) + timedelta(days=1)
    rows = await store.list_retryable(max_retries=3, backoff_floor=FLOOR, now=later)

    assert {row.item_id for row in rows} == {fresh.item_id, failing.item_id}
    assert all(row.retry_count < 3 for row in rows)


@pytest.mark.asyncio
async def test_list_retryable_honours_backoff(store):
    row = await create_pending(store)
    for _ in range(2):
        failed = await store.mark_failed("user-a", row.item_id, "boom")

    # после двух неудач нужно подождать floor * 4
    too_early = failed.last_sync_at + timedelta(minutes=3)
    in_time = failed.last_sync_at + timedelta(minutes=4)

    assert await store.list_retryable(10, FLOOR, now=too_early) == []
    assert [r.item_id for r in await store.list_retryable(10, FLOOR, now=in_time)] == [row.item_id]


def test_backoff_threshold_grows_exponentially():
    assert backoff_threshold(0, FLOOR) == timedelta(minutes=1)
    assert backoff_threshold(3, FLOOR) == timedelta(minutes=8)


@pytest.mark.asyncio
async def test_list_retryable_for_user_ignores_ceiling(store):
    row = await create_pending(store)
    for _ in range(5):
        await store.mark_failed("user-a", row.item_id, "boom")
    await create_pending(store, user_id="user-b")

    rows = await store.list_retryable_for_user("user-a")

    assert [r.item_id for r in rows] == [row.item_id]


@pytest.mark.asyncio
async def test_list_by_user_filters_and_paginates(store):
    items = [await create_pending(store) for _ in range(5)]
    await store.mark_failed("user-a", items[0].item_id, "boom")

    page, total = await store.list_by_user("user-a", page=2, page_size=2)
    failed, failed_total = await store.list_by_user("user-a", statuses=[CaldavSyncState.FAILED])

    assert total == 5
    assert len(page) == 2
    assert failed_total == 1
    assert failed[0].item_id == items[0].item_id


@pytest.mark.asyncio
async def test_summary_by_user(store):
    rows = [await create_pending(store) for _ in range(4)]
    await store.mark_synced("user-a", rows[0].item_id, "uid-1")
    await store.mark_failed("user-a", rows[1].item_id, "boom")
    await store.mark_removed("user-a", rows[2].item_id)

    summary = await store.summary_by_user("user-a")

    assert (summary.pending, summary.synced, summary.failed, summary.removed) == (1, 1, 1, 1)


@pytest.mark.asyncio
async def test_detach_planned_item_and_purge(store):
    row = await create_pending(store)

    assert await store.detach_planned_item(row.planned_item_id) == 1
    detached = await store.get_by_item_id("user-a", row.item_id)
    assert detached.planned_item_id is None

    assert await store.purge("user-a", row.item_id) is True
    assert await store.get_by_item_id("user-a", row.item_id) is None
    assert await store.purge("user-a", row.item_id) is False


def test_new_rows_carry_aware_utc_timestamps():
    row = CaldavSyncStatus(user_id="user-a", item_id=uuid4(), item_type=CaldavItemType.NOTE, event_title="Note")

    assert row.created_at.utcoffset() == timedelta(0)
    assert row.updated_at.utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_list_retryable_accepts_naive_now(store):
    row = await create_pending(store)
    await store.mark_failed("user-a", row.item_id, "boom")

    naive_later = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
    rows = await store.list_retryable(10, FLOOR, now=naive_later)

    assert [r.item_id for r in rows] == [row.item_id]


@pytest.mark.asyncio
async def test_list_retryable_is_bounded_and_oldest_first(store):
    first = await create_pending(store)
    second = await create_pending(store)
    third = await create_pending(store)
    for row in (first, second, third):
        await store.mark_no_target("user-a", row.item_id)

    later = datetime.now(timezone.utc) + timedelta(hours=1)
    rows = await store.list_retryable(10, FLOOR, now=later, limit=2)

    assert [r.item_id for r in rows] == [first.item_id, second.item_id]


@pytest.mark.asyncio
async def test_list_retryable_without_attempts_left(store):
    await create_pending(store)

    assert await store.list_retryable(0, FLOOR) == []
