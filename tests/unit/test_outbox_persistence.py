"""
Unit tests for outbox persistence and rehydration.

Covers the persisted JSON shape, validation of what is read back, and
restart recovery through ``rehydrate_outbox``.
"""

import json

import pytest

from hemisphere.errors import StorageError
from hemisphere.runtime.models import OutboxEntry, OutboxStatus
from hemisphere.runtime.outbox import (
    OUTBOX_STORAGE_KEY,
    Outbox,
    RetryPolicy,
    load_persisted_queue,
    parse_persisted_queue,
    serialize_queue,
)


def entry_with(make_response, status=OutboxStatus.PENDING, **fields):
    entry = OutboxEntry.for_response(make_response(), 1_000)
    entry.status = status
    for name, value in fields.items():
        setattr(entry, name, value)
    return entry


class BrokenStorage:
    def get_item(self, key):
        raise StorageError(key, "disk unplugged")

    def set_item(self, key, value):
        raise StorageError(key, "disk unplugged")

    def remove_item(self, key):
        raise StorageError(key, "disk unplugged")


class TestSerialize:
    def test_camel_case_shape(self, make_response):
        entry = entry_with(make_response)
        data = json.loads(serialize_queue([entry]))[0]

        assert set(data) == {
            "clientId",
            "response",
            "status",
            "enqueuedAt",
            "attempts",
            "retryAfter",
            "serverId",
            "lastError",
        }
        assert data["response"]["itemId"] == entry.response.item_id
        assert data["response"]["latencyMs"] == 1_500
        assert data["response"]["modality"] == "multiple_choice"

    def test_terminal_entries_are_not_written(self, make_response):
        entries = [
            entry_with(make_response, OutboxStatus.CONFIRMED, server_id="s"),
            entry_with(make_response, OutboxStatus.FAILED, attempts=3),
            entry_with(make_response, OutboxStatus.RETRYING, attempts=1, retry_after=5_000),
        ]

        data = json.loads(serialize_queue(entries))

        assert [d["status"] for d in data] == ["retrying"]
        assert data[0]["retryAfter"] == 5_000

    def test_round_trip_downgrades_sending(self, make_response):
        sending = entry_with(make_response, OutboxStatus.SENDING, retry_after=9_999, attempts=1)

        (restored,) = parse_persisted_queue(serialize_queue([sending]))

        assert restored.status is OutboxStatus.PENDING
        assert restored.retry_after is None
        assert restored.attempts == 1
        assert restored.response == sending.response


class TestParse:
    @pytest.mark.parametrize("raw", [None, "", "not json", '{"clientId": "x"}', "42"])
    def test_garbage_reads_as_empty(self, raw):
        assert parse_persisted_queue(raw) == []

    def test_bad_entries_are_skipped(self, make_response):
        good = entry_with(make_response)
        payload = json.loads(serialize_queue([good]))
        payload.append({"clientId": "broken", "status": "pending"})
        payload.append({**payload[0], "status": "exploded"})

        entries = parse_persisted_queue(json.dumps(payload))

        assert [e.client_id for e in entries] == [good.client_id]

    def test_sending_status_on_read_is_downgraded(self, make_response):
        payload = json.loads(serialize_queue([entry_with(make_response)]))
        payload[0]["status"] = "sending"
        payload[0]["retryAfter"] = 123

        (entry,) = parse_persisted_queue(json.dumps(payload))

        assert entry.status is OutboxStatus.PENDING
        assert entry.retry_after is None

    def test_terminal_and_duplicate_entries_are_skipped(self, make_response):
        live = entry_with(make_response)
        payload = json.loads(serialize_queue([live]))
        payload.append(dict(payload[0]))
        confirmed = dict(json.loads(serialize_queue([entry_with(make_response)]))[0], status="confirmed")
        payload.append(confirmed)

        entries = parse_persisted_queue(json.dumps(payload))

        assert [e.client_id for e in entries] == [live.client_id]

    def test_mismatched_client_id_is_skipped(self, make_response):
        payload = json.loads(serialize_queue([entry_with(make_response)]))
        payload[0]["clientId"] = "someone-else"

        assert parse_persisted_queue(json.dumps(payload)) == []

    def test_storage_read_failure(self):
        assert load_persisted_queue(BrokenStorage()) == []


class TestRehydrate:
    def _outbox(self, storage, scheduler, connectivity):
        return Outbox(storage=storage, scheduler=scheduler, connectivity=connectivity, rand=lambda: 0.5)

    @pytest.mark.asyncio
    async def test_restart_delivers_persisted_entries(
        self, storage, scheduler, connectivity, transport_factory, make_response
    ):
        before = self._outbox(storage, scheduler, connectivity)
        first, second = make_response(), make_response()
        before.enqueue_response(first)
        before.enqueue_response(second)
        await scheduler.wait_idle()
        before.close()

        after = self._outbox(storage, scheduler, connectivity)
        transport = transport_factory()
        after.configure_outbox(transport)

        assert after.rehydrate_outbox() == 2
        await scheduler.wait_idle()

        assert transport.calls == [first.id, second.id]
        assert after.get_pending_count() == 0
        assert json.loads(storage.get_item(OUTBOX_STORAGE_KEY)) == []

    @pytest.mark.asyncio
    async def test_merge_keeps_memory_entries_and_puts_persisted_first(
        self, storage, scheduler, connectivity, make_response
    ):
        old, shared, fresh = (entry_with(make_response) for _ in range(3))
        storage.set_item(OUTBOX_STORAGE_KEY, serialize_queue([old, shared]))

        outbox = self._outbox(storage, scheduler, connectivity)
        shared_in_memory = shared.model_copy()
        shared_in_memory.attempts = 2
        shared_in_memory.status = OutboxStatus.RETRYING
        shared_in_memory.retry_after = 10**15
        outbox.outbox_queue = [shared_in_memory, fresh]

        assert outbox.rehydrate_outbox() == 1

        assert [e.client_id for e in outbox.outbox_queue] == [old.client_id, shared.client_id, fresh.client_id]
        assert outbox.outbox_queue[1] is shared_in_memory
        await scheduler.wait_idle()

    def test_nothing_persisted(self, storage, scheduler, connectivity):
        outbox = self._outbox(storage, scheduler, connectivity)

        assert outbox.rehydrate_outbox() == 0
        assert outbox.outbox_queue == []

    def test_without_transport_entries_wait(self, storage, scheduler, connectivity, make_response):
        storage.set_item(OUTBOX_STORAGE_KEY, serialize_queue([entry_with(make_response)]))
        outbox = self._outbox(storage, scheduler, connectivity)

        assert outbox.rehydrate_outbox() == 1
        assert outbox.get_pending_count() == 1
        assert scheduler.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_future_retry_gets_a_timer(
        self, storage, scheduler, connectivity, transport_factory, make_response
    ):
        waiting = entry_with(
            make_response,
            OutboxStatus.RETRYING,
            attempts=1,
            retry_after=scheduler.now_ms() + 1_500,
        )
        storage.set_item(OUTBOX_STORAGE_KEY, serialize_queue([waiting]))
        outbox = self._outbox(storage, scheduler, connectivity)
        transport = transport_factory()
        outbox.configure_outbox(transport)

        outbox.rehydrate_outbox()
        await scheduler.wait_idle()
        assert transport.calls == []
        assert scheduler.timer_delays == [1_500]

        scheduler.advance(1_500)
        await scheduler.wait_idle()

        assert transport.calls == [waiting.client_id]
        assert outbox.get_server_id(waiting.client_id) == f"srv-{waiting.client_id}"

    @pytest.mark.asyncio
    async def test_broken_storage_keeps_outbox_working(
        self, scheduler, connectivity, transport_factory, make_response
    ):
        outbox = self._outbox(BrokenStorage(), scheduler, connectivity)
        transport = transport_factory()
        outbox.configure_outbox(transport)

        assert outbox.rehydrate_outbox() == 0
        response = make_response()
        outbox.enqueue_response(response)
        await scheduler.wait_idle()
        outbox.clear_outbox()

        assert transport.calls == [response.id]

    @pytest.mark.asyncio
    async def test_entries_over_the_attempt_limit_are_dead_lettered(
        self, storage, scheduler, connectivity, transport_factory, make_response
    ):
        spent = entry_with(make_response, OutboxStatus.RETRYING, attempts=3, retry_after=0, last_error="503")
        fresh = entry_with(make_response, OutboxStatus.RETRYING, attempts=1, retry_after=0)
        storage.set_item(OUTBOX_STORAGE_KEY, serialize_queue([spent, fresh]))
        outbox = Outbox(
            storage=storage,
            scheduler=scheduler,
            connectivity=connectivity,
            policy=RetryPolicy(max_attempts=2),
            rand=lambda: 0.5,
        )
        transport = transport_factory()
        outbox.configure_outbox(transport)

        assert outbox.rehydrate_outbox() == 1
        await scheduler.wait_idle()

        dead = outbox.get_dead_letter(spent.client_id)
        assert dead.status is OutboxStatus.FAILED
        assert dead.attempts == 3
        assert dead.last_error == "503"
        assert dead.dead_at == scheduler.now_ms()
        assert transport.calls == [fresh.client_id]
        assert json.loads(storage.get_item(OUTBOX_STORAGE_KEY)) == []
        outbox.close()
