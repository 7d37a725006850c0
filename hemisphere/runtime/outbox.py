"""
Outbox: durable, retrying delivery of learner responses.

Behaviour:
1. ``enqueue_response`` writes the response to the live queue and persists it
   before any network activity. Callers never await delivery.
2. ``flush`` drains the queue in FIFO order through the injected transport.
   A single ``is_flushing`` flag keeps at most one transport call in flight.
3. A failed send is retried with exponential backoff plus jitter. After
   ``max_attempts`` failures the entry moves to the dead-letter queue and
   stays there until revived or dismissed.
4. Confirmed server IDs are kept in ``confirmed_ids`` so callers can map a
   local response ID to the backend's ID.
5. The live queue (minus confirmed/failed entries) is mirrored to storage
   after every change. An entry caught mid-send is stored as pending.
6. While the connectivity monitor reports offline, flushes stop without
   consuming attempts; coming back online triggers a flush.
"""

from __future__ import annotations

import json
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import ValidationError

from hemisphere.errors import StorageError

from .connectivity import ConnectivityMonitor
from .models import DeadLetterEntry, OutboxEntry, OutboxStatus, UserResponse
from .scheduler import AsyncioScheduler, Scheduler
from .storage import KeyValueStorage

# =============================================================================
# Constants
# =============================================================================

MAX_ATTEMPTS = 3
BASE_BACKOFF_MS = 1_000
BACKOFF_FACTOR = 2.0
JITTER_RATIO = 0.2
OUTBOX_STORAGE_KEY = "hemisphere:outbox:v1"

ResponseTransport = Callable[[UserResponse], Awaitable[str]]

_PERSISTABLE = (OutboxStatus.PENDING, OutboxStatus.SENDING, OutboxStatus.RETRYING)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry limits and backoff shape."""

    max_attempts: int = MAX_ATTEMPTS
    base_backoff_ms: int = BASE_BACKOFF_MS
    backoff_factor: float = BACKOFF_FACTOR
    jitter_ratio: float = JITTER_RATIO

    def backoff_delay_ms(self, attempt: int, rand: Callable[[], float] = random.random) -> int:
        """
        Delay before retry number ``attempt`` (1-based).

        base * factor^(attempt-1), shifted by up to +/- jitter_ratio of itself.
        """
        base = self.base_backoff_ms * self.backoff_factor ** (attempt - 1)
        jitter = base * self.jitter_ratio * (2 * rand() - 1)
        return round(base + jitter)

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.outbox_max_attempts,
            base_backoff_ms=settings.outbox_base_backoff_ms,
            backoff_factor=settings.outbox_backoff_factor,
            jitter_ratio=settings.outbox_jitter_ratio,
        )


# =============================================================================
# Persistence Helpers
# =============================================================================


def serialize_queue(entries: list[OutboxEntry]) -> str:
    """JSON for the persisted queue: live entries only, sending -> pending."""
    payload = []
    for entry in entries:
        if entry.status not in _PERSISTABLE:
            continue
        data = entry.model_dump(mode="json", by_alias=True)
        if entry.status is OutboxStatus.SENDING:
            data["status"] = OutboxStatus.PENDING.value
            data["retryAfter"] = None
        payload.append(data)
    return json.dumps(payload)


def parse_persisted_queue(raw: str | None) -> list[OutboxEntry]:
    """
    Rebuild entries from persisted JSON.

    Anything malformed is treated as absent: a non-list payload yields no
    entries, a bad entry is skipped, duplicates keep the first occurrence.
    """
    if not raw:
        return []
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Discarding unreadable outbox payload: {}", exc)
        return []
    if not isinstance(payload, list):
        logger.warning("Discarding outbox payload of type {}", type(payload).__name__)
        return []

    entries: list[OutboxEntry] = []
    seen: set[str] = set()
    for index, item in enumerate(payload):
        try:
            entry = OutboxEntry.model_validate(item)
        except ValidationError as exc:
            logger.warning("Skipping malformed outbox entry #{}: {} errors", index, exc.error_count())
            continue
        if entry.status is OutboxStatus.SENDING:
            entry.status = OutboxStatus.PENDING
            entry.retry_after = None
        if entry.status not in _PERSISTABLE:
            logger.warning("Skipping persisted outbox entry {} with status {}", entry.client_id, entry.status.value)
            continue
        if entry.client_id != entry.response.id or entry.client_id in seen:
            logger.warning("Skipping inconsistent outbox entry {}", entry.client_id)
            continue
        seen.add(entry.client_id)
        entries.append(entry)
    return entries


def load_persisted_queue(storage: KeyValueStorage, key: str = OUTBOX_STORAGE_KEY) -> list[OutboxEntry]:
    """Read and validate the persisted queue; storage failures read as empty."""
    try:
        raw = storage.get_item(key)
    except StorageError as exc:
        logger.warning("Could not read persisted outbox: {}", exc)
        return []
    return parse_persisted_queue(raw)


# =============================================================================
# Outbox
# =============================================================================


class Outbox:
    """
    Durable delivery queue for UserResponses.

    Usage:
        outbox = Outbox(storage=FileStorage(path))
        outbox.configure_outbox(transport)
        outbox.rehydrate_outbox()
        outbox.enqueue_response(response)
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        scheduler: Scheduler | None = None,
        connectivity: ConnectivityMonitor | None = None,
        policy: RetryPolicy | None = None,
        storage_key: str = OUTBOX_STORAGE_KEY,
        rand: Callable[[], float] = random.random,
    ):
        self.storage = storage
        self.scheduler = scheduler or AsyncioScheduler()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.policy = policy or RetryPolicy()
        self.storage_key = storage_key
        self._rand = rand

        self.outbox_queue: list[OutboxEntry] = []
        self.dead_letter_queue: list[DeadLetterEntry] = []
        self.confirmed_ids: dict[str, str] = {}
        self.is_flushing = False
        self._transport: ResponseTransport | None = None
        self._wakeup_at: int | None = None

        self._unsubscribe_online = self.connectivity.on_online(self.request_flush)

    # =========================================================================
    # Configuration
    # =========================================================================

    @property
    def is_configured(self) -> bool:
        return self._transport is not None

    def configure_outbox(self, transport: ResponseTransport) -> None:
        """Inject the async submit function. Queued entries start draining."""
        self._transport = transport
        if self.outbox_queue:
            self.request_flush()

    def resume(self) -> None:
        """
        Restart delivery once an event loop is running.

        Work requested before the loop existed (rehydrating at synchronous
        startup) was dropped by the scheduler; this flushes whatever is due
        and re-arms the retry timer for the rest.
        """
        self._wakeup_at = None
        if self._transport is not None:
            self.request_flush()

    def close(self) -> None:
        """Detach from the connectivity monitor."""
        self._unsubscribe_online()

    # =========================================================================
    # Enqueue / Flush
    # =========================================================================

    def enqueue_response(self, response: UserResponse) -> None:
        """Queue ``response`` for delivery (fire-and-forget)."""
        if response.id in self.confirmed_ids or self._find(response.id) is not None:
            logger.warning("Response {} already in outbox - ignoring", response.id)
            return

        entry = OutboxEntry.for_response(response, self.scheduler.now_ms())
        self.outbox_queue.append(entry)
        self._persist()
        logger.debug("Enqueued response {} for item {}", response.id, response.item_id)
        self.request_flush()

    def request_flush(self) -> None:
        """Schedule a flush in the background."""
        self.scheduler.spawn(self.flush())

    def _next_eligible(self) -> OutboxEntry | None:
        now = self.scheduler.now_ms()
        return next((e for e in self.outbox_queue if e.is_eligible(now)), None)

    async def flush(self) -> None:
        """
        Deliver eligible entries one at a time until none are left.

        A no-op while another flush is running, before a transport is
        configured, or while offline.
        """
        transport = self._transport
        if self.is_flushing or transport is None:
            return

        self.is_flushing = True
        try:
            while True:
                entry = self._next_eligible()
                if entry is None:
                    self._schedule_wakeup()
                    break
                if not self.connectivity.is_online:
                    logger.debug("Offline - leaving {} queued", entry.client_id)
                    break
                await self._deliver(entry, transport)
        finally:
            self.is_flushing = False

    def _schedule_wakeup(self) -> None:
        """Arm one timer for the earliest retry still in the future."""
        now = self.scheduler.now_ms()
        due = [
            e.retry_after
            for e in self.outbox_queue
            if e.status is OutboxStatus.RETRYING and e.retry_after is not None and e.retry_after > now
        ]
        if not due:
            return
        wake_at = min(due)
        if self._wakeup_at is not None and now < self._wakeup_at <= wake_at:
            return
        if self.scheduler.call_later(wake_at - now, self._on_wakeup) is None:
            return
        self._wakeup_at = wake_at

    def _on_wakeup(self) -> None:
        self._wakeup_at = None
        self.request_flush()

    async def _deliver(self, entry: OutboxEntry, transport: ResponseTransport) -> None:

        if entry.status is OutboxStatus.RETRYING:
            entry.transition_to(OutboxStatus.PENDING)
        entry.transition_to(OutboxStatus.SENDING)
        self._persist()

        try:
            server_id = await transport(entry.response)
        except Exception as exc:
            self._record_failure(entry, exc)
        else:
            self._record_success(entry, str(server_id))

    def _record_success(self, entry: OutboxEntry, server_id: str) -> None:
        self.confirmed_ids[entry.client_id] = server_id
        if not self._is_live(entry):
            # Cleared while the send was in flight.
            return
        entry.server_id = server_id
        entry.transition_to(OutboxStatus.CONFIRMED)
        logger.info("Response {} confirmed as {}", entry.client_id, server_id)
        self.prune_confirmed()

    def _record_failure(self, entry: OutboxEntry, exc: Exception) -> None:
        if not self._is_live(entry):
            return

        entry.attempts += 1
        entry.last_error = str(exc) or type(exc).__name__
        now = self.scheduler.now_ms()

        if entry.attempts >= self.policy.max_attempts:
            entry.transition_to(OutboxStatus.FAILED)
            self._bury(entry, now)
            self.outbox_queue = [e for e in self.outbox_queue if e is not entry]
            self._persist()
            logger.error(
                "Response {} dead-lettered after {} attempts: {}",
                entry.client_id,
                entry.attempts,
                entry.last_error,
            )
            return

        delay = self.policy.backoff_delay_ms(entry.attempts, self._rand)
        entry.transition_to(OutboxStatus.RETRYING)
        entry.retry_after = now + delay
        self._persist()
        self._schedule_wakeup()
        logger.warning(
            "Response {} failed (attempt {}/{}), retrying in {}ms: {}",
            entry.client_id,
            entry.attempts,
            self.policy.max_attempts,
            delay,
            entry.last_error,
        )

    # =========================================================================
    # Dead Letters
    # =========================================================================

    def _bury(self, entry: OutboxEntry, now: int) -> None:
        data = entry.model_dump()
        data["status"] = OutboxStatus.FAILED
        data["dead_at"] = now
        self.dead_letter_queue.append(DeadLetterEntry.model_validate(data))

    def get_dead_letter(self, client_id: str) -> DeadLetterEntry | None:
        return next((e for e in self.dead_letter_queue if e.client_id == client_id), None)

    def revive_dead_letter(self, client_id: str) -> bool:
        """Re-queue a dead entry as a fresh pending entry."""
        dead = self.get_dead_letter(client_id)
        if dead is None:
            return False

        self.dead_letter_queue.remove(dead)
        self.outbox_queue.append(OutboxEntry.for_response(dead.response, self.scheduler.now_ms()))
        self._persist()
        logger.info("Revived dead-letter response {}", client_id)
        self.request_flush()
        return True

    def dismiss_dead_letter(self, client_id: str) -> bool:
        """Drop a dead entry for good. The ledger still holds the response."""
        dead = self.get_dead_letter(client_id)
        if dead is None:
            return False
        self.dead_letter_queue.remove(dead)
        logger.info("Dismissed dead-letter response {}", client_id)
        return True

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def prune_confirmed(self) -> None:
        self.outbox_queue = [e for e in self.outbox_queue if e.status is not OutboxStatus.CONFIRMED]
        self._persist()

    def clear_outbox(self) -> None:
        """Forget everything, including the persisted copy. Sign-out only."""
        self.outbox_queue = []
        self.dead_letter_queue = []
        self.confirmed_ids = {}
        try:
            self.storage.remove_item(self.storage_key)
        except StorageError as exc:
            logger.warning("Could not remove persisted outbox: {}", exc)

    def rehydrate_outbox(self) -> int:
        """
        Merge the persisted queue into memory.

        Entries already in memory win; persisted ones go first since they are
        older. Entries that already used up their attempts go straight to the
        dead-letter queue. Returns how many live entries were added.
        """
        persisted = load_persisted_queue(self.storage, self.storage_key)
        known = {e.client_id for e in self.outbox_queue}
        new_entries = [
            e for e in persisted if e.client_id not in known and e.client_id not in self.confirmed_ids
        ]
        if not new_entries:
            return 0

        now = self.scheduler.now_ms()
        live = []
        for entry in new_entries:
            if entry.attempts >= self.policy.max_attempts:
                # Persisted under a higher attempt limit than the current one.
                self._bury(entry, now)
                logger.error(
                    "Restored response {} already used {} attempts - dead-lettered",
                    entry.client_id,
                    entry.attempts,
                )
            else:
                live.append(entry)

        self.outbox_queue = live + self.outbox_queue
        logger.debug("Rehydrated {} outbox entries", len(live))
        if len(live) != len(new_entries):
            self._persist()

        self._schedule_wakeup()
        if self._transport is not None:
            self.request_flush()
        return len(live)

    def _persist(self) -> None:
        try:
            self.storage.set_item(self.storage_key, serialize_queue(self.outbox_queue))
        except StorageError as exc:
            logger.warning("Outbox not persisted, continuing in memory: {}", exc)

    def _is_live(self, entry: OutboxEntry) -> bool:
        return any(e is entry for e in self.outbox_queue)

    def _find(self, client_id: str) -> OutboxEntry | None:
        return next((e for e in self.outbox_queue if e.client_id == client_id), None)

    # =========================================================================
    # Selectors
    # =========================================================================

    def get_pending_count(self) -> int:
        return sum(1 for e in self.outbox_queue if e.status in _PERSISTABLE)

    def has_unconfirmed(self) -> bool:
        return any(e.status is not OutboxStatus.CONFIRMED for e in self.outbox_queue)

    def has_dead_letters(self) -> bool:
        return bool(self.dead_letter_queue)

    def get_server_id(self, client_id: str) -> str | None:
        return self.confirmed_ids.get(client_id)
