"""
Session runtime context.

One SessionRuntime is built at application start and handed to whatever
drives the UI. It owns the queue, ledger, outbox and stage session, wires
submissions from one to the next, and exposes the read API the UI needs.
"""

from __future__ import annotations

from typing import Iterable

from loguru import logger

from config import Settings, get_settings

from .connectivity import ConnectivityMonitor
from .models import (
    ActiveInteraction,
    QueueItem,
    ResponseModality,
    SessionStage,
    UserResponse,
)
from .outbox import Outbox, ResponseTransport, RetryPolicy
from .queue import PresentationQueue
from .responses import ResponseLedger
from .scheduler import AsyncioScheduler, Scheduler
from .stage import SessionReducer, StageSession, unconfigured_reducer
from .storage import FileStorage, KeyValueStorage


class SessionRuntime:
    """Explicit runtime context for one learner session."""

    def __init__(
        self,
        queue: PresentationQueue,
        ledger: ResponseLedger,
        outbox: Outbox,
        stage: StageSession,
    ):
        self.queue = queue
        self.ledger = ledger
        self.outbox = outbox
        self.stage = stage

    @property
    def scheduler(self) -> Scheduler:
        return self.outbox.scheduler

    @property
    def connectivity(self) -> ConnectivityMonitor:
        return self.outbox.connectivity

    # =========================================================================
    # Session Flow
    # =========================================================================

    def start_session(self, item_ids: Iterable[str], stage: SessionStage) -> None:
        self.ledger.clear_responses()
        self.queue.init_queue(item_ids, stage)

    def continue_with(self, item_ids: Iterable[str], stage: SessionStage) -> None:
        """Append the next stage's items; playback resumes on them if exhausted."""
        self.queue.append_items(item_ids, stage)

    def begin_current(self) -> ActiveInteraction | None:
        item = self.queue.get_current_item()
        if item is None:
            return None
        return self.ledger.begin_interaction(item.id)

    def submit(self, is_correct: bool | None, modality: ResponseModality) -> UserResponse | None:
        """
        Record the active interaction, advance the queue, hand off delivery.

        Returns the recorded response, or None if there was nothing to submit.
        """
        interaction = self.ledger.active_interaction
        if interaction is None:
            return None

        stage = self._stage_of(interaction.item_id)
        response = self.ledger.submit_response(is_correct=is_correct, modality=modality, stage=stage)
        if response is None:
            return None

        item = self.queue.get_current_item()
        if item is not None and item.id == response.item_id:
            self.queue.advance()
        else:
            self.queue.mark_seen(response.item_id)
        self.outbox.enqueue_response(response)
        return response

    def skip_current(self) -> bool:
        self.ledger.cancel_interaction()
        return self.queue.skip()

    def end_session(self) -> None:
        """Clear per-session state. Undelivered responses keep draining."""
        self.queue.clear_queue()
        self.ledger.clear_responses()
        self.stage.clear_session()
        logger.debug("Session ended with {} responses still pending", self.outbox.get_pending_count())

    def resume(self) -> None:
        """Call once the event loop runs if the runtime was built before it."""
        self.outbox.resume()

    def sign_out(self) -> None:
        self.end_session()
        self.outbox.clear_outbox()

    def _stage_of(self, item_id: str) -> SessionStage:
        for item in self.queue.items:
            if item.id == item_id:
                return item.stage
        current = self.queue.get_current_item()
        return current.stage if current is not None else SessionStage.ANALYSIS

    # =========================================================================
    # Read API
    # =========================================================================

    def get_current_item(self) -> QueueItem | None:
        return self.queue.get_current_item()

    def get_pending_count(self) -> int:
        return self.outbox.get_pending_count()

    def has_dead_letters(self) -> bool:
        return self.outbox.has_dead_letters()

    def get_server_id(self, client_id: str) -> str | None:
        return self.outbox.get_server_id(client_id)

    def get_accuracy(self) -> float:
        return self.ledger.get_accuracy()

    def get_queue_progress(self) -> float:
        return self.queue.get_queue_progress()


def create_runtime(
    settings: Settings | None = None,
    *,
    reducer: SessionReducer | None = None,
    transport: ResponseTransport | None = None,
    storage: KeyValueStorage | None = None,
    scheduler: Scheduler | None = None,
    connectivity: ConnectivityMonitor | None = None,
) -> SessionRuntime:
    """
    Build a SessionRuntime from settings.

    Storage defaults to files under ``settings.storage_dir``. The persisted
    outbox is rehydrated before returning; with a transport it starts
    draining immediately when called inside a running loop. Built from
    synchronous startup code, call ``resume()`` once the loop is up.
    """
    settings = settings or get_settings()
    scheduler = scheduler or AsyncioScheduler()

    outbox = Outbox(
        storage=storage if storage is not None else FileStorage(settings.storage_dir),
        scheduler=scheduler,
        connectivity=connectivity,
        policy=RetryPolicy.from_settings(settings),
        storage_key=settings.outbox_storage_key,
    )
    if transport is not None:
        outbox.configure_outbox(transport)

    runtime = SessionRuntime(
        queue=PresentationQueue(prefetch_window=settings.queue_prefetch_window),
        ledger=ResponseLedger(clock=scheduler.now_ms),
        outbox=outbox,
        stage=StageSession(reducer or unconfigured_reducer),
    )

    restored = outbox.rehydrate_outbox()
    if restored:
        logger.info("Restored {} undelivered responses", restored)
    return runtime
