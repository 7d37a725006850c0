"""
Session runtime: presentation queue, response ledger and delivery outbox.

Modules:
- queue: ordered items, cursor, seen/skip bookkeeping
- responses: per-item responses and the active interaction
- outbox: durable retrying delivery with a dead-letter queue
- context: SessionRuntime wiring the above together
"""
from .connectivity import ConnectivityMonitor
from .context import SessionRuntime, create_runtime
from .models import (
    ActiveInteraction,
    DeadLetterEntry,
    OutboxEntry,
    OutboxStatus,
    QueueItem,
    ResponseModality,
    ResponseQuality,
    SessionStage,
    UserResponse,
)
from .outbox import Outbox, RetryPolicy
from .queue import PresentationQueue
from .responses import ResponseLedger
from .scheduler import AsyncioScheduler, ManualScheduler
from .stage import StageSession, TransitionResult
from .storage import FileStorage, MemoryStorage

__all__ = [
    "ActiveInteraction",
    "AsyncioScheduler",
    "ConnectivityMonitor",
    "DeadLetterEntry",
    "FileStorage",
    "ManualScheduler",
    "MemoryStorage",
    "Outbox",
    "OutboxEntry",
    "OutboxStatus",
    "PresentationQueue",
    "QueueItem",
    "ResponseLedger",
    "ResponseModality",
    "ResponseQuality",
    "RetryPolicy",
    "SessionRuntime",
    "SessionStage",
    "StageSession",
    "TransitionResult",
    "UserResponse",
    "create_runtime",
]
