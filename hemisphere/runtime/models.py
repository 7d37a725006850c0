"""
Data model for the session runtime.

Queue and interaction state are plain mutable dataclasses. Responses and
outbox entries are pydantic models because they cross the persistence
boundary and must be validated when read back.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from hemisphere.errors import IllegalTransitionError


class SessionStage(str, Enum):
    """The three stages of a learning session."""

    ENCOUNTER = "encounter"
    ANALYSIS = "analysis"
    RETURN = "return"


class ResponseModality(str, Enum):
    """How the learner answered."""

    TEXT = "text"
    MULTIPLE_CHOICE = "multiple_choice"
    BOOLEAN = "boolean"
    DRAG_DROP = "drag_drop"
    FREE_RECALL = "free_recall"


class ResponseQuality(str, Enum):
    """Self-rated recall quality (SM-2 / FSRS vocabulary)."""

    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


class OutboxStatus(str, Enum):
    """Lifecycle status of an outbox entry."""

    PENDING = "pending"
    SENDING = "sending"
    CONFIRMED = "confirmed"
    RETRYING = "retrying"
    FAILED = "failed"


# Failed entries are revived as new entries, never transitioned.
ALLOWED_TRANSITIONS: dict[OutboxStatus, frozenset[OutboxStatus]] = {
    OutboxStatus.PENDING: frozenset({OutboxStatus.SENDING}),
    OutboxStatus.SENDING: frozenset(
        {OutboxStatus.CONFIRMED, OutboxStatus.RETRYING, OutboxStatus.FAILED}
    ),
    OutboxStatus.RETRYING: frozenset({OutboxStatus.PENDING, OutboxStatus.SENDING}),
    OutboxStatus.CONFIRMED: frozenset(),
    OutboxStatus.FAILED: frozenset(),
}


# =============================================================================
# Queue / Interaction State
# =============================================================================


@dataclass
class QueueItem:
    """A single item in the presentation queue."""

    id: str
    stage: SessionStage
    position: int  # 0-based, unique across the queue
    seen: bool = False
    skip_count: int = 0
    activity_type: str | None = None
    label: str | None = None


@dataclass
class ActiveInteraction:
    """The answer-in-progress for the item currently on screen."""

    item_id: str
    started_at: int  # unix ms
    draft_value: str = ""
    submitted: bool = False
    showing_result: bool = False


# =============================================================================
# Persisted Models
# =============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(_CamelModel):
    """A recorded learner response. Immutable; annotate via ``model_copy``."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    item_id: str
    stage: SessionStage
    started_at: int
    submitted_at: int
    latency_ms: int
    modality: ResponseModality
    value: str
    is_correct: bool | None = None
    quality: ResponseQuality | None = None
    self_confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class OutboxEntry(_CamelModel):
    """A response waiting to be delivered to the backend."""

    client_id: str
    response: UserResponse
    status: OutboxStatus = OutboxStatus.PENDING
    enqueued_at: int
    attempts: int = Field(default=0, ge=0)
    retry_after: int | None = None
    server_id: str | None = None
    last_error: str | None = None

    def transition_to(self, target: OutboxStatus) -> None:
        """Move to ``target`` or raise if the lifecycle forbids it."""
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise IllegalTransitionError(self.client_id, self.status.value, target.value)
        self.status = target

    def is_eligible(self, now_ms: int) -> bool:
        """Whether a flush pass may pick this entry up right now."""
        if self.status is OutboxStatus.PENDING:
            return True
        return (
            self.status is OutboxStatus.RETRYING
            and self.retry_after is not None
            and self.retry_after <= now_ms
        )

    @classmethod
    def for_response(cls, response: UserResponse, now_ms: int) -> "OutboxEntry":
        return cls(client_id=response.id, response=response, enqueued_at=now_ms)


class DeadLetterEntry(OutboxEntry):
    """An entry that exhausted its attempts."""

    status: OutboxStatus = OutboxStatus.FAILED
    dead_at: int

    @field_validator("status")
    @classmethod
    def _must_be_failed(cls, value: OutboxStatus) -> OutboxStatus:
        if value is not OutboxStatus.FAILED:
            raise ValueError("dead-letter entries are always failed")
        return value
