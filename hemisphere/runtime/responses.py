"""
Response ledger for a learning session.

Records one UserResponse per answered item, tracks the single active
interaction, and derives accuracy and latency metrics.
"""

from __future__ import annotations

import uuid
from typing import Callable

from loguru import logger

from .models import (
    ActiveInteraction,
    ResponseModality,
    ResponseQuality,
    SessionStage,
    UserResponse,
)
from .scheduler import now_ms


class ResponseLedger:
    """
    Per-session response store.

    Responses are keyed by item ID; ``response_order`` keeps the order in
    which items were first answered for sequential review.
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        self._clock = clock
        self.responses: dict[str, UserResponse] = {}
        self.response_order: list[str] = []
        self.active_interaction: ActiveInteraction | None = None
        self.submission_error: str | None = None

    # =========================================================================
    # Interaction Lifecycle
    # =========================================================================

    def begin_interaction(self, item_id: str, timestamp: int | None = None) -> ActiveInteraction:
        """Start answering ``item_id``; replaces any current interaction."""
        self.active_interaction = ActiveInteraction(
            item_id=item_id,
            started_at=timestamp if timestamp is not None else self._clock(),
        )
        self.submission_error = None
        return self.active_interaction

    def update_draft(self, value: str) -> None:
        if self.active_interaction is None:
            return
        self.active_interaction.draft_value = value

    def submit_response(
        self,
        is_correct: bool | None,
        modality: ResponseModality,
        stage: SessionStage,
        timestamp: int | None = None,
    ) -> UserResponse | None:
        """
        Finalize the active interaction into a UserResponse.

        Returns None when nothing is active or the interaction was already
        submitted (double-submit from the UI).
        """
        interaction = self.active_interaction
        if interaction is None or interaction.submitted:
            return None

        submitted_at = timestamp if timestamp is not None else self._clock()
        response = UserResponse(
            id=str(uuid.uuid4()),
            item_id=interaction.item_id,
            stage=stage,
            started_at=interaction.started_at,
            submitted_at=submitted_at,
            latency_ms=submitted_at - interaction.started_at,
            modality=modality,
            value=interaction.draft_value,
            is_correct=is_correct,
        )

        self.responses[interaction.item_id] = response
        if interaction.item_id not in self.response_order:
            self.response_order.append(interaction.item_id)

        interaction.submitted = True
        interaction.showing_result = False
        logger.debug(
            "Recorded response {} for item {} ({}ms)",
            response.id,
            response.item_id,
            response.latency_ms,
        )
        return response

    def reveal_answer(self) -> None:
        if self.active_interaction is None:
            return
        self.active_interaction.showing_result = True

    def cancel_interaction(self) -> None:
        self.active_interaction = None

    def clear_responses(self) -> None:
        self.responses = {}
        self.response_order = []
        self.active_interaction = None
        self.submission_error = None

    # =========================================================================
    # Post-hoc Annotations
    # =========================================================================

    def rate_response(self, item_id: str, quality: ResponseQuality) -> None:
        existing = self.responses.get(item_id)
        if existing is None:
            return
        self.responses[item_id] = existing.model_copy(update={"quality": quality})

    def set_confidence(self, item_id: str, confidence: float) -> None:
        existing = self.responses.get(item_id)
        if existing is None:
            return
        clamped = max(0.0, min(1.0, float(confidence)))
        self.responses[item_id] = existing.model_copy(update={"self_confidence": clamped})

    # =========================================================================
    # Selectors
    # =========================================================================

    def get_response_for_item(self, item_id: str) -> UserResponse | None:
        return self.responses.get(item_id)

    def get_all_responses(self) -> list[UserResponse]:
        return [self.responses[item_id] for item_id in self.response_order if item_id in self.responses]

    def get_response_count(self) -> int:
        return len(self.response_order)

    def get_correct_count(self) -> int:
        return sum(1 for r in self.responses.values() if r.is_correct is True)

    def get_accuracy(self) -> float:
        """Correct / graded. Ungraded (is_correct None) responses are excluded."""
        graded = [r for r in self.responses.values() if r.is_correct is not None]
        if not graded:
            return 0.0
        return sum(1 for r in graded if r.is_correct) / len(graded)

    def get_mean_latency_ms(self) -> float:
        if not self.responses:
            return 0.0
        return sum(r.latency_ms for r in self.responses.values()) / len(self.responses)

    def get_responses_by_stage(self, stage: SessionStage) -> list[UserResponse]:
        return [r for r in self.responses.values() if r.stage == stage]
