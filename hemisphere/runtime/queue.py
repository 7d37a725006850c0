"""
Presentation queue for a learning session.

Holds the ordered content items, the cursor into them, and seen/skip
bookkeeping. Pure in-memory; nothing here is persisted.

Only forward progression (advance, skip) marks items seen. Review
navigation (go_back, jump_to) moves the cursor and nothing else.
"""

from __future__ import annotations

from typing import Iterable

from loguru import logger

from .models import QueueItem, SessionStage


class PresentationQueue:
    """Ordered item queue with a cursor."""

    def __init__(self, prefetch_window: int = 2):
        self.items: list[QueueItem] = []
        self.current_index: int = -1
        self.prefetch_window = prefetch_window
        self.stage_queue_exhausted: bool = False

    # =========================================================================
    # Loading
    # =========================================================================

    def init_queue(self, item_ids: Iterable[str], stage: SessionStage) -> None:
        """Replace the queue with ``item_ids``, cursor on the first item."""
        self.items = [
            QueueItem(id=item_id, stage=stage, position=position)
            for position, item_id in enumerate(item_ids)
        ]
        self.current_index = 0 if self.items else -1
        self.stage_queue_exhausted = False
        logger.debug("Queue initialised with {} {} items", len(self.items), stage.value)

    def append_items(self, item_ids: Iterable[str], stage: SessionStage) -> None:
        """
        Append items for a later stage.

        If the queue was exhausted (or empty) the cursor moves onto the first
        new item, so playback continues without the caller repositioning it.
        """
        start = len(self.items)
        new_items = [
            QueueItem(id=item_id, stage=stage, position=start + offset)
            for offset, item_id in enumerate(item_ids)
        ]
        if not new_items:
            return

        self.items.extend(new_items)
        if self.stage_queue_exhausted or self.current_index < 0:
            self.current_index = start
        self.stage_queue_exhausted = False
        logger.debug("Appended {} {} items at position {}", len(new_items), stage.value, start)

    # =========================================================================
    # Navigation
    # =========================================================================

    def _step_forward(self, skipped: bool) -> bool:
        if not 0 <= self.current_index < len(self.items):
            return False

        item = self.items[self.current_index]
        item.seen = True
        if skipped:
            item.skip_count += 1

        next_index = self.current_index + 1
        if next_index >= len(self.items):
            self.stage_queue_exhausted = True
            return False

        self.current_index = next_index
        return True

    def advance(self) -> bool:
        """Mark the current item seen and move to the next one."""
        return self._step_forward(skipped=False)

    def skip(self) -> bool:
        """Like ``advance`` but also counts a skip on the current item."""
        return self._step_forward(skipped=True)

    def go_back(self) -> bool:
        if self.current_index <= 0:
            return False
        self.current_index -= 1
        self.stage_queue_exhausted = False
        return True

    def jump_to(self, item_id: str) -> bool:
        for index, item in enumerate(self.items):
            if item.id == item_id:
                self.current_index = index
                self.stage_queue_exhausted = False
                return True
        return False

    # =========================================================================
    # Item Bookkeeping
    # =========================================================================

    def _find(self, item_id: str) -> QueueItem | None:
        return next((item for item in self.items if item.id == item_id), None)

    def mark_seen(self, item_id: str) -> None:
        item = self._find(item_id)
        if item is not None:
            item.seen = True

    def set_item_meta(
        self,
        item_id: str,
        activity_type: str | None = None,
        label: str | None = None,
    ) -> None:
        """Attach display metadata once content for the item has loaded."""
        item = self._find(item_id)
        if item is None:
            return
        if activity_type is not None:
            item.activity_type = activity_type
        if label is not None:
            item.label = label

    def clear_queue(self) -> None:
        self.items = []
        self.current_index = -1
        self.stage_queue_exhausted = False

    # =========================================================================
    # Selectors
    # =========================================================================

    def get_current_item(self) -> QueueItem | None:
        if 0 <= self.current_index < len(self.items):
            return self.items[self.current_index]
        return None

    def get_prefetch_items(self) -> list[QueueItem]:
        """Up to ``prefetch_window`` items strictly after the cursor."""
        if self.current_index < 0:
            return []
        start = self.current_index + 1
        return self.items[start : start + self.prefetch_window]

    def get_queue_progress(self) -> float:
        """Fraction of items seen (0.0 for an empty queue)."""
        if not self.items:
            return 0.0
        return sum(1 for item in self.items if item.seen) / len(self.items)

    def get_items_by_stage(self, stage: SessionStage) -> list[QueueItem]:
        return [item for item in self.items if item.stage == stage]
