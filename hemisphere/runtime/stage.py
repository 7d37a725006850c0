"""
Session stage collaborator.

Stage transitions (encounter -> analysis -> return, pause/resume, abandon)
belong to an externally defined reducer. This module holds the current
session state and routes events through that reducer without interpreting
either.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from loguru import logger


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of applying one event to the session state."""

    success: bool
    new_state: Any = None
    error: str | None = None
    reason: str | None = None

    @classmethod
    def ok(cls, new_state: Any) -> "TransitionResult":
        return cls(success=True, new_state=new_state)

    @classmethod
    def fail(cls, error: str, reason: str) -> "TransitionResult":
        return cls(success=False, error=error, reason=reason)


class SessionReducer(Protocol):
    """Pure ``(state, event, config, guards) -> TransitionResult``."""

    def __call__(
        self,
        state: Any,
        event: Any,
        config: Mapping[str, Any],
        guards: Mapping[str, Any],
    ) -> TransitionResult: ...


def unconfigured_reducer(
    state: Any,
    event: Any,
    config: Mapping[str, Any],
    guards: Mapping[str, Any],
) -> TransitionResult:
    """Placeholder used until the host application supplies its reducer."""
    return TransitionResult.fail("NO_REDUCER", "No session reducer configured")


class StageSession:
    """Holds the stage-machine state and forwards events to the reducer."""

    def __init__(
        self,
        reducer: SessionReducer,
        config: Mapping[str, Any] | None = None,
        guards: Mapping[str, Any] | None = None,
    ):
        self.reducer = reducer
        self.config: dict[str, Any] = dict(config or {})
        self.guards: dict[str, Any] = dict(guards or {})
        self.session: Any = None
        self.is_loading = False
        self.last_error: str | None = None

    def load_session(self, state: Any) -> None:
        """Install a freshly planned session state."""
        self.session = state
        self.is_loading = False
        self.last_error = None

    def hydrate_session(self, state: Any) -> None:
        """Install a session state fetched from elsewhere (e.g. the backend)."""
        self.load_session(state)

    def send_event(self, event: Any) -> TransitionResult:
        if self.session is None:
            result = TransitionResult.fail("NO_SESSION", "No active session to send event to")
            self.last_error = result.reason
            return result

        result = self.reducer(self.session, event, self.config, self.guards)
        if result.success:
            self.session = result.new_state
            self.last_error = None
        else:
            self.last_error = result.reason
            logger.debug("Stage transition rejected ({}): {}", result.error, result.reason)
        return result

    def clear_session(self) -> None:
        self.session = None
        self.is_loading = False
        self.last_error = None

    def set_config(self, **overrides: Any) -> None:
        self.config = {**self.config, **overrides}

    def set_guards(self, **overrides: Any) -> None:
        self.guards = {**self.guards, **overrides}
