"""Exception hierarchy for the hemisphere session runtime.

Delivery and storage problems are mostly absorbed by the outbox; these types
let the layers underneath report them precisely.
"""

from __future__ import annotations


class HemisphereError(Exception):
    """Base class for runtime errors."""


class StorageError(HemisphereError):
    """A key/value store could not read or write a value."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"Storage failure for '{key}': {message}")


class IllegalTransitionError(HemisphereError):
    """An outbox entry was asked to move between incompatible statuses."""

    def __init__(self, client_id: str, current: str, target: str) -> None:
        self.client_id = client_id
        self.current = current
        self.target = target
        super().__init__(f"Entry '{client_id}' cannot move from {current} to {target}")


class TransportError(HemisphereError):
    """The backend rejected a response submission."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
