"""
External integrations for the session runtime.

Modules:
- transport: httpx implementation of the response submit contract
"""
from .transport import HttpResponseTransport

__all__ = ["HttpResponseTransport"]
