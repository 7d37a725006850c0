"""
Hemisphere session runtime.

Client-side runtime for learning sessions: presentation queue, response
ledger, and a durable outbox delivering responses to the backend.
"""

__version__ = "1.0.0"
