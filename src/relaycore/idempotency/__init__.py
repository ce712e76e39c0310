"""
Idempotency

Create-once result storage that turns client retries into a single effect.
"""

from .store import DuplicateIdempotencyKeyError, IdempotencyStore

__all__ = [
    "DuplicateIdempotencyKeyError",
    "IdempotencyStore",
]
