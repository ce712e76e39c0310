"""
Use cases: business handlers run through the idempotent executor.
"""

from .executor import (
    UseCaseContext,
    UseCaseExecutor,
    UseCaseHandler,
    require_idempotency_key,
    serialize_output,
)

__all__ = [
    "UseCaseContext",
    "UseCaseExecutor",
    "UseCaseHandler",
    "require_idempotency_key",
    "serialize_output",
]
