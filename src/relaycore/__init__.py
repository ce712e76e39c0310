"""
relaycore

Transactional outbox, lease-based dispatch and idempotent use-case execution
on PostgreSQL or SQLite.
"""

__version__ = "1.0.0"
