"""
Background job processing.

This package provides the durable job queue:
- Database-backed queue with an atomic conditional-update claim
- Registry-based pluggable handlers
- Retry ladder with terminal failure and per-attempt history
- Crash recovery and an optional heartbeat lease
"""
