"""
Deferred job orchestration.

This package provides:
- A database-backed job store with idempotency keys and delayed/recurring jobs
- Workers with leases, heartbeats, backoff and stuck job recovery
- One processor per job type, returning explicit outcomes
- Reconciliation scans that re-create missing jobs from durable state
"""
