"""
Per-tenant batch job engine.

This package provides:
- An in-memory FIFO worked by a single background worker
- Fixed-size parallel batches with per-item failure isolation
- Durable status snapshots for polling and cooperative cancellation
- Registry-based job types and pluggable item processors
"""
