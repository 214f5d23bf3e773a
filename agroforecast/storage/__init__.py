"""
storage — Observation history, location registry and prediction cache.

In-memory implementations are the default; ``orm`` provides SQL-backed
equivalents selected by ``STORAGE_BACKEND=sql``.
"""
