"""
Core utilities shared across the dashboard backend.

This package hosts:
- configuration helpers (env vars, storage paths, lock tuning)
- logging setup
- the secret cipher used to encrypt client passwords at rest

Repositories and routers should depend on these primitives instead of reading
os.environ directly.
"""
