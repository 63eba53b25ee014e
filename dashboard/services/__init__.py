"""
High-level use cases for the dashboard API.

Routers (FastAPI endpoints) call these services instead of touching the
JSON document or the database directly.
"""
