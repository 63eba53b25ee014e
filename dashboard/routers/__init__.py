"""
FastAPI routers grouped by domain.

Each module exposes an APIRouter included by the application factory
(dashboard.app). Endpoints delegate to services and only map domain errors to
HTTP statuses.
"""
