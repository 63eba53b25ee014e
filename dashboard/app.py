"""FastAPI application factory for the client dashboard backend."""
from __future__ import annotations

import logging

from fastapi import FastAPI

from dashboard.core.config import Settings, get_settings
from dashboard.core.crypto import SecretCipher, get_cipher
from dashboard.core.logs import configure_logging
from dashboard.routers import clients as clients_router
from dashboard.services.client_service import ClientService, build_client_store

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, cipher: SecretCipher | None = None) -> FastAPI:
    """
    Build the app with one cipher and one store for the whole process.

    A missing CLIENT_ENCRYPTION_KEY raises EncryptionError here, at start-up,
    rather than on the first request.
    """
    if settings is None:
        settings = get_settings()
        cipher = cipher or get_cipher()
    configure_logging(settings.log_level)
    cipher = cipher or SecretCipher(settings.client_encryption_key)

    app = FastAPI(title="Client Dashboard API")
    store = build_client_store(settings, cipher)
    app.state.settings = settings
    app.state.client_service = ClientService(store)
    app.include_router(clients_router.router)

    @app.get("/health")
    def health():
        return {"ok": True, "backend": settings.storage_backend}

    logger.info("Client dashboard started with %s storage", settings.storage_backend)
    return app
