"""Client use cases (listing, search, create/update/delete) and store selection."""

from __future__ import annotations

from functools import partial
from typing import Any, Mapping, Optional

from dashboard.core.config import Settings
from dashboard.core.crypto import SecretCipher
from dashboard.db.session import build_engine
from dashboard.domain.clients import ClientRecord, matches_query
from dashboard.domain.errors import ClientNotFoundError
from dashboard.repositories.base import ClientStore
from dashboard.repositories.file_lock import FileLock
from dashboard.repositories.json_storage import JSONClientRepository
from dashboard.repositories.sql_repository import SQLClientRepository


def build_client_store(settings: Settings, cipher: SecretCipher) -> ClientStore:
    """Pick the JSON or SQL store according to STORAGE_BACKEND."""
    if settings.storage_backend == "sql":
        return SQLClientRepository(cipher, engine=build_engine(settings.database_url))
    lock_factory = partial(
        FileLock,
        retries=settings.lock_retries,
        base_delay=settings.lock_delay_ms / 1000.0,
        stale_after=settings.lock_stale_seconds,
    )
    return JSONClientRepository(settings.clients_file, cipher, lock_factory=lock_factory)


class ClientService:
    def __init__(self, store: ClientStore) -> None:
        self.store = store

    def list_clients(self, query: Optional[str] = None) -> list[ClientRecord]:
        return [record for record in self.store.read_all() if matches_query(record, query)]

    def get_client(self, client_id: str) -> ClientRecord:
        record = self.store.get(client_id)
        if record is None:
            raise ClientNotFoundError("Client not found.")
        return record

    def create_client(self, data: Mapping[str, Any]) -> ClientRecord:
        return self.store.add(data)

    def update_client(self, client_id: str, data: Mapping[str, Any]) -> ClientRecord:
        return self.store.update(client_id, data)

    def delete_client(self, client_id: str) -> bool:
        return bool(self.store.remove(client_id).get("removed"))
