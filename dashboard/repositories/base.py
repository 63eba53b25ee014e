"""Interface shared by the JSON and SQL client stores."""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

from dashboard.domain.clients import ClientRecord


class ClientStore(Protocol):
    """CRUD over client records with transparent secret encryption."""

    def read_all(self) -> list[ClientRecord]:
        """All readable records, newest ``created_at`` first."""
        ...

    def get(self, client_id: str) -> Optional[ClientRecord]:
        ...

    def add(self, data: Mapping[str, Any]) -> ClientRecord:
        ...

    def update(self, client_id: str, data: Mapping[str, Any]) -> ClientRecord:
        ...

    def remove(self, client_id: str) -> dict:
        """Return ``{"removed": bool}``; unknown ids are not an error."""
        ...
