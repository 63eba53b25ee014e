"""
Configuration helpers for the dashboard backend.

Settings are read once from environment variables so that repositories,
services and routers never fetch os.environ directly.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
import os

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[2] / "data"

# Ordem de prioridade das variaveis de conexao
_DATABASE_URL_VARS = (
    "DATABASE_URL",
    "POSTGRES_URL",
    "POSTGRES_PRISMA_URL",
    "POSTGRES_URL_NON_POOLING",
)


@dataclass(frozen=True)
class Settings:
    """Typed view of environment variables."""

    app_env: str
    client_encryption_key: str
    storage_backend: str
    data_dir: Path
    database_url: str
    lock_retries: int
    lock_delay_ms: int
    lock_stale_seconds: float
    log_level: str

    @property
    def clients_file(self) -> Path:
        return self.data_dir / "clients.json"


def _database_url() -> str:
    for name in _DATABASE_URL_VARS:
        value = (os.getenv(name) or "").strip()
        if value:
            # SQLAlchemy 1.4+ no longer accepts the "postgres" scheme alias
            if value.startswith("postgres://"):
                value = "postgresql://" + value[len("postgres://") :]
            return value
    return ""


@lru_cache
def get_settings() -> Settings:
    """Read the current environment and build a Settings instance."""
    def _int(value: str | None, default: int = 0) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def _float(value: str | None, default: float = 0.0) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    backend = (os.getenv("STORAGE_BACKEND") or "json").strip().lower()
    if backend not in {"json", "sql"}:
        backend = "json"
    data_dir = (os.getenv("CLIENT_DATA_DIR") or "").strip()

    return Settings(
        app_env=(os.getenv("APP_ENV") or "dev").lower(),
        client_encryption_key=os.getenv("CLIENT_ENCRYPTION_KEY", ""),
        storage_backend=backend,
        data_dir=Path(data_dir) if data_dir else DEFAULT_DATA_DIR,
        database_url=_database_url(),
        lock_retries=max(1, _int(os.getenv("CLIENT_LOCK_RETRIES"), 20)),
        lock_delay_ms=max(1, _int(os.getenv("CLIENT_LOCK_DELAY_MS"), 100)),
        lock_stale_seconds=_float(os.getenv("CLIENT_LOCK_STALE_SECONDS"), 5.0),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
