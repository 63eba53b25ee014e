#!/usr/bin/env python3
"""
One-off migration script: clients.json -> SQL table.

Ids, timestamps and password envelopes are copied as-is (no re-encryption),
so the SQL backend must use the same CLIENT_ENCRYPTION_KEY.

Uso:
  python scripts/migrate_json_to_sql.py [--file data/clients.json] [--dry-run]
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Garantir que o pacote dashboard seja importavel quando rodado diretamente
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func, select

from dashboard.core.config import get_settings
from dashboard.core.logs import configure_logging
from dashboard.db.create_tables import create_all
from dashboard.db.models import Client
from dashboard.db.session import get_session
from dashboard.repositories.json_storage import decode_stored_client

logger = logging.getLogger("migrate_json_to_sql")


def _load_json(path: Path) -> list:
    if not path.exists():
        raise SystemExit(f"File not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise SystemExit(f"{path} does not contain a JSON array")
    return data


def migrate(path: Path, *, dry_run: bool = False) -> tuple[int, int]:
    """Return (inserted, skipped)."""
    items = _load_json(path)
    if not dry_run:
        create_all()
    inserted = skipped = 0
    seen_ids: set[str] = set()
    seen_emails: set[str] = set()
    with get_session() as session:
        for item in items:
            stored = decode_stored_client(item)
            if stored is None:
                logger.warning("Skipping unreadable entry (id=%s)", item.get("id") if isinstance(item, dict) else None)
                skipped += 1
                continue
            if dry_run:
                inserted += 1
                continue
            exists = session.execute(
                select(Client.id).where(
                    (Client.id == stored.id) | (func.lower(Client.email) == stored.fields.email)
                )
            ).first()
            if exists or stored.id in seen_ids or stored.fields.email in seen_emails:
                logger.info("Client %s already present, skipping", stored.id)
                skipped += 1
                continue
            session.add(
                Client(
                    id=stored.id,
                    name=stored.fields.name,
                    company=stored.fields.company,
                    email=stored.fields.email,
                    phone=stored.fields.phone,
                    plan=stored.fields.plan,
                    status=stored.fields.status,
                    password_ciphertext=stored.password_ciphertext,
                    notes=stored.fields.notes,
                    created_at=stored.created_at,
                    updated_at=stored.updated_at,
                )
            )
            seen_ids.add(stored.id)
            seen_emails.add(stored.fields.email)
            inserted += 1
        if not dry_run:
            session.commit()
    return inserted, skipped


def main() -> None:
    settings = get_settings()
    ap = argparse.ArgumentParser(description="Copy clients.json into the SQL clients table")
    ap.add_argument("--file", default=str(settings.clients_file), help="Path to clients.json")
    ap.add_argument("--dry-run", action="store_true", help="Parse and report without writing")
    args = ap.parse_args()

    configure_logging(settings.log_level)
    inserted, skipped = migrate(Path(args.file), dry_run=args.dry_run)
    print(f"Migrated {inserted} client(s); skipped {skipped}.")


if __name__ == "__main__":
    main()
