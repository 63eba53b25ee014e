#!/usr/bin/env python3
"""
Verify that CLIENT_ENCRYPTION_KEY decrypts every stored client password.

Uso:
  python scripts/check_encryption_key.py

Exits with status 1 when at least one record fails, which usually means the
key was changed after records were written.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import select

from dashboard.core.config import Settings, get_settings
from dashboard.core.crypto import CipherError, SecretCipher, get_cipher
from dashboard.db.create_tables import create_all
from dashboard.db.models import Client
from dashboard.db.session import get_session
from dashboard.repositories.json_storage import decode_stored_client


def _stored_envelopes(settings: Settings) -> list[tuple[str, str]]:
    if settings.storage_backend == "sql":
        create_all()
        with get_session() as session:
            rows = session.execute(select(Client.id, Client.password_ciphertext)).all()
        return [(row[0], row[1]) for row in rows]
    path = settings.clients_file
    if not path.exists():
        return []
    items = json.loads(path.read_text(encoding="utf-8") or "[]")
    pairs = []
    for item in items if isinstance(items, list) else []:
        stored = decode_stored_client(item)
        if stored:
            pairs.append((stored.id, stored.password_ciphertext))
    return pairs


def check(cipher: SecretCipher, envelopes: list[tuple[str, str]]) -> list[str]:
    """Return the ids whose envelope does not decrypt."""
    failed = []
    for client_id, envelope in envelopes:
        try:
            cipher.decrypt(envelope)
        except CipherError:
            failed.append(client_id)
    return failed


def main() -> None:
    settings = get_settings()
    envelopes = _stored_envelopes(settings)
    failed = check(get_cipher(), envelopes)
    print(f"Checked {len(envelopes)} client(s); {len(failed)} failed to decrypt.")
    for client_id in failed:
        print(f"  - {client_id}")
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
