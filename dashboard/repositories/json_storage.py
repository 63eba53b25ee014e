"""
JSON file persistence for client records.

All clients live in a single JSON array. Passwords are stored only as cipher
envelopes under ``passwordCiphertext``. Mutations are serialized across
processes by a ``<file>.lock`` marker (see FileLock) and replace the document
atomically (temp file + os.replace), so readers never need the lock.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from dashboard.core.crypto import CipherError, SecretCipher
from dashboard.domain.clients import (
    EPOCH,
    ClientFields,
    ClientRecord,
    apply_client_changes,
    clean_text,
    format_timestamp,
    normalize_email,
    normalize_plan,
    normalize_status,
    parse_timestamp,
    prepare_new_client,
    utcnow,
)
from dashboard.domain.errors import (
    ClientNotFoundError,
    DuplicateEmailError,
    StorageUnavailableError,
)
from dashboard.repositories.file_lock import FileLock

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 2


@dataclass(frozen=True)
class StoredClient:
    """A client as persisted: normalized fields plus the password envelope."""

    id: str
    fields: ClientFields
    password_ciphertext: str
    created_at: datetime
    updated_at: datetime

    def to_json(self) -> dict:
        return {
            "version": DOCUMENT_VERSION,
            "id": self.id,
            "name": self.fields.name,
            "company": self.fields.company,
            "email": self.fields.email,
            "phone": self.fields.phone,
            "plan": self.fields.plan,
            "status": self.fields.status,
            "passwordCiphertext": self.password_ciphertext,
            "notes": self.fields.notes,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }


def _looks_like_envelope(value: Any) -> bool:
    return isinstance(value, str) and value.count(".") == 2


def decode_stored_client(raw: Any) -> Optional[StoredClient]:
    """
    Decode one array element, filling defaults for fields older documents lack.

    - version 2: ``passwordCiphertext`` holds the envelope.
    - version 1 (no ``version`` key): the secret sat under ``password``; it is
      usable only when it is already an envelope. Hashed legacy passwords cannot
      be recovered, so such entries decode to None.
    Entries without id, name or e-mail also decode to None.
    """
    if not isinstance(raw, dict):
        return None
    version = raw.get("version")
    if not isinstance(version, int):
        version = DOCUMENT_VERSION if "passwordCiphertext" in raw else 1
    if version >= DOCUMENT_VERSION:
        ciphertext = raw.get("passwordCiphertext")
    else:
        legacy = raw.get("password")
        ciphertext = legacy if _looks_like_envelope(legacy) else None

    client_id = clean_text(raw.get("id"))
    name = clean_text(raw.get("name"))
    email = normalize_email(raw.get("email"))
    if not (client_id and name and email and isinstance(ciphertext, str) and ciphertext):
        return None

    created_at = parse_timestamp(raw.get("createdAt")) or EPOCH
    updated_at = parse_timestamp(raw.get("updatedAt")) or created_at
    fields = ClientFields(
        name=name,
        email=email,
        company=clean_text(raw.get("company")),
        phone=clean_text(raw.get("phone")),
        plan=normalize_plan(raw.get("plan")),
        status=normalize_status(raw.get("status")),
        notes=clean_text(raw.get("notes")),
    )
    return StoredClient(client_id, fields, ciphertext, created_at, updated_at)


class JSONClientRepository:
    """ClientStore backed by a JSON document and a lock file."""

    def __init__(
        self,
        path: str | os.PathLike,
        cipher: SecretCipher,
        *,
        lock_factory: Callable[[Path], FileLock] | None = None,
    ) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.cipher = cipher
        self._lock_factory = lock_factory or FileLock

    # -------------------------- file helpers --------------------------
    def _ensure_file(self) -> None:
        try:
            self._create_document()
        except OSError as exc:
            logger.error("Clients data file %s cannot be created: %s", self.path, exc)
            raise StorageUnavailableError("Clients data file is not accessible.") from exc

    def _create_document(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            return
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write("[]")
            # link falha se outro processo ja criou o documento; nunca sobrescreve
            os.link(tmp_name, self.path)
        except FileExistsError:
            pass
        finally:
            os.unlink(tmp_name)

    def _load_raw(self, *, strict: bool = False) -> list:
        self._ensure_file()
        try:
            text = self.path.read_text(encoding="utf-8")
            parsed = json.loads(text) if text.strip() else []
        except OSError as exc:
            logger.error("Clients data file %s cannot be read: %s", self.path, exc)
            raise StorageUnavailableError("Clients data file is not accessible.") from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            if strict:
                raise StorageUnavailableError("Clients data file is corrupted.") from exc
            logger.error("Clients data file %s is not valid JSON: %s", self.path, exc)
            return []
        if not isinstance(parsed, list):
            if strict:
                raise StorageUnavailableError("Clients data file is corrupted.")
            logger.error("Clients data file %s does not hold a JSON array", self.path)
            return []
        return parsed

    def _write_raw(self, items: list) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
        except OSError as exc:
            raise StorageUnavailableError("Clients data file is not writable.") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            if isinstance(exc, OSError):
                logger.error("Could not write clients data file %s: %s", self.path, exc)
                raise StorageUnavailableError("Clients data file is not writable.") from exc
            raise

    def _lock(self) -> FileLock:
        self._ensure_file()
        return self._lock_factory(self.lock_path)

    # -------------------------- record helpers --------------------------
    def _decrypt(self, stored: StoredClient) -> Optional[ClientRecord]:
        try:
            password = self.cipher.decrypt(stored.password_ciphertext)
        except CipherError as exc:
            logger.error("Skipping client %s: password could not be decrypted (%s)", stored.id, exc)
            return None
        return ClientRecord.from_fields(
            stored.id, stored.fields, password, stored.created_at, stored.updated_at
        )

    @staticmethod
    def _email_taken(items: list, email: str, *, exclude_id: str | None = None) -> bool:
        for item in items:
            if not isinstance(item, dict):
                continue
            if exclude_id is not None and clean_text(item.get("id")) == exclude_id:
                continue
            if normalize_email(item.get("email")) == email:
                return True
        return False

    @staticmethod
    def _normalized(items: list) -> list:
        """Re-encode decodable entries; keep undecodable ones untouched."""
        result = []
        for item in items:
            stored = decode_stored_client(item)
            result.append(stored.to_json() if stored else item)
        return result

    # -------------------------- public API --------------------------
    def read_all(self) -> list[ClientRecord]:
        records: list[ClientRecord] = []
        for item in self._load_raw():
            stored = decode_stored_client(item)
            if stored is None:
                ident = item.get("id") if isinstance(item, dict) else None
                logger.warning("Skipping unreadable client entry (id=%s)", ident)
                continue
            record = self._decrypt(stored)
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def get(self, client_id: str) -> Optional[ClientRecord]:
        for record in self.read_all():
            if record.id == client_id:
                return record
        return None

    def add(self, data: Mapping[str, Any]) -> ClientRecord:
        fields, password = prepare_new_client(data)
        ciphertext = self.cipher.encrypt(password)
        with self._lock():
            items = self._load_raw(strict=True)
            if self._email_taken(items, fields.email):
                raise DuplicateEmailError("A client with this email already exists.")
            now = utcnow()
            stored = StoredClient(str(uuid.uuid4()), fields, ciphertext, now, now)
            self._write_raw([stored.to_json()] + self._normalized(items))
        logger.info("Client %s created", stored.id)
        return ClientRecord.from_fields(stored.id, fields, password, now, now)

    def update(self, client_id: str, data: Mapping[str, Any]) -> ClientRecord:
        client_id = clean_text(client_id)
        with self._lock():
            items = self._load_raw(strict=True)
            index, current = None, None
            for idx, item in enumerate(items):
                stored = decode_stored_client(item)
                if stored and stored.id == client_id:
                    index, current = idx, stored
                    break
            if current is None:
                raise ClientNotFoundError("Client not found.")

            fields, new_password = apply_client_changes(current.fields, data)
            if fields.email != current.fields.email and self._email_taken(
                items, fields.email, exclude_id=client_id
            ):
                raise DuplicateEmailError("Another client already uses this email.")

            if new_password is not None:
                ciphertext = self.cipher.encrypt(new_password)
                password = new_password
            else:
                ciphertext = current.password_ciphertext
                password = self.cipher.decrypt(ciphertext)

            updated = StoredClient(client_id, fields, ciphertext, current.created_at, utcnow())
            items = self._normalized(items)
            items[index] = updated.to_json()
            self._write_raw(items)
        logger.info("Client %s updated", client_id)
        return ClientRecord.from_fields(
            client_id, fields, password, updated.created_at, updated.updated_at
        )

    def remove(self, client_id: str) -> dict:
        client_id = clean_text(client_id)
        if not client_id:
            return {"removed": False}
        with self._lock():
            items = self._load_raw(strict=True)
            kept = [
                item
                for item in items
                if not (isinstance(item, dict) and clean_text(item.get("id")) == client_id)
            ]
            if len(kept) == len(items):
                return {"removed": False}
            self._write_raw(self._normalized(kept))
        logger.info("Client %s removed", client_id)
        return {"removed": True}
