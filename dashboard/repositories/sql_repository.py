"""Client store backed by SQLAlchemy (Postgres in production, SQLite in tests)."""
from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Callable, ContextManager, Mapping, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from dashboard.core.crypto import CipherError, SecretCipher
from dashboard.db.create_tables import create_all
from dashboard.db.models import Client
from dashboard.db.session import get_engine, get_session, make_sessionmaker
from dashboard.domain.clients import (
    ClientFields,
    ClientRecord,
    apply_client_changes,
    clean_text,
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

logger = logging.getLogger(__name__)


def _fields_from_row(row: Client) -> ClientFields:
    return ClientFields(
        name=row.name,
        email=row.email,
        company=row.company or "",
        phone=row.phone or "",
        plan=normalize_plan(row.plan),
        status=normalize_status(row.status),
        notes=row.notes or "",
    )


class SQLClientRepository:
    """
    ClientStore on a relational table.

    Uniqueness is enforced by the ``lower(email)`` unique index and every
    mutation is a single-row statement, so no application lock is needed.
    """

    def __init__(
        self,
        cipher: SecretCipher,
        *,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        engine=None,
    ) -> None:
        self.cipher = cipher
        self._engine = engine
        if engine is not None and session_factory is get_session:
            # Session do SQLAlchemy ja e um context manager
            session_factory = make_sessionmaker(engine)
        self._session_factory = session_factory
        self._tables_ready = False
        self._tables_lock = threading.Lock()

    # -------------------------- helpers --------------------------
    def _ensure_tables(self) -> None:
        if self._tables_ready:
            return
        with self._tables_lock:
            if self._tables_ready:
                return
            try:
                create_all(self._engine or get_engine())
            except OperationalError as exc:
                raise StorageUnavailableError("Database is unavailable. Try again later.") from exc
            self._tables_ready = True

    def _session(self) -> ContextManager[Session]:
        self._ensure_tables()
        return self._session_factory()

    def _to_record(self, row: Client, password: str | None = None) -> ClientRecord:
        if password is None:
            password = self.cipher.decrypt(row.password_ciphertext)
        created_at = parse_timestamp(row.created_at) or utcnow()
        return ClientRecord.from_fields(
            row.id,
            _fields_from_row(row),
            password,
            created_at,
            parse_timestamp(row.updated_at) or created_at,
        )

    @staticmethod
    def _email_taken(session: Session, email: str, *, exclude_id: str | None = None) -> bool:
        stmt = select(Client.id).where(func.lower(Client.email) == email)
        if exclude_id is not None:
            stmt = stmt.where(Client.id != exclude_id)
        return session.execute(stmt.limit(1)).first() is not None

    # -------------------------- public API --------------------------
    def read_all(self) -> list[ClientRecord]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(Client).order_by(Client.created_at.desc())
                ).scalars().all()
        except OperationalError as exc:
            raise StorageUnavailableError("Database is unavailable. Try again later.") from exc
        records = []
        for row in rows:
            try:
                records.append(self._to_record(row))
            except CipherError as exc:
                logger.error("Skipping client %s: password could not be decrypted (%s)", row.id, exc)
        return records

    def get(self, client_id: str) -> Optional[ClientRecord]:
        try:
            with self._session() as session:
                row = session.get(Client, clean_text(client_id))
        except OperationalError as exc:
            raise StorageUnavailableError("Database is unavailable. Try again later.") from exc
        if not row:
            return None
        try:
            return self._to_record(row)
        except CipherError as exc:
            logger.error("Client %s password could not be decrypted (%s)", row.id, exc)
            return None

    def add(self, data: Mapping[str, Any]) -> ClientRecord:
        fields, password = prepare_new_client(data)
        now = utcnow()
        entity = Client(
            id=str(uuid.uuid4()),
            name=fields.name,
            company=fields.company,
            email=fields.email,
            phone=fields.phone,
            plan=fields.plan,
            status=fields.status,
            password_ciphertext=self.cipher.encrypt(password),
            notes=fields.notes,
            created_at=now,
            updated_at=now,
        )
        try:
            with self._session() as session:
                if self._email_taken(session, fields.email):
                    raise DuplicateEmailError("A client with this email already exists.")
                session.add(entity)
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise DuplicateEmailError("A client with this email already exists.") from exc
        except OperationalError as exc:
            raise StorageUnavailableError("Database is unavailable. Try again later.") from exc
        logger.info("Client %s created", entity.id)
        return ClientRecord.from_fields(entity.id, fields, password, now, now)

    def update(self, client_id: str, data: Mapping[str, Any]) -> ClientRecord:
        client_id = clean_text(client_id)
        try:
            with self._session() as session:
                row = session.get(Client, client_id)
                if not row:
                    raise ClientNotFoundError("Client not found.")
                current = _fields_from_row(row)
                fields, new_password = apply_client_changes(current, data)
                if fields.email != current.email and self._email_taken(
                    session, fields.email, exclude_id=client_id
                ):
                    raise DuplicateEmailError("Another client already uses this email.")

                if new_password is not None:
                    row.password_ciphertext = self.cipher.encrypt(new_password)
                    password = new_password
                else:
                    password = self.cipher.decrypt(row.password_ciphertext)

                row.name = fields.name
                row.company = fields.company
                row.email = fields.email
                row.phone = fields.phone
                row.plan = fields.plan
                row.status = fields.status
                row.notes = fields.notes
                row.updated_at = utcnow()
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise DuplicateEmailError("Another client already uses this email.") from exc
                session.refresh(row)
                record = self._to_record(row, password)
        except OperationalError as exc:
            raise StorageUnavailableError("Database is unavailable. Try again later.") from exc
        logger.info("Client %s updated", client_id)
        return record

    def remove(self, client_id: str) -> dict:
        client_id = clean_text(client_id)
        if not client_id:
            return {"removed": False}
        try:
            with self._session() as session:
                result = session.execute(delete(Client).where(Client.id == client_id))
                session.commit()
        except OperationalError as exc:
            raise StorageUnavailableError("Database is unavailable. Try again later.") from exc
        removed = (result.rowcount or 0) > 0
        if removed:
            logger.info("Client %s removed", client_id)
        return {"removed": removed}
