"""Domain helpers for client records: enumerations, normalization and validation."""
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .errors import EmptyPasswordError, ValidationError

PLAN_OPTIONS = ("Starter", "Growth", "Enterprise", "Custom")
STATUS_OPTIONS = ("Active", "Pending", "Trial", "Churn Risk", "Offboarded")
DEFAULT_PLAN = "Starter"
DEFAULT_STATUS = "Pending"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _match_option(value: Any, options: tuple[str, ...], default: str) -> str:
    if not isinstance(value, str):
        return default
    wanted = value.strip().lower()
    for option in options:
        if option.lower() == wanted:
            return option
    return default


def normalize_plan(value: Any) -> str:
    return _match_option(value, PLAN_OPTIONS, DEFAULT_PLAN)


def normalize_status(value: Any) -> str:
    return _match_option(value, STATUS_OPTIONS, DEFAULT_STATUS)


def normalize_email(value: Any) -> str:
    return clean_text(value).lower()


def is_valid_email(value: str | None) -> bool:
    if not value:
        return False
    return bool(EMAIL_PATTERN.match(value))


def utcnow() -> datetime:
    """Current UTC time truncated to milliseconds (the precision persisted in JSON)."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    # Normaliza datetimes sem fuso como UTC
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class ClientFields:
    """Caller-editable fields of a client, already normalized."""

    name: str
    email: str
    company: str = ""
    phone: str = ""
    plan: str = DEFAULT_PLAN
    status: str = DEFAULT_STATUS
    notes: str = ""


@dataclass
class ClientRecord:
    id: str
    name: str
    email: str
    password: str
    company: str = ""
    phone: str = ""
    plan: str = DEFAULT_PLAN
    status: str = DEFAULT_STATUS
    notes: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_fields(
        cls,
        client_id: str,
        fields: ClientFields,
        password: str,
        created_at: datetime,
        updated_at: datetime,
    ) -> "ClientRecord":
        return cls(
            id=client_id,
            name=fields.name,
            email=fields.email,
            password=password,
            company=fields.company,
            phone=fields.phone,
            plan=fields.plan,
            status=fields.status,
            notes=fields.notes,
            created_at=created_at,
            updated_at=updated_at,
        )

    @property
    def fields(self) -> ClientFields:
        return ClientFields(
            name=self.name,
            email=self.email,
            company=self.company,
            phone=self.phone,
            plan=self.plan,
            status=self.status,
            notes=self.notes,
        )

    def to_dict(self, *, include_password: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "company": self.company,
            "email": self.email,
            "phone": self.phone,
            "plan": self.plan,
            "status": self.status,
            "notes": self.notes,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if include_password:
            data["password"] = self.password
        return data


def _require_name(value: Any) -> str:
    name = clean_text(value)
    if not name:
        raise ValidationError("Client name is required.")
    return name


def _require_email(value: Any) -> str:
    email = normalize_email(value)
    if not is_valid_email(email):
        raise ValidationError("A valid email address is required.")
    return email


def prepare_new_client(data: Mapping[str, Any]) -> tuple[ClientFields, str]:
    """Validate create input and return the normalized fields plus the plain password."""
    name = _require_name(data.get("name"))
    email = _require_email(data.get("email"))
    password = clean_text(data.get("password"))
    if not password:
        raise ValidationError("A password is required.")
    fields = ClientFields(
        name=name,
        email=email,
        company=clean_text(data.get("company")),
        phone=clean_text(data.get("phone")),
        plan=normalize_plan(data.get("plan")),
        status=normalize_status(data.get("status")),
        notes=clean_text(data.get("notes")),
    )
    return fields, password


def apply_client_changes(
    current: ClientFields, data: Mapping[str, Any]
) -> tuple[ClientFields, Optional[str]]:
    """
    Merge a partial update into ``current``.

    Keys that are missing (or None) keep the previous value. The password is
    returned separately: None means "keep the stored secret", while a blank
    string is rejected with EmptyPasswordError.
    """
    changes: dict[str, str] = {}
    if data.get("name") is not None:
        changes["name"] = _require_name(data["name"])
    if data.get("email") is not None:
        changes["email"] = _require_email(data["email"])
    for key in ("company", "phone", "notes"):
        if data.get(key) is not None:
            changes[key] = clean_text(data[key])
    changes["plan"] = normalize_plan(data["plan"] if data.get("plan") is not None else current.plan)
    changes["status"] = normalize_status(
        data["status"] if data.get("status") is not None else current.status
    )

    password: Optional[str] = None
    if data.get("password") is not None:
        password = clean_text(data["password"])
        if not password:
            raise EmptyPasswordError("Password cannot be empty.")
    return replace(current, **changes), password


def matches_query(record: ClientRecord, query: str | None) -> bool:
    """Case-insensitive search over name, e-mail and notes."""
    needle = (query or "").strip().lower()
    if not needle:
        return True
    return (
        needle in record.name.lower()
        or needle in record.email.lower()
        or needle in (record.notes or "").lower()
    )
