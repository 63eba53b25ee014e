from __future__ import annotations

import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from dashboard.core.crypto import CipherError
from dashboard.domain.errors import (
    ClientNotFoundError,
    ClientStoreError,
    DuplicateEmailError,
    StorageUnavailableError,
    ValidationError,
)
from dashboard.services.client_service import ClientService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clients", tags=["clients"])


class ClientCreatePayload(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    plan: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class ClientUpdatePayload(ClientCreatePayload):
    pass


def _get_client_service(request: Request) -> ClientService:
    svc = getattr(getattr(request.app, "state", None), "client_service", None)
    if not svc:
        raise RuntimeError("ClientService not configured")
    return svc


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, ValidationError):
        raise HTTPException(400, str(exc)) from exc
    if isinstance(exc, DuplicateEmailError):
        raise HTTPException(409, str(exc)) from exc
    if isinstance(exc, ClientNotFoundError):
        raise HTTPException(404, str(exc)) from exc
    if isinstance(exc, StorageUnavailableError):
        logger.warning("Client storage unavailable: %s", exc)
        raise HTTPException(503, "Client storage is busy. Try again later.") from exc
    if isinstance(exc, CipherError):
        logger.error("Stored client secret could not be decrypted: %s", exc)
        raise HTTPException(500, "Stored client secret could not be decrypted.") from exc
    raise exc


@router.get("")
def list_clients(request: Request, q: str = "", redact: bool = False):
    svc = _get_client_service(request)
    try:
        clients = svc.list_clients(q)
    except ClientStoreError as exc:
        _raise_http(exc)
    return {"clients": [c.to_dict(include_password=not redact) for c in clients]}


@router.get("/{client_id}")
def get_client(client_id: str, request: Request):
    svc = _get_client_service(request)
    try:
        client = svc.get_client(client_id)
    except ClientStoreError as exc:
        _raise_http(exc)
    return {"client": client.to_dict()}


@router.post("", status_code=201)
def create_client(payload: ClientCreatePayload, request: Request):
    svc = _get_client_service(request)
    try:
        client = svc.create_client(payload.model_dump(exclude_unset=True))
    except ClientStoreError as exc:
        _raise_http(exc)
    return {"client": client.to_dict()}


@router.patch("/{client_id}")
def update_client(client_id: str, payload: ClientUpdatePayload, request: Request):
    svc = _get_client_service(request)
    try:
        # apenas os campos enviados; "password" ausente mantem a senha atual
        client = svc.update_client(client_id, payload.model_dump(exclude_unset=True))
    except (ClientStoreError, CipherError) as exc:
        _raise_http(exc)
    return {"client": client.to_dict()}


@router.delete("/{client_id}")
def delete_client(client_id: str, request: Request):
    svc = _get_client_service(request)
    try:
        removed = svc.delete_client(client_id)
    except ClientStoreError as exc:
        _raise_http(exc)
    if not removed:
        raise HTTPException(404, "Client not found.")
    return {"removed": True}
