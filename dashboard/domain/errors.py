"""Errors raised by client stores and mapped by the HTTP layer."""

from __future__ import annotations


class ClientStoreError(Exception):
    """Base exception for client persistence workflows."""


class ValidationError(ClientStoreError):
    """Raised when input is missing a required field or is malformed."""


class EmptyPasswordError(ValidationError):
    """Raised when an update supplies a blank password."""


class DuplicateEmailError(ClientStoreError):
    """Raised when another client already uses the e-mail address."""


class ClientNotFoundError(ClientStoreError):
    """Raised when the client id does not exist."""


class StorageUnavailableError(ClientStoreError):
    """Raised on lock timeouts or when the backing store cannot be reached."""
