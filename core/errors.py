"""
Error taxonomy shared by the import pipeline.

Every failure that crosses a component boundary is one of these.  Nothing
here is retried automatically; handlers in ``api/errors.py`` translate
them into HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class ImportServiceError(Exception):
    """Base class for all domain errors."""


class ConfigurationError(ImportServiceError):
    """Missing or malformed credentials / encryption key."""


class NotConnectedError(ImportServiceError):
    """The user has no stored OAuth connection and must re-authorise."""

    def __init__(self, user_id: int | str, message: Optional[str] = None):
        self.user_id = user_id
        super().__init__(message or f"User {user_id} has not connected their SharePoint account")


class DecryptionError(ImportServiceError):
    """Ciphertext cannot be read with the current key."""


class InvalidSourceError(ImportServiceError):
    """The source descriptor is unusable (bad URL, table name, file type)."""


class RemoteApiError(ImportServiceError):
    """
    Non-2xx response or transport failure from a third-party API.

    ``status_code`` is ``None`` for transport-level failures.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def __repr__(self) -> str:
        return f"RemoteApiError(status_code={self.status_code!r}, message={self.message!r})"


@dataclass(frozen=True)
class EmptyResult:
    """A well-formed fetch that produced zero data rows.  Returned, not raised."""

    source_type: str
    reason: str = "The selected source is empty."
