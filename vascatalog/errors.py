"""Exceptions raised by the catalog sync pipeline."""

from __future__ import annotations

from typing import Any


class CatalogSyncError(Exception):
    """Base class for catalog sync failures."""


class ConfigurationError(CatalogSyncError):
    """Supplier configuration is incomplete for the requested mode."""


class AuthenticationError(CatalogSyncError):
    """Token request failed or returned a malformed payload."""


class RequestFailed(CatalogSyncError):
    """Supplier call returned a non-2xx status after the retry policy ran."""

    def __init__(self, message: str, *, status: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class SupplierApiError(RequestFailed):
    """HTTP 200 response carrying a supplier business error envelope."""

    def __init__(self, code: Any, message: str | None = None, *, body: Any = None) -> None:
        self.code = code
        self.error_message = message or "Unknown error"
        super().__init__(f"Supplier API error: {self.error_message} (code {code})", status=200, body=body)


class NormalizationError(CatalogSyncError):
    """A supplier record cannot be mapped to a product variant."""


class PersistenceError(CatalogSyncError):
    """Writing one catalog record failed."""

    def __init__(self, key: str, cause: Exception) -> None:
        super().__init__(f"Failed to persist {key}: {cause}")
        self.key = key
        self.cause = cause
