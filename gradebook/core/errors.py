from __future__ import annotations
from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base per tutti gli errori del data-access layer."""

    kind = "store_error"
    retryable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(StoreError):
    """Payload rifiutato localmente, prima di qualsiasi chiamata al backend."""

    kind = "validation"

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message, details={"field": field} if field else None)
        self.field = field


class DecodeError(StoreError):
    kind = "decode"


class PermissionDenied(StoreError):
    """Il backend ha rifiutato l'operazione secondo la sua policy."""

    kind = "permission_denied"


PolicyRejected = PermissionDenied


class WriteRejected(StoreError):
    """Rifiuto lato backend non legato alla policy (es. update su documento inesistente)."""

    kind = "rejected"


class NetworkUnavailable(StoreError):
    kind = "network_unavailable"
    retryable = True


class Timeout(StoreError):
    kind = "timeout"
    retryable = True


class BatchTooLarge(StoreError):
    kind = "batch_too_large"

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Batch of {size} operations exceeds the limit of {limit}",
            details={"size": size, "limit": limit},
        )
        self.size = size
        self.limit = limit
