from fastapi import HTTPException, status
from gradebook.core.errors import (
    BatchTooLarge, DecodeError, NetworkUnavailable, PermissionDenied,
    StoreError, Timeout, ValidationError, WriteRejected,
)

_STATUS = [
    (ValidationError, 422),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (WriteRejected, status.HTTP_409_CONFLICT),
    (BatchTooLarge, 413),
    (NetworkUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (Timeout, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DecodeError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]

def http_error(exc: StoreError) -> HTTPException:
    code = next((c for kind, c in _STATUS if isinstance(exc, kind)), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=code, detail={"kind": exc.kind, "message": exc.message, **exc.details})

def not_found(what: str, ident: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} {ident} non trovato")
