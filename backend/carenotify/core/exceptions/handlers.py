from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from carenotify.domain.exceptions import (
    ConflictError,
    DomainError,
    InfrastructureError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)

_STATUS_BY_ERROR: list[tuple[type[DomainError], int]] = [
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 422),
    (InvalidStateError, 400),
    (InfrastructureError, 500),
]


def _status_for(exc: DomainError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def configure_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(
            request: Request, exc: DomainError
    ) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": exc.message})
