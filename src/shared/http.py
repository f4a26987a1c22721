"""Mapping of error kinds to HTTP responses.

Every domain error renders as::

    {"error": "<code>", "messages": {"<field>": ["..."]}}
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.exceptions import (
    AlreadyTerminal,
    DomainError,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    OptimisticConflict,
    PartialCartInvalid,
    PaymentGatewayError,
    PaymentMismatch,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# Most specific first
_STATUS_CODES: list[tuple[type[DomainError], int]] = [
    (NotFound, 404),
    (InsufficientStock, 409),
    (AlreadyTerminal, 409),
    (InvalidTransition, 409),
    (PaymentMismatch, 409),
    (OptimisticConflict, 409),
    (PartialCartInvalid, 422),
    (ValidationError, 422),
    (PaymentGatewayError, 502),
]


def status_code_for(exc: DomainError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.info(
        "Request rejected",
        path=request.url.path,
        error=exc.code,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content={"error": exc.code, "messages": exc.messages})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
