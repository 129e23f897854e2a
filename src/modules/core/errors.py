"""Translation of domain errors into DRF responses.

Views catch ``DomainError`` around every service call and hand the
exception to :func:`domain_error_response`.  Anything that is not a
``DomainError`` propagates and becomes a 500.
"""

from __future__ import annotations

from typing import Dict, Type

import structlog
from rest_framework import status
from rest_framework.response import Response

from shared.domain.exceptions import (
    AuthorizationError,
    DomainError,
    InputValidationError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceConflictError,
    StateConflictError,
)

logger = structlog.get_logger(__name__)

DOMAIN_ERROR_STATUS: Dict[Type[DomainError], int] = {
    InputValidationError: status.HTTP_400_BAD_REQUEST,
    InvalidTransitionError: status.HTTP_400_BAD_REQUEST,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    StateConflictError: status.HTTP_409_CONFLICT,
    InsufficientStockError: status.HTTP_409_CONFLICT,
    PersistenceConflictError: status.HTTP_409_CONFLICT,
}


def status_for(exc: DomainError) -> int:
    for error_class in type(exc).__mro__:
        if error_class in DOMAIN_ERROR_STATUS:
            return DOMAIN_ERROR_STATUS[error_class]
    return status.HTTP_400_BAD_REQUEST


def domain_error_response(exc: DomainError) -> Response:
    http_status = status_for(exc)
    logger.info(
        "api.domain_error",
        error=type(exc).__name__,
        detail=str(exc),
        status_code=http_status,
    )
    body = {"detail": str(exc)}
    if isinstance(exc, InvalidTransitionError):
        body.update(
            {
                "from_status": exc.from_status,
                "to_status": exc.to_status,
                "role": exc.role,
            }
        )
    return Response(body, status=http_status)
