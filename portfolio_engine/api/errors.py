"""
Domain error -> HTTP status translation for the route layer
"""

import logging

from fastapi import HTTPException

from portfolio_engine.domain.exceptions import (
    AggregationIncompleteError,
    InsufficientDataError,
    InsufficientUnitsError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    PortfolioEngineError,
    SnapshotComputationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (InsufficientUnitsError, 422),
    (InsufficientDataError, 422),
    (SnapshotComputationError, 422),
    (AggregationIncompleteError, 422),
    (PersistenceError, 503),
)


def status_code_for(exc: PortfolioEngineError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def to_http_exception(exc: PortfolioEngineError) -> HTTPException:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("❌ %s: %s", type(exc).__name__, exc)
    return HTTPException(status_code=status_code, detail=str(exc))
