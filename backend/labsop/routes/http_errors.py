from fastapi import HTTPException, status
from sqlalchemy.orm.exc import StaleDataError

from ..services.errors import (
    ConfigurationConflict,
    InvalidConfiguration,
    InvalidTransition,
    ReferentialIntegrityViolation,
    SOPConfigError,
    SOPNotFound,
)

# purpose: translate SOP service failures into HTTP responses
# status: pilot

_STATUS_BY_ERROR = (
    (SOPNotFound, status.HTTP_404_NOT_FOUND),
    (ReferentialIntegrityViolation, status.HTTP_409_CONFLICT),
    (ConfigurationConflict, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_400_BAD_REQUEST),
    (InvalidConfiguration, status.HTTP_400_BAD_REQUEST),
)


def sop_http_error(exc: SOPConfigError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def stale_write_error(exc: StaleDataError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="SOP record was modified by another editor; reload and retry",
    )
