from fastapi import HTTPException

from maestro_crm.services.exceptions import (
    NotFoundError,
    PreconditionError,
    ServiceError,
    ValidationError,
)


def to_http_exception(exc: ServiceError) -> HTTPException:
    """Map a service failure onto the single-message HTTP error returned to clients."""

    if isinstance(exc, ValidationError):
        status_code = 422
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, PreconditionError):
        status_code = 409
    else:
        status_code = 502
    return HTTPException(status_code=status_code, detail=str(exc))
