"""
Shared request dependencies for the insight API
"""
from dataclasses import dataclass

from fastapi import Header, HTTPException

from app.services.exceptions import (
    InsufficientCredits,
    InvalidSchedule,
    JobAccessDenied,
    JobNotFound,
    PersistenceFailure,
)
from app.utils.logger import log


@dataclass
class Caller:
    user_id: str
    organization_id: str


async def get_caller(
    x_user_id: str = Header(..., alias="X-User-Id"),
    x_organization_id: str = Header(..., alias="X-Organization-Id"),
) -> Caller:
    """Caller identity as forwarded by the gateway"""
    return Caller(user_id=x_user_id, organization_id=x_organization_id)


def to_http_exception(error: Exception) -> HTTPException:
    """Map a pipeline error onto its HTTP status"""
    if isinstance(error, InsufficientCredits):
        return HTTPException(status_code=402, detail=str(error))
    if isinstance(error, JobNotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, JobAccessDenied):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, (InvalidSchedule, ValueError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, PersistenceFailure):
        log.error(f"Persistence failure: {str(error)}")
        return HTTPException(status_code=500, detail=str(error))

    log.error(f"Unexpected error: {str(error)}")
    return HTTPException(status_code=500, detail=str(error))
