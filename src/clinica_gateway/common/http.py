"""Translate hybrid service results into HTTP responses."""

from fastapi import HTTPException

from clinica_gateway.common.exceptions import NotFoundError
from clinica_gateway.common.schemas import ApiResponse


def unwrap(result: ApiResponse) -> ApiResponse:
    """Return a successful result or raise the matching error.

    "Not found" messages raise NotFoundError, which the app maps to 404.
    Any other business rejection becomes a 400.
    """
    if result.success:
        return result
    message = result.message or "Request failed"
    if "not found" in message.lower():
        raise NotFoundError(message)
    raise HTTPException(status_code=400, detail=message)
