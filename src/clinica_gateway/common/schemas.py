"""Shared Pydantic schemas for Clinica-Gateway."""

import math
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "clinica-gateway"


class ErrorResponse(BaseModel):
    error: str
    code: str
    detail: str = ""


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(alias="totalPages")

    model_config = {"populate_by_name": True}

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        pages = math.ceil(total / limit) if limit else 0
        return cls(page=page, limit=limit, total=total, total_pages=pages)


class ApiResponse(BaseModel):
    """Uniform envelope returned by every hybrid service call.

    Callers never learn which backend answered; ``data`` may carry either
    the SOAP-origin or the database-origin shape of the same record.
    """

    success: bool
    data: Any = None
    message: Optional[str] = None
    pagination: Optional[Pagination] = None

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None,
           pagination: Pagination | None = None) -> "ApiResponse":
        return cls(success=True, data=data, message=message, pagination=pagination)

    @classmethod
    def fail(cls, message: str, data: Any = None) -> "ApiResponse":
        return cls(success=False, message=message, data=data)


class ServiceStatus(BaseModel):
    soap_enabled: bool = Field(alias="soapEnabled")
    mode: Literal["soap_primary", "database_only"]
    description: str

    model_config = {"populate_by_name": True, "frozen": True}
