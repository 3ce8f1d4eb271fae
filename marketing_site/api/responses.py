"""Response models shared by the API routes."""

from datetime import datetime
from typing import Dict, Any, Optional
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response model."""
    success: bool = False
    error: str
    error_code: str
    details: Optional[Dict[str, Any]] = None
    request_id: str
    timestamp: str


class FormResponse(BaseModel):
    """Reply to a form submission."""
    success: bool
    message: str
    requestId: str


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: str
    version: str
    environment: str
    uptime_seconds: float
    checks: Dict[str, Dict[str, Any]]


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid4())


def error_response(
    request: Request,
    status_code: int,
    error: str,
    error_code: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            error_code=error_code,
            details=details,
            request_id=request_id_of(request),
            timestamp=datetime.now().isoformat()
        ).model_dump(),
        headers=headers
    )
