"""Common models and utilities used across the application."""

from datetime import datetime
from typing import Optional, Dict, Any, Generic, TypeVar

from pydantic import BaseModel, Field


T = TypeVar('T')


class OperationResult(BaseModel, Generic[T]):
    """Standard result wrapper for operations."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)

    @classmethod
    def success_result(
        cls,
        data: Optional[T] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> 'OperationResult[T]':
        """Create a successful operation result."""
        return cls(
            success=True,
            data=data,
            metadata=metadata or {}
        )

    @classmethod
    def error_result(
        cls,
        error: str,
        error_code: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> 'OperationResult[T]':
        """Create an error operation result."""
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            metadata=metadata or {}
        )


class HealthCheck(BaseModel):
    """Single component health check."""

    status: str  # healthy, degraded, unhealthy, disabled
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SystemHealth(BaseModel):
    """System health status."""

    status: str = "healthy"  # healthy, degraded
    checks: Dict[str, HealthCheck] = Field(default_factory=dict)
    last_check: datetime = Field(default_factory=datetime.now)
    uptime_seconds: Optional[float] = None

    def add_check(self, name: str, status: str, message: str, metadata: Optional[Dict[str, Any]] = None):
        """Add a health check result and downgrade overall status on failure."""
        self.checks[name] = HealthCheck(status=status, message=message, metadata=metadata or {})

        if status == "unhealthy":
            self.status = "degraded"
