"""Structured logging infrastructure with JSON output and error tracking."""

from .service import ProductionLoggingService, StructuredFormatter, get_logger

__all__ = ["ProductionLoggingService", "StructuredFormatter", "get_logger"]
