"""Structured JSON logging for the site backend, one rotating file per component."""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any
from uuid import UUID, uuid4

from ...core.exceptions import MarketingSiteError


ROOT_LOGGER = "marketing_site"

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'taskName', 'getMessage', 'exc_info',
    'exc_text', 'stack_info'
}


def get_logger(component: str) -> logging.Logger:
    """Return the component logger, e.g. ``get_logger("email")`` -> ``marketing_site.email``."""
    if not component or component == ROOT_LOGGER:
        return logging.getLogger(ROOT_LOGGER)
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": getattr(record, 'module', None),
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ProductionLoggingService:
    """Owns the component loggers and the structured helpers the app logs through."""

    def __init__(
        self,
        log_dir: Path,
        log_level: str = "INFO",
        max_file_size: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
        console: Optional[bool] = None
    ):
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.console = self.log_level <= logging.DEBUG if console is None else console

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_loggers()

        self.session_id = uuid4()

    def _setup_loggers(self):
        """Setup structured loggers for different components."""

        self.app_logger = self._create_logger(
            get_logger(ROOT_LOGGER),
            self.log_dir / "application.log"
        )

        self.api_logger = self._create_logger(
            get_logger("api"),
            self.log_dir / "api.log"
        )

        self.email_logger = self._create_logger(
            get_logger("email"),
            self.log_dir / "email.log"
        )

        self.database_logger = self._create_logger(
            get_logger("database"),
            self.log_dir / "database.log"
        )

        # Error logger (all errors)
        self.error_logger = self._create_logger(
            get_logger("errors"),
            self.log_dir / "errors.log",
            level=logging.ERROR
        )

    def _create_logger(
        self,
        logger: logging.Logger,
        log_file: Path,
        level: Optional[int] = None
    ) -> logging.Logger:
        """Attach a rotating JSON file handler to the logger."""

        logger.setLevel(level or self.log_level)

        # Remove existing handlers to avoid duplicates
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

        if self.console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(StructuredFormatter())
            logger.addHandler(console_handler)

        # Component records stay in their own file only
        logger.propagate = False

        return logger

    def close(self):
        """Flush and detach every handler this service installed."""
        for logger in (self.app_logger, self.api_logger, self.email_logger,
                       self.database_logger, self.error_logger):
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

    def log_application_event(
        self,
        message: str,
        level: str = "INFO",
        component: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        """Log application event with structured data."""

        extra = {
            "component": component,
            "operation": operation,
            "session_id": str(self.session_id),
            **kwargs
        }

        log_level = getattr(logging, level.upper())
        self.app_logger.log(log_level, message, extra=extra)

    def log_api_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        request_id: Optional[str] = None,
        **kwargs
    ):
        """Log API request with timing and metadata."""

        extra = {
            "request_method": method,
            "request_path": path,
            "response_status": status_code,
            "duration_ms": duration_ms,
            "user_agent": user_agent,
            "ip_address": ip_address,
            "request_id": request_id,
            "session_id": str(self.session_id),
            **kwargs
        }

        level = logging.ERROR if status_code >= 500 else logging.WARNING if status_code >= 400 else logging.INFO
        self.api_logger.log(level, f"{method} {path} - {status_code} ({duration_ms:.2f}ms)", extra=extra)

    def log_email_operation(
        self,
        operation: str,
        to_email: Optional[str] = None,
        transport: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        level: Optional[str] = None,
        **kwargs
    ):
        """Log one step of a delivery run (attempt, retry, fallback, final result)."""

        extra = {
            "operation": operation,
            "to_email": to_email,
            "transport": transport,
            "success": success,
            "error_message": error_message,
            "session_id": str(self.session_id),
            **kwargs
        }

        if level:
            log_level = getattr(logging, level.upper())
        else:
            log_level = logging.ERROR if not success else logging.INFO

        message = f"Email {operation}"
        if to_email:
            message += f" to {to_email}"
        if transport:
            message += f" via {transport}"
        if error_message:
            message += f" - Error: {error_message}"

        self.email_logger.log(log_level, message, extra=extra)

    def log_database_operation(
        self,
        operation: str,
        table: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        **kwargs
    ):
        """Log database operation with performance metrics."""

        extra = {
            "operation": operation,
            "table": table,
            "entity_id": str(entity_id) if entity_id else None,
            "duration_ms": duration_ms,
            "success": success,
            "error_message": error_message,
            "session_id": str(self.session_id),
            **kwargs
        }

        level = logging.ERROR if not success else logging.DEBUG
        message = f"Database {operation}"
        if table:
            message += f" on {table}"
        if duration_ms:
            message += f" ({duration_ms:.2f}ms)"
        if error_message:
            message += f" - Error: {error_message}"

        self.database_logger.log(level, message, extra=extra)

    def log_error(
        self,
        error: Exception,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log error with full context and stack trace."""

        extra = {
            "component": component,
            "operation": operation,
            "error_type": type(error).__name__,
            "context": context or {},
            "session_id": str(self.session_id),
            **kwargs
        }

        if isinstance(error, MarketingSiteError):
            extra.update({
                "error_code": error.error_code,
                "error_context": error.context,
                "error_cause": str(error.cause) if error.cause else None
            })

        message = f"Error in {component or 'unknown'}"
        if operation:
            message += f" during {operation}"
        message += f": {str(error)}"

        exc_info = (type(error), error, error.__traceback__)
        self.error_logger.error(message, exc_info=exc_info, extra=extra)
        self.app_logger.error(message, exc_info=exc_info, extra=extra)

    def get_log_statistics(self) -> Dict[str, Any]:
        """Get logging statistics and health info."""

        stats = {
            "session_id": str(self.session_id),
            "log_directory": str(self.log_dir),
            "log_level": logging.getLevelName(self.log_level),
            "loggers": {},
            "log_files": []
        }

        for logger in (self.app_logger, self.api_logger, self.email_logger,
                       self.database_logger, self.error_logger):
            stats["loggers"][logger.name] = {
                "level": logging.getLevelName(logger.level),
                "handlers": len(logger.handlers),
                "disabled": logger.disabled
            }

        for log_file in sorted(self.log_dir.glob("*.log*")):
            file_stat = log_file.stat()
            stats["log_files"].append({
                "name": log_file.name,
                "size_bytes": file_stat.st_size,
                "modified": datetime.fromtimestamp(file_stat.st_mtime).isoformat()
            })

        return stats
