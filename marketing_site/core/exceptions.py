"""Exception hierarchy with error codes and context for the marketing site backend."""

from typing import Optional, Dict, Any, List


class MarketingSiteError(Exception):
    """Base exception for all marketing site errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.context = context or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None
        }


# Database Exceptions
class DatabaseError(MarketingSiteError):
    """Database operation failed."""
    pass


class SubmissionNotFoundError(DatabaseError):
    """Form submission not found in database."""

    def __init__(self, submission_id: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Submission {submission_id} not found",
            error_code="SUBMISSION_NOT_FOUND",
            context={"submission_id": submission_id, **(context or {})}
        )


# Email Exceptions
class EmailDeliveryError(MarketingSiteError):
    """Email delivery failed."""
    pass


class TransportConstructionError(EmailDeliveryError):
    """A transport handle could not be built from its profile."""

    def __init__(self, profile_name: str, reason: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Transport {profile_name} could not be constructed: {reason}",
            error_code="TRANSPORT_CONSTRUCTION_FAILED",
            context={"profile_name": profile_name, "reason": reason, **(context or {})}
        )


class EmailTemplateError(EmailDeliveryError):
    """Email template processing failed."""

    def __init__(self, template_id: str, reason: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Email template {template_id} processing failed: {reason}",
            error_code="EMAIL_TEMPLATE_ERROR",
            context={"template_id": template_id, "reason": reason, **(context or {})}
        )


# Configuration Exceptions
class ConfigurationError(MarketingSiteError):
    """Configuration error."""
    pass


class MissingConfigurationError(ConfigurationError):
    """Required configuration missing."""

    def __init__(self, config_key: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Required configuration missing: {config_key}",
            error_code="MISSING_CONFIGURATION",
            context={"config_key": config_key, **(context or {})}
        )


class InvalidConfigurationError(ConfigurationError):
    """Invalid configuration value."""

    def __init__(self, config_key: str, value: Any, reason: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Invalid configuration for {config_key}: {reason}",
            error_code="INVALID_CONFIGURATION",
            context={"config_key": config_key, "value": str(value), "reason": reason, **(context or {})}
        )


# Form Exceptions
class FormValidationError(MarketingSiteError):
    """Submitted form data failed validation."""

    def __init__(self, form_type: str, errors: List[Dict[str, str]], context: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"{form_type} form validation failed: "
            + ", ".join(f"{e['field']}: {e['message']}" for e in errors),
            error_code="FORM_VALIDATION_FAILED",
            context={"form_type": form_type, **(context or {})}
        )
        self.errors = errors


class BrochureNotFoundError(MarketingSiteError):
    """Brochure file is not available on disk."""

    def __init__(self, path: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            "Brochure not found",
            error_code="BROCHURE_NOT_FOUND",
            context={"path": path, **(context or {})}
        )
