"""Domain models and data structures."""

from .common import OperationResult, SystemHealth, HealthCheck
from .email import (
    Attachment, Message, TransportProfile, AttemptOutcome, FailureKind,
    DeliveryAttemptResult, DeliveryOutcome, EmailRecord, EmailStatus
)
from .forms import (
    FormType, ContactSubmission, BrochureRequestSubmission, StoredSubmission,
    sanitize_text, validation_errors
)

__all__ = [
    # Common
    "OperationResult", "SystemHealth", "HealthCheck",
    # Email
    "Attachment", "Message", "TransportProfile", "AttemptOutcome", "FailureKind",
    "DeliveryAttemptResult", "DeliveryOutcome", "EmailRecord", "EmailStatus",
    # Forms
    "FormType", "ContactSubmission", "BrochureRequestSubmission", "StoredSubmission",
    "sanitize_text", "validation_errors",
]
