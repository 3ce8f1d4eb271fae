"""Email delivery domain models: messages, transport profiles, attempts and outcomes."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AttemptOutcome(str, Enum):
    """Outcome kind of a single delivery attempt."""
    SUCCESS = "success"
    TRANSIENT = "transient"
    FATAL = "fatal"


class FailureKind(str, Enum):
    """Classification of a failed delivery attempt."""
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    TEMPORARY_REJECTION = "temporary_rejection"
    PERMANENT_REJECTION = "permanent_rejection"
    MALFORMED_MESSAGE = "malformed_message"
    TLS = "tls"
    UNKNOWN = "unknown"


class EmailStatus(str, Enum):
    """Final status of a delivery run."""
    SENT = "sent"
    FAILED = "failed"


class Attachment(BaseModel):
    """File attached to an outgoing message, from disk or from memory."""

    filename: str = Field(..., min_length=1, max_length=255)
    path: Optional[Path] = None
    content: Optional[bytes] = None
    content_type: str = "application/octet-stream"

    @model_validator(mode="after")
    def _check_source(self) -> "Attachment":
        if self.path is None and self.content is None:
            raise ValueError("attachment needs either a path or content")
        return self

    def read(self) -> bytes:
        """Return the attachment payload, reading it from disk if needed."""
        if self.content is not None:
            return self.content
        return Path(self.path).read_bytes()


class Message(BaseModel):
    """Unit of work submitted for delivery."""

    to: List[str] = Field(..., min_length=1)
    subject: str = Field(..., min_length=1, max_length=998)
    html: str = ""
    text: Optional[str] = None
    sender: Optional[str] = None
    reply_to: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)

    @field_validator("to", mode="before")
    @classmethod
    def _normalize_recipients(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        recipients = [item.strip() for item in value if item and item.strip()]
        if not recipients:
            raise ValueError("at least one recipient is required")
        return recipients

    @field_validator("subject")
    @classmethod
    def _subject_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("subject must not be blank")
        return value


class TransportProfile(BaseModel):
    """A named SMTP connection configuration. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=100)
    kind: str = "smtp"  # smtp, mock
    host: str = ""
    port: int = 587
    secure: bool = False  # implicit TLS from the first byte
    require_tls: bool = False  # upgrade with STARTTLS
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    verify_certificates: bool = True

    # Connection pooling, honoured in production only
    pool: bool = False
    max_connections: int = Field(default=5, ge=1)
    max_messages: int = Field(default=100, ge=1)

    timeout: float = Field(default=20.0, gt=0)
    options: Dict[str, Any] = Field(default_factory=dict)

    def signature(self) -> Tuple[Any, ...]:
        """Connection-relevant identity used to collapse duplicate profiles."""
        return (self.kind, self.host.lower(), self.port, self.secure, self.require_tls, self.verify_certificates)

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        return {
            "name": self.name,
            "kind": self.kind,
            "host": self.host,
            "port": self.port,
            "secure": self.secure,
            "require_tls": self.require_tls,
            "username": self.username,
            "verify_certificates": self.verify_certificates,
            "pool": self.pool,
        }


class DeliveryAttemptResult(BaseModel):
    """Outcome of one (transport, attempt) combination."""

    outcome: AttemptOutcome
    transport_name: str
    transport_index: int  # 1-based position in the registry
    attempt: int = 1  # 1-based attempt number on this transport
    delay_before: float = 0.0  # backoff slept before this attempt, seconds

    # Failure details
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    smtp_command: Optional[str] = None
    smtp_code: Optional[int] = None
    smtp_response: Optional[str] = None

    # Success details
    message_id: Optional[str] = None
    response: Optional[str] = None
    accepted: List[str] = Field(default_factory=list)

    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS


class DeliveryOutcome(BaseModel):
    """Final result returned by the orchestrator to its caller."""

    success: bool
    message_id: Optional[str] = None
    transport_used: Optional[int] = None  # 1-based registry index
    transport_name: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    attempts: List[DeliveryAttemptResult] = Field(default_factory=list)
    diagnostics: Dict[str, Any] = Field(default_factory=dict)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def attempts_for(self, transport_name: str) -> List[DeliveryAttemptResult]:
        """Attempts made on one transport profile, in order."""
        return [a for a in self.attempts if a.transport_name == transport_name]


class EmailRecord(BaseModel):
    """Summary of one completed delivery run, kept for observability."""

    id: UUID = Field(default_factory=uuid4)
    recipient: str
    sender: str
    subject: str
    status: EmailStatus
    message_id: Optional[str] = None
    error: Optional[str] = None
    transport_name: Optional[str] = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_outcome(cls, message: Message, sender: str, outcome: DeliveryOutcome) -> "EmailRecord":
        return cls(
            recipient=", ".join(message.to),
            sender=sender,
            subject=message.subject,
            status=EmailStatus.SENT if outcome.success else EmailStatus.FAILED,
            message_id=outcome.message_id,
            error=outcome.error,
            transport_name=outcome.transport_name,
            attempts=outcome.attempt_count,
        )
