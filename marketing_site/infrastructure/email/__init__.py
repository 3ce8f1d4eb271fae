"""Email delivery: transport registry, transports, attempt executor and retrying service."""

from .executor import DeliveryAttemptExecutor, build_mime_message, classify_failure
from .profiles import TransportRegistry
from .providers import MailTransport, SMTPTransport, PooledSMTPTransport, MockTransport, TransportFactory
from .records import EmailRecordStore
from .service import ProductionEmailService, RetryPolicy
from .templates import EmailTemplateManager, RenderedEmail

__all__ = [
    "DeliveryAttemptExecutor",
    "build_mime_message",
    "classify_failure",
    "TransportRegistry",
    "MailTransport",
    "SMTPTransport",
    "PooledSMTPTransport",
    "MockTransport",
    "TransportFactory",
    "EmailRecordStore",
    "ProductionEmailService",
    "RetryPolicy",
    "EmailTemplateManager",
    "RenderedEmail"
]
