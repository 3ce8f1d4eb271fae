"""Single delivery attempt: MIME composition, one send, failure classification."""

import asyncio
import ssl
import time
from email.message import EmailMessage
from email.utils import formatdate, make_msgid, parseaddr
from typing import Optional, Tuple

import aiosmtplib

from ...core.models.email import (
    AttemptOutcome, DeliveryAttemptResult, FailureKind, Message
)
from .providers import MailTransport


Classification = Tuple[AttemptOutcome, FailureKind]

# Message fragments of TLS setup problems that retrying will not fix
TLS_ERROR_PATTERNS = (
    'wrong_version_number',
    'certificate verify failed',
    'ssl handshake',
    'certificate_unknown',
    'unknown_ca',
    'certificate has expired',
    'self signed certificate',
    'self-signed certificate',
)

AUTH_CODES = (530, 534, 535)


class MalformedMessageError(ValueError):
    """The message could not be turned into a sendable MIME document."""


def build_mime_message(message: Message, sender: str) -> EmailMessage:
    """Compose the MIME document for a Message.

    Text and HTML bodies become a multipart/alternative; attachments are read
    eagerly so an unreadable file fails before any connection is opened.
    """
    mime = EmailMessage()
    mime['Subject'] = message.subject
    from_header = message.sender or sender
    if from_header:
        mime['From'] = from_header
    mime['To'] = ", ".join(message.to)
    if message.reply_to:
        mime['Reply-To'] = message.reply_to
    mime['Date'] = formatdate(localtime=True)

    domain = parseaddr(from_header or '')[1].rpartition('@')[2] or None
    mime['Message-ID'] = make_msgid(domain=domain)

    text = message.text or "This message requires an HTML capable email client."
    mime.set_content(text)
    if message.html:
        mime.add_alternative(message.html, subtype='html')

    for attachment in message.attachments:
        try:
            payload = attachment.read()
        except OSError as e:
            raise MalformedMessageError(f"attachment {attachment.filename} unreadable: {e}") from e
        maintype, _, subtype = attachment.content_type.partition('/')
        mime.add_attachment(
            payload,
            maintype=maintype or 'application',
            subtype=subtype or 'octet-stream',
            filename=attachment.filename
        )

    return mime


def _smtp_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, 'code', None)
    return code if isinstance(code, int) and code > 0 else None


def _by_code(code: int) -> Classification:
    if code in AUTH_CODES:
        return AttemptOutcome.FATAL, FailureKind.AUTHENTICATION
    if 400 <= code < 500:
        return AttemptOutcome.TRANSIENT, FailureKind.TEMPORARY_REJECTION
    return AttemptOutcome.FATAL, FailureKind.PERMANENT_REJECTION


def _looks_like_tls_failure(exc: BaseException) -> bool:
    text = f"{exc} {exc.__cause__ or ''}".lower()
    return any(pattern in text for pattern in TLS_ERROR_PATTERNS)


def classify_failure(exc: BaseException) -> Classification:
    """Decide whether a failed attempt is worth retrying on the same transport.

    Authentication, TLS setup and permanent 5xx rejections are fatal for the
    transport. Connection problems, timeouts and 4xx replies are transient.
    Anything unrecognised is treated as transient.
    """
    if isinstance(exc, MalformedMessageError):
        return AttemptOutcome.FATAL, FailureKind.MALFORMED_MESSAGE

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, aiosmtplib.SMTPTimeoutError)):
        return AttemptOutcome.TRANSIENT, FailureKind.TIMEOUT

    if isinstance(exc, aiosmtplib.SMTPAuthenticationError):
        return AttemptOutcome.FATAL, FailureKind.AUTHENTICATION

    if isinstance(exc, aiosmtplib.SMTPRecipientsRefused):
        codes = [r.code for r in exc.recipients]
        if codes and all(400 <= code < 500 for code in codes):
            return AttemptOutcome.TRANSIENT, FailureKind.TEMPORARY_REJECTION
        return AttemptOutcome.FATAL, FailureKind.MALFORMED_MESSAGE

    if isinstance(exc, (aiosmtplib.SMTPSenderRefused, aiosmtplib.SMTPRecipientRefused, aiosmtplib.SMTPDataError)):
        if 400 <= exc.code < 500:
            return AttemptOutcome.TRANSIENT, FailureKind.TEMPORARY_REJECTION
        return AttemptOutcome.FATAL, FailureKind.MALFORMED_MESSAGE

    if isinstance(exc, ssl.SSLError) or _looks_like_tls_failure(exc):
        return AttemptOutcome.FATAL, FailureKind.TLS

    if isinstance(exc, aiosmtplib.SMTPNotSupported):
        # e.g. STARTTLS or AUTH not offered by this endpoint
        return AttemptOutcome.FATAL, FailureKind.TLS

    if isinstance(exc, (aiosmtplib.SMTPServerDisconnected, aiosmtplib.SMTPConnectError, ConnectionError)):
        return AttemptOutcome.TRANSIENT, FailureKind.CONNECTION

    code = _smtp_code(exc)
    if code:
        return _by_code(code)

    if isinstance(exc, OSError):
        return AttemptOutcome.TRANSIENT, FailureKind.CONNECTION

    return AttemptOutcome.TRANSIENT, FailureKind.UNKNOWN


def _failure_details(exc: BaseException) -> dict:
    details = {"smtp_code": _smtp_code(exc)}
    message = getattr(exc, 'message', None)
    if details["smtp_code"] and message:
        details["smtp_response"] = str(message)

    # Which SMTP stage was refused
    if isinstance(exc, aiosmtplib.SMTPAuthenticationError):
        details["smtp_command"] = "AUTH"
    elif isinstance(exc, aiosmtplib.SMTPSenderRefused):
        details["smtp_command"] = "MAIL FROM"
    elif isinstance(exc, (aiosmtplib.SMTPRecipientRefused, aiosmtplib.SMTPRecipientsRefused)):
        details["smtp_command"] = "RCPT TO"
    elif isinstance(exc, aiosmtplib.SMTPDataError):
        details["smtp_command"] = "DATA"
    elif isinstance(exc, aiosmtplib.SMTPHeloError):
        details["smtp_command"] = "EHLO"
    elif isinstance(exc, (aiosmtplib.SMTPConnectError, aiosmtplib.SMTPConnectTimeoutError)):
        details["smtp_command"] = "CONN"

    return details


class DeliveryAttemptExecutor:
    """Performs exactly one send of one message through one transport handle."""

    def __init__(self, timeout: float = 20.0):
        self.timeout = timeout

    async def execute(
        self,
        message: Message,
        transport: MailTransport,
        sender: str,
        transport_index: int = 1,
        attempt: int = 1,
        delay_before: float = 0.0,
        timeout: Optional[float] = None
    ) -> DeliveryAttemptResult:
        started = time.perf_counter()
        base = dict(
            transport_name=transport.name,
            transport_index=transport_index,
            attempt=attempt,
            delay_before=delay_before
        )

        try:
            try:
                mime = build_mime_message(message, sender)
            except MalformedMessageError:
                raise
            except (ValueError, TypeError) as e:
                raise MalformedMessageError(str(e)) from e
            envelope_sender = parseaddr(mime['From'] or '')[1] or sender
            response, accepted = await asyncio.wait_for(
                transport.send(mime, envelope_sender, list(message.to)),
                timeout=timeout or self.timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            outcome, kind = classify_failure(e)
            return DeliveryAttemptResult(
                outcome=outcome,
                failure_kind=kind,
                error=str(e) or e.__class__.__name__,
                error_code=e.__class__.__name__,
                duration_ms=(time.perf_counter() - started) * 1000,
                **_failure_details(e),
                **base
            )

        return DeliveryAttemptResult(
            outcome=AttemptOutcome.SUCCESS,
            message_id=mime['Message-ID'],
            response=response,
            accepted=accepted,
            duration_ms=(time.perf_counter() - started) * 1000,
            **base
        )
