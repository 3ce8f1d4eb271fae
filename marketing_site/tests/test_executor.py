"""Single-attempt execution, MIME composition and failure classification."""

import asyncio
import ssl

import aiosmtplib
import pytest

from ..core.models.email import Attachment, AttemptOutcome, FailureKind, Message
from ..infrastructure.email.executor import (
    DeliveryAttemptExecutor, MalformedMessageError, build_mime_message, classify_failure
)
from .conftest import ScriptedTransport, make_profile


SENDER = "Acme Website <site@example.com>"


@pytest.mark.parametrize("error, expected", [
    (aiosmtplib.SMTPAuthenticationError(535, "bad credentials"), (AttemptOutcome.FATAL, FailureKind.AUTHENTICATION)),
    (aiosmtplib.SMTPResponseException(530, "authentication required"), (AttemptOutcome.FATAL, FailureKind.AUTHENTICATION)),
    (aiosmtplib.SMTPServerDisconnected("unexpectedly closed"), (AttemptOutcome.TRANSIENT, FailureKind.CONNECTION)),
    (aiosmtplib.SMTPConnectError("connection refused"), (AttemptOutcome.TRANSIENT, FailureKind.CONNECTION)),
    (ConnectionResetError("reset by peer"), (AttemptOutcome.TRANSIENT, FailureKind.CONNECTION)),
    (aiosmtplib.SMTPTimeoutError("timed out"), (AttemptOutcome.TRANSIENT, FailureKind.TIMEOUT)),
    (asyncio.TimeoutError(), (AttemptOutcome.TRANSIENT, FailureKind.TIMEOUT)),
    (aiosmtplib.SMTPResponseException(421, "service not available"),
     (AttemptOutcome.TRANSIENT, FailureKind.TEMPORARY_REJECTION)),
    (aiosmtplib.SMTPResponseException(554, "transaction failed"),
     (AttemptOutcome.FATAL, FailureKind.PERMANENT_REJECTION)),
    (aiosmtplib.SMTPSenderRefused(553, "sender rejected", "site@example.com"),
     (AttemptOutcome.FATAL, FailureKind.MALFORMED_MESSAGE)),
    (aiosmtplib.SMTPRecipientsRefused([aiosmtplib.SMTPRecipientRefused(450, "mailbox busy", "a@example.com")]),
     (AttemptOutcome.TRANSIENT, FailureKind.TEMPORARY_REJECTION)),
    (aiosmtplib.SMTPRecipientsRefused([aiosmtplib.SMTPRecipientRefused(550, "no such user", "a@example.com")]),
     (AttemptOutcome.FATAL, FailureKind.MALFORMED_MESSAGE)),
    (aiosmtplib.SMTPDataError(552, "message too large"), (AttemptOutcome.FATAL, FailureKind.MALFORMED_MESSAGE)),
    (aiosmtplib.SMTPDataError(451, "local error"), (AttemptOutcome.TRANSIENT, FailureKind.TEMPORARY_REJECTION)),
    (ssl.SSLCertVerificationError("certificate verify failed"), (AttemptOutcome.FATAL, FailureKind.TLS)),
    (aiosmtplib.SMTPConnectError("[SSL: WRONG_VERSION_NUMBER] wrong version number"),
     (AttemptOutcome.FATAL, FailureKind.TLS)),
    (aiosmtplib.SMTPNotSupported("STARTTLS extension not supported by server"),
     (AttemptOutcome.FATAL, FailureKind.TLS)),
    (MalformedMessageError("bad header"), (AttemptOutcome.FATAL, FailureKind.MALFORMED_MESSAGE)),
    (RuntimeError("something odd"), (AttemptOutcome.TRANSIENT, FailureKind.UNKNOWN)),
])
def test_classify_failure(error, expected):
    assert classify_failure(error) == expected


class TestBuildMimeMessage:

    def test_alternative_bodies_and_headers(self, message):
        mime = build_mime_message(message, SENDER)

        assert mime["From"] == SENDER
        assert mime["To"] == "sales@example.com"
        assert mime["Reply-To"] == "jane@example.com"
        assert mime["Message-ID"].endswith("@example.com>")
        assert mime["Date"]
        assert mime.get_content_type() == "multipart/alternative"
        assert "<p>Hello</p>" in mime.get_body(preferencelist=("html",)).get_content()
        assert mime.get_body(preferencelist=("plain",)).get_content().strip() == "Hello"

    def test_message_sender_overrides_default(self, message):
        message.sender = "Other <other@example.org>"

        mime = build_mime_message(message, SENDER)

        assert mime["From"] == "Other <other@example.org>"

    def test_attachment_from_disk(self, message, tmp_path):
        pdf = tmp_path / "brochure.pdf"
        pdf.write_bytes(b"%PDF-1.4 test")
        message.attachments = [Attachment(filename="Brochure.pdf", path=pdf, content_type="application/pdf")]

        mime = build_mime_message(message, SENDER)

        attachments = list(mime.iter_attachments())
        assert len(attachments) == 1
        assert attachments[0].get_filename() == "Brochure.pdf"
        assert attachments[0].get_content_type() == "application/pdf"
        assert attachments[0].get_content() == b"%PDF-1.4 test"

    def test_unreadable_attachment_is_malformed(self, message, tmp_path):
        message.attachments = [Attachment(filename="missing.pdf", path=tmp_path / "missing.pdf")]

        with pytest.raises(MalformedMessageError):
            build_mime_message(message, SENDER)


class TestDeliveryAttemptExecutor:

    async def test_success_result(self, message):
        transport = ScriptedTransport(make_profile("primary"))
        executor = DeliveryAttemptExecutor()

        result = await executor.execute(message, transport, SENDER, transport_index=2, attempt=3, delay_before=3.0)

        assert result.succeeded
        assert result.transport_name == "primary"
        assert result.transport_index == 2
        assert result.attempt == 3
        assert result.delay_before == 3.0
        assert result.accepted == ["sales@example.com"]
        assert result.response.startswith("250")
        assert transport.calls[0]["sender"] == "site@example.com"
        assert transport.calls[0]["recipients"] == ["sales@example.com"]

    async def test_failure_details_are_captured(self, message):
        error = aiosmtplib.SMTPAuthenticationError(535, "5.7.8 Username and Password not accepted")
        transport = ScriptedTransport(make_profile("primary"), [error])

        result = await DeliveryAttemptExecutor().execute(message, transport, SENDER)

        assert result.outcome == AttemptOutcome.FATAL
        assert result.failure_kind == FailureKind.AUTHENTICATION
        assert result.smtp_code == 535
        assert result.smtp_command == "AUTH"
        assert "Username and Password" in result.smtp_response
        assert result.error_code == "SMTPAuthenticationError"

    async def test_unreadable_attachment_never_reaches_transport(self, message, tmp_path):
        message.attachments = [Attachment(filename="gone.pdf", path=tmp_path / "gone.pdf")]
        transport = ScriptedTransport(make_profile("primary"))

        result = await DeliveryAttemptExecutor().execute(message, transport, SENDER)

        assert result.outcome == AttemptOutcome.FATAL
        assert result.failure_kind == FailureKind.MALFORMED_MESSAGE
        assert transport.calls == []

    async def test_send_is_bounded_by_timeout(self, message):
        class SlowTransport(ScriptedTransport):
            async def send(self, mime, sender, recipients):
                await asyncio.sleep(5)

        transport = SlowTransport(make_profile("primary"))

        result = await DeliveryAttemptExecutor(timeout=5.0).execute(message, transport, SENDER, timeout=0.01)

        assert result.outcome == AttemptOutcome.TRANSIENT
        assert result.failure_kind == FailureKind.TIMEOUT
