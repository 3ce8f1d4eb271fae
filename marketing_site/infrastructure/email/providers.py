"""Mail transports and the factory that builds them from transport profiles."""

import asyncio
import ssl
from abc import ABC, abstractmethod
from datetime import datetime
from email.message import EmailMessage
from typing import Dict, Any, List, Tuple

import aiosmtplib

from ...core.exceptions import TransportConstructionError
from ...core.models.email import TransportProfile
from ..logging.service import get_logger


logger = get_logger("email")

SendResult = Tuple[str, List[str]]  # (server response, accepted recipients)


class MailTransport(ABC):
    """A handle able to send messages using one transport profile."""

    def __init__(self, profile: TransportProfile):
        self.profile = profile
        self.name = profile.name

    @abstractmethod
    async def send(self, message: EmailMessage, sender: str, recipients: List[str]) -> SendResult:
        """Send one message; raise the underlying transport error on failure."""
        pass

    @abstractmethod
    async def verify(self) -> None:
        """Open a connection and authenticate without sending anything."""
        pass

    async def close(self) -> None:
        """Release any held connections."""
        return None

    def get_config_summary(self) -> Dict[str, Any]:
        return {"transport": self.__class__.__name__, **self.profile.get_config_summary()}


def _tls_context(profile: TransportProfile) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not profile.verify_certificates:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _accepted(recipients: List[str], errors: Dict[str, Any]) -> List[str]:
    return [r for r in recipients if r not in errors]


class SMTPTransport(MailTransport):
    """Opens a fresh SMTP connection for every send."""

    def _client(self) -> aiosmtplib.SMTP:
        profile = self.profile
        # Implicit TLS from the first byte, or plain connect then STARTTLS
        if profile.secure:
            start_tls = False
        elif profile.require_tls:
            start_tls = True
        else:
            start_tls = None  # opportunistic, when the server offers it

        return aiosmtplib.SMTP(
            hostname=profile.host,
            port=profile.port,
            use_tls=profile.secure,
            start_tls=start_tls,
            tls_context=_tls_context(profile),
            timeout=profile.timeout
        )

    async def _connect(self) -> aiosmtplib.SMTP:
        smtp = self._client()
        await smtp.connect()
        if self.profile.username and self.profile.password:
            try:
                await smtp.login(self.profile.username, self.profile.password)
            except BaseException:
                smtp.close()
                raise
        return smtp

    async def send(self, message: EmailMessage, sender: str, recipients: List[str]) -> SendResult:
        smtp = await self._connect()
        try:
            errors, response = await smtp.send_message(message, sender=sender, recipients=recipients)
        finally:
            await _quit(smtp)
        return response, _accepted(recipients, errors)

    async def verify(self) -> None:
        smtp = await self._connect()
        await _quit(smtp)


class PooledSMTPTransport(SMTPTransport):
    """Keeps up to ``max_connections`` authenticated connections open.

    A connection is retired after ``max_messages`` sends or on any error.
    """

    def __init__(self, profile: TransportProfile):
        super().__init__(profile)
        self._semaphore = asyncio.Semaphore(profile.max_connections)
        self._lock = asyncio.Lock()
        self._idle: List[Tuple[aiosmtplib.SMTP, int]] = []
        self._closed = False

    async def _acquire(self) -> Tuple[aiosmtplib.SMTP, int]:
        async with self._lock:
            while self._idle:
                smtp, sent = self._idle.pop()
                if smtp.is_connected:
                    return smtp, sent
        return await self._connect(), 0

    async def _release(self, smtp: aiosmtplib.SMTP, sent: int) -> None:
        if self._closed or sent >= self.profile.max_messages:
            await _quit(smtp)
            return
        async with self._lock:
            self._idle.append((smtp, sent))

    async def send(self, message: EmailMessage, sender: str, recipients: List[str]) -> SendResult:
        async with self._semaphore:
            smtp, sent = await self._acquire()
            try:
                errors, response = await smtp.send_message(message, sender=sender, recipients=recipients)
            except BaseException:
                smtp.close()
                raise
            await self._release(smtp, sent + 1)
        return response, _accepted(recipients, errors)

    @property
    def idle_connections(self) -> int:
        return len(self._idle)

    async def close(self) -> None:
        self._closed = True
        async with self._lock:
            idle, self._idle = self._idle, []
        for smtp, _ in idle:
            await _quit(smtp)


class MockTransport(MailTransport):
    """In-memory transport for development and tests.

    ``options["fail_mode"]`` makes every send fail: ``transient`` raises a
    server disconnect, ``fatal`` raises an authentication error.
    """

    def __init__(self, profile: TransportProfile):
        super().__init__(profile)
        self.sent_emails: List[Dict[str, Any]] = []

    async def send(self, message: EmailMessage, sender: str, recipients: List[str]) -> SendResult:
        fail_mode = self.profile.options.get("fail_mode")
        if fail_mode == "transient":
            raise aiosmtplib.SMTPServerDisconnected("Simulated disconnect")
        if fail_mode == "fatal":
            raise aiosmtplib.SMTPAuthenticationError(535, "Simulated authentication failure")

        self.sent_emails.append({
            "message_id": message["Message-ID"],
            "sender": sender,
            "recipients": list(recipients),
            "subject": message["Subject"],
            "message": message,
            "sent_at": datetime.now().isoformat()
        })
        return f"250 OK queued as mock-{len(self.sent_emails)}", list(recipients)

    async def verify(self) -> None:
        if self.profile.options.get("fail_mode") == "fatal":
            raise aiosmtplib.SMTPAuthenticationError(535, "Simulated authentication failure")

    def get_sent_emails(self) -> List[Dict[str, Any]]:
        """Get list of sent emails (for testing)."""
        return self.sent_emails.copy()

    def clear_sent_emails(self):
        self.sent_emails.clear()

    def get_config_summary(self) -> Dict[str, Any]:
        return {**super().get_config_summary(), "sent_count": len(self.sent_emails)}


class TransportFactory:
    """Builds transport handles from profiles.

    With ``production=True`` pooling-enabled profiles share one cached pooled
    handle each; ``close()`` must be awaited at shutdown to release them.
    Mock handles are always cached so their sent log survives between runs.
    """

    TRANSPORTS = {
        'smtp': SMTPTransport,
        'mock': MockTransport
    }

    def __init__(self, production: bool = False):
        self.production = production
        self._cache: Dict[str, MailTransport] = {}

    def create(self, profile: TransportProfile) -> MailTransport:
        """Return a handle for the profile or raise ``TransportConstructionError``."""
        cached = self._cache.get(profile.name)
        if cached is not None:
            return cached

        self._validate(profile)

        if profile.kind == 'mock':
            transport = MockTransport(profile)
            self._cache[profile.name] = transport
        elif self.production and profile.pool:
            transport = PooledSMTPTransport(profile)
            self._cache[profile.name] = transport
        else:
            transport = self.TRANSPORTS[profile.kind](profile)

        return transport

    def _validate(self, profile: TransportProfile) -> None:
        if profile.kind not in self.TRANSPORTS:
            raise TransportConstructionError(
                profile.name,
                f"unknown transport kind {profile.kind!r} (available: {', '.join(self.TRANSPORTS)})"
            )

        if profile.kind != 'smtp':
            return

        missing = [field for field in ('host', 'username', 'password') if not getattr(profile, field)]
        if missing:
            raise TransportConstructionError(
                profile.name, f"missing required configuration: {', '.join(missing)}"
            )

        if not 1 <= profile.port <= 65535:
            raise TransportConstructionError(profile.name, f"invalid port {profile.port}")

    def cached_transports(self) -> Dict[str, MailTransport]:
        return dict(self._cache)

    async def close(self) -> None:
        """Close every cached handle."""
        transports, self._cache = list(self._cache.values()), {}
        for transport in transports:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"Error closing transport {transport.name}: {e}")


async def _quit(smtp: aiosmtplib.SMTP) -> None:
    """Close a connection politely, dropping it if the server is already gone."""
    if not smtp.is_connected:
        return
    try:
        await smtp.quit()
    except (aiosmtplib.SMTPException, OSError):
        smtp.close()
