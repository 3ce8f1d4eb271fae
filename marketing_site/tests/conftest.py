"""Shared fixtures: scripted transports, a controllable clock and test settings."""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from ..config.production_settings import EmailConfig, ProductionSettings
from ..core.exceptions import TransportConstructionError
from ..core.models.email import Message, TransportProfile
from ..infrastructure.email.executor import DeliveryAttemptExecutor
from ..infrastructure.email.profiles import TransportRegistry
from ..infrastructure.email.providers import MailTransport
from ..infrastructure.email.records import EmailRecordStore
from ..infrastructure.email.service import ProductionEmailService, RetryPolicy


class ScriptedTransport(MailTransport):
    """Transport whose sends follow a script of exceptions (None means success)."""

    def __init__(self, profile: TransportProfile, script=None, default_error: Optional[Exception] = None):
        super().__init__(profile)
        self.script = list(script or [])
        self.default_error = default_error
        self.calls: List[Dict] = []
        self.closed = False

    async def send(self, message, sender, recipients):
        self.calls.append({"message": message, "sender": sender, "recipients": list(recipients)})
        step = self.script.pop(0) if self.script else self.default_error
        if step is not None:
            raise step
        return "250 2.0.0 OK queued", list(recipients)

    async def verify(self):
        if self.default_error is not None:
            raise self.default_error

    async def close(self):
        self.closed = True


class ScriptedFactory:
    """Stands in for TransportFactory: hands out pre-built transports by profile name."""

    def __init__(self, transports: Dict[str, MailTransport], broken=()):
        self.transports = transports
        self.broken = set(broken)
        self.created: List[str] = []

    def create(self, profile: TransportProfile) -> MailTransport:
        self.created.append(profile.name)
        if profile.name in self.broken:
            raise TransportConstructionError(profile.name, "missing required configuration: password")
        return self.transports[profile.name]

    def cached_transports(self):
        return dict(self.transports)

    async def close(self):
        for transport in self.transports.values():
            await transport.close()


class StalledTransport(ScriptedTransport):
    """Transport whose sends hang for ``stall`` seconds of the fake clock, then time out."""

    def __init__(self, profile: TransportProfile, clock, stall: float):
        super().__init__(profile)
        self.clock = clock
        self.stall = stall

    async def send(self, message, sender, recipients):
        self.calls.append({"message": message, "sender": sender, "recipients": list(recipients)})
        self.clock.now += self.stall
        raise asyncio.TimeoutError()


class FakeClock:
    """Monotonic clock advanced only by the injected sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float):
        self.sleeps.append(delay)
        self.now += delay


def make_profile(name: str, **overrides) -> TransportProfile:
    values = dict(name=name, host="smtp.example.com", port=465, secure=True,
                  username="user@example.com", password="secret")
    values.update(overrides)
    return TransportProfile(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def message():
    return Message(
        to=["sales@example.com"],
        subject="New Contact Form Submission from Jane Doe",
        html="<p>Hello</p>",
        text="Hello",
        reply_to="jane@example.com"
    )


@pytest.fixture
def make_service(clock):
    """Build a ProductionEmailService over scripted transports.

    ``scripts`` maps profile name to its script, in registry order.
    """

    def factory(
        scripts: Dict[str, list],
        broken=(),
        max_retries: int = 2,
        record_store: Optional[EmailRecordStore] = None,
        record_sink=None,
        default_errors: Optional[Dict[str, Exception]] = None
    ) -> ProductionEmailService:
        default_errors = default_errors or {}
        profiles = [make_profile(name) for name in scripts]
        transports = {
            p.name: ScriptedTransport(p, scripts[p.name], default_errors.get(p.name))
            for p in profiles
        }
        return ProductionEmailService(
            registry=TransportRegistry(profiles),
            factory=ScriptedFactory(transports, broken=broken),
            sender="Website <site@example.com>",
            executor=DeliveryAttemptExecutor(timeout=5.0),
            record_store=record_store if record_store is not None else EmailRecordStore(),
            retry_policy=RetryPolicy(max_retries=max_retries, base_delay=2.0, growth_factor=1.5),
            record_sink=record_sink,
            sleep=clock.sleep,
            clock=clock
        )

    return factory


@pytest.fixture
def email_config(tmp_path) -> EmailConfig:
    return EmailConfig(
        transport="mock",
        sender_name="Acme Website",
        sender_email="site@example.com",
        default_recipient="sales@example.com",
        company_name="Acme Builders",
        client_url="https://acme.example.com",
        brochure_path=tmp_path / "brochure.pdf",
        delivery_deadline=None
    )


@pytest.fixture
def test_settings(tmp_path) -> ProductionSettings:
    """Settings isolated from the process environment's paths and transports."""
    settings = ProductionSettings(env_file=tmp_path / "missing.env")

    settings.system.environment = "test"
    settings.system.debug = False
    settings.system.static_dirs = [tmp_path / "static"]

    settings.logging.level = "INFO"
    settings.logging.log_dir = tmp_path / "logs"

    settings.database.enabled = False
    settings.database.path = tmp_path / "data" / "site.db"

    settings.security.api_rate_limit = 100
    settings.security.admin_token = ""
    settings.security.trust_proxy = False

    settings.email.transport = "mock"
    settings.email.mock_fail_mode = ""
    settings.email.sender_name = "Acme Website"
    settings.email.sender_email = "site@example.com"
    settings.email.default_recipient = "sales@example.com"
    settings.email.company_name = "Acme Builders"
    settings.email.client_url = "https://acme.example.com"
    settings.email.brochure_path = tmp_path / "brochure.pdf"
    settings.email.brochure_filename = "Brochure.pdf"
    settings.email.templates_dir = None
    settings.email.strict_delivery = False
    settings.email.send_acknowledgements = True
    settings.email.delivery_deadline = None
    settings.email.record_limit = 100

    return settings


def write_brochure(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"%PDF-1.4\n% brochure\n%%EOF\n")
    return path
