"""Fallback and retry behaviour of the email delivery service."""

import aiosmtplib
import pytest

from ..core.models.email import AttemptOutcome, EmailStatus, FailureKind, Message
from ..infrastructure.email.records import EmailRecordStore
from ..infrastructure.email.service import ProductionEmailService, RetryPolicy
from .conftest import StalledTransport, make_profile


def transient():
    return aiosmtplib.SMTPServerDisconnected("Connection lost")


def fatal():
    return aiosmtplib.SMTPAuthenticationError(535, "5.7.8 Username and Password not accepted")


class TestRetryPolicy:

    def test_default_delays_grow_by_factor(self):
        policy = RetryPolicy()
        assert policy.attempts_per_transport == 3
        assert policy.delay_for(1) == pytest.approx(2.0)
        assert policy.delay_for(2) == pytest.approx(3.0)


class TestScenarios:

    async def test_single_transport_succeeds_immediately(self, make_service, message):
        service = make_service({"primary": []})

        outcome = await service.deliver(message)

        assert outcome.success
        assert outcome.attempt_count == 1
        assert outcome.transport_used == 1
        assert outcome.transport_name == "primary"
        assert outcome.message_id
        assert outcome.error is None

    async def test_single_transport_always_transient(self, make_service, message, clock):
        service = make_service({"primary": [transient(), transient(), transient()]})

        outcome = await service.deliver(message)

        assert not outcome.success
        assert outcome.error_code == "ALL_TRANSPORTS_FAILED"
        assert outcome.attempt_count == 3
        assert [a.attempt for a in outcome.attempts] == [1, 2, 3]
        assert [a.delay_before for a in outcome.attempts] == [0.0, 2.0, 3.0]
        assert clock.sleeps == [2.0, 3.0]
        assert all(a.outcome == AttemptOutcome.TRANSIENT for a in outcome.attempts)

    async def test_fatal_first_transport_falls_back_to_second(self, make_service, message, clock):
        service = make_service({"primary": [fatal()], "starttls": []})

        outcome = await service.deliver(message)

        assert outcome.success
        assert outcome.transport_used == 2
        assert outcome.transport_name == "starttls"
        assert len(outcome.attempts_for("primary")) == 1
        assert len(outcome.attempts_for("starttls")) == 1
        assert outcome.attempts[0].failure_kind == FailureKind.AUTHENTICATION
        assert clock.sleeps == []

    async def test_both_transports_exhausted(self, make_service, message):
        store = EmailRecordStore()
        service = make_service(
            {"primary": [], "starttls": []},
            default_errors={"primary": transient(), "starttls": transient()},
            record_store=store
        )

        outcome = await service.deliver(message)

        assert not outcome.success
        assert outcome.attempt_count == 6
        assert len(outcome.attempts_for("primary")) == 3
        assert len(outcome.attempts_for("starttls")) == 3
        assert "All transports failed after 6 attempt(s)" in outcome.error
        assert "(starttls)" in outcome.error

        records = store.list()
        assert len(records) == 1
        assert records[0].status == EmailStatus.FAILED
        assert records[0].attempts == 6


class TestOrchestration:

    async def test_success_does_not_touch_later_profiles(self, make_service, message):
        service = make_service({"primary": [], "starttls": [], "service": []})

        await service.deliver(message)

        assert service.factory.created == ["primary"]
        assert service.factory.transports["starttls"].calls == []

    async def test_transient_then_success_on_same_transport(self, make_service, message, clock):
        service = make_service({"primary": [transient(), None]})

        outcome = await service.deliver(message)

        assert outcome.success
        assert outcome.attempt_count == 2
        assert outcome.transport_used == 1
        assert clock.sleeps == [2.0]

    async def test_fatal_after_transient_stops_retrying(self, make_service, message, clock):
        service = make_service({"primary": [transient(), fatal()], "starttls": []})

        outcome = await service.deliver(message)

        assert outcome.success
        assert len(outcome.attempts_for("primary")) == 2
        assert outcome.transport_used == 2
        assert clock.sleeps == [2.0]

    async def test_zero_retries_means_one_attempt_per_profile(self, make_service, message):
        service = make_service(
            {"primary": [], "starttls": []},
            max_retries=0,
            default_errors={"primary": transient(), "starttls": transient()}
        )

        outcome = await service.deliver(message)

        assert outcome.attempt_count == 2

    async def test_construction_failure_is_skipped_without_attempts(self, make_service, message):
        service = make_service({"primary": [], "starttls": []}, broken={"primary"})

        outcome = await service.deliver(message)

        assert outcome.success
        assert outcome.transport_used == 2
        assert outcome.attempt_count == 1
        failures = outcome.diagnostics["construction_failures"]
        assert failures[0]["transport_name"] == "primary"
        assert failures[0]["error_code"] == "TRANSPORT_CONSTRUCTION_FAILED"

    async def test_no_constructible_transport(self, make_service, message):
        service = make_service({"primary": []}, broken={"primary"})

        outcome = await service.deliver(message)

        assert not outcome.success
        assert outcome.error_code == "ALL_TRANSPORTS_FAILED"
        assert outcome.error == "No transport could be constructed"
        assert outcome.attempt_count == 0

    async def test_deadline_stops_retries(self, make_service, message, clock):
        service = make_service({"primary": []}, default_errors={"primary": transient()})

        outcome = await service.deliver(message, deadline=3.0)

        assert not outcome.success
        assert outcome.error_code == "DEADLINE_EXCEEDED"
        assert outcome.attempt_count == 2
        assert clock.sleeps == [2.0]
        assert outcome.diagnostics["deadline_seconds"] == 3.0

    async def test_stalled_primary_still_falls_back_within_deadline(self, make_service, message, clock):
        service = make_service({"primary": [], "starttls": []})
        service.factory.transports["primary"] = StalledTransport(make_profile("primary"), clock, stall=20.0)

        outcome = await service.deliver(message, deadline=30.0)

        assert outcome.success
        assert outcome.transport_name == "starttls"
        assert len(outcome.attempts_for("primary")) == 1
        assert outcome.attempts[0].outcome == AttemptOutcome.TRANSIENT
        assert len(service.factory.transports["starttls"].calls) == 1
        assert clock.sleeps == []

    async def test_deadline_exceeded_once_every_profile_stalls(self, make_service, message, clock):
        service = make_service({"primary": [], "starttls": []})
        for name in ("primary", "starttls"):
            service.factory.transports[name] = StalledTransport(make_profile(name), clock, stall=20.0)

        outcome = await service.deliver(message, deadline=30.0)

        assert not outcome.success
        assert outcome.error_code == "DEADLINE_EXCEEDED"
        assert [a.transport_name for a in outcome.attempts] == ["primary", "starttls"]

    async def test_no_profile_starts_after_deadline(self, make_service, message, clock):
        service = make_service({"primary": [], "starttls": []})
        service.factory.transports["primary"] = StalledTransport(make_profile("primary"), clock, stall=30.0)

        outcome = await service.deliver(message, deadline=30.0)

        assert outcome.error_code == "DEADLINE_EXCEEDED"
        assert service.factory.created == ["primary"]

    async def test_attempt_count_is_bounded(self, make_service, message):
        service = make_service(
            {"a": [], "b": [], "c": []},
            default_errors={name: transient() for name in ("a", "b", "c")}
        )

        outcome = await service.deliver(message)

        assert outcome.attempt_count == 3 * service.retry_policy.attempts_per_transport


class TestNeverRaises:

    async def test_non_message_input(self, make_service):
        service = make_service({"primary": []})

        outcome = await service.deliver("not a message")

        assert not outcome.success
        assert outcome.error_code == "INVALID_MESSAGE"
        assert len(service.record_store) == 0

    async def test_blank_recipients(self, make_service):
        service = make_service({"primary": []})
        message = Message.model_construct(to=[" "], subject="Hello", html="", attachments=[])

        outcome = await service.deliver(message)

        assert outcome.error_code == "INVALID_MESSAGE"

    async def test_empty_registry(self, make_service, message):
        service = make_service({})

        outcome = await service.deliver(message)

        assert not outcome.success
        assert outcome.error_code == "NO_TRANSPORTS"
        assert len(service.record_store) == 1

    async def test_unexpected_factory_error(self, make_service, message):
        service = make_service({"primary": []})

        def explode(profile):
            raise RuntimeError("factory crashed")

        service.factory.create = explode

        outcome = await service.deliver(message)

        assert not outcome.success
        assert outcome.error_code == "UNEXPECTED_ERROR"
        assert "factory crashed" in outcome.error


class TestRecords:

    async def test_every_run_appends_one_record(self, make_service, message):
        service = make_service({"primary": [None, fatal()]})

        await service.deliver(message)
        await service.deliver(message)

        records = service.recent_records()
        assert [r.status for r in records] == [EmailStatus.SENT, EmailStatus.FAILED]
        assert records[0].transport_name == "primary"
        assert records[0].recipient == "sales@example.com"

    async def test_sink_receives_records(self, make_service, message):
        received = []

        async def sink(record):
            received.append(record)

        service = make_service({"primary": []}, record_sink=sink)

        await service.deliver(message)

        assert len(received) == 1
        assert received[0].status == EmailStatus.SENT

    async def test_sink_failure_does_not_change_outcome(self, make_service, message):
        async def sink(record):
            raise OSError("disk full")

        service = make_service({"primary": []}, record_sink=sink)

        outcome = await service.deliver(message)

        assert outcome.success
        assert len(service.record_store) == 1


class TestVerifyAndStatus:

    async def test_verify_uses_first_constructible_profile(self, make_service):
        service = make_service({"primary": [], "starttls": []}, broken={"primary"})

        result = await service.verify()

        assert result.success
        assert result.data == {"transport_name": "starttls", "transport_index": 2}

    async def test_verify_reports_failure(self, make_service):
        service = make_service({"primary": []}, default_errors={"primary": fatal()})

        result = await service.verify()

        assert not result.success
        assert result.error_code == "TRANSPORT_VERIFICATION_FAILED"

    async def test_provider_status_in_priority_order(self, make_service):
        service = make_service({"primary": [], "starttls": []})

        status = service.get_provider_status()

        assert list(status) == ["primary", "starttls"]
        assert status["starttls"]["index"] == 2
        assert "password" not in status["primary"]["config"]

    async def test_close_releases_transports(self, make_service):
        service = make_service({"primary": []})

        await service.close()

        assert service.factory.transports["primary"].closed


class TestFromConfig:

    async def test_mock_transport_end_to_end(self, email_config, message):
        service = ProductionEmailService.from_config(email_config)

        outcome = await service.deliver(message)

        assert outcome.success
        assert outcome.transport_name == "mock"
        sent = service.factory.cached_transports()["mock"].get_sent_emails()
        assert len(sent) == 1
        assert sent[0]["recipients"] == ["sales@example.com"]
        assert sent[0]["sender"] == "site@example.com"
        assert service.record_store.limit == email_config.record_limit

    async def test_mock_fatal_mode_fails_without_retry(self, email_config, message):
        email_config.mock_fail_mode = "fatal"
        service = ProductionEmailService.from_config(email_config)

        outcome = await service.deliver(message)

        assert not outcome.success
        assert outcome.attempt_count == 1
        assert outcome.attempts[0].failure_kind == FailureKind.AUTHENTICATION
