"""Bounded email record store."""

import pytest

from ..core.models.email import DeliveryOutcome, EmailRecord, EmailStatus, Message
from ..infrastructure.email.records import EmailRecordStore


def record(n: int) -> EmailRecord:
    return EmailRecord(
        recipient=f"user{n}@example.com",
        sender="site@example.com",
        subject=f"Message {n}",
        status=EmailStatus.SENT
    )


def test_appending_past_limit_evicts_exactly_the_oldest():
    store = EmailRecordStore(limit=100)
    for n in range(100):
        store.append(record(n))

    store.append(record(100))

    records = store.list()
    assert len(store) == 100
    assert records[0].subject == "Message 1"
    assert records[-1].subject == "Message 100"


def test_list_is_oldest_first_copy():
    store = EmailRecordStore(limit=3)
    for n in range(2):
        store.append(record(n))

    listed = store.list()
    listed.clear()

    assert [r.subject for r in store.list()] == ["Message 0", "Message 1"]


def test_clear():
    store = EmailRecordStore()
    store.append(record(1))

    store.clear()

    assert len(store) == 0


@pytest.mark.parametrize("limit", [0, -5])
def test_limit_must_be_positive(limit):
    with pytest.raises(ValueError):
        EmailRecordStore(limit=limit)


def test_record_from_failed_outcome():
    message = Message(to=["a@example.com", "b@example.com"], subject="Hello")
    outcome = DeliveryOutcome(success=False, error="All transports failed", error_code="ALL_TRANSPORTS_FAILED")

    summary = EmailRecord.from_outcome(message, "site@example.com", outcome)

    assert summary.status == EmailStatus.FAILED
    assert summary.recipient == "a@example.com, b@example.com"
    assert summary.error == "All transports failed"
    assert summary.attempts == 0
