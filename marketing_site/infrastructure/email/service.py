"""Email delivery service: walks the transport chain with retries and backoff."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Callable, Awaitable

from ...core.exceptions import TransportConstructionError
from ...core.models.common import OperationResult
from ...core.models.email import (
    AttemptOutcome, DeliveryAttemptResult, DeliveryOutcome, EmailRecord, Message
)
from ..logging.service import get_logger
from .executor import DeliveryAttemptExecutor
from .profiles import TransportRegistry
from .providers import TransportFactory
from .records import EmailRecordStore


logger = get_logger("email")

RecordSink = Callable[[EmailRecord], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Per-transport retry budget with exponential backoff."""
    max_retries: int = 2  # additional attempts after the first
    base_delay: float = 2.0  # seconds
    growth_factor: float = 1.5

    def delay_for(self, retry_number: int) -> float:
        """Backoff slept before the n-th retry (1-based)."""
        return self.base_delay * self.growth_factor ** (retry_number - 1)

    @property
    def attempts_per_transport(self) -> int:
        return self.max_retries + 1


class ProductionEmailService:
    """Delivers messages through the transport registry without ever raising.

    Profiles are tried strictly in registry order. A fatal failure moves on
    to the next profile at once; a transient failure is retried on the same
    profile up to the retry budget. Every run appends exactly one
    ``EmailRecord`` to the record store.
    """

    def __init__(
        self,
        registry: TransportRegistry,
        factory: TransportFactory,
        sender: str,
        executor: Optional[DeliveryAttemptExecutor] = None,
        record_store: Optional[EmailRecordStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        record_sink: Optional[RecordSink] = None,
        logging_service=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.registry = registry
        self.factory = factory
        self.sender = sender
        self.executor = executor or DeliveryAttemptExecutor()
        self.record_store = record_store if record_store is not None else EmailRecordStore()
        self.retry_policy = retry_policy or RetryPolicy()
        self.record_sink = record_sink
        self.logging_service = logging_service
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        email_config,
        production: bool = False,
        record_sink: Optional[RecordSink] = None,
        logging_service=None
    ) -> "ProductionEmailService":
        """Wire registry, factory, executor and store from an ``EmailConfig``."""
        return cls(
            registry=TransportRegistry.from_config(email_config),
            factory=TransportFactory(production=production),
            sender=email_config.from_header,
            executor=DeliveryAttemptExecutor(timeout=email_config.send_timeout),
            record_store=EmailRecordStore(limit=email_config.record_limit),
            retry_policy=RetryPolicy(
                max_retries=email_config.max_retries,
                base_delay=email_config.retry_base_delay,
                growth_factor=email_config.retry_growth_factor
            ),
            record_sink=record_sink,
            logging_service=logging_service
        )

    async def deliver(self, message: Message, deadline: Optional[float] = None) -> DeliveryOutcome:
        """Deliver one message and report how it went.

        ``deadline`` bounds the whole run in seconds. Each profile may retry
        only within its share of the time left, then the run falls back to
        the next profile. ``DEADLINE_EXCEEDED`` is reported when no further
        profile can start or the last one ran out of time.
        """
        started = self._clock()

        try:
            outcome = await self._deliver(message, deadline, started)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log_error(e, "deliver")
            outcome = DeliveryOutcome(
                success=False,
                error=f"Unexpected delivery error: {e}",
                error_code="UNEXPECTED_ERROR"
            )

        outcome.diagnostics["elapsed_ms"] = round((self._clock() - started) * 1000, 2)
        await self._record(message, outcome)
        return outcome

    async def _deliver(self, message: Message, deadline: Optional[float], started: float) -> DeliveryOutcome:
        invalid = self._check_message(message)
        if invalid:
            self._log("rejected", message, success=False, error_message=invalid)
            return DeliveryOutcome(success=False, error=invalid, error_code="INVALID_MESSAGE")

        profiles = self.registry.profiles()
        if not profiles:
            return DeliveryOutcome(
                success=False,
                error="No transport profiles configured",
                error_code="NO_TRANSPORTS"
            )

        deadline_at = started + deadline if deadline else None
        retries_cut = False
        attempts: List[DeliveryAttemptResult] = []
        construction_failures: List[Dict[str, Any]] = []
        diagnostics: Dict[str, Any] = {"construction_failures": construction_failures}
        if deadline:
            diagnostics["deadline_seconds"] = deadline

        for index, profile in enumerate(profiles, start=1):
            share_end = None
            if deadline_at is not None:
                now = self._clock()
                if deadline_at - now <= 0:
                    return self._deadline_exceeded(message, attempts, diagnostics, deadline)
                # Retries on a profile must fit inside its share of the remaining time
                share_end = now + (deadline_at - now) / (len(profiles) - index + 1)

            retries_cut = False

            try:
                transport = self.factory.create(profile)
            except TransportConstructionError as e:
                construction_failures.append({
                    "transport_name": profile.name,
                    "transport_index": index,
                    "error": e.message,
                    "error_code": e.error_code
                })
                self._log("construction_failed", message, transport=profile.name,
                          success=False, error_message=e.message, level="WARNING")
                continue

            for attempt in range(1, self.retry_policy.attempts_per_transport + 1):
                delay = self.retry_policy.delay_for(attempt - 1) if attempt > 1 else 0.0

                timeout = None
                if deadline_at is not None:
                    limit = share_end if attempt > 1 else deadline_at
                    remaining = limit - self._clock() - delay
                    if remaining <= 0:
                        retries_cut = True
                        self._log("retries_cut", message, transport=profile.name, level="WARNING",
                                  attempt=attempt, delay_seconds=delay)
                        break
                    timeout = min(self.executor.timeout, remaining)

                if delay:
                    self._log("retry_scheduled", message, transport=profile.name, level="WARNING",
                              attempt=attempt, delay_seconds=delay)
                    await self._sleep(delay)

                result = await self.executor.execute(
                    message,
                    transport,
                    sender=self.sender,
                    transport_index=index,
                    attempt=attempt,
                    delay_before=delay,
                    timeout=timeout
                )
                attempts.append(result)

                if result.succeeded:
                    self._log("sent", message, transport=profile.name,
                              message_id=result.message_id, attempt=attempt, transport_index=index)
                    return DeliveryOutcome(
                        success=True,
                        message_id=result.message_id,
                        transport_used=index,
                        transport_name=profile.name,
                        attempts=attempts,
                        diagnostics=diagnostics
                    )

                self._log(
                    "attempt_failed", message, transport=profile.name, success=False,
                    error_message=result.error, level="WARNING", attempt=attempt,
                    outcome=result.outcome.value,
                    failure_kind=result.failure_kind.value if result.failure_kind else None,
                    smtp_code=result.smtp_code
                )

                if result.outcome == AttemptOutcome.FATAL:
                    break

            if index < len(profiles):
                self._log("fallback", message, transport=profile.name, level="WARNING",
                          next_transport=profiles[index].name)

        if retries_cut:
            return self._deadline_exceeded(message, attempts, diagnostics, deadline)

        if attempts:
            last = attempts[-1]
            error = (
                f"All transports failed after {len(attempts)} attempt(s). "
                f"Last error ({last.transport_name}): {last.error}"
            )
        else:
            error = "No transport could be constructed"

        self._log("failed", message, success=False, error_message=error, attempts=len(attempts))
        return DeliveryOutcome(
            success=False,
            error=error,
            error_code="ALL_TRANSPORTS_FAILED",
            attempts=attempts,
            diagnostics=diagnostics
        )

    def _deadline_exceeded(
        self,
        message: Message,
        attempts: List[DeliveryAttemptResult],
        diagnostics: Dict[str, Any],
        deadline: float
    ) -> DeliveryOutcome:
        error = f"Delivery deadline of {deadline:g}s exceeded after {len(attempts)} attempt(s)"
        if attempts:
            error += f". Last error ({attempts[-1].transport_name}): {attempts[-1].error}"
        self._log("deadline_exceeded", message, success=False, error_message=error,
                  level="WARNING", attempts=len(attempts))
        return DeliveryOutcome(
            success=False,
            error=error,
            error_code="DEADLINE_EXCEEDED",
            attempts=attempts,
            diagnostics=diagnostics
        )

    @staticmethod
    def _check_message(message: Message) -> Optional[str]:
        if not isinstance(message, Message):
            return f"Expected a Message, got {type(message).__name__}"
        if not message.to or not any(r.strip() for r in message.to):
            return "Message has no recipients"
        if not message.subject or not message.subject.strip():
            return "Message subject is empty"
        return None

    async def _record(self, message: Message, outcome: DeliveryOutcome) -> None:
        try:
            record = EmailRecord.from_outcome(message, message.sender or self.sender, outcome)
        except Exception as e:
            # Message too broken to summarize; the run itself is already reported
            self._log_error(e, "record")
            return

        self.record_store.append(record)

        if self.record_sink is None:
            return
        try:
            await self.record_sink(record)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log_error(e, "record_sink", record_id=str(record.id))

    async def verify(self) -> OperationResult[Dict[str, Any]]:
        """Connect and authenticate with the first constructible profile."""
        for index, profile in enumerate(self.registry.profiles(), start=1):
            try:
                transport = self.factory.create(profile)
            except TransportConstructionError as e:
                self._log("construction_failed", None, transport=profile.name,
                          success=False, error_message=e.message, level="WARNING")
                continue

            try:
                await asyncio.wait_for(transport.verify(), timeout=self.executor.timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                return OperationResult.error_result(
                    error=f"Transport {profile.name} verification failed: {e}",
                    error_code="TRANSPORT_VERIFICATION_FAILED",
                    metadata={"transport_name": profile.name, "transport_index": index}
                )

            return OperationResult.success_result(
                data={"transport_name": profile.name, "transport_index": index}
            )

        return OperationResult.error_result(
            error="No transport could be constructed",
            error_code="NO_TRANSPORTS"
        )

    def recent_records(self) -> List[EmailRecord]:
        return self.record_store.list()

    def get_provider_status(self) -> Dict[str, Dict[str, Any]]:
        """Configuration summary of every profile in priority order."""
        cached = self.factory.cached_transports()
        return {
            profile.name: {
                "index": index,
                "cached": profile.name in cached,
                "config": profile.get_config_summary()
            }
            for index, profile in enumerate(self.registry.profiles(), start=1)
        }

    async def close(self) -> None:
        await self.factory.close()

    def _log(self, operation: str, message: Optional[Message], **kwargs):
        to_email = ", ".join(message.to) if isinstance(message, Message) else None
        if self.logging_service:
            self.logging_service.log_email_operation(operation, to_email=to_email, **kwargs)
            return

        level = kwargs.pop("level", None) or ("INFO" if kwargs.get("success", True) else "ERROR")
        text = f"Email {operation}"
        if to_email:
            text += f" to {to_email}"
        if kwargs.get("transport"):
            text += f" via {kwargs['transport']}"
        if kwargs.get("error_message"):
            text += f" - Error: {kwargs['error_message']}"
        logger.log(getattr(logging, level), text, extra={"operation": operation, **kwargs})

    def _log_error(self, error: Exception, operation: str, **kwargs):
        if self.logging_service:
            self.logging_service.log_error(error, component="email", operation=operation, **kwargs)
        else:
            logger.error(f"Email {operation} error: {error}", exc_info=True, extra=kwargs)
