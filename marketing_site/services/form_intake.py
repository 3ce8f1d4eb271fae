"""Form intake: validate a submission, store it, and send the related emails."""

import asyncio
from typing import Optional, Dict, Any, List, Union

from pydantic import BaseModel, ValidationError

from ..core.exceptions import DatabaseError, EmailTemplateError, FormValidationError
from ..core.models.email import Attachment, DeliveryOutcome, Message
from ..core.models.forms import (
    BrochureRequestSubmission, ContactSubmission, FormType, StoredSubmission, validation_errors
)
from ..infrastructure.email.service import ProductionEmailService
from ..infrastructure.email.templates import EmailTemplateManager
from ..infrastructure.logging.service import get_logger


logger = get_logger("services")

CONTACT_RECEIVED_MESSAGE = "Thank you for your message. We will get back to you soon."
BROCHURE_RECEIVED_MESSAGE = "Thank you for your interest. The brochure has been sent to your email."


class IntakeResult(BaseModel):
    """What happened to one accepted submission."""

    submission: StoredSubmission
    persisted: bool = False
    notification: DeliveryOutcome
    follow_up: Optional[DeliveryOutcome] = None  # acknowledgement or brochure email
    response_message: str

    @property
    def email_sent(self) -> bool:
        return self.notification.success


class FormIntakeService:
    """Turns raw form payloads into stored submissions and delivered emails.

    Email failures never fail the intake; they are reported in the result
    and the caller decides what the end user sees.
    """

    def __init__(
        self,
        email_service: ProductionEmailService,
        template_manager: EmailTemplateManager,
        email_config,
        db_service=None,
        logging_service=None
    ):
        self.email_service = email_service
        self.templates = template_manager
        self.config = email_config
        self.db = db_service
        self.logging_service = logging_service

    async def submit_contact(
        self,
        data: Dict[str, Any],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> IntakeResult:
        """Handle the contact form. Raises ``FormValidationError`` on bad input."""
        form = self._validate(ContactSubmission, FormType.CONTACT, data)
        submission = self._to_stored(form, form.type, ip_address, user_agent, request_id)
        persisted = await self._persist(submission)

        notification_template = (
            "brochure_notification" if form.type == FormType.BROCHURE else "contact_notification"
        )
        jobs = [self._deliver(notification_template, self._company_message(notification_template, submission))]
        if self.config.send_acknowledgements:
            jobs.append(self._deliver(
                "contact_acknowledgement", self._submitter_message("contact_acknowledgement", submission)
            ))

        outcomes = await asyncio.gather(*jobs)
        return await self._finish(submission, persisted, outcomes, CONTACT_RECEIVED_MESSAGE)

    async def submit_brochure(
        self,
        data: Dict[str, Any],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> IntakeResult:
        """Handle a brochure request; the brochure goes out attached when the file exists."""
        form = self._validate(BrochureRequestSubmission, FormType.BROCHURE, data)
        submission = self._to_stored(form, FormType.BROCHURE, ip_address, user_agent, request_id)
        persisted = await self._persist(submission)

        attachments = []
        brochure_path = self.config.brochure_path
        if brochure_path.is_file():
            attachments.append(Attachment(
                filename=self.config.brochure_filename,
                path=brochure_path,
                content_type="application/pdf"
            ))
        else:
            logger.warning(
                f"Brochure not found at {brochure_path}, sending download link instead",
                extra={"brochure_path": str(brochure_path)}
            )

        outcomes = await asyncio.gather(
            self._deliver("brochure_notification", self._company_message("brochure_notification", submission)),
            self._deliver(
                "brochure_delivery",
                self._submitter_message("brochure_delivery", submission, attachments, attached=bool(attachments))
            )
        )
        return await self._finish(submission, persisted, outcomes, BROCHURE_RECEIVED_MESSAGE)

    def _validate(self, model, form_type: FormType, data: Dict[str, Any]):
        try:
            return model.model_validate(data or {})
        except ValidationError as e:
            raise FormValidationError(form_type.value, validation_errors(e)) from e

    @staticmethod
    def _to_stored(
        form: Union[ContactSubmission, BrochureRequestSubmission],
        form_type: FormType,
        ip_address: Optional[str],
        user_agent: Optional[str],
        request_id: Optional[str]
    ) -> StoredSubmission:
        return StoredSubmission(
            form_type=form_type,
            name=form.name,
            email=form.email,
            phone=form.phone,
            message=form.message,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"request_id": request_id} if request_id else {}
        )

    async def _persist(self, submission: StoredSubmission) -> bool:
        if self.db is None:
            return False
        try:
            await self.db.save_submission(submission)
            return True
        except DatabaseError as e:
            self._log_error(e, "save_submission", submission_id=str(submission.id))
            return False

    def _render(self, template_id: str, submission: StoredSubmission, **extra):
        context = {
            "name": submission.name,
            "email": submission.email,
            "phone": submission.phone,
            "message": submission.message,
            "form_type": submission.form_type.value,
            **extra
        }
        result = self.templates.render(template_id, context)
        if not result.success:
            raise EmailTemplateError(template_id, result.error)
        return result.data

    def _company_message(self, template_id: str, submission: StoredSubmission):
        """Build the notification to the company inbox, or the template error."""
        try:
            rendered = self._render(template_id, submission)
        except EmailTemplateError as e:
            return e
        return Message(
            to=[self.config.recipient_address],
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
            reply_to=submission.email
        )

    def _submitter_message(
        self,
        template_id: str,
        submission: StoredSubmission,
        attachments: Optional[List[Attachment]] = None,
        **extra
    ):
        try:
            rendered = self._render(template_id, submission, **extra)
        except EmailTemplateError as e:
            return e
        return Message(
            to=[submission.email],
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
            attachments=attachments or []
        )

    async def _deliver(self, template_id: str, message: Union[Message, EmailTemplateError]) -> DeliveryOutcome:
        if isinstance(message, EmailTemplateError):
            self._log_error(message, "render_template", template_id=template_id)
            return DeliveryOutcome(success=False, error=message.message, error_code=message.error_code)
        return await self.email_service.deliver(message, deadline=self.config.delivery_deadline)

    async def _finish(
        self,
        submission: StoredSubmission,
        persisted: bool,
        outcomes: List[DeliveryOutcome],
        response_message: str
    ) -> IntakeResult:
        notification = outcomes[0]
        follow_up = outcomes[1] if len(outcomes) > 1 else None

        if notification.success:
            submission.email_sent = True
            if persisted:
                try:
                    await self.db.mark_email_sent(submission.id)
                except DatabaseError as e:
                    self._log_error(e, "mark_email_sent", submission_id=str(submission.id))
        else:
            logger.error(
                f"Notification for {submission.form_type.value} submission {submission.id} not delivered: "
                f"{notification.error}",
                extra={"submission_id": str(submission.id), "error_code": notification.error_code}
            )

        return IntakeResult(
            submission=submission,
            persisted=persisted,
            notification=notification,
            follow_up=follow_up,
            response_message=response_message
        )

    def _log_error(self, error: Exception, operation: str, **kwargs):
        if self.logging_service:
            self.logging_service.log_error(error, component="form_intake", operation=operation, **kwargs)
        else:
            logger.error(f"Form intake {operation} failed: {error}", extra=kwargs)
