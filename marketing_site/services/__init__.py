"""Application services."""

from .form_intake import FormIntakeService, IntakeResult

__all__ = ["FormIntakeService", "IntakeResult"]
