"""Infrastructure layer: email delivery, persistence and logging."""
