"""Structured logging service."""

import json

import pytest

from ..core.exceptions import BrochureNotFoundError
from ..infrastructure.logging.service import ProductionLoggingService


@pytest.fixture
def logging_service(tmp_path):
    service = ProductionLoggingService(log_dir=tmp_path / "logs", log_level="INFO", console=False)
    yield service
    service.close()


def read_entries(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def test_component_files_and_statistics(logging_service):
    logging_service.log_application_event("Server started", component="server")

    stats = logging_service.get_log_statistics()

    assert stats["log_level"] == "INFO"
    assert {f["name"] for f in stats["log_files"]} == {
        "application.log", "api.log", "email.log", "database.log", "errors.log"
    }
    assert stats["loggers"]["marketing_site.errors"]["level"] == "ERROR"
    assert all(logger["handlers"] == 1 for logger in stats["loggers"].values())


def test_errors_carry_error_code(logging_service, tmp_path):
    logging_service.log_error(BrochureNotFoundError("/srv/brochure.pdf"), component="api", operation="download")

    (entry,) = read_entries(tmp_path / "logs" / "errors.log")
    assert entry["level"] == "ERROR"
    assert entry["error_code"] == "BROCHURE_NOT_FOUND"
    assert entry["operation"] == "download"
