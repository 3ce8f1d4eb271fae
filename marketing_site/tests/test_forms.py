"""Form models: sanitization and validation rules."""

import pytest
from pydantic import ValidationError

from ..core.models.forms import (
    BrochureRequestSubmission, ContactSubmission, FormType, sanitize_text, validation_errors
)


@pytest.fixture
def contact_data():
    return {
        "name": "Jane Doe",
        "email": "Jane.Doe@Example.com",
        "phone": "+1 (555) 123-4567",
        "message": "We would like a quote for a new office building."
    }


class TestSanitizeText:

    def test_strips_tags_and_scripts(self):
        assert sanitize_text("<b>Jane</b> <script>alert('x')</script>Doe") == "Jane Doe"

    def test_removes_control_characters_and_trims(self):
        assert sanitize_text("  Hello\x00\x07 world \r\n") == "Hello world"

    def test_non_strings_pass_through(self):
        assert sanitize_text(42) == 42


class TestContactSubmission:

    def test_valid_submission(self, contact_data):
        form = ContactSubmission.model_validate(contact_data)

        assert form.email == "jane.doe@example.com"
        assert form.type == FormType.CONTACT

    def test_markup_is_stripped_before_validation(self, contact_data):
        contact_data["name"] = "<em>Jane</em> Doe"
        contact_data["message"] = "<p>Hello <a href='x'>there</a></p>"

        form = ContactSubmission.model_validate(contact_data)

        assert form.name == "Jane Doe"
        assert form.message == "Hello there"

    def test_brochure_type_accepted(self, contact_data):
        contact_data["type"] = "brochure"

        assert ContactSubmission.model_validate(contact_data).type == FormType.BROCHURE

    def test_unknown_fields_ignored(self, contact_data):
        contact_data["company"] = "Acme"

        form = ContactSubmission.model_validate(contact_data)

        assert not hasattr(form, "company")

    @pytest.mark.parametrize("field, value, fragment", [
        ("name", "J", "at least 2"),
        ("name", "x" * 51, "cannot exceed 50"),
        ("email", "not-an-email", "valid email"),
        ("phone", "12345", "10 to 15 digits"),
        ("phone", "555-abc-12345", "10 to 15 digits"),
        ("message", "Hi", "at least 4"),
        ("message", "x" * 1001, "cannot exceed 1000"),
    ])
    def test_field_rules(self, contact_data, field, value, fragment):
        contact_data[field] = value

        with pytest.raises(ValidationError) as exc_info:
            ContactSubmission.model_validate(contact_data)

        errors = validation_errors(exc_info.value)
        assert errors[0]["field"] == field
        assert fragment in errors[0]["message"]

    def test_tag_only_name_counts_as_missing(self, contact_data):
        contact_data["name"] = "<b></b>"

        with pytest.raises(ValidationError) as exc_info:
            ContactSubmission.model_validate(contact_data)

        assert validation_errors(exc_info.value) == [{"field": "name", "message": "Name is required"}]

    def test_missing_fields_reported_by_name(self):
        with pytest.raises(ValidationError) as exc_info:
            ContactSubmission.model_validate({})

        errors = validation_errors(exc_info.value)
        assert {e["field"] for e in errors} == {"name", "email", "phone", "message"}
        assert {"field": "email", "message": "Email is required"} in errors


class TestBrochureRequestSubmission:

    def test_message_optional(self):
        form = BrochureRequestSubmission.model_validate({
            "name": "Sam Lee",
            "email": "sam@example.com",
            "phone": "0123456789",
            "message": "   "
        })

        assert form.message is None

    def test_phone_required(self):
        with pytest.raises(ValidationError) as exc_info:
            BrochureRequestSubmission.model_validate({"name": "Sam Lee", "email": "sam@example.com"})

        assert validation_errors(exc_info.value) == [{"field": "phone", "message": "Phone is required"}]
