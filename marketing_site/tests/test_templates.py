"""Email template rendering."""

from ..infrastructure.email.templates import BUILTIN_TEMPLATES, EmailTemplateManager


CONTEXT = {
    "name": "Jane Doe",
    "email": "jane@example.com",
    "phone": "+1 555 123 4567",
    "message": "Looking for a quote."
}


def manager(templates_dir=None) -> EmailTemplateManager:
    return EmailTemplateManager(
        company_name="Acme Builders",
        client_url="https://acme.example.com/",
        templates_dir=templates_dir
    )


def test_contact_notification():
    result = manager().render("contact_notification", CONTEXT)

    assert result.success
    email = result.data
    assert email.subject == "New Contact Form Submission from Jane Doe"
    assert "#FFC107" in email.html
    assert "This is an automated message from the Acme Builders website." in email.html
    assert "Phone: +1 555 123 4567" in email.text


def test_html_is_escaped_but_text_is_not():
    result = manager().render("contact_notification", {**CONTEXT, "message": "a < b & c"})

    assert "a &lt; b &amp; c" in result.data.html
    assert "a < b & c" in result.data.text


def test_subject_is_single_line():
    result = manager().render("contact_notification", {**CONTEXT, "name": "Jane\nBcc: victim@example.com"})

    assert "\n" not in result.data.subject


def test_brochure_delivery_link_or_attachment():
    linked = manager().render("brochure_delivery", {**CONTEXT, "attached": False}).data
    attached = manager().render("brochure_delivery", {**CONTEXT, "attached": True}).data

    assert "https://acme.example.com/api/brochure/download" in linked.html
    assert "attached to this email" in attached.text
    assert "api/brochure/download" not in attached.html


def test_optional_fields_have_fallbacks():
    result = manager().render("brochure_notification", {"name": "Sam", "email": "sam@example.com"})

    assert "No message provided" in result.data.html


def test_unknown_template():
    result = manager().render("does_not_exist", CONTEXT)

    assert not result.success
    assert result.error_code == "TEMPLATE_RENDER_ERROR"


def test_missing_required_variable():
    result = manager().render("contact_notification", {})

    assert not result.success
    assert "name" in result.error


def test_templates_dir_overrides_builtin(tmp_path):
    (tmp_path / "contact_notification_subject.txt").write_text("Website lead: {{ name }}")

    tm = manager(templates_dir=tmp_path)
    result = tm.render("contact_notification", CONTEXT)

    assert result.data.subject == "Website lead: Jane Doe"
    assert tm.get_available_templates()["contact_notification"]["type"] == "override"


def test_every_builtin_template_validates():
    tm = manager()

    for template_id in BUILTIN_TEMPLATES:
        assert tm.validate_template(template_id)["is_valid"], template_id
