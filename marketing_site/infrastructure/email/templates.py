"""Jinja2 email templates for form notifications, acknowledgements and brochure delivery."""

import re
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, List

from jinja2 import (
    ChoiceLoader, DictLoader, Environment, FileSystemLoader, StrictUndefined,
    TemplateError, select_autoescape
)
from pydantic import BaseModel

from ...core.models.common import OperationResult


class RenderedEmail(BaseModel):
    """Subject and bodies produced from one template."""
    subject: str
    html: str
    text: str


LAYOUT_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{% block title %}{{ company_name }}{% endblock %}</title>
  <style>
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background-color: #FFC107; padding: 20px; text-align: center; color: #000; border-radius: 5px 5px 0 0; }
    .content { padding: 20px; background-color: #fff; border: 1px solid #e9ecef; }
    .field { margin-bottom: 15px; }
    .label { font-weight: bold; }
    .message-box { background: #f8f9fa; padding: 15px; border-left: 4px solid {% block accent %}#007bff{% endblock %}; margin: 10px 0; white-space: pre-line; }
    .button { display: inline-block; padding: 10px 20px; background-color: #FFC107; color: #000; text-decoration: none; border-radius: 5px; margin-top: 20px; }
    .footer { text-align: center; padding: 20px; font-size: 12px; color: #666; }
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h2>{% block header %}{% endblock %}</h2>
    </div>
    <div class="content">
{% block content %}{% endblock %}
    </div>
    <div class="footer">
      <p>This is an automated message from the {{ company_name }} website.</p>
      <p>&copy; {{ year }} {{ company_name }}. All rights reserved.</p>
      <p>Timestamp: {{ timestamp }}</p>
    </div>
  </div>
</body>
</html>
"""

_SUBMISSION_FIELDS_HTML = """
      <div class="field"><span class="label">Name:</span> {{ name }}</div>
      <div class="field"><span class="label">Email:</span> <a href="mailto:{{ email }}">{{ email }}</a></div>
      <div class="field"><span class="label">Phone:</span> {{ phone or 'Not provided' }}</div>
      <div class="field"><span class="label">Message:</span></div>
      <div class="message-box">{{ message or 'No message provided' }}</div>"""

_SUBMISSION_FIELDS_TEXT = """Name: {{ name }}
Email: {{ email }}
Phone: {{ phone or 'Not provided' }}
Message: {{ message or 'No message provided' }}"""


BUILTIN_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "contact_notification": {
        "name": "Contact Notification",
        "description": "Sent to the company when the contact form is submitted",
        "subject_template": "New Contact Form Submission from {{ name }}",
        "text_template": "New Contact Form Submission\n\n" + _SUBMISSION_FIELDS_TEXT
        + "\n\nSubmitted: {{ timestamp }}\nSent from the {{ company_name }} website contact form",
        "html_template": """{% extends "layout.html" %}
{% block title %}New Contact Form Submission{% endblock %}
{% block header %}New Contact Form Submission{% endblock %}
{% block content %}""" + _SUBMISSION_FIELDS_HTML + """
{% endblock %}""",
        "variables": ["name", "email", "phone", "message"]
    },

    "contact_acknowledgement": {
        "name": "Contact Acknowledgement",
        "description": "Thank-you email sent to the person who submitted the contact form",
        "subject_template": "Thank you for contacting {{ company_name }}",
        "text_template": """Dear {{ name }},

Thank you for reaching out to {{ company_name }}. We have received your message and our team will get back to you as soon as possible.

Best regards,
The {{ company_name }} Team""",
        "html_template": """{% extends "layout.html" %}
{% block title %}Thank You for Contacting Us{% endblock %}
{% block header %}Thank You for Contacting Us{% endblock %}
{% block content %}
      <p>Dear {{ name }},</p>
      <p>Thank you for reaching out to {{ company_name }}. We have received your message and our team will get back to you as soon as possible.</p>
      <p>Best regards,<br>The {{ company_name }} Team</p>
{% if client_url %}      <a href="{{ client_url }}" class="button">Visit Our Website</a>{% endif %}
{% endblock %}""",
        "variables": ["name"]
    },

    "brochure_notification": {
        "name": "Brochure Request Notification",
        "description": "Sent to the company when someone requests the brochure",
        "subject_template": "New Brochure Request from {{ name }}",
        "text_template": "New Brochure Download Request\n\n" + _SUBMISSION_FIELDS_TEXT
        + "\n\nSubmitted: {{ timestamp }}\nSent from the {{ company_name }} website brochure form",
        "html_template": """{% extends "layout.html" %}
{% block title %}New Brochure Download Request{% endblock %}
{% block accent %}#28a745{% endblock %}
{% block header %}New Brochure Download Request{% endblock %}
{% block content %}""" + _SUBMISSION_FIELDS_HTML + """
{% endblock %}""",
        "variables": ["name", "email", "phone", "message"]
    },

    "brochure_delivery": {
        "name": "Brochure Delivery",
        "description": "Sent to the requester with the brochure attached or linked",
        "subject_template": "Your {{ company_name }} Brochure",
        "text_template": """Dear {{ name }},

Thank you for your interest in {{ company_name }}.
{% if attached %}Please find our brochure attached to this email.{% else %}You can download our brochure here: {{ download_url }}{% endif %}

If you have any questions, simply reply to this email.

Best regards,
The {{ company_name }} Team""",
        "html_template": """{% extends "layout.html" %}
{% block title %}Your Brochure{% endblock %}
{% block accent %}#28a745{% endblock %}
{% block header %}Thank You for Your Interest{% endblock %}
{% block content %}
      <p>Dear {{ name }},</p>
      <p>Thank you for your interest in {{ company_name }}.</p>
{% if attached %}      <p>Please find our brochure attached to this email.</p>
{% else %}      <p><a href="{{ download_url }}" class="button">Download the Brochure</a></p>
{% endif %}      <p>If you have any questions, simply reply to this email.</p>
      <p>Best regards,<br>The {{ company_name }} Team</p>
{% endblock %}""",
        "variables": ["name", "attached", "download_url"]
    },
}


class EmailTemplateManager:
    """Renders the site's emails.

    Files in ``templates_dir`` named ``<id>_subject.txt``, ``<id>_text.txt``
    and ``<id>_html.html`` (or ``layout.html``) override the built-ins.
    HTML templates are autoescaped; text and subject templates are not.
    """

    def __init__(
        self,
        company_name: str = "Our Company",
        client_url: str = "",
        templates_dir: Optional[Path] = None
    ):
        self.company_name = company_name
        self.client_url = client_url.rstrip("/")
        self.templates_dir = templates_dir
        self.builtin_templates = BUILTIN_TEMPLATES

        loaders = []
        if templates_dir is not None:
            loaders.append(FileSystemLoader(str(templates_dir)))
        loaders.append(DictLoader(self._builtin_sources()))

        self.jinja_env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=False
        )

    def _builtin_sources(self) -> Dict[str, str]:
        sources = {"layout.html": LAYOUT_TEMPLATE}
        for template_id, template_data in self.builtin_templates.items():
            sources[f"{template_id}_subject.txt"] = template_data["subject_template"]
            sources[f"{template_id}_text.txt"] = template_data["text_template"]
            sources[f"{template_id}_html.html"] = template_data["html_template"]
        return sources

    def _base_context(self) -> Dict[str, Any]:
        now = datetime.now()
        return {
            "company_name": self.company_name,
            "client_url": self.client_url,
            "download_url": f"{self.client_url}/api/brochure/download",
            "year": now.year,
            "timestamp": now.strftime("%Y-%m-%d %H:%M:%S"),
            "phone": None,
            "message": None,
            "attached": False,
        }

    def render(self, template_id: str, context: Dict[str, Any]) -> OperationResult[RenderedEmail]:
        """Render subject, text and HTML for a template id."""
        full_context = {**self._base_context(), **context}

        try:
            subject = self.jinja_env.get_template(f"{template_id}_subject.txt").render(**full_context)
            text = self.jinja_env.get_template(f"{template_id}_text.txt").render(**full_context)
            html = self.jinja_env.get_template(f"{template_id}_html.html").render(**full_context)
        except TemplateError as e:
            return OperationResult.error_result(
                error=f"Template {template_id} rendering failed: {str(e)}",
                error_code="TEMPLATE_RENDER_ERROR"
            )

        return OperationResult.success_result(
            data=RenderedEmail(
                # Header injection guard: subjects are single-line
                subject=" ".join(subject.split()),
                html=html,
                text=re.sub(r'\n\s*\n', '\n\n', text.strip())
            )
        )

    def get_available_templates(self) -> Dict[str, Dict[str, Any]]:
        """Get list of available templates."""
        templates = {
            template_id: {
                "id": template_id,
                "name": template_data["name"],
                "description": template_data["description"],
                "variables": template_data["variables"],
                "type": "builtin"
            }
            for template_id, template_data in self.builtin_templates.items()
        }

        if self.templates_dir is not None and self.templates_dir.exists():
            for template_file in self.templates_dir.glob("*_subject.txt"):
                template_id = template_file.stem.replace("_subject", "")
                if template_id in templates:
                    templates[template_id]["type"] = "override"
                else:
                    templates[template_id] = {
                        "id": template_id,
                        "name": template_id.replace("_", " ").title(),
                        "description": "Custom template",
                        "variables": [],
                        "type": "custom"
                    }

        return templates

    def validate_template(self, template_id: str) -> Dict[str, Any]:
        """Render a template with placeholder values and report problems."""
        errors: List[str] = []
        template_data = self.builtin_templates.get(template_id, {})
        dummy_context = {var: f"test_{var}" for var in template_data.get("variables", ["name", "email"])}

        result = self.render(template_id, dummy_context)
        if not result.success:
            errors.append(result.error)

        return {"is_valid": not errors, "errors": errors}
