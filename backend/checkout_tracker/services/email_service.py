# Overview: Email rendering and delivery transports (log, memory, Brevo HTTP API).

"""
Email Service

Transports are selected by EMAIL_BACKEND:
- "log":    write the message to the app logger (development default)
- "memory": append to app.extensions["email_outbox"] (tests)
- "brevo":  POST to the Brevo transactional email API via httpx

Every transport failure is raised as UpstreamError. Callers (the
notification dispatcher) record it on the channel; it never reaches an
engine operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
from flask import current_app, render_template
from jinja2 import TemplateError, TemplateNotFound

from ..errors import UpstreamError


BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"

SUBJECTS = {
    "checkout_confirmation": "Checkout Confirmation",
    "return_confirmation": "Return Confirmation",
    "return_reminder": "Return Reminder",
    "overdue_alert": "URGENT: Overdue Items",
    "approval_request": "Approval Required",
    "approval_decision": "Checkout Request {status}",
    "extension_request": "Extension Request",
    "penalty_applied": "Penalty Applied",
}


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str
    tags: list[str] = field(default_factory=list)


def render_email(template_name: str | None, data: dict, *, title: str, message: str) -> tuple[str, str]:
    """Return (subject, html) for a template, falling back to a generic layout."""
    app_name = current_app.config.get("EMAIL_FROM_NAME", "Inventory Tracker")
    context = {"app_name": app_name, "title": title, "message": message, **data}

    subject = title
    if template_name in SUBJECTS:
        subject = SUBJECTS[template_name].format(status=str(data.get("status", "")).capitalize())
    subject = f"{subject} - {app_name}"

    try:
        html = render_template(f"email/{template_name}.html", **context) if template_name else None
    except TemplateNotFound:
        current_app.logger.warning("Email template %s not found; using generic layout", template_name)
        html = None
    if html is None:
        html = render_template("email/notification.html", **context)

    return subject, html


class LogEmailBackend:
    name = "log"

    def send(self, message: EmailMessage) -> dict:
        current_app.logger.info("Email to %s: %s", message.to, message.subject)
        return {"success": True, "message_id": None}


class MemoryEmailBackend:
    name = "memory"

    def send(self, message: EmailMessage) -> dict:
        outbox = current_app.extensions.setdefault("email_outbox", [])
        outbox.append(message)
        return {"success": True, "message_id": f"memory-{len(outbox)}"}


class BrevoEmailBackend:
    name = "brevo"

    def __init__(self, api_key: str | None, from_address: str, from_name: str, timeout: float):
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout

    def send(self, message: EmailMessage) -> dict:
        if not self.api_key:
            raise UpstreamError("Brevo API key not configured")

        payload = {
            "sender": {"name": self.from_name, "email": self.from_address},
            "to": [{"email": message.to}],
            "subject": message.subject,
            "htmlContent": message.html,
            "textContent": message.text,
        }
        if message.tags:
            payload["tags"] = message.tags

        headers = {
            "accept": "application/json",
            "api-key": self.api_key,
            "content-type": "application/json",
        }

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(BREVO_API_URL, json=payload, headers=headers)
        except httpx.TimeoutException:
            raise UpstreamError("Brevo API request timed out")
        except httpx.HTTPError as e:
            raise UpstreamError(f"Brevo API request failed: {e}")

        if response.status_code not in (200, 201, 202):
            raise UpstreamError(
                f"Brevo API error: {response.text[:500]}",
                status=response.status_code,
            )

        try:
            message_id = response.json().get("messageId")
        except (ValueError, AttributeError):
            raise UpstreamError(
                f"Brevo API returned an unreadable response: {response.text[:200]}",
                status=response.status_code,
            )
        current_app.logger.info("Email sent via Brevo to %s (message_id=%s)", message.to, message_id)
        return {"success": True, "message_id": message_id}


def get_backend():
    config = current_app.config
    backend = config.get("EMAIL_BACKEND", "log")
    if backend == "memory":
        return MemoryEmailBackend()
    if backend == "brevo":
        return BrevoEmailBackend(
            api_key=config.get("BREVO_API_KEY"),
            from_address=config["EMAIL_FROM_ADDRESS"],
            from_name=config["EMAIL_FROM_NAME"],
            timeout=config.get("EMAIL_TIMEOUT_SECONDS", 10),
        )
    return LogEmailBackend()


def send_email(
    *,
    to: str,
    title: str,
    message: str,
    template_name: str | None = None,
    template_data: dict | None = None,
) -> dict:
    """Render and send one email. Raises UpstreamError on any delivery failure."""
    if not to:
        raise UpstreamError("Recipient has no email address")

    try:
        subject, html = render_email(template_name, template_data or {}, title=title, message=message)
    except TemplateError as e:
        raise UpstreamError(f"Email template {template_name} failed to render: {e}")

    email = EmailMessage(
        to=to,
        subject=subject,
        html=html,
        text=message,
        tags=[template_name] if template_name else [],
    )
    return get_backend().send(email)
