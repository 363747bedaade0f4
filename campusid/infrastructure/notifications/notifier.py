# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Invitation notifier.

Delivers parent link requests and parent invitations. Sending is
fire-and-forget from the caller's perspective: ``send`` reports success as
a boolean, logs every failure, and never raises.

Configuration (via environment variables):
- SMTP_HOST: SMTP server hostname (email disabled when unset)
- SMTP_PORT: SMTP server port (default: 587)
- SMTP_USERNAME / SMTP_PASSWORD: SMTP credentials
- SMTP_USE_TLS: Use STARTTLS (default: true)
- SMTP_FROM_EMAIL / SMTP_FROM_NAME: Sender
"""

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any

import aiosmtplib

from campusid.core.config.settings import SMTPSettings


class TemplateKind(str, Enum):
    """Notification templates."""

    PARENT_LINK_REQUEST = "parent_link_request"
    PARENT_INVITATION = "parent_invitation"


@dataclass
class RenderedMessage:
    """Subject and bodies of a rendered template."""

    subject: str
    text: str
    html: str


def render_template(kind: TemplateKind, context: dict[str, Any]) -> RenderedMessage:
    """Render a template with its context fields.

    Context fields:
        student_name: Display name of the student.
        link: Confirmation link.
        expires_in_days: Validity of an invitation link (invitations only).
    """
    student_name = str(context.get("student_name") or "your child")
    link = str(context.get("link") or "")
    safe_name = html.escape(student_name)
    safe_link = html.escape(link, quote=True)

    if kind == TemplateKind.PARENT_LINK_REQUEST:
        subject = f"Confirm your link to {student_name}"
        intro = (
            f"{student_name} has listed you as their parent or guardian. "
            "Confirm the link to see their school information in your account."
        )
        action = "Confirm Parent Relationship"
        footer = ""
    else:
        days = context.get("expires_in_days", 7)
        subject = f"Parent Account Invitation for {student_name}"
        intro = (
            f"Your child, {student_name}, has registered and listed you as their "
            "parent or guardian. Create your parent account to verify this relationship."
        )
        action = "Verify Parent Relationship"
        footer = f"This link will expire in {days} days."

    text_lines = [subject, "=" * len(subject), "", intro, "", f"{action}: {link}"]
    if footer:
        text_lines += ["", footer]
    text_lines += ["", "If you believe this is a mistake, please ignore this email."]

    html_body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h2>{html.escape(subject)}</h2>"
        f"<p>{html.escape(intro)}</p>"
        f'<p style="text-align: center; margin: 30px 0;"><a href="{safe_link}">{html.escape(action)}</a></p>'
        f'<p>Or open this link: <a href="{safe_link}">{safe_link}</a></p>'
        + (f"<p>{html.escape(footer)}</p>" if footer else "")
        + f"<p>If you believe this is a mistake about {safe_name}, please ignore this email.</p>"
        "</div>"
    )
    return RenderedMessage(subject=subject, text="\n".join(text_lines), html=html_body)


class InvitationNotifier(ABC):
    """Abstract invitation notifier."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def send(self, to_email: str, template_kind: TemplateKind, context: dict[str, Any]) -> bool:
        """Deliver a notification.

        Args:
            to_email: Recipient address.
            template_kind: Which template to render.
            context: Template fields.

        Returns:
            True if the message was handed to the transport.
        """
        ...


class EmailInvitationNotifier(InvitationNotifier):
    """Invitation notifier sending multipart email over async SMTP."""

    def __init__(self, settings: SMTPSettings) -> None:
        super().__init__()
        self._settings = settings
        if not settings.is_configured:
            self.logger.warning(
                "Email notifications disabled: SMTP_HOST or SMTP_FROM_EMAIL not set"
            )

    def _build_email_message(self, to_email: str, rendered: RenderedMessage) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = f"{self._settings.from_name} <{self._settings.from_email}>"
        message["To"] = to_email
        message["Subject"] = rendered.subject
        message.attach(MIMEText(rendered.text, "plain", "utf-8"))
        message.attach(MIMEText(rendered.html, "html", "utf-8"))
        return message

    async def send(self, to_email: str, template_kind: TemplateKind, context: dict[str, Any]) -> bool:
        """Send the rendered template via SMTP."""
        if not self._settings.is_configured:
            self.logger.info(
                "Skipping %s email to %s: SMTP not configured",
                TemplateKind(template_kind).value,
                to_email,
            )
            return False

        try:
            message = self._build_email_message(
                to_email, render_template(TemplateKind(template_kind), context)
            )
            password = self._settings.password
            await aiosmtplib.send(
                message,
                hostname=self._settings.host,
                port=self._settings.port,
                username=self._settings.username,
                password=password.get_secret_value() if password else None,
                start_tls=self._settings.use_tls,
                timeout=self._settings.timeout,
            )
        except Exception as e:
            self.logger.error(
                "Failed to send %s email to %s: %s",
                template_kind,
                to_email,
                str(e),
                exc_info=True,
            )
            return False

        self.logger.info("Sent %s email to %s", TemplateKind(template_kind).value, to_email)
        return True
