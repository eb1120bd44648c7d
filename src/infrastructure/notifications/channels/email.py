# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Email notification channel using async SMTP.

Alerts go out as multipart/alternative (plain text and HTML) through
aiosmtplib. Relative action URLs are made absolute with
EmailSettings.link_base_url so the link works outside the web app.

A refused recipient or a permanent 55x mailbox reply fails the delivery
without retry; connection problems and other SMTP errors are retried by
the email queue.

Configuration comes from EmailSettings (SMTP_* environment variables).
"""

from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from urllib.parse import urljoin

import aiosmtplib

from src.core.config.settings import EmailSettings
from src.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    NotificationPayload,
)

# Mailbox unavailable, not permitted, exceeded storage, name not allowed, rejected
PERMANENT_SMTP_CODES = frozenset({550, 551, 552, 553, 554})

CRITICAL_COLOR = "#DC2626"
DEFAULT_COLOR = "#4F46E5"
FOOTER = "This alert was sent by Dropout Sentinel. Manage your notification preferences in your account settings."


def escape(text: str) -> str:
    """Escape HTML special characters."""
    return (
        text
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def is_permanent_failure(error: aiosmtplib.SMTPException) -> bool:
    if isinstance(error, aiosmtplib.SMTPRecipientsRefused):
        return True
    return isinstance(error, aiosmtplib.SMTPResponseException) and error.code in PERMANENT_SMTP_CODES


class EmailChannel(BaseChannel):
    """Risk alerts by email."""

    def __init__(self, settings: EmailSettings) -> None:
        super().__init__()
        self.settings = settings

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.EMAIL

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    def resolve_destination(
        self,
        recipient_id: str,
        email: str | None,
        phone: str | None,
    ) -> str | None:
        return email or None

    def action_link(self, payload: NotificationPayload) -> str | None:
        """Absolute URL of the payload's action, if it has one."""
        if not payload.action_url:
            return None
        if not self.settings.link_base_url:
            return payload.action_url
        return urljoin(self.settings.link_base_url, payload.action_url)

    async def send(self, destination: str, payload: NotificationPayload) -> ChannelResult:
        """Send the alert to one address.

        Args:
            destination: Recipient email address.
            payload: The notification content.

        Returns:
            ChannelResult with the Message-ID as provider id.
        """
        if not self.is_configured:
            return self.create_skipped_result("Email channel not configured")

        message = self.build_message(destination, payload)

        try:
            await aiosmtplib.send(
                message,
                hostname=self.settings.host,
                port=self.settings.port,
                username=self.settings.user,
                password=self.settings.password.get_secret_value(),
                start_tls=self.settings.use_tls,
                timeout=self.settings.timeout,
            )
        except aiosmtplib.SMTPException as e:
            permanent = is_permanent_failure(e)
            self.logger.error(
                "Failed to send email to %s (%s): %s",
                destination,
                "permanent" if permanent else "will retry",
                e,
            )
            return self.create_failure_result(
                f"SMTP error: {e}",
                metadata={"recipient": destination},
                retryable=not permanent,
            )
        except OSError as e:
            self.logger.error("SMTP connection to %s failed: %s", self.settings.host, e)
            return self.create_failure_result(f"SMTP connection error: {e}", metadata={"recipient": destination})

        self.logger.info("Email sent to %s: %s", destination, payload.title)
        return self.create_success_result(
            provider_id=message["Message-ID"],
            metadata={"recipient": destination},
        )

    def build_message(self, destination: str, payload: NotificationPayload) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.settings.from_name, self.settings.from_address))
        message["To"] = destination
        message["Subject"] = payload.title
        message["Message-ID"] = make_msgid(domain=self.settings.from_address.split("@")[-1])
        if payload.is_critical:
            message["X-Priority"] = "1"
            message["Importance"] = "high"

        link = self.action_link(payload)
        message.set_content(self._plain_text(payload, link))
        message.add_alternative(self._html(payload, link), subtype="html")
        return message

    def _plain_text(self, payload: NotificationPayload, link: str | None) -> str:
        lines = [payload.title, "=" * len(payload.title), "", payload.message, ""]
        if link:
            lines += [f"View student: {link}", ""]
        lines += ["---", FOOTER]
        return "\n".join(lines)

    def _html(self, payload: NotificationPayload, link: str | None) -> str:
        color = CRITICAL_COLOR if payload.is_critical else DEFAULT_COLOR
        body = escape(payload.message).replace("\n", "<br>")

        button = ""
        if link:
            button = (
                f'<p style="margin:24px 0;"><a href="{escape(link)}" '
                f'style="background:{color};color:#fff;padding:12px 24px;'
                f'text-decoration:none;border-radius:6px;">View student</a></p>'
            )

        return (
            "<!DOCTYPE html>\n"
            '<html><head><meta charset="utf-8"></head>'
            '<body style="font-family:Arial,sans-serif;color:#1F2937;background:#F3F4F6;margin:0;">'
            '<div style="max-width:600px;margin:0 auto;padding:20px;">'
            '<div style="background:#fff;border-radius:8px;padding:32px;">'
            f'<h1 style="color:{color};font-size:22px;margin:0 0 16px;">{escape(payload.title)}</h1>'
            f'<p style="font-size:16px;margin:0 0 16px;">{body}</p>'
            f"{button}"
            f'<p style="border-top:1px solid #E5E7EB;padding-top:16px;font-size:12px;color:#9CA3AF;">{FOOTER}</p>'
            "</div></div></body></html>"
        )
