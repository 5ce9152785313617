"""
Outbound notification transport.

Every channel implements ``send(to, subject, html, cc=None, reply_to=None)``
and reports the outcome as a DeliveryResult. Transport problems are raised as
DeliveryError inside the channel and converted before they leave ``send``.
"""

from __future__ import annotations

import html
import logging
import os
import smtplib
from datetime import date, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

import requests

from ..errors import DeliveryError
from ..models import AlertKind, DeliveryResult

logger = logging.getLogger(__name__)

_EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "none").lower()
_FROM_EMAIL = os.getenv("NOTIFICATION_FROM_EMAIL", "onboarding@resend.dev")
_EMAIL_TIMEOUT_SEC = float(os.getenv("EMAIL_TIMEOUT_SEC", "10"))
_RESEND_API_KEY = os.getenv("RESEND_API_KEY")
_RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
_SMTP_HOST = os.getenv("SMTP_HOST")
_SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
_SMTP_USER = os.getenv("SMTP_USER")
_SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
_APP_URL = os.getenv("APP_URL", "http://localhost:5173/")


class DeliveryChannel:
    name = "base"

    def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        cc: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> DeliveryResult:
        try:
            message_id = self._deliver(to, subject, html_body, cc=cc, reply_to=reply_to)
        except DeliveryError as exc:
            logger.warning("email delivery failed channel=%s to=%s: %s", self.name, to, exc.message)
            return DeliveryResult(success=False, error=exc.message)
        return DeliveryResult(success=True, sent_at=datetime.utcnow(), message_id=message_id)

    def _deliver(self, to, subject, html_body, cc=None, reply_to=None) -> Optional[str]:
        raise NotImplementedError

    def health(self) -> tuple[bool, str]:
        return True, f"{self.name} configured"


class NullChannel(DeliveryChannel):
    """Used when no e-mail provider is configured; every send reports failure."""

    name = "none"

    def _deliver(self, to, subject, html_body, cc=None, reply_to=None) -> Optional[str]:
        raise DeliveryError("Email service not configured")

    def health(self) -> tuple[bool, str]:
        return False, "EMAIL_PROVIDER=none (disabled)"


class ResendChannel(DeliveryChannel):
    name = "resend"

    def __init__(self, api_key: Optional[str], api_url: str = _RESEND_API_URL, from_email: str = _FROM_EMAIL):
        self.api_key = api_key
        self.api_url = api_url
        self.from_email = from_email

    def _deliver(self, to, subject, html_body, cc=None, reply_to=None) -> Optional[str]:
        if not self.api_key:
            raise DeliveryError("RESEND_API_KEY not set")
        payload = {"from": self.from_email, "to": [to], "subject": subject, "html": html_body}
        if cc:
            payload["cc"] = [cc]
        if reply_to:
            payload["reply_to"] = reply_to
        try:
            resp = requests.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=_EMAIL_TIMEOUT_SEC,
            )
        except requests.exceptions.RequestException as exc:
            raise DeliveryError(f"Resend call failed: {exc}")
        if resp.status_code >= 300:
            raise DeliveryError(f"Resend error {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json().get("id")
        except ValueError:
            return None

    def health(self) -> tuple[bool, str]:
        if not self.api_key:
            return False, "RESEND_API_KEY not set"
        return True, "Resend configured"


class SmtpChannel(DeliveryChannel):
    name = "smtp"

    def __init__(
        self,
        host: Optional[str],
        port: int = _SMTP_PORT,
        user: Optional[str] = _SMTP_USER,
        password: Optional[str] = _SMTP_PASSWORD,
        from_email: str = _FROM_EMAIL,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email

    def _deliver(self, to, subject, html_body, cc=None, reply_to=None) -> Optional[str]:
        if not self.host:
            raise DeliveryError("SMTP_HOST not set")
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to
        recipients: List[str] = [to]
        if cc:
            msg["Cc"] = cc
            recipients.append(cc)
        if reply_to:
            msg["Reply-To"] = reply_to
        msg.attach(MIMEText(html_body, "html"))
        try:
            with smtplib.SMTP(self.host, self.port, timeout=_EMAIL_TIMEOUT_SEC) as server:
                server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP send failed: {exc}")
        return None

    def health(self) -> tuple[bool, str]:
        if not self.host:
            return False, "SMTP_HOST not set"
        return True, f"SMTP {self.host}:{self.port}"


def get_channel() -> DeliveryChannel:
    if _EMAIL_PROVIDER == "resend":
        return ResendChannel(_RESEND_API_KEY)
    if _EMAIL_PROVIDER == "smtp":
        return SmtpChannel(_SMTP_HOST)
    return NullChannel()


# e-mail bodies -----------------------------------------------------------------------


def _fmt_date(value: date) -> str:
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def _page(heading: str, inner: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"></head>"
        "<body style=\"font-family: Arial, sans-serif; color: #1f2937;\">"
        f"<h1 style=\"font-size: 22px;\">{html.escape(heading)}</h1>{inner}"
        "<p style=\"font-size: 12px; color: #6b7280;\">Sent by Warranty Pro.</p>"
        "</body></html>"
    )


_URGENCY = {
    AlertKind.thirty_day: "Expires in 30 days",
    AlertKind.seven_day: "Expires in 7 days",
    AlertKind.expiry_day: "Expires today",
    AlertKind.expired: "Expired",
}


def expiry_alert_html(
    product_name: str,
    brand: Optional[str],
    kind: AlertKind,
    expiry_date: date,
    purchase_date: date,
    coverage_months: int,
) -> str:
    rows = [
        ("Brand", brand or "N/A"),
        ("Purchase date", _fmt_date(purchase_date)),
        ("Warranty duration", f"{coverage_months} months"),
        ("Expiry date", _fmt_date(expiry_date)),
    ]
    table = "".join(
        f"<tr><td>{html.escape(k)}</td><td><strong>{html.escape(v)}</strong></td></tr>" for k, v in rows
    )
    inner = (
        f"<p><strong>{html.escape(_URGENCY[kind])}</strong></p>"
        f"<table>{table}</table>"
        f"<p><a href=\"{html.escape(_APP_URL)}\">View in Warranty Pro</a></p>"
    )
    return _page(product_name, inner)


def claim_email_html(body: str, product_name: str, brand: Optional[str], serial_number: Optional[str]) -> str:
    details = (
        f"<p>Product: {html.escape(product_name)}<br>"
        f"Brand: {html.escape(brand or 'N/A')}<br>"
        f"Serial number: {html.escape(serial_number or 'N/A')}</p>"
    )
    text = f"<div style=\"white-space: pre-wrap;\">{html.escape(body)}</div>"
    return _page("Warranty Claim Request", details + text)


def claim_confirmation_html(name: Optional[str], claim_number: str, product_name: str, sent_to: str) -> str:
    inner = (
        f"<p>Hi {html.escape(name or 'there')},</p>"
        f"<p>Your warranty claim <strong>{html.escape(claim_number)}</strong> for "
        f"{html.escape(product_name)} was sent to {html.escape(sent_to)}.</p>"
        "<p>We will keep the claim status up to date in your dashboard.</p>"
    )
    return _page("Claim submitted", inner)
