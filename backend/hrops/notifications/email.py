import asyncio
import logging
import re
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import aiosmtplib
from jinja2 import Environment, FileSystemLoader
from pydantic import BaseModel

from hrops.core.config import settings
from hrops.core.exceptions import ExternalCallFailure

logger = logging.getLogger(__name__)

_template_dir = Path(__file__).parent / "templates"
_jinja_env = Environment(loader=FileSystemLoader(str(_template_dir)), autoescape=True)

ALLOWED_TEMPLATES = {
    "birthday_approval.html",
    "probation_employee.html",
    "probation_manager.html",
    "employee_report_boss.html",
    "employee_report_insurance.html",
    "payment_notice.html",
    "operator_alert.html",
    "offer_email.html",
}

_RETRY_DELAYS = (1, 2, 4)

_TRANSIENT_EXCEPTIONS = (
    aiosmtplib.SMTPConnectError,
    aiosmtplib.SMTPConnectTimeoutError,
    aiosmtplib.SMTPServerDisconnected,
)

_SMTP_TIMEOUT_SECONDS = 30


class Attachment(BaseModel):
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"


class SentMessage(BaseModel):
    to: str
    subject: str
    html_body: str
    cc: list[str] = []
    sender_name: str | None = None
    attachments: list[Attachment] = []


@runtime_checkable
class MailSenderProtocol(Protocol):
    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        *,
        cc: list[str] | None = None,
        sender_name: str | None = None,
        attachments: list[Attachment] | None = None,
    ) -> None: ...


def _sanitize_header(value: str) -> str:
    """Strip newline characters to prevent email header injection."""
    return value.replace("\r", "").replace("\n", "")


def _html_to_plaintext(html_body: str) -> str:
    """Convert HTML to plaintext for the email alternative part."""
    text = re.sub(r"<br\s*/?>", "\n", html_body)
    text = re.sub(r"</(?:p|div|tr|li|h[1-6])>", "\n", text)
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def mask_email(address: str) -> str:
    """Mask an email address for safe logging (exported for use in other modules)."""
    if "@" in address:
        return address.split("@")[0][:2] + "***@" + address.split("@")[-1]
    return "***"


def render_email(template_name: str, context: dict[str, Any]) -> str:
    if template_name not in ALLOWED_TEMPLATES:
        raise ValueError(f"Email template not allowed: {template_name}")
    return _jinja_env.get_template(template_name).render(**context)


def _get_smtp_config() -> dict:
    port = settings.smtp_port
    return {
        "hostname": settings.smtp_host,
        "port": port,
        "username": settings.smtp_username or None,
        "password": settings.smtp_password or None,
        "start_tls": settings.smtp_use_tls and port != 465,
        "use_tls": port == 465,
        "timeout": _SMTP_TIMEOUT_SECONDS,
    }


async def _send_with_retry(message: MIMEMultipart, smtp: dict, recipients: list[str]) -> None:
    """Send an email message with retry on transient SMTP errors."""
    last_exc: Exception | None = None
    for attempt, delay in enumerate(_RETRY_DELAYS, 1):
        try:
            await aiosmtplib.send(message, recipients=recipients, **smtp)
            return
        except aiosmtplib.SMTPResponseException as exc:
            if exc.code >= 500:
                raise
            logger.warning("Transient SMTP error (attempt %d/%d): %s", attempt, len(_RETRY_DELAYS), exc)
            last_exc = exc
        except _TRANSIENT_EXCEPTIONS as exc:
            logger.warning("Transient SMTP error (attempt %d/%d): %s", attempt, len(_RETRY_DELAYS), exc)
            last_exc = exc
        if attempt < len(_RETRY_DELAYS):
            await asyncio.sleep(delay)
    raise last_exc  # type: ignore[misc]


class SmtpMailSender:
    """Delivers HTML mail over SMTP. Failures surface as ExternalCallFailure."""

    def __init__(self, smtp: dict | None = None, from_address: str | None = None):
        self._smtp = smtp or _get_smtp_config()
        self._from_address = from_address or settings.smtp_from_address

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        *,
        cc: list[str] | None = None,
        sender_name: str | None = None,
        attachments: list[Attachment] | None = None,
    ) -> None:
        if not self._smtp["hostname"]:
            raise ExternalCallFailure("SMTP", "SMTP host is not configured")
        if "\n" in to or "\r" in to:
            raise ValueError("Invalid email recipient: contains newline characters")

        cc = [_sanitize_header(c) for c in (cc or []) if c]
        from_name = _sanitize_header(sender_name or settings.smtp_from_name)

        message = MIMEMultipart("mixed")
        message["From"] = formataddr((from_name, self._from_address))
        message["To"] = to
        if cc:
            message["Cc"] = ", ".join(cc)
        message["Subject"] = _sanitize_header(subject)
        message["Date"] = formatdate(localtime=True)
        domain = self._from_address.split("@")[-1] if "@" in self._from_address else "localhost"
        message["Message-ID"] = make_msgid(domain=domain)

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(_html_to_plaintext(html_body), "plain", "utf-8"))
        body.attach(MIMEText(html_body, "html", "utf-8"))
        message.attach(body)

        for attachment in attachments or []:
            part = MIMEApplication(attachment.content, Name=attachment.filename)
            part["Content-Disposition"] = f'attachment; filename="{attachment.filename}"'
            part.set_type(attachment.mime_type)
            message.attach(part)

        try:
            await _send_with_retry(message, self._smtp, [to, *cc])
        except Exception as e:
            logger.exception("Failed to send email to %s", mask_email(to))
            raise ExternalCallFailure("SMTP", str(e)) from e
        logger.info("Email sent to %s: %s", mask_email(to), subject)


class FakeMailSender:
    """Test fake recording every message."""

    def __init__(self, fail_for: set[str] | None = None):
        self.sent: list[SentMessage] = []
        self.fail_for = fail_for or set()

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        *,
        cc: list[str] | None = None,
        sender_name: str | None = None,
        attachments: list[Attachment] | None = None,
    ) -> None:
        if to in self.fail_for:
            raise ExternalCallFailure("SMTP", f"mailbox unavailable: {to}")
        self.sent.append(SentMessage(
            to=to, subject=subject, html_body=html_body, cc=list(cc or []),
            sender_name=sender_name, attachments=list(attachments or []),
        ))
