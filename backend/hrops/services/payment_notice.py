import logging
from datetime import date

from hrops.core.exceptions import ConfigurationError
from hrops.models.dto.settings import PaymentNoticeConfig
from hrops.notifications.email import MailSenderProtocol, mask_email, render_email
from hrops.services.date_rules import roc_year

logger = logging.getLogger(__name__)


def payment_deadline_label(today: date) -> str:
    """Claims for the current month close on the 5th of next month, or on 31 December."""
    year = roc_year(today)
    if today.month == 12:
        return f"{year}年12月31日"
    return f"{year}年{today.month + 1}月5日"


def payment_notice_subject(today: date) -> str:
    return f"【通知】{roc_year(today)}年{today.month}月款項申請(至{payment_deadline_label(today)}前截止)"


async def send_payment_notice(mailer: MailSenderProtocol, config: PaymentNoticeConfig, today: date) -> str:
    """Send the monthly expense-claim reminder. Returns the subject line sent."""
    if not config.recipient:
        raise ConfigurationError("payment_notice_recipient")

    subject = payment_notice_subject(today)
    html = render_email("payment_notice.html", {
        "roc_year": roc_year(today),
        "month": today.month,
        "deadline": payment_deadline_label(today),
        "forms_url": config.forms_url,
    })
    await mailer.send(config.recipient, subject, html, sender_name=config.sender_name or None)
    logger.info("Payment notice sent to %s", mask_email(config.recipient))
    return subject
