import logging

from hrops.core.exceptions import HROpsError
from hrops.notifications.email import MailSenderProtocol, mask_email, render_email
from hrops.notifications.slack import send_operator_alert

logger = logging.getLogger(__name__)


async def notify_operator(
    mailer: MailSenderProtocol,
    operator_email: str,
    *,
    subject: str,
    detail: str,
    template_name: str = "operator_alert.html",
    context: dict | None = None,
) -> bool:
    """Report a structural job failure: log, email the operator, and post to Slack.

    Delivery problems are logged and swallowed so the original failure stays
    the one that gets reported. Returns True if the email went out.
    """
    logger.error("Operator alert: %s: %s", subject, detail)

    emailed = False
    if operator_email:
        try:
            html = render_email(template_name, {"subject": subject, "detail": detail, **(context or {})})
            await mailer.send(operator_email, subject, html)
            emailed = True
        except (HROpsError, ValueError):
            logger.exception("Failed to email operator %s", mask_email(operator_email))
    else:
        logger.warning("No operator email configured; alert only logged")

    await send_operator_alert(subject, detail)
    return emailed
