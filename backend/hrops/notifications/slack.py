import logging
import re

import httpx

from hrops.core.config import settings

logger = logging.getLogger(__name__)

_SLACK_MENTION_RE = re.compile(r"@(channel|here|everyone)")


def sanitize_slack_text(text: str) -> str:
    """Escape Slack control characters and @-mentions in roster-derived text."""
    text = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    return _SLACK_MENTION_RE.sub("@\u200b\\1", text)


async def send_operator_alert(
    subject: str,
    detail: str,
    webhook_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Post an alert to the operator Slack channel. Returns False when not delivered."""
    url = webhook_url if webhook_url is not None else settings.slack_webhook_url
    if not url:
        logger.debug("Slack not configured, skipping operator alert")
        return False

    payload = {
        "text": f"*{sanitize_slack_text(subject)}*\n{sanitize_slack_text(detail)}",
    }
    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            resp = await client.post(url, json=payload)
            resp.raise_for_status()
    except httpx.HTTPError:
        logger.exception("Failed to send Slack operator alert")
        return False
    logger.info("Slack operator alert sent: %s", subject)
    return True
