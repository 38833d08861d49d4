"""
Transactional e-mail through the Resend REST API.

Message bodies are jinja2 templates shipped in the ``templates`` directory next to this module.
Without an API key (local development) messages are written to the log instead of being sent,
so the invitation and reset flows can be exercised end to end.
"""

import logging
from typing import Any, Dict, List, Optional, Union
from aiohttp import ClientSession
import jinja2

from de.hejtalent.crm.app.config import Settings
from de.hejtalent.crm.app.metrics import MetricsClient
from de.hejtalent.crm.errors import MailDeliveryError

logger = logging.getLogger(__name__)

templates = jinja2.Environment(
    loader=jinja2.PackageLoader("de.hejtalent.crm.mail", "templates"),
    autoescape=jinja2.select_autoescape(["html"]),
    undefined=jinja2.StrictUndefined,
)


def render_template(name: str, **context: Any) -> str:
    return templates.get_template(name).render(**context)


async def send_email(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    to: Union[str, List[str]],
    subject: str,
    html: str,
) -> Optional[str]:
    """
    Send an HTML e-mail.

    Returns:
        The message id assigned by the mail API, or None when sending is disabled.

    Raises:
        MailDeliveryError: If the mail API rejects the message.
    """
    recipients = [to] if isinstance(to, str) else list(to)

    if not settings.resend_api_key:
        logger.info(
            "Mail delivery disabled, not sending.\nTo: %s\nSubject: %s\n\n%s",
            ", ".join(recipients),
            subject,
            html,
        )
        metrics_client.increment(
            "hejtalent.mail.send", 1, tag_dict={"status": "disabled"}
        )
        return None

    payload: Dict[str, Any] = {
        "from": settings.mail_from,
        "to": recipients,
        "subject": subject,
        "html": html,
    }
    async with http_session.post(
        f"{settings.resend_base_url}/emails",
        json=payload,
        headers={"Authorization": f"Bearer {settings.resend_api_key}"},
    ) as resp:
        metrics_client.increment(
            "hejtalent.mail.send", 1, tag_dict={"status": resp.status}
        )
        if resp.status not in (200, 201):
            error_text = await resp.text()
            logger.error("Mail API rejected message: %s %s", resp.status, error_text)
            raise MailDeliveryError(
                f"Failed to send email: {resp.status}",
                status=resp.status,
                body=error_text,
            )
        sent: Dict[str, Any] = await resp.json()

    logger.info("Email sent to %s: %s", ", ".join(recipients), sent.get("id"))
    return sent.get("id", None)
