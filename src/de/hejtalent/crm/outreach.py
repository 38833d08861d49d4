"""
Campaign test mails.

Before a campaign goes out, its author sends every e-mail of the sequence to a test address. The
mails leave through the campaign author's connected Microsoft 365 mailbox, exactly as the real
campaign would, with the author's signature appended.
"""

import asyncio
from dataclasses import dataclass
import logging
from typing import List, Optional
from aiohttp import ClientSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from de.hejtalent.crm.app.config import Settings
from de.hejtalent.crm.app.metrics import MetricsClient
from de.hejtalent.crm.errors import DatabaseError, NotFoundError, TokenNotFoundError
from de.hejtalent.crm.model.accounts import UserEmailSettings
from de.hejtalent.crm.model.base import is_uuid
from de.hejtalent.crm.model.outreach import OutreachCampaign, OutreachEmailSequence
from de.hejtalent.crm.ms365.graph import send_mail
from de.hejtalent.crm.ms365.oauth import refresh_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SequenceMail:
    subject: str
    body: str


def build_test_mails(
    sequences: List[OutreachEmailSequence], signature: Optional[str]
) -> List[SequenceMail]:
    """Subjects are prefixed with the sequence number so the test mails can be told apart."""
    mails = []
    for sequence in sorted(sequences, key=lambda s: s.sequence_number):
        body = sequence.body_template
        if signature:
            body = f"{body}\n\n{signature}"
        mails.append(
            SequenceMail(
                subject=f"[TEST - Sequenz {sequence.sequence_number}] {sequence.subject_template}",
                body=body,
            )
        )
    return mails


async def send_test_emails(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    database_session_maker: async_sessionmaker[AsyncSession],
    campaign_id: str,
    test_email: str,
) -> str:
    """
    Send every e-mail of a campaign to `test_email`.

    Returns:
        str: Confirmation message for the campaign page

    Raises:
        NotFoundError: If the campaign does not exist or its author has no connected mailbox
        TokenRefreshError: If the author's access token could not be refreshed
        MailDeliveryError: If Graph refuses one of the mails; earlier mails are already sent
        DatabaseError: If the campaign could not be loaded
    """
    logger.info("Sending test emails for campaign %s to %s", campaign_id, test_email)

    if not is_uuid(campaign_id):
        raise NotFoundError("Campaign not found")

    try:
        async with database_session_maker() as database_session:
            campaign: Optional[OutreachCampaign] = (
                await database_session.scalars(
                    select(OutreachCampaign).where(OutreachCampaign.id == campaign_id)
                )
            ).first()
            if campaign is None:
                raise NotFoundError("Campaign not found")

            sequences = list(
                (
                    await database_session.scalars(
                        select(OutreachEmailSequence)
                        .where(OutreachEmailSequence.campaign_id == campaign_id)
                        .order_by(OutreachEmailSequence.sequence_number)
                    )
                ).all()
            )
            signature: Optional[str] = (
                await database_session.scalars(
                    select(UserEmailSettings.email_signature).where(
                        UserEmailSettings.user_id == campaign.created_by
                    )
                )
            ).first()
    except SQLAlchemyError as e:
        logger.exception("Database error while loading campaign")
        raise DatabaseError("Failed to load campaign") from e

    try:
        token = await refresh_access_token(
            settings,
            http_session,
            metrics_client,
            database_session_maker,
            campaign.created_by,
        )
    except TokenNotFoundError as e:
        raise NotFoundError("MS365 integration not configured for this user") from e

    mails = build_test_mails(sequences, signature)
    for index, mail in enumerate(mails):
        if index > 0:
            await asyncio.sleep(settings.test_email_delay)
        await send_mail(
            settings,
            http_session,
            metrics_client,
            token.access_token,
            test_email,
            mail.subject,
            mail.body,
        )
        logger.info("Test email sent: %s", mail.subject)

    return f"{len(mails)} Test-E-Mails wurden an {test_email} gesendet"
