"""
Contact research queue.

Contacts with an e-mail address wait in ``pending`` until a queue run picks them up. A run claims a
batch by moving it to ``processing`` and hands each contact to the research function, one at a
time with a pause in between. The research function writes the result row itself; the queue only
moves the contact on:

- success: ``completed``
- failure: back to ``pending`` with one more retry counted, or ``failed`` once the retry budget
  is used up

A run that dies between claiming and finishing leaves contacts in ``processing``.
``de.hejtalent.crm.maintenance.cleanup_stuck_contacts`` repairs those.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import List
import aiohttp
from aiohttp import ClientSession
from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from de.hejtalent.crm.app.config import Settings
from de.hejtalent.crm.app.metrics import MetricsClient
from de.hejtalent.crm.errors import DatabaseError, ResearchError
from de.hejtalent.crm.model.crm import (
    CrmContact,
    RESEARCH_STATUS_COMPLETED,
    RESEARCH_STATUS_FAILED,
    RESEARCH_STATUS_PENDING,
    RESEARCH_STATUS_PROCESSING,
)

logger = logging.getLogger(__name__)


@dataclass
class QueueResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0

    @property
    def message(self) -> str:
        if self.processed == 0:
            return "No pending contacts"
        return "Queue processing completed"


async def claim_pending_contacts(
    database_session_maker: async_sessionmaker[AsyncSession], batch_size: int
) -> List[str]:
    """
    Move up to `batch_size` pending contacts with an e-mail address to ``processing``.

    Rows locked by a concurrent run are skipped, so two runs never claim the same contact.

    Raises:
        DatabaseError: If the batch could not be claimed
    """
    now = datetime.now(timezone.utc)
    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                pending_stmt = (
                    select(CrmContact.id)
                    .where(
                        CrmContact.research_status == RESEARCH_STATUS_PENDING,
                        CrmContact.email.is_not(None),
                    )
                    .limit(batch_size)
                    .with_for_update(skip_locked=True)
                )
                contact_ids = list((await database_session.scalars(pending_stmt)).all())
                if contact_ids:
                    claim_stmt = (
                        update(CrmContact)
                        .where(CrmContact.id.in_(contact_ids))
                        .values(
                            research_status=RESEARCH_STATUS_PROCESSING,
                            research_last_attempt=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    await database_session.execute(claim_stmt)
    except SQLAlchemyError as e:
        logger.exception("Error fetching pending contacts")
        raise DatabaseError("Failed to fetch pending contacts") from e

    return contact_ids


async def invoke_research(
    settings: Settings, http_session: ClientSession, contact_id: str
) -> None:
    """
    Run the research function for one contact.

    Raises:
        ConfigurationError: If the service role key is not configured
        ResearchError: If the function is unreachable or answers with a non-success status
    """
    service_role_key = settings.require_service_role_key()
    try:
        async with http_session.post(
            settings.research_contact_url,
            json={"contact_id": contact_id},
            headers={
                "Authorization": f"Bearer {service_role_key}",
                "apikey": service_role_key,
            },
        ) as resp:
            if resp.status != 200:
                error_text = await resp.text()
                raise ResearchError(
                    f"Research failed: {resp.status}",
                    status=resp.status,
                    body=error_text,
                )
    except aiohttp.ClientError as e:
        raise ResearchError("Research function unreachable") from e


def _completed_stmt(contact_id: str, now: datetime):
    return (
        update(CrmContact)
        .where(CrmContact.id == contact_id)
        .values(research_status=RESEARCH_STATUS_COMPLETED, research_last_attempt=now)
        .execution_options(synchronize_session=False)
    )


def _failed_attempt_stmt(contact_id: str, now: datetime, max_retries: int):
    retry_count = CrmContact.research_retry_count + 1
    return (
        update(CrmContact)
        .where(CrmContact.id == contact_id)
        .values(
            research_status=case(
                (retry_count >= max_retries, RESEARCH_STATUS_FAILED),
                else_=RESEARCH_STATUS_PENDING,
            ),
            research_retry_count=retry_count,
            research_last_attempt=now,
        )
        .returning(CrmContact.research_status)
        .execution_options(synchronize_session=False)
    )


async def _record_outcome(
    database_session_maker: async_sessionmaker[AsyncSession],
    contact_id: str,
    succeeded: bool,
    max_retries: int,
) -> None:
    now = datetime.now(timezone.utc)
    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                if succeeded:
                    await database_session.execute(_completed_stmt(contact_id, now))
                    return
                status = (
                    await database_session.scalars(
                        _failed_attempt_stmt(contact_id, now, max_retries)
                    )
                ).first()
        logger.info("Contact %s marked as %s", contact_id, status)
    except SQLAlchemyError:
        # The contact stays in processing and is picked up by the cleanup sweep.
        logger.exception("Error updating status of contact %s", contact_id)


async def process_research_queue(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    database_session_maker: async_sessionmaker[AsyncSession],
) -> QueueResult:
    """
    Research one batch of pending contacts.

    Raises:
        ConfigurationError: If the service role key is not configured
        DatabaseError: If no batch could be claimed
    """
    settings.require_service_role_key()

    logger.info("Starting research queue processing...")
    contact_ids = await claim_pending_contacts(
        database_session_maker, settings.research_batch_size
    )
    result = QueueResult(processed=len(contact_ids))
    if not contact_ids:
        logger.info("No pending contacts to process")
        return result

    logger.info("Found %d contacts to process", len(contact_ids))

    for index, contact_id in enumerate(contact_ids):
        if index > 0:
            await asyncio.sleep(settings.research_delay)

        try:
            await invoke_research(settings, http_session, contact_id)
        except ResearchError as e:
            logger.error("Failed to research contact %s: %s", contact_id, e)
            result.failed += 1
            metrics_client.increment(
                "hejtalent.research.contact", 1, tag_dict={"status": "failed"}
            )
            await _record_outcome(
                database_session_maker, contact_id, False, settings.research_max_retries
            )
            continue

        result.successful += 1
        metrics_client.increment(
            "hejtalent.research.contact", 1, tag_dict={"status": "completed"}
        )
        await _record_outcome(
            database_session_maker, contact_id, True, settings.research_max_retries
        )
        logger.info("Successfully completed research for contact %s", contact_id)

    logger.info(
        "Queue processing result: %d processed, %d successful, %d failed",
        result.processed,
        result.successful,
        result.failed,
    )
    return result
