"""
Maintenance sweeps over CRM data.

The research queue moves a contact to ``processing`` before researching it. When a worker dies
mid-flight the contact stays there forever and the queue never picks it up again. The cleanup sweep
repairs this: contacts whose research result was written are completed, all others go back to
``pending`` with a fresh retry budget.
"""

from dataclasses import dataclass, field
import logging
from typing import List
from sqlalchemy import exists, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from de.hejtalent.crm.model.crm import (
    CrmContact,
    CrmContactResearch,
    RESEARCH_STATUS_COMPLETED,
    RESEARCH_STATUS_PENDING,
    RESEARCH_STATUS_PROCESSING,
)

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    marked_completed: int = 0
    reset_to_pending: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        """True when neither pass could run."""
        return len(self.errors) >= 2

    @property
    def message(self) -> str:
        return (
            f"Cleaned up {self.marked_completed + self.reset_to_pending} stuck contacts"
        )


def _has_research():
    return exists(
        select(CrmContactResearch.id).where(
            CrmContactResearch.contact_id == CrmContact.id
        )
    )


async def _mark_researched_completed(database_session: AsyncSession) -> int:
    stmt = (
        update(CrmContact)
        .where(
            CrmContact.research_status == RESEARCH_STATUS_PROCESSING,
            _has_research(),
        )
        .values(research_status=RESEARCH_STATUS_COMPLETED)
        .returning(CrmContact.id)
        .execution_options(synchronize_session=False)
    )
    return len((await database_session.scalars(stmt)).all())


async def _reset_unresearched_to_pending(database_session: AsyncSession) -> int:
    stmt = (
        update(CrmContact)
        .where(
            CrmContact.research_status == RESEARCH_STATUS_PROCESSING,
            ~_has_research(),
        )
        .values(research_status=RESEARCH_STATUS_PENDING, research_retry_count=0)
        .returning(CrmContact.id)
        .execution_options(synchronize_session=False)
    )
    return len((await database_session.scalars(stmt)).all())


async def cleanup_stuck_contacts(
    database_session_maker: async_sessionmaker[AsyncSession],
) -> CleanupResult:
    """
    Move every contact out of ``processing``.

    Each pass commits on its own. A failing pass is logged and recorded in ``errors``; the other
    pass still runs.
    """
    result = CleanupResult()

    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                result.marked_completed = await _mark_researched_completed(
                    database_session
                )
        logger.info("Marked %d contacts as completed", result.marked_completed)
    except SQLAlchemyError as e:
        logger.exception("Error updating completed contacts")
        result.errors.append(f"Failed to mark researched contacts completed: {e}")

    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                result.reset_to_pending = await _reset_unresearched_to_pending(
                    database_session
                )
        logger.info("Reset %d contacts to pending", result.reset_to_pending)
    except SQLAlchemyError as e:
        logger.exception("Error resetting stuck contacts")
        result.errors.append(f"Failed to reset stuck contacts: {e}")

    return result
