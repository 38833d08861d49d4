"""
Tests for the stuck-contact cleanup in de.hejtalent.crm.maintenance
"""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from de.hejtalent.crm.maintenance import CleanupResult, cleanup_stuck_contacts
from de.hejtalent.crm.model.base import generate_guid
from de.hejtalent.crm.model.crm import (
    CrmContact,
    CrmContactResearch,
    RESEARCH_STATUS_COMPLETED,
    RESEARCH_STATUS_FAILED,
    RESEARCH_STATUS_PENDING,
    RESEARCH_STATUS_PROCESSING,
)
from tests.test_helpers import FakeSessionMaker, generate_test_datetime


def contact(status, retry_count=0, email=None):
    return CrmContact(
        id=generate_guid(),
        email=email,
        research_status=status,
        research_retry_count=retry_count,
        research_last_attempt=generate_test_datetime(-90),
    )


def research(contact_id):
    return CrmContactResearch(
        id=generate_guid(), contact_id=contact_id, researched_at=generate_test_datetime(-60)
    )


async def test_stuck_contacts_are_repaired(session, session_maker):
    unresearched = contact(RESEARCH_STATUS_PROCESSING, retry_count=2, email="c@example.com")
    researched = contact(RESEARCH_STATUS_PROCESSING, retry_count=1, email="d@example.com")
    pending = contact(RESEARCH_STATUS_PENDING, retry_count=1)
    failed = contact(RESEARCH_STATUS_FAILED, retry_count=3)
    session.add_all([unresearched, researched, pending, failed])
    await session.flush()
    session.add(research(researched.id))
    await session.commit()

    result = await cleanup_stuck_contacts(session_maker)

    assert result == CleanupResult(marked_completed=1, reset_to_pending=1, errors=[])
    assert result.message == "Cleaned up 2 stuck contacts"

    async with session_maker() as check_session:
        statuses = {
            row.id: (row.research_status, row.research_retry_count)
            for row in (await check_session.scalars(select(CrmContact))).all()
        }

    assert statuses[unresearched.id] == (RESEARCH_STATUS_PENDING, 0)
    assert statuses[researched.id] == (RESEARCH_STATUS_COMPLETED, 1)
    assert statuses[pending.id] == (RESEARCH_STATUS_PENDING, 1)
    assert statuses[failed.id] == (RESEARCH_STATUS_FAILED, 3)
    assert RESEARCH_STATUS_PROCESSING not in {status for status, _ in statuses.values()}


async def test_nothing_stuck(session_maker):
    result = await cleanup_stuck_contacts(session_maker)

    assert result.marked_completed == 0
    assert result.reset_to_pending == 0
    assert not result.failed


async def test_failing_passes_are_reported():
    result = await cleanup_stuck_contacts(
        FakeSessionMaker(fail_with=SQLAlchemyError("connection refused"))
    )

    assert result.failed
    assert len(result.errors) == 2


async def test_passes_are_independent():
    # The first pass sees a failing database, the second one a working one.
    class FlakySessionMaker(FakeSessionMaker):
        def __call__(self):
            database_session = super().__call__()
            self.fail_with = None
            return database_session

    session_maker = FlakySessionMaker(["c-1", "c-2"], fail_with=SQLAlchemyError("boom"))

    result = await cleanup_stuck_contacts(session_maker)

    assert result.marked_completed == 0
    assert result.reset_to_pending == 2
    assert len(result.errors) == 1
    assert not result.failed
