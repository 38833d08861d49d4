import logging
from aiohttp import web

from de.hejtalent.crm.app.config import (
    DatabaseSessionMakerAppKey,
    MetricsClientAppKey,
    SessionAppKey,
    SettingsAppKey,
)
from de.hejtalent.crm.app.handlers.helpers import error_response
from de.hejtalent.crm.errors import DatabaseError
from de.hejtalent.crm.maintenance import cleanup_stuck_contacts
from de.hejtalent.crm.research import process_research_queue

logger = logging.getLogger(__name__)


async def handle_cleanup_stuck_contacts(request: web.Request) -> web.Response:
    logger.info("Starting cleanup of stuck contacts...")
    try:
        result = await cleanup_stuck_contacts(request.app[DatabaseSessionMakerAppKey])
    except Exception as e:
        return await error_response(request, e)

    if result.failed:
        return await error_response(
            request, DatabaseError("Cleanup failed"), details="; ".join(result.errors)
        )

    metrics_client = request.app[MetricsClientAppKey]
    metrics_client.increment(
        "hejtalent.maintenance.contacts.completed", result.marked_completed
    )
    metrics_client.increment(
        "hejtalent.maintenance.contacts.reset", result.reset_to_pending
    )

    return web.json_response(
        {
            "success": True,
            "message": result.message,
            "markedCompleted": result.marked_completed,
            "resetToPending": result.reset_to_pending,
        }
    )


async def handle_process_research_queue(request: web.Request) -> web.Response:
    """
    Research one batch of pending contacts.

    Called on a schedule. The response reports the batch; contacts whose research failed are
    counted in `failed` and do not fail the request.
    """
    try:
        result = await process_research_queue(
            request.app[SettingsAppKey],
            request.app[SessionAppKey],
            request.app[MetricsClientAppKey],
            request.app[DatabaseSessionMakerAppKey],
        )
    except Exception as e:
        return await error_response(request, e)

    return web.json_response(
        {
            "message": result.message,
            "processed": result.processed,
            "successful": result.successful,
            "failed": result.failed,
        }
    )
