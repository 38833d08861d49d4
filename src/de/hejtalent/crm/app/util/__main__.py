import argparse
import asyncio
import logging
import aiohttp
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)

from de.hejtalent.crm.app.cli import configure_logging
from de.hejtalent.crm.app.config import Settings
from de.hejtalent.crm.app.metrics import NoOpMetricsClient
from de.hejtalent.crm.maintenance import cleanup_stuck_contacts
from de.hejtalent.crm.ms365.oauth import refresh_access_token
from de.hejtalent.crm.research import process_research_queue

logger = logging.getLogger(__name__)


async def cleanupStuckContacts(settings: Settings) -> int:
    engine = create_async_engine(str(settings.pg_dsn))
    try:
        database_session_maker = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        result = await cleanup_stuck_contacts(database_session_maker)
    finally:
        await engine.dispose()

    print(
        f"marked completed: {result.marked_completed}, reset to pending: {result.reset_to_pending}"
    )
    for error in result.errors:
        print(f"error: {error}")
    return 1 if result.failed else 0


async def refreshToken(settings: Settings, user_id: str) -> int:
    engine = create_async_engine(str(settings.pg_dsn))
    try:
        database_session_maker = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        async with aiohttp.ClientSession() as http_session:
            result = await refresh_access_token(
                settings,
                http_session,
                NoOpMetricsClient(),
                database_session_maker,
                user_id,
            )
    finally:
        await engine.dispose()

    print(result.message)
    return 0


async def processResearchQueue(settings: Settings) -> int:
    engine = create_async_engine(str(settings.pg_dsn))
    try:
        database_session_maker = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        async with aiohttp.ClientSession() as http_session:
            result = await process_research_queue(
                settings,
                http_session,
                NoOpMetricsClient(),
                database_session_maker,
            )
    finally:
        await engine.dispose()

    print(
        f"processed: {result.processed}, successful: {result.successful}, failed: {result.failed}"
    )
    return 0


async def realMain() -> int:
    parser = argparse.ArgumentParser(
        prog="crmutil", description="CRM functions utilities"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    _ = subparsers.add_parser(
        "cleanup-stuck-contacts",
        help="Move contacts stuck in research processing to completed or pending",
    )
    _ = subparsers.add_parser(
        "process-research-queue", help="Research one batch of pending contacts"
    )
    refresh_token = subparsers.add_parser(
        "refresh-token", help="Refresh the MS365 access token of a user if it is due"
    )
    refresh_token.add_argument("user_id", help="The CRM user id.")

    args = vars(parser.parse_args())
    command = args.get("command", None)

    settings = Settings()  # type: ignore

    if command == "cleanup-stuck-contacts":
        return await cleanupStuckContacts(settings)
    elif command == "process-research-queue":
        return await processResearchQueue(settings)
    elif command == "refresh-token":
        user_id: str = args["user_id"]
        return await refreshToken(settings, user_id)
    return 2


def main() -> None:
    configure_logging()
    raise SystemExit(asyncio.run(realMain()))


if __name__ == "__main__":
    main()
