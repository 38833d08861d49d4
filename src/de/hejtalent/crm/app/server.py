import asyncio
import contextlib
import logging
from time import time
from typing import (
    Optional,
)
from aiohttp import web
import aiohttp
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from de.hejtalent.crm.app.config import (
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    SessionAppKey,
    Settings,
    SettingsAppKey,
)
from de.hejtalent.crm.app.cors import cors_middleware
from de.hejtalent.crm.app.handlers.accounts import (
    handle_delete_user,
    handle_send_invitation,
    handle_send_password_reset,
)
from de.hejtalent.crm.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_ready,
)
from de.hejtalent.crm.app.handlers.maintenance import (
    handle_cleanup_stuck_contacts,
    handle_process_research_queue,
)
from de.hejtalent.crm.app.handlers.ms365 import (
    handle_ms365_connection,
    handle_ms365_create_subscription,
    handle_ms365_disconnect,
    handle_ms365_oauth_callback,
    handle_ms365_oauth_start,
    handle_ms365_refresh_token,
    handle_ms365_webhook,
)
from de.hejtalent.crm.app.handlers.outreach import handle_send_test_email
from de.hejtalent.crm.app.metrics import create_metrics_client
from de.hejtalent.crm.app.tasks import tick_health_task
from de.hejtalent.crm.model.health import HealthGauge

logger = logging.getLogger(__name__)

TickHealthTaskAppKey = web.AppKey("tick_health_task", asyncio.Task[None])


def create_trace_config(debug: bool) -> aiohttp.TraceConfig:
    trace_config = aiohttp.TraceConfig()

    if debug:

        async def on_request_start(
            session, trace_config_ctx, params: aiohttp.TraceRequestStartParams
        ):
            logging.info("Starting request: %s", params)

        async def on_request_chunk_sent(
            session, trace_config_ctx, params: aiohttp.TraceRequestChunkSentParams
        ):
            logging.info("Chunk sent: %s", str(params.chunk))

        async def on_request_end(session, trace_config_ctx, params):
            logging.info("Ending request: %s", params)

        trace_config.on_request_start.append(on_request_start)
        trace_config.on_request_end.append(on_request_end)
        trace_config.on_request_chunk_sent.append(on_request_chunk_sent)

    return trace_config


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    engine = create_async_engine(str(settings.pg_dsn))
    app[DatabaseAppKey] = engine
    database_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    app[DatabaseSessionMakerAppKey] = database_session

    app[SessionAppKey] = aiohttp.ClientSession(
        trace_configs=[create_trace_config(settings.debug)]
    )

    metrics_client = create_metrics_client(
        backend=settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    await metrics_client.connect()
    app[MetricsClientAppKey] = metrics_client

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[TickHealthTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TickHealthTaskAppKey]

    await app[DatabaseAppKey].dispose()
    await app[SessionAppKey].close()
    await app[MetricsClientAppKey].close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        # Redirects and other HTTP exceptions are responses, not failures.
        response_status_code = e.status
        raise
    except Exception as e:
        metrics_client.increment(
            "hejtalent.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "hejtalent.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "hejtalent.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


def add_routes(app: web.Application) -> None:
    app.add_routes(
        [
            web.get("/ms365/oauth/start", handle_ms365_oauth_start),
            web.post("/ms365/oauth/start", handle_ms365_oauth_start),
            web.get("/ms365/oauth/callback", handle_ms365_oauth_callback),
            web.post("/ms365/subscriptions", handle_ms365_create_subscription),
            web.post("/ms365/token/refresh", handle_ms365_refresh_token),
            web.post("/ms365/webhook", handle_ms365_webhook),
            web.get("/ms365/connection", handle_ms365_connection),
            web.delete("/ms365/connection", handle_ms365_disconnect),
        ]
    )

    app.add_routes(
        [
            web.post(
                "/maintenance/cleanup-stuck-contacts", handle_cleanup_stuck_contacts
            ),
            web.post("/research/process-queue", handle_process_research_queue),
            web.post("/outreach/test-email", handle_send_test_email),
            web.post("/accounts/invitations", handle_send_invitation),
            web.post("/accounts/password-reset", handle_send_password_reset),
            web.post("/accounts/delete-user", handle_delete_user),
        ]
    )

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
        ]
    )


async def start_web_server(settings: Optional[Settings] = None):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=True,
            integrations=[AioHttpIntegration()]
        )
    app = web.Application(
        middlewares=[cors_middleware, statsd_middleware, sentry_middleware]
    )

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge()

    add_routes(app)

    app.cleanup_ctx.append(background_tasks)

    return app
