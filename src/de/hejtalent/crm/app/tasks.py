import asyncio
import logging
from typing import NoReturn
from aiohttp import web

from de.hejtalent.crm.app.config import HealthGaugeAppKey, MetricsClientAppKey

logger = logging.getLogger(__name__)

HEALTH_TICK_INTERVAL = 30


async def tick_health_task(app: web.Application) -> NoReturn:
    """
    Decay the health gauge every 30 seconds, forgetting one recorded failure each time.
    """

    logger.info("Starting health gauge task")

    health_gauge = app[HealthGaugeAppKey]
    metrics_client = app[MetricsClientAppKey]
    while True:
        await health_gauge.decay()
        metrics_client.gauge(
            "hejtalent.server.healthy", 1 if await health_gauge.is_healthy() else 0
        )
        await asyncio.sleep(HEALTH_TICK_INTERVAL)
