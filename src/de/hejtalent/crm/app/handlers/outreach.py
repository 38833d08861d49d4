from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field

from de.hejtalent.crm.app.config import (
    DatabaseSessionMakerAppKey,
    MetricsClientAppKey,
    SessionAppKey,
    SettingsAppKey,
)
from de.hejtalent.crm.app.handlers.helpers import (
    authenticate,
    error_response,
    parse_body,
)
from de.hejtalent.crm.outreach import send_test_emails


class SendTestEmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    campaign_id: str = Field(alias="campaignId", min_length=1)
    test_email: str = Field(alias="testEmail", min_length=1)


async def handle_send_test_email(request: web.Request) -> web.Response:
    try:
        await authenticate(request)
        body = await parse_body(request, SendTestEmailRequest)
        message = await send_test_emails(
            request.app[SettingsAppKey],
            request.app[SessionAppKey],
            request.app[MetricsClientAppKey],
            request.app[DatabaseSessionMakerAppKey],
            body.campaign_id,
            body.test_email,
        )
        return web.json_response({"success": True, "message": message})
    except Exception as e:
        return await error_response(request, e)
