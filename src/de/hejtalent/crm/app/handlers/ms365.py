import logging
from urllib.parse import quote
from aiohttp import web
import pydantic
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
    report_exception,
)
from de.hejtalent.crm.ms365.graph import (
    ChangeNotificationCollection,
    create_subscription,
)
from de.hejtalent.crm.ms365.oauth import (
    build_authorization_url,
    connected_mailbox,
    disconnect,
    oauth_complete,
    refresh_access_token,
)

logger = logging.getLogger(__name__)


class CreateSubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    access_token: str = Field(alias="accessToken", min_length=1)


class RefreshTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)


async def handle_ms365_oauth_start(request: web.Request) -> web.Response:
    """
    Return the Microsoft authorization URL for the signed-in user.

    The frontend sends the browser there; the user id travels as `state`.
    """
    try:
        user = await authenticate(request)
        auth_url = build_authorization_url(request.app[SettingsAppKey], user.id)
        return web.json_response({"authUrl": auth_url})
    except Exception as e:
        return await error_response(request, e)


async def handle_ms365_oauth_callback(request: web.Request) -> web.Response:
    """
    Complete the authorization code flow and redirect back to the CRM.

    This handler never answers with an error status. Failures redirect to the CRM with the
    message in the `error` query parameter.
    """
    settings = request.app[SettingsAppKey]

    try:
        email_address = await oauth_complete(
            settings,
            request.app[SessionAppKey],
            request.app[MetricsClientAppKey],
            request.app[DatabaseSessionMakerAppKey],
            code=request.query.get("code", None),
            state=request.query.get("state", None),
            error=request.query.get("error", None),
        )
    except Exception as e:
        await report_exception(request, e)
        raise web.HTTPFound(
            f"{settings.ms365_error_redirect}?error={quote(str(e), safe='')}"
        )

    logger.info("MS365 mailbox connected: %s", email_address)
    raise web.HTTPFound(settings.ms365_success_redirect)


async def handle_ms365_create_subscription(request: web.Request) -> web.Response:
    try:
        body = await parse_body(request, CreateSubscriptionRequest)
        subscription = await create_subscription(
            request.app[SettingsAppKey],
            request.app[SessionAppKey],
            request.app[MetricsClientAppKey],
            request.app[DatabaseSessionMakerAppKey],
            body.user_id,
            body.access_token,
        )
        return web.json_response({"success": True, "subscription": subscription})
    except Exception as e:
        return await error_response(request, e)


async def handle_ms365_refresh_token(request: web.Request) -> web.Response:
    try:
        body = await parse_body(request, RefreshTokenRequest)
        result = await refresh_access_token(
            request.app[SettingsAppKey],
            request.app[SessionAppKey],
            request.app[MetricsClientAppKey],
            request.app[DatabaseSessionMakerAppKey],
            body.user_id,
        )
        return web.json_response(
            {
                "success": True,
                "message": result.message,
                "accessToken": result.access_token,
            }
        )
    except Exception as e:
        return await error_response(request, e)


async def handle_ms365_webhook(request: web.Request) -> web.Response:
    """
    Receive Graph change notifications.

    When a subscription is created, Graph first POSTs with a `validationToken` query parameter
    and expects the token echoed back as plain text within a few seconds.
    """
    validation_token = request.query.get("validationToken", None)
    if validation_token:
        logger.info("Webhook validation request received")
        return web.Response(text=validation_token, content_type="text/plain")

    try:
        notifications = ChangeNotificationCollection.model_validate(
            await request.json()
        )
    except (ValueError, pydantic.ValidationError) as e:
        return await error_response(
            request, e, details="Invalid change notification payload"
        )

    for notification in notifications.value:
        logger.info(
            "Notification for subscription %s: %s %s",
            notification.subscription_id,
            notification.change_type,
            notification.resource,
        )

    request.app[MetricsClientAppKey].increment(
        "hejtalent.ms365.webhook.notifications", len(notifications.value)
    )
    return web.json_response(
        {"success": True, "processed": len(notifications.value)}
    )


async def handle_ms365_connection(request: web.Request) -> web.Response:
    try:
        user = await authenticate(request)
        email_address = await connected_mailbox(
            request.app[DatabaseSessionMakerAppKey], user.id
        )
        return web.json_response(
            {"connected": email_address is not None, "emailAddress": email_address}
        )
    except Exception as e:
        return await error_response(request, e)


async def handle_ms365_disconnect(request: web.Request) -> web.Response:
    try:
        user = await authenticate(request)
        removed = await disconnect(request.app[DatabaseSessionMakerAppKey], user.id)
        return web.json_response({"success": True, "removed": removed})
    except Exception as e:
        return await error_response(request, e)
