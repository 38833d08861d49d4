from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field

from de.hejtalent.crm.accounts import (
    delete_user,
    send_invitation,
    send_password_reset,
)
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


class InvitationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(min_length=1)
    company_name: str = Field(alias="companyName", min_length=1)
    invite_token: str = Field(alias="inviteToken", min_length=1)


class PasswordResetRequest(BaseModel):
    email: str = Field(min_length=1)


class DeleteUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Checked by delete_user, which answers with its own message.
    user_id: str = Field(alias="userId", default="")


async def handle_send_invitation(request: web.Request) -> web.Response:
    try:
        body = await parse_body(request, InvitationRequest)
        invite_url = await send_invitation(
            request.app[SettingsAppKey],
            request.app[SessionAppKey],
            request.app[MetricsClientAppKey],
            body.email,
            body.company_name,
            body.invite_token,
            origin=request.headers.get("Origin", None),
        )
        return web.json_response(
            {
                "success": True,
                "message": "Invitation email sent successfully",
                "inviteUrl": invite_url,
            }
        )
    except Exception as e:
        return await error_response(request, e)


async def handle_send_password_reset(request: web.Request) -> web.Response:
    """Admin-only: e-mail a password recovery link to another user."""
    try:
        user = await authenticate(request)
        body = await parse_body(request, PasswordResetRequest)
        message = await send_password_reset(
            request.app[SettingsAppKey],
            request.app[SessionAppKey],
            request.app[MetricsClientAppKey],
            request.app[DatabaseSessionMakerAppKey],
            user.id,
            body.email,
        )
        return web.json_response({"success": True, "message": message})
    except Exception as e:
        return await error_response(request, e, status=400)


async def handle_delete_user(request: web.Request) -> web.Response:
    """Admin-only: delete another user's account."""
    try:
        user = await authenticate(request)
        body = await parse_body(request, DeleteUserRequest)
        message = await delete_user(
            request.app[SettingsAppKey],
            request.app[SessionAppKey],
            request.app[DatabaseSessionMakerAppKey],
            user.id,
            body.user_id,
        )
        return web.json_response({"success": True, "message": message})
    except Exception as e:
        return await error_response(request, e, status=400)
