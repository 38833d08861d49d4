import logging
from typing import Any, Optional, Type, TypeVar
from aiohttp import web
from pydantic import BaseModel
import pydantic
import sentry_sdk

from de.hejtalent.crm.app.config import (
    HealthGaugeAppKey,
    SessionAppKey,
    SettingsAppKey,
)
from de.hejtalent.crm.errors import CrmError, Unauthorized, ValidationError
from de.hejtalent.crm.identity.auth import AuthUser, get_user

logger = logging.getLogger(__name__)

RequestBody = TypeVar("RequestBody", bound=BaseModel)


def bearer_token(request: web.Request) -> str:
    """
    Raises:
        Unauthorized: If the request has no bearer token.
    """
    authorization: Optional[str] = request.headers.getone("Authorization", None)
    if (
        authorization is None
        or not authorization.startswith("Bearer ")
        or len(authorization) < 8
    ):
        raise Unauthorized.missing_header()
    return authorization[7:]


async def authenticate(request: web.Request) -> AuthUser:
    """
    Resolve the user behind the request's bearer token.

    Raises:
        Unauthorized: If the header is missing or the token is not valid.
        IdentityProviderError: If the auth API could not be reached.
    """
    access_token = bearer_token(request)
    return await get_user(
        request.app[SettingsAppKey], request.app[SessionAppKey], access_token
    )


async def parse_body(request: web.Request, model: Type[RequestBody]) -> RequestBody:
    """
    Raises:
        ValidationError: If the body is not JSON or misses required fields.
    """
    try:
        return model.model_validate(await request.json())
    except (ValueError, pydantic.ValidationError) as e:
        raise ValidationError("Missing required parameters") from e


async def report_exception(request: web.Request, e: Exception) -> None:
    """Log and report a failure caught at a handler boundary."""
    if isinstance(e, CrmError):
        logger.error(
            "%s %s failed: %s: %s", request.method, request.path, type(e).__name__, e
        )
    else:
        logger.exception("Unexpected error in %s %s", request.method, request.path)
        await request.app[HealthGaugeAppKey].record_failure()
    sentry_sdk.capture_exception(e)


async def error_response(
    request: web.Request, e: Exception, status: int = 500, **extra: Any
) -> web.Response:
    await report_exception(request, e)
    return web.json_response({"error": str(e), **extra}, status=status)
