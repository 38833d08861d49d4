"""
Client for the hosted auth API.

Bearer tokens presented to this service are access tokens issued by the auth API of the hosted
platform. They are verified locally with the shared HS256 secret when it is configured, and
otherwise by asking the auth API who the token belongs to. The admin half of the API is used to
generate password recovery links and to delete users.
"""

import base64
import json
import logging
from typing import Any, Dict, Optional
import aiohttp
from aiohttp import ClientSession
from jwcrypto import jwk, jwt
from jwcrypto.common import JWException
from pydantic import BaseModel

from de.hejtalent.crm.app.config import Settings
from de.hejtalent.crm.errors import IdentityProviderError, Unauthorized

logger = logging.getLogger(__name__)


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None


def _jwt_secret_key(secret: str) -> jwk.JWK:
    encoded = base64.urlsafe_b64encode(secret.encode("utf-8")).decode("ascii").rstrip("=")
    return jwk.JWK(kty="oct", k=encoded)


def verify_access_token(secret: str, access_token: str) -> AuthUser:
    """
    Verify an HS256 access token and return its subject.

    Expiry and not-before claims are enforced by jwcrypto.

    Raises:
        Unauthorized: If the signature, expiry or subject is invalid.
    """
    try:
        validated = jwt.JWT(
            jwt=access_token, key=_jwt_secret_key(secret), algs=["HS256"]
        )
        claims: Dict[str, Any] = json.loads(validated.claims)
    except (JWException, ValueError) as e:
        logger.info("Rejected access token: %s", e)
        raise Unauthorized.invalid_token() from e

    subject = claims.get("sub", None)
    if not subject:
        raise Unauthorized.invalid_token()
    return AuthUser(id=subject, email=claims.get("email", None))


async def get_user(
    settings: Settings, http_session: ClientSession, access_token: str
) -> AuthUser:
    """
    Resolve the user an access token belongs to.

    Raises:
        Unauthorized: If the token is not valid.
        IdentityProviderError: If the auth API could not be reached.
    """
    if settings.supabase_jwt_secret:
        return verify_access_token(settings.supabase_jwt_secret, access_token)

    headers = {"Authorization": f"Bearer {access_token}"}
    if settings.supabase_service_role_key:
        headers["apikey"] = settings.supabase_service_role_key

    try:
        async with http_session.get(
            f"{settings.supabase_url}/auth/v1/user", headers=headers
        ) as resp:
            if resp.status != 200:
                logger.info("Auth API rejected access token: %s", resp.status)
                raise Unauthorized.invalid_token()
            body = await resp.json()
    except aiohttp.ClientError as e:
        raise IdentityProviderError("Auth API unreachable") from e

    return AuthUser.model_validate(body)


async def generate_recovery_link(
    settings: Settings,
    http_session: ClientSession,
    email: str,
    redirect_to: Optional[str] = None,
) -> str:
    """
    Ask the auth admin API for a password recovery link for `email`.

    The link is returned, not sent: the auth API only generates it.

    Raises:
        ConfigurationError: If the service role key is not configured.
        IdentityProviderError: If the auth API refuses to generate the link.
    """
    service_role_key = settings.require_service_role_key()

    body: Dict[str, Any] = {"type": "recovery", "email": email}
    if redirect_to is not None:
        body["redirect_to"] = redirect_to

    async with http_session.post(
        f"{settings.supabase_url}/auth/v1/admin/generate_link",
        json=body,
        headers={
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        },
    ) as resp:
        if resp.status != 200:
            error_text = await resp.text()
            logger.error("Error generating reset link: %s %s", resp.status, error_text)
            raise IdentityProviderError(
                _error_message(error_text) or "Failed to generate reset link",
                status=resp.status,
                body=error_text,
            )
        generated: Dict[str, Any] = await resp.json()

    action_link = generated.get("action_link", None)
    if action_link is None:
        action_link = generated.get("properties", {}).get("action_link", None)
    if action_link is None:
        raise IdentityProviderError("Auth API returned no recovery link")
    return str(action_link)


async def delete_auth_user(
    settings: Settings, http_session: ClientSession, user_id: str
) -> None:
    """
    Delete a user from the auth API. The user can no longer sign in afterwards.

    Raises:
        ConfigurationError: If the service role key is not configured.
        IdentityProviderError: If the auth API refuses the deletion.
    """
    service_role_key = settings.require_service_role_key()

    async with http_session.delete(
        f"{settings.supabase_url}/auth/v1/admin/users/{user_id}",
        headers={
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        },
    ) as resp:
        if resp.status not in (200, 204):
            error_text = await resp.text()
            logger.error("Error deleting auth user: %s %s", resp.status, error_text)
            raise IdentityProviderError(
                "Fehler beim Löschen des Auth-Benutzers",
                status=resp.status,
                body=error_text,
            )


def _error_message(error_text: str) -> Optional[str]:
    try:
        error_body = json.loads(error_text)
    except ValueError:
        return None
    if not isinstance(error_body, dict):
        return None
    for key in ("msg", "message", "error_description"):
        if error_body.get(key):
            return str(error_body[key])
    return None
