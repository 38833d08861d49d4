"""
Microsoft Identity Platform OAuth Client

This module implements the authorization code flow used to connect a Microsoft 365 mailbox to a
CRM user, and the refresh flow that keeps the stored access token usable.

The flow is implemented in three stages:
1. Start (`build_authorization_url`): Build the v2.0 authorize URL, carrying the CRM user id as
   the opaque `state` value
2. Completion (`oauth_complete`): Exchange the authorization code for tokens, resolve the mailbox
   address through Graph, upsert the token row and register an inbox subscription
3. Refresh (`refresh_access_token`): Return the stored access token while it is comfortably
   valid, otherwise redeem the refresh token for a new one

Nothing here is retried or scheduled. Callers that are about to use Graph on behalf of a user call
`refresh_access_token` first. `connected_mailbox` and `disconnect` back the connection status
endpoints of the CRM settings page.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
import logging
from typing import Optional
from urllib.parse import urlencode
from aiohttp import ClientSession
from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    async_sessionmaker,
    AsyncSession,
)

from de.hejtalent.crm.app.config import Settings
from de.hejtalent.crm.app.metrics import MetricsClient
from de.hejtalent.crm.errors import (
    DatabaseError,
    OAuthError,
    TokenExchangeError,
    TokenNotFoundError,
    TokenRefreshError,
)
from de.hejtalent.crm.model.base import is_uuid
from de.hejtalent.crm.model.ms365 import Ms365Token, upsert_token_stmt
from de.hejtalent.crm.ms365.graph import create_subscription, fetch_profile

logger = logging.getLogger(__name__)


class TokenGrant(BaseModel):
    """Successful response of the v2.0 token endpoint."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    scope: Optional[str] = None
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    refreshed: bool

    @property
    def message(self) -> str:
        if self.refreshed:
            return "Token refreshed successfully"
        return "Token is still valid"


def authorize_endpoint(settings: Settings) -> str:
    return f"{settings.ms365_login_base_url}/{settings.ms365_tenant_id}/oauth2/v2.0/authorize"


def token_endpoint(settings: Settings) -> str:
    return f"{settings.ms365_login_base_url}/{settings.ms365_tenant_id}/oauth2/v2.0/token"


def build_authorization_url(settings: Settings, user_id: str) -> str:
    """
    Build the authorization URL the browser is sent to.

    The CRM user id travels as `state` and comes back unchanged on the callback, which is how
    the callback knows whose mailbox was connected.

    Raises:
        ConfigurationError: If client id or tenant id are not configured.
    """
    settings.require_ms365_client()

    query = {
        "client_id": settings.ms365_client_id,
        "response_type": "code",
        "redirect_uri": settings.ms365_redirect_uri,
        "response_mode": "query",
        "scope": " ".join(settings.ms365_scopes),
        "state": user_id,
    }
    auth_url = f"{authorize_endpoint(settings)}?{urlencode(query)}"
    logger.info("Generated OAuth URL: %s", auth_url)
    return auth_url


def token_needs_refresh(expires_at: datetime, now: datetime, margin: int) -> bool:
    """An access token is refreshed once it is within `margin` seconds of expiry."""
    return expires_at <= now + timedelta(seconds=margin)


async def _redeem(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    grant_type: str,
    fields: dict,
) -> Optional[TokenGrant]:
    form = {
        "client_id": settings.ms365_client_id,
        "client_secret": settings.ms365_client_secret,
        "grant_type": grant_type,
        "scope": " ".join(settings.ms365_scopes),
        **fields,
    }
    # Sent form-urlencoded.
    async with http_session.post(token_endpoint(settings), data=form) as resp:
        metrics_client.increment(
            "hejtalent.ms365.token.request",
            1,
            tag_dict={"grant_type": grant_type, "status": resp.status},
        )
        if resp.status != 200:
            logger.error(
                "Token request (%s) failed: %s %s",
                grant_type,
                resp.status,
                await resp.text(),
            )
            return None
        return TokenGrant.model_validate(await resp.json())


async def exchange_authorization_code(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    code: str,
) -> TokenGrant:
    """
    Redeem an authorization code.

    Raises:
        TokenExchangeError: If the token endpoint rejects the code or omits the refresh token.
    """
    grant = await _redeem(
        settings,
        http_session,
        metrics_client,
        "authorization_code",
        {"code": code, "redirect_uri": settings.ms365_redirect_uri},
    )
    if grant is None:
        raise TokenExchangeError("Failed to exchange authorization code")
    if grant.refresh_token is None:
        raise TokenExchangeError("No refresh token")
    logger.info("Token exchange successful")
    return grant


async def oauth_complete(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    database_session_maker: async_sessionmaker[AsyncSession],
    code: Optional[str],
    state: Optional[str],
    error: Optional[str] = None,
) -> str:
    """
    Complete the OAuth flow for the user in `state`.

    Args:
        code: Authorization code from the callback query
        state: CRM user id, as passed to build_authorization_url
        error: Error code reported by the identity platform, if any

    Returns:
        str: The address of the connected mailbox

    Raises:
        OAuthError: If the provider reported an error or code/state is missing
        ConfigurationError: If the app registration is not configured
        TokenExchangeError: If the code could not be redeemed
        ProfileFetchError: If the mailbox owner could not be resolved
        DatabaseError: If the token row could not be stored

    The inbox subscription is created after the token row is stored. Failing to create it is
    logged and does not fail the connection.
    """
    if error:
        raise OAuthError.provider_error(error)

    if not code or not state:
        raise OAuthError.missing_parameters()

    settings.require_ms365_secret()

    grant = await exchange_authorization_code(
        settings, http_session, metrics_client, code
    )
    graph_user = await fetch_profile(settings, http_session, grant.access_token)
    email_address = str(graph_user.mailbox_address)

    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=grant.expires_in)

    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                stmt = upsert_token_stmt(
                    user_id=state,
                    email_address=email_address,
                    access_token=grant.access_token,
                    refresh_token=str(grant.refresh_token),
                    expires_at=expires_at,
                    now=now,
                )
                await database_session.execute(stmt)
    except SQLAlchemyError as e:
        logger.exception("Database error while storing tokens")
        raise DatabaseError("Failed to store tokens") from e

    logger.info("Tokens stored successfully")

    try:
        await create_subscription(
            settings,
            http_session,
            metrics_client,
            database_session_maker,
            state,
            grant.access_token,
        )
        logger.info("Webhook subscription created successfully")
    except Exception:
        logger.exception("Failed to create webhook subscription")

    return email_address


async def refresh_access_token(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    database_session_maker: async_sessionmaker[AsyncSession],
    user_id: str,
) -> RefreshResult:
    """
    Return a usable access token for the user, refreshing it if it is about to expire.

    When a user has connected more than one mailbox, the most recently updated token row is
    used.

    Raises:
        TokenNotFoundError: If the user has no stored token
        TokenRefreshError: If the refresh grant is rejected
        DatabaseError: If reading or updating the token row fails
    """
    if not is_uuid(user_id):
        logger.error("Token not found for user: %s", user_id)
        raise TokenNotFoundError("No MS365 token found for user")

    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                token_stmt = (
                    select(Ms365Token)
                    .where(Ms365Token.user_id == user_id)
                    .order_by(Ms365Token.updated_at.desc())
                )
                token: Optional[Ms365Token] = (
                    await database_session.scalars(token_stmt)
                ).first()
    except SQLAlchemyError as e:
        logger.exception("Database error while loading token")
        raise DatabaseError("Failed to load token") from e

    if token is None:
        logger.error("Token not found for user: %s", user_id)
        raise TokenNotFoundError("No MS365 token found for user")

    now = datetime.now(timezone.utc)
    if not token_needs_refresh(token.expires_at, now, settings.token_refresh_margin):
        logger.info("Token is still valid, no refresh needed")
        return RefreshResult(access_token=token.access_token, refreshed=False)

    logger.info("Token expired or expiring soon, refreshing...")
    settings.require_ms365_secret()

    grant = await _redeem(
        settings,
        http_session,
        metrics_client,
        "refresh_token",
        {"refresh_token": token.refresh_token},
    )
    if grant is None:
        raise TokenRefreshError("Failed to refresh token")

    now = datetime.now(timezone.utc)
    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                update_stmt = (
                    update(Ms365Token)
                    .where(
                        Ms365Token.user_id == user_id,
                        Ms365Token.email_address == token.email_address,
                    )
                    .values(
                        access_token=grant.access_token,
                        # The identity platform may or may not rotate the refresh token.
                        refresh_token=grant.refresh_token or token.refresh_token,
                        expires_at=now + timedelta(seconds=grant.expires_in),
                        updated_at=now,
                    )
                )
                await database_session.execute(update_stmt)
    except SQLAlchemyError as e:
        logger.exception("Failed to update token in database")
        raise DatabaseError("Failed to update token") from e

    logger.info("Token refresh successful for user: %s", user_id)
    return RefreshResult(access_token=grant.access_token, refreshed=True)


async def connected_mailbox(
    database_session_maker: async_sessionmaker[AsyncSession], user_id: str
) -> Optional[str]:
    """
    Return the address of the user's most recently updated mailbox connection, if any.

    Raises:
        DatabaseError: If the lookup fails
    """
    try:
        async with database_session_maker() as database_session:
            token_stmt = (
                select(Ms365Token.email_address)
                .where(Ms365Token.user_id == user_id)
                .order_by(Ms365Token.updated_at.desc())
                .limit(1)
            )
            return (await database_session.scalars(token_stmt)).first()
    except SQLAlchemyError as e:
        logger.exception("Failed to load mailbox connection")
        raise DatabaseError("Failed to load mailbox connection") from e


async def disconnect(
    database_session_maker: async_sessionmaker[AsyncSession], user_id: str
) -> int:
    """
    Delete every stored token of the user.

    Graph subscriptions are left to expire on their own.

    Returns:
        int: Number of removed token rows

    Raises:
        DatabaseError: If the delete fails
    """
    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                delete_stmt = (
                    delete(Ms365Token)
                    .where(Ms365Token.user_id == user_id)
                    .returning(Ms365Token.id)
                )
                removed = len((await database_session.scalars(delete_stmt)).all())
    except SQLAlchemyError as e:
        logger.exception("Failed to delete tokens")
        raise DatabaseError("Failed to disconnect mailbox") from e

    logger.info("Removed %d MS365 tokens for user: %s", removed, user_id)
    return removed
