"""
Account administration behind the admin UI and the invitation flow.
"""

import logging
from typing import Optional
from urllib.parse import quote
from aiohttp import ClientSession
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from de.hejtalent.crm.app.config import Settings
from de.hejtalent.crm.app.metrics import MetricsClient
from de.hejtalent.crm.errors import DatabaseError, ValidationError
from de.hejtalent.crm.identity.auth import delete_auth_user, generate_recovery_link
from de.hejtalent.crm.identity.roles import ROLE_ADMIN, require_role
from de.hejtalent.crm.mail.resend import render_template, send_email
from de.hejtalent.crm.model.accounts import Profile, UserEmailSettings, UserRole
from de.hejtalent.crm.model.base import is_uuid
from de.hejtalent.crm.model.crm import CrmContact
from de.hejtalent.crm.model.ms365 import Ms365Subscription, Ms365Token

logger = logging.getLogger(__name__)

INVITATION_VALID_DAYS = 7


def build_invite_url(base_url: str, invite_token: str, email: str) -> str:
    return f"{base_url.rstrip('/')}/invite?token={invite_token}&email={quote(email, safe='')}"


async def send_invitation(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    email: str,
    company_name: str,
    invite_token: str,
    origin: Optional[str] = None,
) -> str:
    """
    E-mail an invitation to join `company_name`.

    The link points at the frontend the invitation was issued from (the request's Origin), or at
    the configured site URL.

    Returns:
        str: The invitation URL
    """
    invite_url = build_invite_url(origin or settings.site_url, invite_token, email)
    html = render_template(
        "invitation.html",
        company_name=company_name,
        invite_url=invite_url,
        valid_days=INVITATION_VALID_DAYS,
    )
    await send_email(
        settings,
        http_session,
        metrics_client,
        email,
        f"Einladung zu {company_name} bei HejTalent",
        html,
    )
    return invite_url


async def send_password_reset(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    database_session_maker: async_sessionmaker[AsyncSession],
    requesting_user_id: str,
    email: str,
) -> str:
    """
    Generate a recovery link for `email` and mail it. Only admins may do this.

    Returns:
        str: Confirmation message for the admin UI

    Raises:
        PermissionDeniedError: If the requesting user is not an admin
        IdentityProviderError: If the recovery link could not be generated
        MailDeliveryError: If the e-mail could not be sent
    """
    logger.info(
        "Password reset requested for: %s by user: %s", email, requesting_user_id
    )

    async with database_session_maker() as database_session:
        await require_role(database_session, requesting_user_id, required_role=ROLE_ADMIN)

    reset_url = await generate_recovery_link(
        settings,
        http_session,
        email,
        redirect_to=f"{settings.site_url.rstrip('/')}/reset-password",
    )
    html = render_template("password_reset.html", email=email, reset_url=reset_url)
    await send_email(
        settings,
        http_session,
        metrics_client,
        email,
        "Passwort zurücksetzen bei HejTalent",
        html,
    )

    logger.info("Password reset link generated successfully for: %s", email)
    return f"Passwort-Reset Link wurde an {email} gesendet."


# Rows keyed by the user that go away with the account.
USER_OWNED_MODELS = (UserRole, Profile, Ms365Token, Ms365Subscription, UserEmailSettings)


async def delete_user(
    settings: Settings,
    http_session: ClientSession,
    database_session_maker: async_sessionmaker[AsyncSession],
    requesting_user_id: str,
    user_id: str,
) -> str:
    """
    Delete a user and everything keyed by them. Only admins may do this, and not to themselves.

    The user's rows are removed in one transaction: roles, profile, MS365 tokens and
    subscriptions, and e-mail settings. CRM contacts they own are kept and unlinked. The auth
    account is deleted last, so a failed database step leaves a user who can still sign in.

    Returns:
        str: Confirmation message for the admin UI

    Raises:
        PermissionDeniedError: If the requesting user is not an admin
        ValidationError: If the user id is missing or malformed, or names the requesting user
        DatabaseError: If the user's rows could not be deleted
        IdentityProviderError: If the auth account could not be deleted
    """
    async with database_session_maker() as database_session:
        await require_role(database_session, requesting_user_id, required_role=ROLE_ADMIN)

    if not user_id:
        raise ValidationError("Benutzer-ID fehlt")
    if not is_uuid(user_id):
        raise ValidationError("Ungültige Benutzer-ID")
    if user_id == requesting_user_id:
        raise ValidationError("Sie können sich nicht selbst löschen")

    logger.info("Deleting user: %s requested by admin: %s", user_id, requesting_user_id)

    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                for model in USER_OWNED_MODELS:
                    await database_session.execute(
                        delete(model)
                        .where(model.user_id == user_id)
                        .execution_options(synchronize_session=False)
                    )
                await database_session.execute(
                    update(CrmContact)
                    .where(CrmContact.user_id == user_id)
                    .values(user_id=None)
                    .execution_options(synchronize_session=False)
                )
    except SQLAlchemyError as e:
        logger.exception("Error deleting user data")
        raise DatabaseError("Fehler beim Löschen der Benutzerdaten") from e

    await delete_auth_user(settings, http_session, user_id)

    logger.info("User successfully deleted: %s", user_id)
    return "Benutzer erfolgreich gelöscht"
