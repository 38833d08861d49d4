"""
Microsoft Graph calls used by the mailbox integration.

Graph resources used:

- ``/me``: which mailbox a fresh token belongs to
- ``/subscriptions``: change-notification webhook for new inbox messages
- ``/me/sendMail``: mail sent from the connected mailbox
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, List, Optional
from aiohttp import ClientSession
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from de.hejtalent.crm.app.config import Settings
from de.hejtalent.crm.app.metrics import MetricsClient
from de.hejtalent.crm.errors import (
    MailDeliveryError,
    ProfileFetchError,
    SubscriptionCreateError,
)
from de.hejtalent.crm.model.base import generate_guid
from de.hejtalent.crm.model.ms365 import Ms365Subscription

logger = logging.getLogger(__name__)

INBOX_MESSAGES_RESOURCE = "me/mailFolders('Inbox')/messages"


class GraphUser(BaseModel):
    """The subset of the Graph ``/me`` resource needed to identify a mailbox."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    mail: Optional[str] = None
    user_principal_name: Optional[str] = Field(default=None, alias="userPrincipalName")

    @property
    def mailbox_address(self) -> Optional[str]:
        # Accounts without an Exchange mailbox alias report mail as null.
        return self.mail or self.user_principal_name


class GraphSubscription(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    resource: str
    change_type: str = Field(alias="changeType")
    expiration_date_time: datetime = Field(alias="expirationDateTime")
    client_state: Optional[str] = Field(default=None, alias="clientState")


class ChangeNotification(BaseModel):
    """A single entry of a Graph webhook POST."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    subscription_id: str = Field(alias="subscriptionId")
    change_type: str = Field(alias="changeType")
    resource: str
    client_state: Optional[str] = Field(default=None, alias="clientState")
    resource_data: Optional[Dict[str, Any]] = Field(default=None, alias="resourceData")


class ChangeNotificationCollection(BaseModel):
    value: List[ChangeNotification] = []


async def fetch_profile(
    settings: Settings, http_session: ClientSession, access_token: str
) -> GraphUser:
    """
    Fetch the signed-in user of an access token.

    Raises:
        ProfileFetchError: If Graph answers with a non-success status or the profile has
            neither ``mail`` nor ``userPrincipalName``.
    """
    async with http_session.get(
        f"{settings.ms365_graph_base_url}/me",
        headers={"Authorization": f"Bearer {access_token}"},
    ) as resp:
        if resp.status != 200:
            body = await resp.text()
            logger.error("Graph profile request failed: %s %s", resp.status, body)
            raise ProfileFetchError(
                "Failed to fetch user info from Microsoft Graph",
                status=resp.status,
                body=body,
            )
        graph_user = GraphUser.model_validate(await resp.json())

    if graph_user.mailbox_address is None:
        raise ProfileFetchError("Microsoft Graph profile has no mailbox address")

    logger.info("User email: %s", graph_user.mailbox_address)
    return graph_user


def subscription_request(
    settings: Settings, user_id: str, now: datetime
) -> Dict[str, Any]:
    """Build the body of a subscription request for new inbox messages."""
    expires_at = now + timedelta(seconds=settings.subscription_lifetime)
    return {
        "changeType": "created",
        "notificationUrl": settings.notification_url,
        "resource": INBOX_MESSAGES_RESOURCE,
        "expirationDateTime": expires_at.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
        # Echoed back in every notification so the receiver knows whose mailbox changed.
        "clientState": user_id,
    }


async def create_subscription(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    database_session_maker: async_sessionmaker[AsyncSession],
    user_id: str,
    access_token: str,
) -> Dict[str, Any]:
    """
    Register a change-notification webhook for the user's inbox and record it.

    Graph validates the notification URL synchronously while handling this request, so the
    webhook route has to be reachable before this is called.

    Returns:
        The subscription resource as returned by Graph.

    Raises:
        SubscriptionCreateError: If Graph rejects the subscription or the database insert fails.
    """
    now = datetime.now(timezone.utc)
    body = subscription_request(settings, user_id, now)
    logger.info("Creating webhook subscription: %s", body)

    async with http_session.post(
        f"{settings.ms365_graph_base_url}/subscriptions",
        json=body,
        headers={"Authorization": f"Bearer {access_token}"},
    ) as resp:
        if resp.status not in (200, 201):
            error_text = await resp.text()
            logger.error("Failed to create subscription: %s", error_text)
            metrics_client.increment(
                "hejtalent.ms365.subscription.create",
                1,
                tag_dict={"status": resp.status},
            )
            raise SubscriptionCreateError(
                f"Failed to create subscription: {resp.status} {error_text}",
                status=resp.status,
                body=error_text,
            )
        subscription_json: Dict[str, Any] = await resp.json()

    metrics_client.increment(
        "hejtalent.ms365.subscription.create", 1, tag_dict={"status": resp.status}
    )
    subscription = GraphSubscription.model_validate(subscription_json)
    logger.info("Subscription created: %s", subscription.id)

    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                database_session.add(
                    Ms365Subscription(
                        id=generate_guid(),
                        user_id=user_id,
                        subscription_id=subscription.id,
                        resource=subscription.resource,
                        change_type=subscription.change_type,
                        expires_at=subscription.expiration_date_time,
                        created_at=now,
                    )
                )
    except SQLAlchemyError as e:
        logger.exception("Failed to store subscription")
        raise SubscriptionCreateError(
            "Failed to store subscription in database"
        ) from e

    logger.info("Subscription stored in database")
    return subscription_json


async def send_mail(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    access_token: str,
    to: str,
    subject: str,
    html: str,
) -> None:
    """
    Send an HTML message from the mailbox the access token belongs to.

    Raises:
        MailDeliveryError: If Graph does not accept the message.
    """
    message = {
        "subject": subject,
        "body": {"contentType": "HTML", "content": html},
        "toRecipients": [{"emailAddress": {"address": to}}],
    }
    async with http_session.post(
        f"{settings.ms365_graph_base_url}/me/sendMail",
        json={"message": message},
        headers={"Authorization": f"Bearer {access_token}"},
    ) as resp:
        metrics_client.increment(
            "hejtalent.ms365.mail.send", 1, tag_dict={"status": resp.status}
        )
        # Graph answers 202 Accepted with an empty body.
        if resp.status not in (200, 202):
            error_text = await resp.text()
            logger.error("Graph sendMail failed: %s %s", resp.status, error_text)
            raise MailDeliveryError(
                f"Failed to send email: {error_text}",
                status=resp.status,
                body=error_text,
            )
