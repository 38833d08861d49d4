"""Microsoft 365 mailbox integration data models.

Provides SQLAlchemy models for the OAuth token pair stored per connected
mailbox and for the Graph change-notification subscriptions registered for it.
"""
from datetime import datetime
from sqlalchemy import DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import insert

from de.hejtalent.crm.model.base import (
    Base,
    generate_guid,
    longtext,
    str512,
    uuidpk,
    uuidstr,
)


class Ms365Token(Base):
    """OAuth access/refresh token pair for one (user, mailbox) combination.

    Inserted by the OAuth callback, updated by the token refresher and
    deleted when the user disconnects the integration.
    """
    __tablename__ = "ms365_tokens"

    id: Mapped[uuidpk]
    user_id: Mapped[uuidstr]
    email_address: Mapped[str512]
    access_token: Mapped[longtext]
    refresh_token: Mapped[longtext]
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index(
            "idx_ms365_tokens_user_email", "user_id", "email_address", unique=True
        ),
    )


class Ms365Subscription(Base):
    """Graph change-notification subscription for a user's inbox.

    Created once per successful OAuth callback. Subscriptions expire on the
    provider side and are not renewed.
    """
    __tablename__ = "ms365_subscriptions"

    id: Mapped[uuidpk]
    user_id: Mapped[uuidstr]
    subscription_id: Mapped[str512]
    resource: Mapped[str512]
    change_type: Mapped[str512]
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (Index("idx_ms365_subscriptions_user", "user_id"),)


def upsert_token_stmt(
    user_id: str,
    email_address: str,
    access_token: str,
    refresh_token: str,
    expires_at: datetime,
    now: datetime,
):
    """Create PostgreSQL upsert statement for token records.

    The (user_id, email_address) pair is the conflict target, so a second
    connection of the same mailbox overwrites the stored tokens.
    """
    return (
        insert(Ms365Token)
        .values(
            [
                {
                    "id": generate_guid(),
                    "user_id": user_id,
                    "email_address": email_address,
                    "access_token": access_token,
                    "refresh_token": refresh_token,
                    "expires_at": expires_at,
                    "created_at": now,
                    "updated_at": now,
                }
            ]
        )
        .on_conflict_do_update(
            index_elements=["user_id", "email_address"],
            set_={
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_at": expires_at,
                "updated_at": now,
            },
        )
        .returning(Ms365Token.id)
    )
