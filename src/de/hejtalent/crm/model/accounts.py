"""Account data models.

Roles live in their own table so a user can hold several of them. The role
gate in ``de.hejtalent.crm.identity.roles`` evaluates them. Profiles and
e-mail settings are mapped only as far as user deletion and outgoing mail
need them.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy import DateTime, String, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from de.hejtalent.crm.model.base import Base, longtext, str512, uuidpk, uuidstr


class UserRole(Base):
    __tablename__ = "user_roles"

    id: Mapped[uuidpk]
    user_id: Mapped[uuidstr]
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuidpk]
    user_id: Mapped[uuidstr]
    email: Mapped[Optional[str512]]


class UserEmailSettings(Base):
    """Per-user outgoing mail preferences."""
    __tablename__ = "user_email_settings"

    id: Mapped[uuidpk]
    user_id: Mapped[uuidstr]
    email_signature: Mapped[Optional[longtext]]


async def roles_for_user(database_session: AsyncSession, user_id: str) -> List[str]:
    stmt = select(UserRole.role).where(UserRole.user_id == user_id)
    return list((await database_session.scalars(stmt)).all())
