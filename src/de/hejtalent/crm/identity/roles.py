"""Role gate shared by the admin-only endpoints.

Mirrors the frontend's protected routes so that hiding a page and refusing its API call follow the
same rules.
"""

import logging
from typing import Iterable, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession

from de.hejtalent.crm.errors import PermissionDeniedError
from de.hejtalent.crm.model.accounts import roles_for_user

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_COMPANY_ADMIN = "company_admin"
ROLE_USER = "user"
ROLE_RESOURCE_MANAGER = "resource_manager"


def role_allows(
    role: Optional[str],
    required_role: Optional[str] = None,
    allowed_roles: Optional[Sequence[str]] = None,
) -> bool:
    """
    Decide whether a single role passes the gate.

    A non-empty `allowed_roles` is an exact allow list. Otherwise `required_role` must match,
    with admins passing every `required_role` check. With neither, any role passes.
    """
    if allowed_roles:
        return role in allowed_roles
    if required_role is not None:
        return role == ROLE_ADMIN or role == required_role
    return True


def roles_allow(
    roles: Iterable[str],
    required_role: Optional[str] = None,
    allowed_roles: Optional[Sequence[str]] = None,
) -> bool:
    roles = list(roles)
    if not roles:
        return required_role is None and not allowed_roles
    return any(role_allows(role, required_role, allowed_roles) for role in roles)


async def require_role(
    database_session: AsyncSession,
    user_id: str,
    required_role: Optional[str] = None,
    allowed_roles: Optional[Sequence[str]] = None,
) -> None:
    """
    Raises:
        PermissionDeniedError: If none of the user's roles pass the gate.
    """
    roles = await roles_for_user(database_session, user_id)
    if not roles_allow(roles, required_role, allowed_roles):
        logger.info("Permission denied for user %s (roles %s)", user_id, roles)
        raise PermissionDeniedError("Keine Berechtigung für diese Aktion")
