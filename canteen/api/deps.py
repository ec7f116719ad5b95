"""
Canteen Service - Request dependencies

The JWT middleware has already verified the token; these dependencies turn
its claims into a CurrentUser and enforce roles.
"""
import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import ForbiddenError
from canteen.core.security import Role
from canteen.db.database import get_db
from canteen.db.user_ops import ensure_user
from canteen.db.wallet_ops import ensure_parent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: Role
    email: str | None = None
    display_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def get_current_user(request: Request) -> CurrentUser:
    claims = getattr(request.state, "user", None)
    if not claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated.")
    return CurrentUser(
        id=claims["sub"],
        role=Role(claims["role"]),
        email=claims.get("email"),
        display_name=claims.get("name"),
    )


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise ForbiddenError("Admin role required.")
    return user


async def require_parent(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Parent-only routes. Provisions the user and wallet rows on first use."""
    if user.role != Role.PARENT:
        raise ForbiddenError("Parent role required.")
    try:
        await ensure_user(db, user.id, user.role.value, email=user.email, display_name=user.display_name)
        await ensure_parent(db, user.id)
    except SQLAlchemyError as exc:
        # Later lookups report the missing rows themselves.
        await db.rollback()
        logger.warning("Provisioning failed for parent %s: %s", user.id, exc)
    return user


def check_owner(user: CurrentUser, parent_id: str) -> None:
    """Admins may act on any parent; parents only on themselves."""
    if not user.is_admin and user.id != parent_id:
        raise ForbiddenError("You can only access your own records.")
