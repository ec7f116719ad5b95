"""
Canteen Service - User provisioning from token claims
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.models.user import User

logger = logging.getLogger(__name__)


async def ensure_user(
    db: AsyncSession,
    user_id: str,
    role: str,
    *,
    email: str | None = None,
    display_name: str | None = None,
) -> User:
    """Create the users row on first sight; keep role/email/name in sync afterwards."""
    user = await db.get(User, user_id)
    if user is None:
        user = User(id=user_id, role=role, email=email, display_name=display_name)
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            user = await db.get(User, user_id)
        else:
            logger.info("Provisioned %s user %s", role, user_id)
        return user

    changed = False
    for attr, value in (("role", role), ("email", email), ("display_name", display_name)):
        if value and getattr(user, attr) != value:
            setattr(user, attr, value)
            changed = True
    if changed:
        await db.commit()
    return user
