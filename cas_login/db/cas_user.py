"""
Behavior of the CasUser model: default values on insert, username lookup
and access token creation.
"""
import logging
from typing import List, Optional

from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import DEFAULT_TTL, AccessToken, utcnow

logger = logging.getLogger(__name__)

DEFAULT_STATUS = "active"


class CasUserMixin:
    """Methods shared by every model loaded as a CAS user"""

    auto_attach = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} username={self.username!r}>"

    @classmethod
    async def find_by_username(cls, db: AsyncSession, username: str, limit: int = 2) -> List["CasUserMixin"]:
        """
        Return the users whose username matches.

        At most ``limit`` rows are fetched; callers only need to tell
        "none", "one" and "more than one" apart.
        """
        result = await db.execute(
            select(cls).where(cls.username == username).limit(limit)
        )
        return list(result.scalars().all())

    async def create_access_token(self, db: AsyncSession, ttl: Optional[int] = None) -> AccessToken:
        """Issue a new access token for this user and flush it"""
        if ttl is None:
            ttl = self.ttl or DEFAULT_TTL
        if ttl <= 0:
            raise ValueError(f"Access token ttl must be positive, got {ttl}")

        token = AccessToken(ttl=ttl, user_id=self.id, created=utcnow())
        db.add(token)
        await db.flush()
        logger.debug(f"Created access token for user {self.id} (ttl={ttl})")
        return token


def _apply_defaults(mapper, connection, target) -> None:
    if not target.status:
        target.status = DEFAULT_STATUS
    if target.ttl is None:
        target.ttl = DEFAULT_TTL


def extend(model: type) -> type:
    """Attach the insert hook to a loaded CasUser model"""
    if not event.contains(model, "before_insert", _apply_defaults):
        event.listen(model, "before_insert", _apply_defaults)
    return model
