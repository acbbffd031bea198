"""
Declarative base and the AccessToken model.

Access tokens are owned by the CAS user that logged in. The id is a
random 64 character string, the lifetime is expressed in seconds.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Two weeks, in seconds
DEFAULT_TTL = 1209600


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_token_id() -> str:
    """64 URL-safe characters"""
    return secrets.token_urlsafe(48)


# Table every AccessToken.user_id points at
USER_TABLE = "cas_user"


class AccessToken(Base):
    """
    Token issued to a CAS user.

    The owner foreign key targets ``USER_TABLE``; a custom user model must
    map to that table.
    """

    __tablename__ = "access_token"

    id = Column(String(64), primary_key=True, default=generate_token_id)
    ttl = Column(Integer, nullable=False, default=DEFAULT_TTL)
    created = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    user_id = Column(Integer, ForeignKey(f"{USER_TABLE}.id"), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AccessToken user_id={self.user_id} ttl={self.ttl}>"

    def expires_at(self) -> datetime:
        created = self.created
        # SQLite hands timestamps back without tzinfo
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return created + timedelta(seconds=self.ttl)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at()

    @classmethod
    async def find_valid(cls, db: AsyncSession, token_id: str) -> Optional["AccessToken"]:
        """Return the token with this id unless it is missing or expired"""
        if not token_id:
            return None
        result = await db.execute(select(cls).where(cls.id == token_id))
        token = result.scalar_one_or_none()
        if token is None or token.is_expired():
            return None
        return token
