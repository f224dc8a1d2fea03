import sqlalchemy
from sqlalchemy import Column, Integer, String

from app.platform.db.base import Base


class UserUsage(Base):
    """
    Monthly audit counter for an authenticated account.

    One row per user, created lazily on first admission. `period_key` is the
    calendar month (YYYY-MM) the counter belongs to; a stale key means the
    counter is reset before it is read.
    """
    __tablename__ = "user_usage"

    user_id = Column(String(255), primary_key=True)
    plan = Column(String(20), default="free", nullable=False)
    audits_used = Column(Integer, default=0, nullable=False)
    period_key = Column(String(7), nullable=False)
    token_limit = Column(Integer, default=2000, nullable=False)
    updated_at = Column(
        sqlalchemy.DateTime(timezone=True),
        server_default=sqlalchemy.func.now(),
        onupdate=sqlalchemy.func.now(),
        nullable=False,
    )
