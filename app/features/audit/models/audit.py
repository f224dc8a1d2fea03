from sqlalchemy import JSON, Column, Index, Integer, String, Text

from app.platform.db.base import BaseModel


class Audit(BaseModel):
    """
    A completed audit report.

    `user_id` is NULL for guest audits; guest usage is counted from these rows
    by `ip_address`, so the column doubles as the anonymous usage counter.
    """
    __tablename__ = "audits"

    user_id = Column(String(255), nullable=True, index=True)
    ui_title = Column(String(255), nullable=True)
    image_url = Column(Text, nullable=True)
    framework = Column(String(50), nullable=False)
    mode = Column(String(20), nullable=False)
    target_url = Column(Text, nullable=True)
    score = Column(Integer, nullable=False, default=0)

    # Full AuditReport document
    analysis = Column(JSON, nullable=False)

    ip_address = Column(String(45), nullable=True)

    __table_args__ = (
        Index("idx_audits_guest_ip", "ip_address", "user_id"),
    )
