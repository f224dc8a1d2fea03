"""
Audit models package.
"""
from app.features.audit.models.audit import Audit
from app.features.audit.models.user_usage import UserUsage

__all__ = ["Audit", "UserUsage"]
