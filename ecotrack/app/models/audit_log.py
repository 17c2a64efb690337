"""
Audit Log Database Model.

Tracks authentication events and every report / pickup lifecycle action.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from ecotrack.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - LOGIN_SUCCESS / LOGIN_FAILED / USER_REGISTERED / LOGOUT
    - REPORT_CREATED / COLLECTOR_ASSIGNED / REPORT_RESOLVED / REPORT_CANCELLED / REPORT_DELETED
    - PICKUP_STARTED / PICKUP_COMPLETED / PICKUP_FAILED
    - COLLECTOR_DEACTIVATED / COLLECTOR_ACTIVATED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Who was the target of the action (collector, reporter)
    target_user_id = Column(Integer, index=True, nullable=True)
    target_username = Column(String(100), nullable=True)

    # Additional context (report_id, pickup_log_id, ...)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username})>"
