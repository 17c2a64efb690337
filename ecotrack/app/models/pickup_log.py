"""
Pickup Log database model.

One row per collector attempt at a report. At most one open (STARTED) log may
exist per (report, collector), enforced by a partial unique index.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, Index, text
from ecotrack.app.db.session import Base
from ecotrack.app.models.report_enums import PickupStatus, WasteType, enum_values


class PickupLog(Base):
    """
    Pickup Log model.

    Created when a collector starts a pickup, closed (completed or failed)
    when they report the outcome. Deleted only with its report.
    """
    __tablename__ = "pickup_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    report_id = Column(Integer, ForeignKey('reports.id', ondelete="CASCADE"), nullable=False, index=True)
    collector_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Attempt lifecycle
    start_time = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        Enum(PickupStatus, values_callable=enum_values, name="pickup_status"),
        default=PickupStatus.STARTED,
        nullable=False,
        index=True
    )

    # Outcome
    actual_quantity = Column(String(100), nullable=True)
    waste_type_confirmed = Column(
        Enum(WasteType, values_callable=enum_values, name="waste_type"),
        nullable=True
    )
    notes = Column(String(500), nullable=True)
    failure_reason = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    # Unique constraint: only one open log per (report, collector)
    __table_args__ = (
        Index(
            'ix_pickup_logs_open', 'report_id', 'collector_id', unique=True,
            postgresql_where=text("status = 'started'"),
            sqlite_where=text("status = 'started'"),
        ),
        Index('ix_pickup_logs_collector_created', 'collector_id', 'created_at'),
    )

    @property
    def is_open(self) -> bool:
        return self.status == PickupStatus.STARTED

    @property
    def duration_minutes(self):
        """Rounded minutes between start and end, None while the log is open."""
        if self.end_time is None or self.start_time is None:
            return None
        return round((self.end_time - self.start_time).total_seconds() / 60)

    def __repr__(self):
        return f"<PickupLog(id={self.id}, report_id={self.report_id}, status='{self.status.value}')>"
