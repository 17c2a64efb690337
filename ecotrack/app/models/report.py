"""
Waste Report database model.

Reports are submitted by citizens and flow through the collection lifecycle
(see ecotrack.app.domain.lifecycle.state_machine).
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum, Index
from ecotrack.app.db.session import Base
from ecotrack.app.models.report_enums import ReportStatus, Urgency, WasteType, enum_values


class Report(Base):
    """
    Waste Report model.

    Location is stored as two float columns; whenever it travels as a pair it
    is (longitude, latitude), GeoJSON order.
    """
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Reporter and assignment
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    assigned_collector_id = Column(Integer, ForeignKey('users.id'), nullable=True)

    # Location
    longitude = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)
    address = Column(String(200), nullable=True)

    # Classification
    waste_type = Column(
        Enum(WasteType, values_callable=enum_values, name="waste_type"),
        default=WasteType.OTHER,
        nullable=False
    )
    predicted_type = Column(String(50), nullable=True)
    confidence = Column(Float, nullable=True)

    # Payload
    photo = Column(String(255), nullable=False)
    description = Column(String(500), nullable=False)
    urgency = Column(
        Enum(Urgency, values_callable=enum_values, name="urgency"),
        default=Urgency.MEDIUM,
        nullable=False,
        index=True
    )
    estimated_quantity = Column(String(100), nullable=True)
    actual_quantity = Column(String(100), nullable=True)
    collector_notes = Column(String(500), nullable=True)
    admin_notes = Column(String(500), nullable=True)

    # Status
    status = Column(
        Enum(ReportStatus, values_callable=enum_values, name="report_status"),
        default=ReportStatus.PENDING,
        nullable=False
    )

    # Timestamps (creation order breaks route ties, so keep sub-second precision)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    collected_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_reports_collector_status', 'assigned_collector_id', 'status'),
        Index('ix_reports_status_created', 'status', 'created_at'),
    )

    @property
    def coordinates(self) -> tuple:
        """(longitude, latitude)"""
        return (self.longitude, self.latitude)

    def __repr__(self):
        return f"<Report(id={self.id}, status='{self.status.value}', collector={self.assigned_collector_id})>"
