"""
Report and pickup related enumerations.
"""

import enum


class ReportStatus(str, enum.Enum):
    """Report status enumeration."""
    PENDING = "pending"  # Submitted, no collector yet
    ASSIGNED = "assigned"  # Collector assigned, pickup not started
    IN_PROGRESS = "in_progress"  # Collector has started the pickup
    COLLECTED = "collected"  # Pickup completed
    RESOLVED = "resolved"  # Admin confirmed
    CANCELLED = "cancelled"  # Withdrawn


class Urgency(str, enum.Enum):
    """Report urgency enumeration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WasteType(str, enum.Enum):
    """Waste classification enumeration."""
    ORGANIC = "organic"
    PLASTIC = "plastic"
    PAPER = "paper"
    METAL = "metal"
    GLASS = "glass"
    ELECTRONIC = "electronic"
    HAZARDOUS = "hazardous"
    MIXED = "mixed"
    OTHER = "other"


class PickupStatus(str, enum.Enum):
    """Pickup log status enumeration."""
    STARTED = "started"  # Open attempt
    COMPLETED = "completed"
    FAILED = "failed"


# Reports that still need a visit; the route and its statistics both read this set
OPEN_STATUSES = (ReportStatus.ASSIGNED, ReportStatus.IN_PROGRESS)

# Critical first in collector listings
URGENCY_RANK = {
    Urgency.CRITICAL: 0,
    Urgency.HIGH: 1,
    Urgency.MEDIUM: 2,
    Urgency.LOW: 3,
}


def enum_values(enum_cls):
    """Persist enum values (lower-case) rather than member names."""
    return [member.value for member in enum_cls]
