"""
User roles enumeration.

Defines the role types for the waste collection system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Assigns collectors, resolves reports, manages collectors
        COLLECTOR: Executes pickups along their route
        USER: Citizen submitting waste reports (default role)
    """
    ADMIN = "ADMIN"
    COLLECTOR = "COLLECTOR"
    USER = "USER"
