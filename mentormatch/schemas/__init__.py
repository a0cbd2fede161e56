"""
Schemas module - enums, caller identity and request/response schemas.
"""

from mentormatch.schemas.schemas import (
    Actor,
    ApplicationStatus,
    AvailabilityStatus,
    MatchStatus,
    PartnershipStatus,
    ProjectStatus,
    RequestStatus,
    RespondAction,
    UserRole,
)

__all__ = [
    "Actor",
    "ApplicationStatus",
    "AvailabilityStatus",
    "MatchStatus",
    "PartnershipStatus",
    "ProjectStatus",
    "RequestStatus",
    "RespondAction",
    "UserRole",
]
