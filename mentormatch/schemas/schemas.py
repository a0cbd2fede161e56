"""
Pydantic Schemas - Request/Response Validation

All API request and response schemas in one file for simplicity.
Stored documents use camelCase keys (studentId, maxCapacity, ...);
request and response bodies use snake_case.
"""

from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, Enum):
    student = "student"
    supervisor = "supervisor"
    admin = "admin"


class MatchStatus(str, Enum):
    unmatched = "unmatched"
    pending = "pending"
    matched = "matched"


class PartnershipStatus(str, Enum):
    none = "none"
    pending_sent = "pending_sent"
    pending_received = "pending_received"
    paired = "paired"


class AvailabilityStatus(str, Enum):
    available = "available"
    limited = "limited"
    unavailable = "unavailable"


class ApplicationStatus(str, Enum):
    pending = "pending"
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"
    revision_requested = "revision_requested"


class RequestStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    cancelled = "cancelled"


class ProjectStatus(str, Enum):
    pending_approval = "pending_approval"
    approved = "approved"
    in_progress = "in_progress"
    completed = "completed"


class RespondAction(str, Enum):
    accept = "accept"
    reject = "reject"


# ============================================================
# CALLER IDENTITY
# ============================================================

class Actor(BaseModel):
    """Caller identity as validated by the auth layer."""
    id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


# ============================================================
# APPLICATION SCHEMAS
# ============================================================

class ApplicationContent(BaseModel):
    project_title: str = Field(..., min_length=5, max_length=200)
    project_description: str = Field(..., min_length=20, max_length=2000)
    is_own_topic: bool = True
    proposed_topic_id: Optional[str] = None
    has_partner: bool = False
    partner_name: Optional[str] = Field(None, max_length=100)
    partner_email: Optional[EmailStr] = None

class ApplicationCreate(ApplicationContent):
    supervisor_id: str = Field(..., min_length=1)

class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus
    feedback: Optional[str] = Field(None, max_length=1000)


# ============================================================
# PARTNERSHIP SCHEMAS
# ============================================================

class PartnershipRequestCreate(BaseModel):
    target_student_id: str = Field(..., min_length=1)

class SupervisorPartnershipRequestCreate(BaseModel):
    target_supervisor_id: str = Field(..., min_length=1)
    project_id: str = Field(..., min_length=1)

class PartnershipRespond(BaseModel):
    action: RespondAction

class SupervisorSummary(BaseModel):
    supervisor_id: str
    full_name: Optional[str] = None
    department: Optional[str] = None
    max_capacity: int
    current_capacity: int
    remaining_capacity: int
    availability_status: AvailabilityStatus


# ============================================================
# PROJECT SCHEMAS
# ============================================================

class ProjectStatusChange(BaseModel):
    status: ProjectStatus


# ============================================================
# ADMIN SCHEMAS
# ============================================================

class CapacityOverride(BaseModel):
    max_capacity: int
    reason: str = Field(..., min_length=1, max_length=500)

class DeadlineUpdate(BaseModel):
    deadlines: Dict[str, datetime]


# ============================================================
# GENERIC SCHEMAS
# ============================================================

class OperationResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: Any = None

class ErrorResponse(BaseModel):
    detail: str
    kind: str
    field: Optional[str] = None
    internal: Optional[str] = None

class SupervisorListResponse(BaseModel):
    supervisors: List[SupervisorSummary]
    total: int
