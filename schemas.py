"""
Hostel Complaint Tracker Schemas (MongoDB via Pydantic)

Each stored record lives in a collection named after the lowercase model
(User -> "user", Complaint -> "complaint"). The request models validate API
input; the *Out models shape responses so credential hashes never leave the
service.
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

# ---------------------------------
# ENUMS
# ---------------------------------
COMPLAINT_CATEGORIES = (
    "Electrical",
    "Plumbing",
    "Carpentry",
    "Civil (Wall/Ceiling)",
    "Network/Internet",
    "Furniture",
    "Sanitation",
    "Water Cooler",
    "Other",
)

SUBMITTED = "Submitted"
IN_PROGRESS = "In Progress"
RESOLVED = "Resolved"
REJECTED = "Rejected"
COMPLAINT_STATUSES = (SUBMITTED, IN_PROGRESS, RESOLVED, REJECTED)
TERMINAL_STATUSES = (RESOLVED, REJECTED)
OPEN_STATUSES = (SUBMITTED, IN_PROGRESS)

LEAVE_STATUSES = ("pending", "approved", "rejected")

MAX_IMAGES = 5
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
MAX_COMMENT_LENGTH = 300
MIN_PASSWORD_LENGTH = 6


# ---------------------------------
# AUTH / USERS
# ---------------------------------
class RegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    role: Literal["student", "warden"] = "student"
    hostel: Optional[str] = None
    room_number: Optional[str] = None
    department: Optional[str] = None
    year_of_study: Optional[str] = None
    roll_number: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: Literal["student", "warden", "admin"]
    hostel: Optional[str] = None
    room_number: Optional[str] = None
    department: Optional[str] = None
    year_of_study: Optional[str] = None
    roll_number: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    room_number: Optional[str] = None
    department: Optional[str] = None
    year_of_study: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)


class ResetPasswordRequest(BaseModel):
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)


# ---------------------------------
# HOSTELS
# ---------------------------------
class HostelIn(BaseModel):
    name: str = Field(min_length=1)
    type: Literal["Boys", "Girls"]
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class HostelUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[Literal["Boys", "Girls"]] = None
    is_active: Optional[bool] = None


class HostelOut(BaseModel):
    id: str
    name: str
    type: str
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class HostelStatsOut(HostelOut):
    user_count: int = 0
    complaint_count: int = 0
    active_complaint_count: int = 0


# ---------------------------------
# COMPLAINTS
# ---------------------------------
class UserSummary(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class ComplaintUpdate(BaseModel):
    status: str
    comment: str
    updated_by: UserSummary
    timestamp: datetime


class StatusChangeRequest(BaseModel):
    # Validated by the lifecycle engine so the error carries a domain message.
    status: Optional[str] = None
    comment: Optional[str] = None


class ComplaintOut(BaseModel):
    id: str
    title: str
    category: str
    description: str
    hostel: str
    room_number: Optional[str] = None
    status: str
    created_by: UserSummary
    handled_by: Optional[UserSummary] = None
    images: List[str] = []
    updates: List[ComplaintUpdate] = []
    timeline: List[ComplaintUpdate] = []
    created_at: datetime
    updated_at: Optional[datetime] = None


# ---------------------------------
# LEAVE REQUESTS
# ---------------------------------
class LeaveRequestIn(BaseModel):
    from_date: date
    to_date: date
    reason: str = Field(min_length=1, max_length=MAX_DESCRIPTION_LENGTH)


class LeaveDecision(BaseModel):
    status: Optional[str] = None
    comment: Optional[str] = Field(default=None, max_length=MAX_COMMENT_LENGTH)


class LeaveRequestOut(BaseModel):
    id: str
    student_id: str
    hostel: str
    from_date: date
    to_date: date
    reason: str
    status: Literal["pending", "approved", "rejected"] = "pending"
    comment: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------
# ATTENDANCE
# ---------------------------------
class AttendanceIn(BaseModel):
    student_id: str
    date: date
    status: Literal["present", "absent", "leave"]


class AttendanceOut(BaseModel):
    id: str
    student_id: str
    hostel: str
    date: date
    status: Literal["present", "absent", "leave"]
    marked_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
