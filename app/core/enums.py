from enum import Enum


class UserRole(str, Enum):
    TEACHER = "TEACHER"
    VERIFIER = "VERIFIER"
    ADMIN = "ADMIN"


class UnitStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class ApprovalType(str, Enum):
    UNIT_START = "unit-start"
    UNIT_COMPLETE = "unit-complete"
    TIME_SLOT = "time-slot"
    BREAK_TIMING = "break-timing"
    SUBJECT_ASSIGN = "subject-assign"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class AssignmentStatus(str, Enum):
    """pending = waiting for admin, admin_approved = waiting for recipient teacher."""

    PENDING = "pending"
    ADMIN_APPROVED = "admin_approved"
    APPROVED = "approved"
    REJECTED = "rejected"


IN_FLIGHT_ASSIGNMENT_STATUSES = (AssignmentStatus.PENDING.value, AssignmentStatus.ADMIN_APPROVED.value)
