from app.auth.models import TeacherSubject, User
from app.core.models.subject import Subject
from app.core.models.unit import Unit
from app.core.models.unit_log import UnitLog
from app.core.models.time_slot_ledger import LedgerSlot, TimeSlotLedger
from app.core.models.approval_request import ApprovalRequest
from app.core.models.subject_assignment import SubjectAssignment
from app.core.models.timetable_import import TimetableImport

__all__ = [
    "ApprovalRequest",
    "LedgerSlot",
    "Subject",
    "SubjectAssignment",
    "TeacherSubject",
    "TimeSlotLedger",
    "TimetableImport",
    "Unit",
    "UnitLog",
    "User",
]
