from .academic_views import AssignmentViewSet, GradeViewSet, ReportCardViewSet
from .attendance_views import AttendanceViewSet
from .communication_views import AnnouncementViewSet, CommentViewSet, MessageViewSet, PostViewSet
from .other_views import (
    AcademicSessionViewSet,
    DashboardView,
    FeeViewSet,
    SchoolClassViewSet,
    StudentViewSet,
    SubjectViewSet,
    TeacherViewSet,
    TimetableViewSet,
)
