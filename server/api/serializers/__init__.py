from .core_serializers import (
    AcademicSessionSerializer,
    AssignmentSerializer,
    AssignmentSubmissionSerializer,
    FeePaymentSerializer,
    FeeStructureSerializer,
    GenerateReportCardSerializer,
    GradeImportSerializer,
    GradeSerializer,
    GradeSubmissionSerializer,
    PublishReportCardSerializer,
    ReportCardSerializer,
    SchoolClassSerializer,
    SchoolSerializer,
    StudentSerializer,
    SubjectSerializer,
    SubmitAssignmentSerializer,
    TeacherSerializer,
    TimetableEntrySerializer,
    UserSerializer,
)
from .communication_serializers import (
    AnnouncementSerializer,
    CommentCreateSerializer,
    CommentSerializer,
    MessageSerializer,
    NotificationSerializer,
    PostSerializer,
)
from .dashboard_serializers import DashboardSerializer
