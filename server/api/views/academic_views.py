import logging

import pandas as pd
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from main.filter import AssignmentFilter, GradeFilter
from main.models import PARENT, STAFF_ROLES, STUDENT, Grade
from main.reporting import ReportCardGenerator
from main.tenancy.permissions import sees_only_published

from ..permissions import IsAdministrator, IsStaff, IsStudent, IsTeacher
from ..serializers import (
    AssignmentSerializer,
    AssignmentSubmissionSerializer,
    GenerateReportCardSerializer,
    GradeImportSerializer,
    GradeSerializer,
    GradeSubmissionSerializer,
    PublishReportCardSerializer,
    ReportCardSerializer,
    SubmitAssignmentSerializer,
)
from .common import RecordsViewMixin

logger = logging.getLogger(__name__)


class StudentScopedMixin(RecordsViewMixin):
    """
    Resolves `?student=` (or the caller's own profile) and checks read access.
    A student that cannot be resolved is a bad request, not a missing page.
    """

    def target_student(self):
        student_id = self.query_param('student')
        if student_id is None:
            if self.user.role != STUDENT:
                raise ValidationError({'student': 'This query parameter is required.'})
            student = self.store.get_student_by_user(self.user)
        else:
            student = self.store.get_student(student_id)
        if student is None:
            raise ValidationError({'student': 'No such student.'})
        self.store.check_student_access(self.user, student)
        return student


class GradeViewSet(StudentScopedMixin, GenericViewSet):
    """
    Grades for one student (`?student=`) or, for staff, one class
    (`?school_class=`). Students and guardians only ever see published grades.
    """
    serializer_class = GradeSerializer

    def get_permissions(self):
        if self.action in ('create', 'import_grades'):
            return [IsTeacher()]
        if self.action == 'partial_update':
            return [IsStaff()]
        return super().get_permissions()

    def list(self, request, *args, **kwargs):
        class_id = self.query_param('school_class')
        if class_id is not None:
            if request.user.role not in STAFF_ROLES:
                raise ValidationError({'school_class': 'Class listings are for staff only.'})
            school_class = self.found(self.store.get_class(class_id), 'Class')
            self.same_school(school_class.school_id, 'Class')
            queryset = self.store.list_grades_by_class(school_class)
        else:
            student = self.target_student()
            queryset = self.store.list_grades_by_student(student, viewer=request.user)
        queryset = GradeFilter(request.query_params, queryset=queryset).qs
        return self.paginated(queryset, GradeSerializer)

    def retrieve(self, request, pk=None):
        grade = self.found(self.store.get_grade(pk), 'Grade')
        self.store.check_student_access(request.user, grade.student)
        if sees_only_published(request.user) and grade.status != Grade.Status.PUBLISHED:
            self.found(None, 'Grade')
        return Response(GradeSerializer(grade).data)

    def create(self, request, *args, **kwargs):
        grade = self.store.create_grade(request.user, request.data)
        return Response(GradeSerializer(grade).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        grade = self.found(self.store.get_grade(pk), 'Grade')
        grade = self.store.update_grade(request.user, grade, request.data)
        return Response(GradeSerializer(grade).data)

    @action(detail=False, methods=['POST'], url_path='import', parser_classes=[MultiPartParser, FormParser])
    def import_grades(self, request):
        params = GradeImportSerializer(data=request.data)
        params.is_valid(raise_exception=True)
        file = params.validated_data['file']

        try:
            if file.name.endswith(('.xlsx', '.xls')):
                df = pd.read_excel(file)
            else:
                df = pd.read_csv(file)
        except (ValueError, pd.errors.ParserError) as e:
            raise ValidationError({'file': f'Could not read the uploaded sheet: {e}'})

        missing = [col for col in GradeImportSerializer.REQUIRED_COLUMNS if col not in df.columns]
        if missing:
            raise ValidationError({'file': f"Missing required columns: {', '.join(missing)}"})

        # NaN cells become None so blank scores import as ungraded
        df = df.astype(object).where(pd.notna(df), None)
        grades = self.store.import_grades(
            request.user,
            df.to_dict('records'),
            session=params.validated_data['academic_session'],
            term=params.validated_data['term'],
        )
        logger.info("Imported %s grade(s) from %s", len(grades), file.name)
        return Response({
            'success': True,
            'imported_count': len(grades),
            'data': GradeSerializer(grades, many=True).data,
        }, status=status.HTTP_201_CREATED)


class ReportCardViewSet(StudentScopedMixin, GenericViewSet):
    serializer_class = ReportCardSerializer

    def get_permissions(self):
        if self.action in ('generate', 'publish'):
            return [IsAdministrator()]
        return super().get_permissions()

    def get_generator(self):
        return ReportCardGenerator(using=self.store.using, scopes=self.store.scopes)

    def list(self, request, *args, **kwargs):
        student = self.target_student()
        queryset = self.store.list_report_cards_by_student(student, viewer=request.user)
        return self.paginated(queryset, ReportCardSerializer)

    def retrieve(self, request, pk=None):
        card = self.found(self.store.get_report_card(pk), 'Report card')
        self.store.check_student_access(request.user, card.student)
        if sees_only_published(request.user) and not card.is_published:
            self.found(None, 'Report card')
        return Response(ReportCardSerializer(card).data)

    @action(detail=False, methods=['POST'])
    def generate(self, request):
        params = GenerateReportCardSerializer(data=request.data)
        params.is_valid(raise_exception=True)
        data = params.validated_data
        generator = self.get_generator()
        if data.get('student'):
            cards = [generator.generate(data['student'], data['term'], data['academic_session'], actor=request.user)]
        else:
            cards = generator.generate_for_class(
                data['school_class'], data['term'], data['academic_session'], actor=request.user)
        return Response(ReportCardSerializer(cards, many=True).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['POST'])
    def publish(self, request, pk=None):
        card = self.found(self.store.get_report_card(pk), 'Report card')
        params = PublishReportCardSerializer(data=request.data)
        params.is_valid(raise_exception=True)
        card = self.get_generator().publish(request.user, card, **params.validated_data)
        return Response(ReportCardSerializer(card).data)


class AssignmentViewSet(RecordsViewMixin, GenericViewSet):
    serializer_class = AssignmentSerializer
    parser_classes = (JSONParser, MultiPartParser, FormParser)

    def get_permissions(self):
        if self.action == 'create':
            return [IsTeacher()]
        if self.action in ('partial_update', 'submissions', 'grade_submission'):
            return [IsStaff()]
        if self.action == 'submit':
            return [IsStudent()]
        return super().get_permissions()

    def get_assignment(self, pk):
        assignment = self.found(self.store.get_assignment(pk), 'Assignment')
        self.same_school(assignment.school_class.school_id, 'Assignment')
        return assignment

    def list(self, request, *args, **kwargs):
        class_id = self.query_param('school_class')
        if class_id is not None:
            school_class = self.found(self.store.get_class(class_id), 'Class')
            self.same_school(school_class.school_id, 'Class')
            queryset = self.store.list_assignments_by_class(school_class)
        elif request.user.role == STUDENT:
            student = self.found(self.store.get_student_by_user(request.user), 'Student')
            queryset = self.store.list_assignments_by_student(student)
        elif request.user.role == PARENT:
            student = self.found(self.store.get_student(self.query_param('student', required=True)), 'Student')
            self.store.check_student_access(request.user, student)
            queryset = self.store.list_assignments_by_student(student)
        else:
            raise ValidationError({'school_class': 'This query parameter is required.'})
        queryset = AssignmentFilter(request.query_params, queryset=queryset).qs
        return self.paginated(queryset, AssignmentSerializer)

    def retrieve(self, request, pk=None):
        return Response(AssignmentSerializer(self.get_assignment(pk)).data)

    def create(self, request, *args, **kwargs):
        assignment = self.store.create_assignment(request.user, request.data)
        return Response(AssignmentSerializer(assignment).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        assignment = self.store.update_assignment(request.user, self.get_assignment(pk), request.data)
        return Response(AssignmentSerializer(assignment).data)

    @action(detail=True, methods=['POST'])
    def submit(self, request, pk=None):
        assignment = self.get_assignment(pk)
        params = SubmitAssignmentSerializer(data=request.data)
        params.is_valid(raise_exception=True)
        submission = self.store.submit_assignment(request.user, assignment, params.validated_data['content'])
        return Response(AssignmentSubmissionSerializer(submission).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['GET'])
    def submissions(self, request, pk=None):
        assignment = self.get_assignment(pk)
        return self.paginated(self.store.list_submissions(assignment), AssignmentSubmissionSerializer)

    @action(detail=True, methods=['POST'], url_path=r'submissions/(?P<submission_pk>[^/.]+)/grade')
    def grade_submission(self, request, pk=None, submission_pk=None):
        assignment = self.get_assignment(pk)
        submission = self.found(self.store.get_submission(submission_pk, assignment=assignment), 'Submission')
        params = GradeSubmissionSerializer(data=request.data)
        params.is_valid(raise_exception=True)
        submission = self.store.grade_submission(
            request.user, submission, params.validated_data['score'], params.validated_data['feedback'])
        return Response(AssignmentSubmissionSerializer(submission).data)
