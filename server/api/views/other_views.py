import logging

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import GenericViewSet

from main.dashboard import DashboardComposer
from main.models import STAFF_ROLES, STUDENT

from ..permissions import IsAdministrator, IsAdministratorOrReadOnly, IsStaff
from ..serializers import (
    AcademicSessionSerializer,
    DashboardSerializer,
    FeePaymentSerializer,
    FeeStructureSerializer,
    SchoolClassSerializer,
    StudentSerializer,
    SubjectSerializer,
    TeacherSerializer,
    TimetableEntrySerializer,
)
from .common import RecordsViewMixin

logger = logging.getLogger(__name__)


class DashboardView(RecordsViewMixin, APIView):
    """
    Role-shaped landing payload for the signed-in user. `?term=` picks the
    term (defaults to the first); `?role=` must match the user's own role.
    """

    def get(self, request, *args, **kwargs):
        composer = DashboardComposer(using=self.store.using, store=self.store)
        payload = composer.compose(
            request.user,
            role=self.query_param('role'),
            term=self.query_param('term'),
        )
        if payload is None:
            return Response({'detail': 'User not found.'}, status=status.HTTP_404_NOT_FOUND)
        return Response(DashboardSerializer(payload).data)


class SchoolClassViewSet(RecordsViewMixin, GenericViewSet):
    serializer_class = SchoolClassSerializer

    def get_permissions(self):
        if self.action == 'create':
            return [IsAdministrator()]
        if self.action == 'students':
            return [IsStaff()]
        return super().get_permissions()

    def get_class(self, pk):
        school_class = self.found(self.store.get_class(pk), 'Class')
        self.same_school(school_class.school_id, 'Class')
        return school_class

    def list(self, request, *args, **kwargs):
        return self.paginated(self.store.list_classes_by_school(self.user_school()), SchoolClassSerializer)

    def retrieve(self, request, pk=None):
        return Response(SchoolClassSerializer(self.get_class(pk)).data)

    def create(self, request, *args, **kwargs):
        school_class = self.store.create_class(request.user, request.data)
        return Response(SchoolClassSerializer(school_class).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['GET'])
    def students(self, request, pk=None):
        return self.paginated(self.store.list_students_by_class(self.get_class(pk)), StudentSerializer)


class TimetableViewSet(RecordsViewMixin, GenericViewSet):
    """
    Nested under a class: /classes/{class_pk}/timetable/.
    """
    serializer_class = TimetableEntrySerializer
    permission_classes = [IsAdministratorOrReadOnly]
    pagination_class = None

    def get_class(self):
        school_class = self.found(self.store.get_class(self.kwargs.get('school_class_pk')), 'Class')
        self.same_school(school_class.school_id, 'Class')
        return school_class

    def list(self, request, *args, **kwargs):
        return self.paginated(self.store.list_timetable_by_class(self.get_class()), TimetableEntrySerializer)

    def create(self, request, *args, **kwargs):
        data = dict(request.data.items())
        data['school_class'] = self.get_class()
        entry = self.store.create_timetable_entry(request.user, data)
        return Response(TimetableEntrySerializer(entry).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, pk=None, **kwargs):
        entry = self.found(self.store.get_timetable_entry(pk, school_class=self.get_class()), 'Timetable entry')
        self.store.delete_timetable_entry(request.user, entry)
        return Response(status=status.HTTP_204_NO_CONTENT)


class SubjectViewSet(RecordsViewMixin, GenericViewSet):
    serializer_class = SubjectSerializer
    permission_classes = [IsAdministratorOrReadOnly]

    def list(self, request, *args, **kwargs):
        return self.paginated(self.store.list_subjects_by_school(self.user_school()), SubjectSerializer)

    def retrieve(self, request, pk=None):
        subject = self.found(self.store.get_subject(pk), 'Subject')
        self.same_school(subject.school_id, 'Subject')
        return Response(SubjectSerializer(subject).data)

    def create(self, request, *args, **kwargs):
        subject = self.store.create_subject(request.user, request.data)
        return Response(SubjectSerializer(subject).data, status=status.HTTP_201_CREATED)


class AcademicSessionViewSet(RecordsViewMixin, GenericViewSet):
    serializer_class = AcademicSessionSerializer
    permission_classes = [IsAdministratorOrReadOnly]

    def list(self, request, *args, **kwargs):
        return self.paginated(self.store.list_sessions_by_school(self.user_school()), AcademicSessionSerializer)

    def create(self, request, *args, **kwargs):
        session = self.store.create_session(request.user, request.data)
        return Response(AcademicSessionSerializer(session).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, pk=None):
        session = self.found(self.store.get_session(pk), 'Session')
        self.store.delete_session(request.user, session)
        return Response(status=status.HTTP_204_NO_CONTENT)


class StudentViewSet(RecordsViewMixin, GenericViewSet):
    """
    Student profiles. Administrators enrol an existing student-role account;
    reads follow the same access rule as the student's records.
    """
    serializer_class = StudentSerializer
    permission_classes = [IsAdministratorOrReadOnly]

    def retrieve(self, request, pk=None):
        student = self.found(self.store.get_student(pk), 'Student')
        self.store.check_student_access(request.user, student)
        return Response(StudentSerializer(student).data)

    def create(self, request, *args, **kwargs):
        student = self.store.create_student(request.user, request.data)
        return Response(StudentSerializer(student).data, status=status.HTTP_201_CREATED)


class TeacherViewSet(RecordsViewMixin, GenericViewSet):
    serializer_class = TeacherSerializer

    def get_permissions(self):
        if self.action == 'create':
            return [IsAdministrator()]
        return [IsStaff()]

    def list(self, request, *args, **kwargs):
        return self.paginated(self.store.list_teachers_by_school(self.user_school()), TeacherSerializer)

    def create(self, request, *args, **kwargs):
        teacher = self.store.create_teacher(request.user, request.data)
        return Response(TeacherSerializer(teacher).data, status=status.HTTP_201_CREATED)


class FeeViewSet(RecordsViewMixin, GenericViewSet):
    """
    Fee structures per class (`?school_class=`), plus payments per student
    under /fees/payments/.
    """
    serializer_class = FeeStructureSerializer

    def get_permissions(self):
        if self.action == 'create' or (self.action == 'payments' and self.request.method == 'POST'):
            return [IsAdministrator()]
        return super().get_permissions()

    def list(self, request, *args, **kwargs):
        if request.user.role in STAFF_ROLES:
            school_class = self.found(self.store.get_class(self.query_param('school_class', required=True)), 'Class')
            self.same_school(school_class.school_id, 'Class')
        else:
            # students and guardians see the structures of the student's own class
            school_class = self.found(self._target_student().school_class, 'Class')
        queryset = self.store.list_fee_structures_by_class(school_class, term=self.query_param('term'))
        return self.paginated(queryset, FeeStructureSerializer)

    def create(self, request, *args, **kwargs):
        structure = self.store.create_fee_structure(request.user, request.data)
        return Response(FeeStructureSerializer(structure).data, status=status.HTTP_201_CREATED)

    def _target_student(self):
        student_id = self.query_param('student')
        if student_id is None and self.request.user.role == STUDENT:
            student = self.store.get_student_by_user(self.request.user)
        else:
            student = self.store.get_student(self.query_param('student', required=True))
        student = self.found(student, 'Student')
        self.store.check_student_access(self.request.user, student)
        return student

    @action(detail=False, methods=['GET', 'POST'])
    def payments(self, request):
        if request.method == 'POST':
            payment = self.store.record_fee_payment(request.user, request.data)
            logger.info("Fee payment %s recorded, status %s", payment.pk, payment.status)
            return Response(FeePaymentSerializer(payment).data, status=status.HTTP_201_CREATED)
        student = self._target_student()
        return self.paginated(self.store.list_fee_payments_by_student(student), FeePaymentSerializer)
