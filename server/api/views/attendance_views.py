from rest_framework import status
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from attendance.serializers import AttendanceQuerySerializer, AttendanceSerializer
from main.models import PRINCIPAL, STAFF_ROLES, STUDENT, TEACHER

from ..permissions import HasRole
from .common import RecordsViewMixin


class CanRecordAttendance(HasRole):
    """
    Teachers and principals mark attendance.
    """
    roles = (TEACHER, PRINCIPAL)


class AttendanceViewSet(RecordsViewMixin, GenericViewSet):
    """
    API endpoint that allows attendance marks to be listed, recorded or corrected.
    Recording the same (student, date) twice overwrites the first mark.
    """
    serializer_class = AttendanceSerializer

    def get_permissions(self):
        if self.action in ('create', 'partial_update'):
            return [CanRecordAttendance()]
        return super().get_permissions()

    def list(self, request, *args, **kwargs):
        params = AttendanceQuerySerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        data = params.validated_data

        if data.get('school_class'):
            if request.user.role not in STAFF_ROLES:
                return Response({'detail': 'Class registers are for staff only.'}, status=status.HTTP_403_FORBIDDEN)
            school_class = self.found(self.store.get_class(data['school_class']), 'Class')
            self.same_school(school_class.school_id, 'Class')
            queryset = self.store.list_attendance_by_class(school_class, data['date'])
        else:
            if data.get('student'):
                student = self.found(self.store.get_student(data['student']), 'Student')
            elif request.user.role == STUDENT:
                student = self.found(self.store.get_student_by_user(request.user), 'Student')
            else:
                return Response({'student': ['This query parameter is required.']},
                                status=status.HTTP_400_BAD_REQUEST)
            self.store.check_student_access(request.user, student)
            queryset = self.store.list_attendance_by_student(student, start=data.get('start'), end=data.get('end'))
        return self.paginated(queryset, AttendanceSerializer)

    def retrieve(self, request, pk=None):
        record = self.found(self.store.get_attendance(pk), 'Attendance record')
        self.store.check_student_access(request.user, record.student)
        return Response(AttendanceSerializer(record).data)

    def create(self, request, *args, **kwargs):
        record, created = self.store.record_attendance(request.user, request.data)
        return Response(
            AttendanceSerializer(record).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def partial_update(self, request, pk=None):
        record = self.found(self.store.get_attendance(pk), 'Attendance record')
        record = self.store.update_attendance(request.user, record, request.data)
        return Response(AttendanceSerializer(record).data)
