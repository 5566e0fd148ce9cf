from rest_framework import serializers

from attendance.serializers import AttendanceSerializer
from .communication_serializers import AnnouncementSerializer, MessageSerializer
from .core_serializers import (
    AcademicSessionSerializer,
    AssignmentSerializer,
    FeePaymentSerializer,
    GradeSerializer,
    ReportCardSerializer,
    SchoolClassSerializer,
    SchoolSerializer,
    StudentSerializer,
    SubjectSerializer,
    TeacherSerializer,
    UserSerializer,
)


class StudentSummarySerializer(serializers.Serializer):
    """Headline figures for a student dashboard"""
    attendance_rate = serializers.DecimalField(max_digits=5, decimal_places=2, allow_null=True, read_only=True)
    average_grade = serializers.DecimalField(max_digits=5, decimal_places=2, allow_null=True, read_only=True)
    pending_assignments = serializers.IntegerField(read_only=True)


class ChildSerializer(serializers.Serializer):
    """One child on a guardian dashboard"""
    profile = StudentSerializer(read_only=True)
    report_cards = ReportCardSerializer(many=True, read_only=True)


# section name -> serializer for its value
SECTION_SERIALIZERS = {
    'identity': UserSerializer(),
    'school': SchoolSerializer(),
    'session': AcademicSessionSerializer(),
    'grades': GradeSerializer(many=True),
    'attendance': AttendanceSerializer(many=True),
    'assignments': AssignmentSerializer(many=True),
    'messages': MessageSerializer(many=True),
    'fee_payments': FeePaymentSerializer(many=True),
    'summary': StudentSummarySerializer(),
    'classes': SchoolClassSerializer(many=True),
    'subjects': SubjectSerializer(many=True),
    'teachers': TeacherSerializer(many=True),
    'announcements': AnnouncementSerializer(many=True),
    'children': ChildSerializer(many=True),
}

# the profile section holds a student or a teacher depending on the role
PROFILE_SERIALIZERS = {
    'student': StudentSerializer(),
    'teacher': TeacherSerializer(),
}


class DashboardSerializer(serializers.BaseSerializer):
    """
    Renders a composed dashboard payload. Only the sections the role's arm
    filled are present; `role` and `term` pass through as plain values.
    """

    def to_representation(self, payload):
        data = {}
        for key, value in payload.items():
            if key == 'profile':
                serializer = PROFILE_SERIALIZERS.get(payload['role'])
            else:
                serializer = SECTION_SERIALIZERS.get(key)
            if serializer is None or value is None:
                data[key] = value
            else:
                data[key] = serializer.to_representation(value)
        return data
