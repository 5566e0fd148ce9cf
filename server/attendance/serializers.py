from rest_framework import serializers
from django.utils.translation import gettext_lazy as _

from .models import Attendance


class AttendanceSerializer(serializers.ModelSerializer):
    """
    Read shape of an attendance mark.
    """
    student_code = serializers.CharField(source='student.student_code', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = Attendance
        fields = [
            'id', 'student', 'student_code', 'school_class', 'date',
            'status', 'status_display', 'remarks', 'recorded_by',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class AttendanceQuerySerializer(serializers.Serializer):
    """
    Query parameters for listing marks: one student over an optional date
    range, or one class on one day.
    """
    student = serializers.UUIDField(required=False)
    school_class = serializers.UUIDField(required=False)
    date = serializers.DateField(required=False)
    start = serializers.DateField(required=False)
    end = serializers.DateField(required=False)

    def validate(self, data):
        if data.get('student') and data.get('school_class'):
            raise serializers.ValidationError(_('Filter by a student or by a class, not both.'))
        if data.get('school_class') and not data.get('date'):
            raise serializers.ValidationError({'date': _('A class listing needs a date.')})
        start, end = data.get('start'), data.get('end')
        if start and end and end < start:
            raise serializers.ValidationError({'end': _('End date must not be before start date.')})
        return data
