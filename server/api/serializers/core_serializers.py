from rest_framework import serializers

from main.models import (
    AcademicSession,
    Assignment,
    AssignmentSubmission,
    FeePayment,
    FeeStructure,
    Grade,
    ReportCard,
    School,
    SchoolClass,
    Student,
    Subject,
    Teacher,
    Term,
    TimetableEntry,
    User,
)
import logging
logger = logging.getLogger(__name__)


class UserSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'full_name',
                  'role', 'profile_image_url', 'is_active']
        read_only_fields = fields


class SchoolSerializer(serializers.ModelSerializer):
    class Meta:
        model = School
        fields = ['id', 'name', 'address', 'phone', 'email']


class AcademicSessionSerializer(serializers.ModelSerializer):
    class Meta:
        model = AcademicSession
        fields = ['id', 'name', 'start_date', 'end_date', 'is_active']


class SchoolClassSerializer(serializers.ModelSerializer):
    class_teacher = UserSerializer(read_only=True)

    class Meta:
        model = SchoolClass
        fields = ['id', 'name', 'level', 'capacity', 'class_teacher']


class SubjectSerializer(serializers.ModelSerializer):
    class Meta:
        model = Subject
        fields = ['id', 'name', 'code', 'description']


class StudentSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)
    school_class_name = serializers.CharField(source='school_class.name', read_only=True, default=None)

    class Meta:
        model = Student
        fields = ['id', 'user', 'student_code', 'school', 'school_class', 'school_class_name',
                  'date_of_birth', 'admission_date', 'guardian']


class TeacherSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = Teacher
        fields = ['id', 'user', 'teacher_code', 'school', 'department', 'qualification', 'hire_date']


class GradeSerializer(serializers.ModelSerializer):
    subject_name = serializers.CharField(source='subject.name', read_only=True)
    term_display = serializers.CharField(source='get_term_display', read_only=True)

    class Meta:
        model = Grade
        fields = ['id', 'student', 'subject', 'subject_name', 'teacher', 'academic_session',
                  'term', 'term_display', 'assessment_type', 'score', 'max_score',
                  'status', 'graded_at', 'created_at']
        read_only_fields = fields


class GradeImportSerializer(serializers.Serializer):
    """Upload of a CSV/XLSX sheet with student_code, subject_code, assessment_type, score columns."""
    file = serializers.FileField()
    academic_session = serializers.UUIDField()
    term = serializers.ChoiceField(choices=Term.choices)

    REQUIRED_COLUMNS = ('student_code', 'subject_code', 'assessment_type', 'score')


class AssignmentSerializer(serializers.ModelSerializer):
    subject_name = serializers.CharField(source='subject.name', read_only=True)

    class Meta:
        model = Assignment
        fields = ['id', 'title', 'description', 'school_class', 'subject', 'subject_name',
                  'teacher', 'due_date', 'max_score', 'created_at']
        read_only_fields = fields


class AssignmentSubmissionSerializer(serializers.ModelSerializer):
    student_code = serializers.CharField(source='student.student_code', read_only=True)

    class Meta:
        model = AssignmentSubmission
        fields = ['id', 'assignment', 'student', 'student_code', 'content',
                  'submitted_at', 'score', 'feedback', 'graded_at']
        read_only_fields = fields


class SubmitAssignmentSerializer(serializers.Serializer):
    content = serializers.CharField(allow_blank=True)


class GradeSubmissionSerializer(serializers.Serializer):
    score = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0)
    feedback = serializers.CharField(required=False, allow_blank=True, default='')


class ReportCardSerializer(serializers.ModelSerializer):
    academic_session_name = serializers.CharField(source='academic_session.name', read_only=True)
    term_display = serializers.CharField(source='get_term_display', read_only=True)

    class Meta:
        model = ReportCard
        fields = ['id', 'student', 'academic_session', 'academic_session_name', 'term', 'term_display',
                  'total_score', 'total_possible', 'average', 'position', 'class_size',
                  'teacher_comment', 'principal_comment', 'next_term_begins',
                  'is_published', 'generated_at']
        read_only_fields = fields


class GenerateReportCardSerializer(serializers.Serializer):
    """Either one student or a whole class for a term of a session."""
    student = serializers.UUIDField(required=False)
    school_class = serializers.UUIDField(required=False)
    academic_session = serializers.UUIDField()
    term = serializers.ChoiceField(choices=Term.choices)

    def validate(self, data):
        if bool(data.get('student')) == bool(data.get('school_class')):
            raise serializers.ValidationError('Provide exactly one of student or school_class.')
        return data


class PublishReportCardSerializer(serializers.Serializer):
    teacher_comment = serializers.CharField(required=False, allow_blank=True)
    principal_comment = serializers.CharField(required=False, allow_blank=True)
    next_term_begins = serializers.DateField(required=False)


class FeeStructureSerializer(serializers.ModelSerializer):
    class Meta:
        model = FeeStructure
        fields = ['id', 'name', 'amount', 'school_class', 'academic_session', 'term', 'is_optional']
        read_only_fields = fields


class FeePaymentSerializer(serializers.ModelSerializer):
    fee_name = serializers.CharField(source='fee_structure.name', read_only=True)

    class Meta:
        model = FeePayment
        fields = ['id', 'student', 'fee_structure', 'fee_name', 'amount_paid', 'payment_method',
                  'transaction_ref', 'status', 'paid_at', 'created_at']
        read_only_fields = fields


class TimetableEntrySerializer(serializers.ModelSerializer):
    subject_name = serializers.CharField(source='subject.name', read_only=True)
    day_display = serializers.CharField(source='get_day_of_week_display', read_only=True)

    class Meta:
        model = TimetableEntry
        fields = ['id', 'school_class', 'subject', 'subject_name', 'teacher', 'day_of_week',
                  'day_display', 'start_time', 'end_time', 'academic_session', 'is_active']
        read_only_fields = fields
