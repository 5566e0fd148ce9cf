"""Small builders shared by the test modules."""
import datetime
from decimal import Decimal

from django.contrib.auth import get_user_model

from main.models import (
    AcademicSession,
    School,
    SchoolClass,
    Student,
    Subject,
    Teacher,
)


def create_test_user(role, email=None, **kwargs):
    """Helper function to create a test user with the given role."""
    email = email or f"{role}-{get_user_model().objects.count()}@example.com"
    kwargs.setdefault('first_name', f'Test {role.title()}')
    kwargs.setdefault('last_name', 'User')
    return get_user_model().objects.create_user(email=email, password='testpass123', role=role, **kwargs)


def create_school(name='Test School', **kwargs):
    return School.objects.create(name=name, **kwargs)


def create_session(school, name='2024/2025', active=True, start=None, end=None):
    return AcademicSession.objects.create(
        school=school,
        name=name,
        start_date=start or datetime.date(2024, 9, 1),
        end_date=end or datetime.date(2025, 7, 31),
        is_active=active,
    )


def create_class(school, name='JSS1 A', level='Junior Secondary'):
    return SchoolClass.objects.create(school=school, name=name, level=level)


def create_subject(school, name='Mathematics', code='MTH'):
    return Subject.objects.create(school=school, name=name, code=code)


def create_student(school, school_class=None, code='S001', guardian=None, user=None):
    user = user or create_test_user('student', email=f'{code.lower()}@{school.pk.hex[:8]}.example.com')
    return Student.objects.create(
        user=user, school=school, school_class=school_class, student_code=code, guardian=guardian)


def create_teacher(school, code='T001', user=None):
    user = user or create_test_user('teacher', email=f'{code.lower()}@{school.pk.hex[:8]}.example.com')
    return Teacher.objects.create(user=user, school=school, teacher_code=code)


def dec(value):
    return Decimal(str(value))
