from rest_framework.test import APITestCase

from main.models import PARENT, PRINCIPAL
from main.tests.helpers import (
    create_class,
    create_school,
    create_session,
    create_student,
    create_subject,
    create_teacher,
    create_test_user,
)


class SchoolAPITestCase(APITestCase):
    """
    One school with a principal, a teacher, a class of two students and a
    guardian for the first student.
    """

    def setUp(self):
        self.school = create_school()
        self.session = create_session(self.school)
        self.klass = create_class(self.school)
        self.subject = create_subject(self.school)
        self.teacher = create_teacher(self.school)
        self.guardian = create_test_user(PARENT)
        self.student = create_student(self.school, self.klass, code='S001', guardian=self.guardian)
        self.classmate = create_student(self.school, self.klass, code='S002')
        self.principal = create_test_user(PRINCIPAL)
        self.school.principal = self.principal
        self.school.save()

    def login(self, user):
        self.client.force_authenticate(user=user)
        return user
