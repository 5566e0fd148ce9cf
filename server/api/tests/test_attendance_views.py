import uuid

from rest_framework import status
from rest_framework_simplejwt.tokens import RefreshToken

from attendance.models import Attendance

from .base import SchoolAPITestCase

URL = '/api/attendance/'


class AttendanceAPITestCase(SchoolAPITestCase):
    def mark(self, status_value='present', day='2024-10-01', student=None):
        return self.client.post(URL, {
            'student': str((student or self.student).pk),
            'date': day,
            'status': status_value,
        }, format='json')

    def test_requires_authentication(self):
        response = self.client.get(URL)
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_bearer_token_is_accepted(self):
        token = RefreshToken.for_user(self.student.user).access_token
        self.client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
        response = self.client.get(URL)
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_second_mark_for_the_same_day_overwrites(self):
        self.login(self.teacher.user)
        first = self.mark('absent')
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)

        second = self.mark('late')
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data['id'], first.data['id'])
        self.assertEqual(Attendance.objects.get().status, Attendance.Status.LATE)

    def test_students_cannot_mark_attendance(self):
        self.login(self.student.user)
        self.assertEqual(self.mark().status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Attendance.objects.exists())

    def test_invalid_input_is_rejected(self):
        self.login(self.teacher.user)
        self.assertEqual(self.mark(day='01/10/2024').status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(self.mark(status_value='asleep').status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_student_is_not_found(self):
        self.login(self.teacher.user)
        response = self.client.post(URL, {
            'student': str(uuid.uuid4()), 'date': '2024-10-01', 'status': 'present',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_student_lists_own_marks_paginated(self):
        self.login(self.teacher.user)
        self.mark(day='2024-10-01')
        self.mark(day='2024-10-02')
        self.mark(day='2024-10-02', student=self.classmate)

        self.login(self.student.user)
        response = self.client.get(URL)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 2)
        self.assertEqual([r['date'] for r in response.data['results']], ['2024-10-02', '2024-10-01'])

    def test_class_register_is_for_staff(self):
        self.login(self.teacher.user)
        self.mark()
        params = {'school_class': str(self.klass.pk), 'date': '2024-10-01'}
        self.assertEqual(self.client.get(URL, params).data['count'], 1)

        self.login(self.student.user)
        self.assertEqual(self.client.get(URL, params).status_code, status.HTTP_403_FORBIDDEN)

    def test_guardian_cannot_read_another_child(self):
        self.login(self.guardian)
        response = self.client.get(URL, {'student': str(self.classmate.pk)})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_unknown_record_is_not_found(self):
        self.login(self.teacher.user)
        response = self.client.get(f'{URL}{uuid.uuid4()}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
