import uuid
from decimal import Decimal

from django.core.files.uploadedfile import SimpleUploadedFile
from rest_framework import status

from main.models import Assignment, Grade, ReportCard, Term
from notification.models import Notification

from .base import SchoolAPITestCase


class GradeAPITestCase(SchoolAPITestCase):
    def post_grade(self, **overrides):
        data = {
            'student': str(self.student.pk),
            'subject': str(self.subject.pk),
            'academic_session': str(self.session.pk),
            'term': Term.FIRST,
            'assessment_type': 'exam',
            'score': '72.5',
            'max_score': '100',
        }
        data.update(overrides)
        return self.client.post('/api/grades/', data, format='json')

    def test_teacher_records_a_grade(self):
        self.login(self.teacher.user)
        response = self.post_grade(status='published')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['score'], '72.50')
        self.assertIsNotNone(response.data['graded_at'])

    def test_score_above_maximum_is_rejected(self):
        self.login(self.teacher.user)
        response = self.post_grade(score='120')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('score', response.data)

    def test_only_teachers_record_grades(self):
        self.login(self.principal)
        self.assertEqual(self.post_grade().status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Grade.objects.exists())

    def test_students_never_see_drafts(self):
        self.login(self.teacher.user)
        draft_id = self.post_grade().data['id']
        self.post_grade(assessment_type='test1', score='9', max_score='10', status='published')

        self.login(self.student.user)
        response = self.client.get('/api/grades/')
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['assessment_type'], 'test1')
        self.assertEqual(self.client.get(f'/api/grades/{draft_id}/').status_code, status.HTTP_404_NOT_FOUND)

        self.login(self.teacher.user)
        response = self.client.get('/api/grades/', {'student': str(self.student.pk)})
        self.assertEqual(response.data['count'], 2)

    def test_staff_must_name_a_student(self):
        self.login(self.teacher.user)
        self.assertEqual(self.client.get('/api/grades/').status_code, status.HTTP_400_BAD_REQUEST)

    def test_import_from_csv(self):
        self.login(self.teacher.user)
        sheet = SimpleUploadedFile(
            'grades.csv',
            b'student_code,subject_code,assessment_type,score,max_score\n'
            b'S001,MTH,exam,88.1,100\n'
            b'S002,MTH,exam,,100\n',
            content_type='text/csv',
        )
        response = self.client.post('/api/grades/import/', {
            'file': sheet,
            'academic_session': str(self.session.pk),
            'term': Term.FIRST,
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['imported_count'], 2)
        self.assertEqual(Grade.objects.get(student=self.student).score, Decimal('88.10'))
        self.assertIsNone(Grade.objects.get(student=self.classmate).score)

    def test_import_rejects_unknown_codes_atomically(self):
        self.login(self.teacher.user)
        sheet = SimpleUploadedFile(
            'grades.csv',
            b'student_code,subject_code,assessment_type,score\n'
            b'S001,MTH,exam,50\n'
            b'S999,MTH,exam,60\n',
            content_type='text/csv',
        )
        response = self.client.post('/api/grades/import/', {
            'file': sheet, 'academic_session': str(self.session.pk), 'term': Term.FIRST,
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Grade.objects.exists())

    def test_import_requires_columns(self):
        self.login(self.teacher.user)
        sheet = SimpleUploadedFile('grades.csv', b'student_code,score\nS001,50\n', content_type='text/csv')
        response = self.client.post('/api/grades/import/', {
            'file': sheet, 'academic_session': str(self.session.pk), 'term': Term.FIRST,
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class ReportCardAPITestCase(SchoolAPITestCase):
    def setUp(self):
        super().setUp()
        for student, score in ((self.student, 80), (self.classmate, 60)):
            Grade.objects.create(
                student=student, subject=self.subject, teacher=self.teacher, academic_session=self.session,
                term=Term.FIRST, assessment_type='exam', score=Decimal(score), max_score=Decimal(100),
                status=Grade.Status.PUBLISHED)

    def generate(self):
        return self.client.post('/api/report-cards/generate/', {
            'school_class': str(self.klass.pk),
            'academic_session': str(self.session.pk),
            'term': Term.FIRST,
        }, format='json')

    def test_generate_and_publish(self):
        self.login(self.principal)
        response = self.generate()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual([c['position'] for c in response.data], [1, 2])

        self.login(self.student.user)
        self.assertEqual(self.client.get('/api/report-cards/').data['count'], 0)

        self.login(self.principal)
        card = ReportCard.objects.get(student=self.student)
        response = self.client.post(f'/api/report-cards/{card.pk}/publish/',
                                    {'principal_comment': 'Excellent'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_published'])

        self.login(self.student.user)
        response = self.client.get('/api/report-cards/')
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['average'], '80.00')
        self.assertTrue(Notification.objects.filter(user=self.guardian, type='report_card').exists())

    def test_teachers_cannot_generate(self):
        self.login(self.teacher.user)
        self.assertEqual(self.generate().status_code, status.HTTP_403_FORBIDDEN)

    def test_exactly_one_target(self):
        self.login(self.principal)
        response = self.client.post('/api/report-cards/generate/', {
            'academic_session': str(self.session.pk), 'term': Term.FIRST,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unresolvable_student_is_a_bad_request(self):
        self.login(self.principal)
        response = self.client.get('/api/report-cards/', {'student': str(uuid.uuid4())})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_session_is_not_found(self):
        self.login(self.principal)
        response = self.client.post('/api/report-cards/generate/', {
            'student': str(self.student.pk), 'academic_session': str(uuid.uuid4()), 'term': Term.FIRST,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class AssignmentAPITestCase(SchoolAPITestCase):
    def setUp(self):
        super().setUp()
        self.assignment = Assignment.objects.create(
            title='Fractions', school_class=self.klass, subject=self.subject, teacher=self.teacher)

    def test_student_sees_class_assignments(self):
        self.login(self.student.user)
        response = self.client.get('/api/assignments/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['results'][0]['title'], 'Fractions')

    def test_submit_and_grade(self):
        self.login(self.student.user)
        url = f'/api/assignments/{self.assignment.pk}/submit/'
        response = self.client.post(url, {'content': 'My answers'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        submission_id = response.data['id']

        self.login(self.teacher.user)
        response = self.client.get(f'/api/assignments/{self.assignment.pk}/submissions/')
        self.assertEqual(response.data['count'], 1)
        response = self.client.post(
            f'/api/assignments/{self.assignment.pk}/submissions/{submission_id}/grade/',
            {'score': '18', 'feedback': 'Good'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['score'], '18.00')

    def test_teachers_cannot_submit(self):
        self.login(self.teacher.user)
        response = self.client.post(f'/api/assignments/{self.assignment.pk}/submit/', {'content': 'x'})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
