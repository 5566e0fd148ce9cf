import datetime
import uuid
from decimal import Decimal

from django.core.exceptions import PermissionDenied, ValidationError
from django.test import TestCase
from django.utils import timezone

from attendance.models import Attendance
from main.models import (
    PARENT,
    PRINCIPAL,
    STUDENT,
    TEACHER,
    Announcement,
    Assignment,
    Grade,
    Post,
    Student,
    Term,
    TimetableEntry,
)
from main.records import RecordStore, as_date

from .helpers import (
    create_class,
    create_school,
    create_session,
    create_student,
    create_subject,
    create_teacher,
    create_test_user,
)


class RecordFixtureMixin:
    def setUp(self):
        self.store = RecordStore()
        self.school = create_school()
        self.session = create_session(self.school)
        self.klass = create_class(self.school)
        self.subject = create_subject(self.school)
        self.teacher = create_teacher(self.school)
        self.guardian = create_test_user(PARENT)
        self.student = create_student(self.school, self.klass, code='S002', guardian=self.guardian)
        self.principal = create_test_user(PRINCIPAL)
        self.school.principal = self.principal
        self.school.save()

    def grade_data(self, **overrides):
        data = {
            'student': self.student.pk,
            'subject': self.subject.pk,
            'academic_session': self.session.pk,
            'term': Term.FIRST,
            'assessment_type': 'exam',
            'score': '70',
            'max_score': '100',
            'status': Grade.Status.PUBLISHED,
        }
        data.update(overrides)
        return data


class GradeRecordTests(RecordFixtureMixin, TestCase):
    def test_teacher_records_grade(self):
        grade = self.store.create_grade(self.teacher.user, self.grade_data())
        self.assertEqual(grade.teacher, self.teacher)
        self.assertEqual(grade.score, Decimal('70'))
        self.assertIsNotNone(grade.graded_at)

    def test_non_teacher_cannot_record_grade(self):
        with self.assertRaises(PermissionDenied):
            self.store.create_grade(self.student.user, self.grade_data())
        with self.assertRaises(PermissionDenied):
            self.store.create_grade(self.principal, self.grade_data())
        self.assertFalse(Grade.objects.exists())

    def test_score_above_max_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.store.create_grade(self.teacher.user, self.grade_data(score='101'))
        self.assertIn('score', ctx.exception.message_dict)
        self.assertFalse(Grade.objects.exists())

    def test_unknown_student_raises_not_found(self):
        with self.assertRaises(Student.DoesNotExist):
            self.store.create_grade(self.teacher.user, self.grade_data(student=uuid.uuid4()))

    def test_invalid_term_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.store.create_grade(self.teacher.user, self.grade_data(term='fourth'))

    def test_students_and_guardians_only_see_published(self):
        self.store.create_grade(self.teacher.user, self.grade_data())
        self.store.create_grade(self.teacher.user, self.grade_data(status=Grade.Status.DRAFT, assessment_type='test1'))

        self.assertEqual(self.store.list_grades_by_student(self.student, viewer=self.student.user).count(), 1)
        self.assertEqual(self.store.list_grades_by_student(self.student, viewer=self.guardian).count(), 1)
        self.assertEqual(self.store.list_grades_by_student(self.student, viewer=self.teacher.user).count(), 2)

    def test_grades_newest_first_and_term_filter(self):
        first = self.store.create_grade(self.teacher.user, self.grade_data(assessment_type='test1'))
        second = self.store.create_grade(self.teacher.user, self.grade_data(assessment_type='test2'))
        third = self.store.create_grade(self.teacher.user, self.grade_data(term=Term.SECOND))
        now = timezone.now()
        for offset, grade in enumerate([first, second, third]):
            Grade.objects.filter(pk=grade.pk).update(created_at=now + datetime.timedelta(minutes=offset))

        all_grades = list(self.store.list_grades_by_student(self.student))
        self.assertEqual([g.pk for g in all_grades], [third.pk, second.pk, first.pk])
        first_term = self.store.list_grades_by_student(self.student, term=Term.FIRST)
        self.assertEqual([g.pk for g in first_term], [second.pk, first.pk])

    def test_only_recording_teacher_updates_grade(self):
        grade = self.store.create_grade(self.teacher.user, self.grade_data())
        other = create_teacher(self.school, code='T002')
        with self.assertRaises(PermissionDenied):
            self.store.update_grade(other.user, grade, {'score': '80'})

        updated = self.store.update_grade(self.teacher.user, grade, {'score': '80'})
        self.assertEqual(updated.score, Decimal('80'))

    def test_update_rejects_non_editable_fields(self):
        grade = self.store.create_grade(self.teacher.user, self.grade_data())
        with self.assertRaises(ValidationError):
            self.store.update_grade(self.teacher.user, grade, {'student': self.student.pk})

    def test_import_is_all_or_nothing(self):
        rows = [
            {'student_code': 'S002', 'subject_code': 'MTH', 'assessment_type': 'test1', 'score': 15.5,
             'max_score': 20},
            {'student_code': 'NOPE', 'subject_code': 'MTH', 'assessment_type': 'test1', 'score': 10},
        ]
        with self.assertRaises(ValidationError):
            self.store.import_grades(self.teacher.user, rows, self.session, Term.FIRST)
        self.assertFalse(Grade.objects.exists())

        grades = self.store.import_grades(self.teacher.user, rows[:1], self.session, Term.FIRST)
        self.assertEqual(len(grades), 1)
        self.assertEqual(grades[0].score, Decimal('15.5'))

    def test_class_listing_orders_by_student_code(self):
        later = create_student(self.school, self.klass, code='S010')
        earlier = create_student(self.school, self.klass, code='S001')
        for student in (later, earlier, self.student):
            self.store.create_grade(self.teacher.user, self.grade_data(student=student.pk))
        codes = [g.student.student_code for g in self.store.list_grades_by_class(self.klass)]
        self.assertEqual(codes, ['S001', 'S002', 'S010'])


class AttendanceRecordTests(RecordFixtureMixin, TestCase):
    def test_second_mark_for_same_day_overwrites(self):
        data = {'student': self.student.pk, 'date': '2024-10-01', 'status': Attendance.Status.PRESENT}
        record, created = self.store.record_attendance(self.teacher.user, data)
        self.assertTrue(created)

        again, created = self.store.record_attendance(
            self.teacher.user, {**data, 'status': Attendance.Status.LATE, 'remarks': 'Bus delay'})
        self.assertFalse(created)
        self.assertEqual(again.pk, record.pk)
        self.assertEqual(Attendance.objects.count(), 1)
        self.assertEqual(Attendance.objects.get().status, Attendance.Status.LATE)

    def test_principal_may_record_but_student_may_not(self):
        data = {'student': self.student.pk, 'date': '2024-10-01', 'status': Attendance.Status.ABSENT}
        _, created = self.store.record_attendance(self.principal, data)
        self.assertTrue(created)
        with self.assertRaises(PermissionDenied):
            self.store.record_attendance(self.student.user, data)

    def test_invalid_status_and_date_are_rejected(self):
        with self.assertRaises(ValidationError):
            self.store.record_attendance(
                self.teacher.user, {'student': self.student.pk, 'date': '2024-10-01', 'status': 'asleep'})
        with self.assertRaises(ValidationError):
            self.store.record_attendance(
                self.teacher.user, {'student': self.student.pk, 'date': '2024-02-30', 'status': 'present'})

    def test_teacher_of_other_school_is_refused(self):
        outsider = create_teacher(create_school('Elsewhere'), code='T900')
        with self.assertRaises(PermissionDenied):
            self.store.record_attendance(
                outsider.user, {'student': self.student.pk, 'date': '2024-10-01', 'status': 'present'})

    def test_date_range_is_inclusive_and_newest_first(self):
        for day in (1, 2, 3, 4):
            self.store.record_attendance(
                self.teacher.user,
                {'student': self.student.pk, 'date': datetime.date(2024, 10, day), 'status': 'present'})
        records = self.store.list_attendance_by_student(
            self.student, start=datetime.date(2024, 10, 2), end=datetime.date(2024, 10, 3))
        self.assertEqual([r.date.day for r in records], [3, 2])

    def test_as_date_parses_iso_strings(self):
        self.assertEqual(as_date('2024-10-01'), datetime.date(2024, 10, 1))
        self.assertIsNone(as_date(''))
        with self.assertRaises(ValidationError):
            as_date('01/10/2024')


class AnnouncementRecordTests(RecordFixtureMixin, TestCase):
    def test_role_filter_includes_untargeted(self):
        everyone = self.store.create_announcement(self.principal, {'title': 'Open day', 'content': 'All welcome'})
        teachers = self.store.create_announcement(
            self.principal, {'title': 'Staff meeting', 'content': 'Room 4', 'target_role': TEACHER})
        students = self.store.create_announcement(
            self.principal, {'title': 'Sports', 'content': 'Kits', 'target_role': STUDENT})

        seen = set(self.store.list_announcements_by_school(self.school, role=TEACHER).values_list('pk', flat=True))
        self.assertEqual(seen, {everyone.pk, teachers.pk})
        self.assertNotIn(students.pk, seen)
        self.assertEqual(self.store.list_announcements_by_school(self.school).count(), 3)

    def test_deactivated_and_deleted_are_hidden(self):
        kept = self.store.create_announcement(self.principal, {'title': 'A', 'content': 'a'})
        withdrawn = self.store.create_announcement(self.principal, {'title': 'B', 'content': 'b'})
        removed = self.store.create_announcement(self.principal, {'title': 'C', 'content': 'c'})
        self.store.deactivate_announcement(self.principal, withdrawn)
        self.store.delete_announcement(self.principal, removed)

        self.assertEqual(list(self.store.list_announcements_by_school(self.school)), [kept])
        # soft-deleted rows are still reachable for history
        self.assertTrue(Announcement.default_objects.filter(pk=removed.pk, is_deleted=True).exists())

    def test_teacher_cannot_announce(self):
        with self.assertRaises(PermissionDenied):
            self.store.create_announcement(self.teacher.user, {'title': 'A', 'content': 'a'})


class AssignmentRecordTests(RecordFixtureMixin, TestCase):
    def create_assignment(self, title, due):
        return self.store.create_assignment(self.teacher.user, {
            'title': title, 'school_class': self.klass.pk, 'subject': self.subject.pk, 'due_date': due})

    def test_due_date_newest_first_undated_last(self):
        now = timezone.now()
        soon = self.create_assignment('Soon', now + datetime.timedelta(days=1))
        undated = self.create_assignment('Whenever', None)
        later = self.create_assignment('Later', now + datetime.timedelta(days=7))

        ordered = list(self.store.list_assignments_by_student(self.student))
        self.assertEqual(ordered, [later, soon, undated])

    def test_student_submits_once_and_is_graded(self):
        assignment = self.create_assignment('Essay', None)
        self.store.submit_assignment(self.student.user, assignment, 'draft one')
        submission = self.store.submit_assignment(self.student.user, assignment, 'final')
        self.assertEqual(self.store.list_submissions(assignment).count(), 1)
        self.assertEqual(submission.content, 'final')

        graded = self.store.grade_submission(self.teacher.user, submission, Decimal('85'), 'Good')
        self.assertIsNotNone(graded.graded_at)
        with self.assertRaises(ValidationError):
            self.store.submit_assignment(self.student.user, assignment, 'too late')

    def test_submission_score_cannot_exceed_maximum(self):
        assignment = self.create_assignment('Quiz', None)
        submission = self.store.submit_assignment(self.student.user, assignment, 'answers')
        with self.assertRaises(ValidationError):
            self.store.grade_submission(self.teacher.user, submission, Decimal('101'))

    def test_student_of_other_class_cannot_submit(self):
        assignment = self.create_assignment('Essay', None)
        other = create_student(self.school, create_class(self.school, 'JSS2 B'), code='S050')
        with self.assertRaises(PermissionDenied):
            self.store.submit_assignment(other.user, assignment, 'mine')

    def test_student_without_class_has_no_assignments(self):
        loose = create_student(self.school, None, code='S099')
        self.assertEqual(self.store.list_assignments_by_student(loose).count(), 0)
        self.assertEqual(Assignment.objects.count(), 0)


class MessageRecordTests(RecordFixtureMixin, TestCase):
    def test_conversation_is_oldest_first_in_both_directions(self):
        a, b = self.teacher.user, self.guardian
        first = self.store.send_message(a, {'recipient': b.pk, 'content': 'Hello'})
        second = self.store.send_message(b, {'recipient': a.pk, 'content': 'Hi'})
        self.store.send_message(a, {'recipient': self.principal.pk, 'content': 'Unrelated'})

        self.assertEqual(list(self.store.get_conversation(a, b)), [first, second])
        self.assertEqual(list(self.store.list_messages_by_user(b)), [first])

    def test_only_recipient_marks_read(self):
        message = self.store.send_message(self.teacher.user, {'recipient': self.guardian.pk, 'content': 'Hi'})
        with self.assertRaises(PermissionDenied):
            self.store.mark_message_read(self.teacher.user, message)
        self.assertTrue(self.store.mark_message_read(self.guardian, message).is_read)

    def test_empty_content_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.store.send_message(self.teacher.user, {'recipient': self.guardian.pk, 'content': ''})


class PostAndTimetableRecordTests(RecordFixtureMixin, TestCase):
    def test_only_published_posts_are_listed(self):
        shown = self.store.create_post(self.teacher.user, {'title': 'Science fair', 'content': 'Friday'})
        self.store.create_post(self.teacher.user, {'title': 'Draft', 'content': 'x', 'is_published': False})
        self.assertEqual(list(self.store.list_posts_by_school(self.school)), [shown])

    def test_students_cannot_post(self):
        with self.assertRaises(PermissionDenied):
            self.store.create_post(self.student.user, {'title': 'Hi', 'content': 'x'})
        self.assertFalse(Post.objects.exists())

    def test_timetable_orders_by_day_then_start(self):
        def slot(day, start, end):
            return self.store.create_timetable_entry(self.principal, {
                'school_class': self.klass.pk, 'subject': self.subject.pk,
                'day_of_week': day, 'start_time': start, 'end_time': end})

        wed = slot(3, datetime.time(9), datetime.time(10))
        mon_late = slot(1, datetime.time(11), datetime.time(12))
        mon_early = slot(1, datetime.time(8), datetime.time(9))
        self.assertEqual(list(self.store.list_timetable_by_class(self.klass)), [mon_early, mon_late, wed])

        self.store.delete_timetable_entry(self.principal, wed)
        self.assertEqual(self.store.list_timetable_by_class(self.klass).count(), 2)
        self.assertEqual(TimetableEntry.default_objects.count(), 3)

    def test_slot_must_end_after_start(self):
        with self.assertRaises(ValidationError):
            self.store.create_timetable_entry(self.principal, {
                'school_class': self.klass.pk, 'subject': self.subject.pk,
                'day_of_week': 2, 'start_time': datetime.time(10), 'end_time': datetime.time(9)})


class AcademicSessionRecordTests(RecordFixtureMixin, TestCase):
    def test_activating_a_session_deactivates_the_others(self):
        later = create_session(self.school, name='2025/2026', active=True,
                               start=datetime.date(2025, 9, 1), end=datetime.date(2026, 7, 31))
        self.session.refresh_from_db()
        self.assertFalse(self.session.is_active)
        self.assertEqual(self.store.get_active_session(self.school), later)

    def test_only_administrators_delete_sessions(self):
        with self.assertRaises(PermissionDenied):
            self.store.delete_session(self.teacher.user, self.session)

        self.store.delete_session(self.principal, self.session)
        self.assertIsNone(self.store.get_active_session(self.school))
        self.assertIsNone(self.store.get_session(self.session.pk))

    def test_created_session_becomes_the_active_one(self):
        with self.assertRaises(PermissionDenied):
            self.store.create_session(self.teacher.user, {'name': '2025/2026'})

        later = self.store.create_session(self.principal, {
            'name': '2025/2026', 'start_date': '2025-09-01', 'end_date': '2026-07-31', 'is_active': True,
        })
        self.assertEqual(later.created_by, self.principal)
        self.assertEqual(self.store.get_active_session(self.school), later)
        self.assertEqual(list(self.store.list_sessions_by_school(self.school)), [later, self.session])

        with self.assertRaises(ValidationError):
            self.store.create_session(self.principal, {
                'name': '2024/2025', 'start_date': '2024-09-01', 'end_date': '2025-07-31'})
        with self.assertRaises(ValidationError):
            self.store.create_session(self.principal, {
                'name': '2026/2027', 'start_date': '2027-07-31', 'end_date': '2026-09-01'})


class SchoolStructureRecordTests(RecordFixtureMixin, TestCase):
    def other_principal(self):
        other = create_school(name='Other School')
        principal = create_test_user(PRINCIPAL)
        other.principal = principal
        other.save()
        return principal

    def test_principal_opens_a_class(self):
        klass = self.store.create_class(self.principal, {
            'name': 'JSS2 B', 'level': 'Junior Secondary', 'class_teacher': self.teacher.user.pk})
        self.assertEqual(klass.school, self.school)
        self.assertEqual(klass.class_teacher, self.teacher.user)
        self.assertEqual(klass.capacity, 40)
        self.assertIn(klass, self.store.list_classes_by_school(self.school))

    def test_class_names_are_unique_within_a_school(self):
        with self.assertRaises(ValidationError):
            self.store.create_class(self.principal, {'name': 'jss1 a', 'level': 'Junior Secondary'})
        klass = self.store.create_class(self.other_principal(), {'name': 'JSS1 A', 'level': 'Junior Secondary'})
        self.assertNotEqual(klass.school, self.school)

    def test_class_teacher_must_be_a_teacher(self):
        with self.assertRaises(ValidationError):
            self.store.create_class(self.principal, {
                'name': 'JSS3 C', 'level': 'Junior Secondary', 'class_teacher': self.guardian.pk})

    def test_subject_codes_are_unique_within_a_school(self):
        with self.assertRaises(PermissionDenied):
            self.store.create_subject(self.teacher.user, {'name': 'Biology', 'code': 'BIO'})
        with self.assertRaises(ValidationError):
            self.store.create_subject(self.principal, {'name': 'Maths II', 'code': 'MTH'})

        biology = self.store.create_subject(self.principal, {'name': 'Biology', 'code': 'BIO'})
        self.assertEqual(biology.created_by, self.principal)
        self.store.create_subject(self.other_principal(), {'name': 'Mathematics', 'code': 'MTH'})


class ProfileRecordTests(RecordFixtureMixin, TestCase):
    def test_principal_enrols_a_student(self):
        account = create_test_user(STUDENT)
        student = self.store.create_student(self.principal, {
            'user': account.pk, 'student_code': 'S010', 'school_class': self.klass.pk,
            'guardian': self.guardian.pk, 'admission_date': '2024-09-02',
        })
        self.assertEqual(student.school, self.school)
        self.assertEqual(student.admission_date, datetime.date(2024, 9, 2))
        self.assertEqual(self.store.get_student_by_user(account), student)
        self.assertEqual(list(self.store.list_children(self.guardian)), [self.student, student])

    def test_student_codes_are_unique_within_a_school(self):
        with self.assertRaises(ValidationError):
            self.store.create_student(self.principal, {'user': create_test_user(STUDENT).pk, 'student_code': 'S002'})

    def test_enrolment_checks_the_account_and_class(self):
        with self.assertRaises(PermissionDenied):
            self.store.create_student(self.teacher.user, {'user': create_test_user(STUDENT).pk, 'student_code': 'S011'})
        with self.assertRaises(ValidationError):
            self.store.create_student(self.principal, {'user': self.guardian.pk, 'student_code': 'S011'})
        with self.assertRaises(ValidationError):
            self.store.create_student(self.principal, {'user': self.student.user.pk, 'student_code': 'S011'})

        elsewhere = create_class(create_school(name='Other School'))
        with self.assertRaises(ValidationError):
            self.store.create_student(self.principal, {
                'user': create_test_user(STUDENT).pk, 'student_code': 'S011', 'school_class': elsewhere.pk})
        self.assertEqual(Student.objects.count(), 1)

    def test_principal_hires_a_teacher(self):
        account = create_test_user(TEACHER)
        with self.assertRaises(ValidationError):
            self.store.create_teacher(self.principal, {'user': account.pk, 'teacher_code': 'T001'})

        teacher = self.store.create_teacher(self.principal, {
            'user': account.pk, 'teacher_code': 'T002', 'department': 'Sciences'})
        self.assertEqual(teacher.school, self.school)
        self.assertEqual(self.store.get_teacher_by_user(account), teacher)
        self.assertEqual([t.teacher_code for t in self.store.list_teachers_by_school(self.school)], ['T001', 'T002'])

        with self.assertRaises(ValidationError):
            self.store.create_teacher(self.principal, {'user': account.pk, 'teacher_code': 'T003'})
