from decimal import Decimal

from django.core.exceptions import PermissionDenied, ValidationError
from django.test import TestCase

from main.finance.utils import derive_fee_status
from main.models import PRINCIPAL, FeePayment, FeeStructure, Term
from main.records import RecordStore

from .helpers import create_class, create_school, create_session, create_student, create_test_user, dec


class FeeStatusTests(TestCase):
    def test_status_follows_cumulative_amount(self):
        self.assertEqual(derive_fee_status(dec(500), dec(0)), FeePayment.Status.PENDING)
        self.assertEqual(derive_fee_status(dec(500), dec('499.99')), FeePayment.Status.PARTIAL)
        self.assertEqual(derive_fee_status(dec(500), dec(500)), FeePayment.Status.PAID)
        self.assertEqual(derive_fee_status(dec(500), dec(650)), FeePayment.Status.PAID)


class FeePaymentTests(TestCase):
    def setUp(self):
        self.store = RecordStore()
        self.school = create_school()
        self.session = create_session(self.school)
        self.klass = create_class(self.school)
        self.student = create_student(self.school, self.klass)
        self.principal = create_test_user(PRINCIPAL)
        self.school.principal = self.principal
        self.school.save()
        self.tuition = self.store.create_fee_structure(self.principal, {
            'name': 'Tuition', 'amount': dec(500), 'school_class': self.klass.pk,
            'academic_session': self.session.pk, 'term': Term.FIRST,
        })

    def pay(self, amount):
        return self.store.record_fee_payment(self.principal, {
            'student': self.student.pk, 'fee_structure': self.tuition.pk, 'amount_paid': dec(amount),
        })

    def test_every_payment_of_the_pair_carries_the_latest_status(self):
        first = self.pay(200)
        self.assertEqual(first.status, FeePayment.Status.PARTIAL)

        second = self.pay(300)
        self.assertEqual(second.status, FeePayment.Status.PAID)
        statuses = set(FeePayment.objects.filter(student=self.student).values_list('status', flat=True))
        self.assertEqual(statuses, {FeePayment.Status.PAID})

    def test_payments_on_another_structure_are_independent(self):
        levy = FeeStructure.objects.create(
            name='Levy', amount=dec(100), school_class=self.klass, academic_session=self.session)
        self.pay(500)
        levy_payment = self.store.record_fee_payment(self.principal, {
            'student': self.student.pk, 'fee_structure': levy.pk, 'amount_paid': dec(40),
        })
        self.assertEqual(levy_payment.status, FeePayment.Status.PARTIAL)

    def test_amount_must_be_positive(self):
        with self.assertRaises(ValidationError):
            self.pay(0)
        self.assertFalse(FeePayment.objects.exists())

    def test_only_administrators_record_payments(self):
        with self.assertRaises(PermissionDenied):
            self.store.record_fee_payment(self.student.user, {
                'student': self.student.pk, 'fee_structure': self.tuition.pk, 'amount_paid': Decimal('10'),
            })

    def test_structure_for_foreign_class_is_refused(self):
        other_class = create_class(create_school('Elsewhere'))
        with self.assertRaises(PermissionDenied):
            self.store.create_fee_structure(self.principal, {
                'name': 'Tuition', 'amount': dec(500), 'school_class': other_class.pk,
                'academic_session': self.session.pk,
            })
