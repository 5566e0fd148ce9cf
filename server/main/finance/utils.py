# ===============================================
# file: main/finance/utils.py
# ===============================================
from __future__ import annotations

from decimal import Decimal

from django.db import transaction
from django.db.models import Sum

ZERO = Decimal("0.00")


def derive_fee_status(amount_due: Decimal, total_paid: Decimal) -> str:
    """
    Status for a (student, fee structure) pair from the cumulative amount paid:
    nothing -> pending, short of the amount -> partial, otherwise paid.
    """
    from main.models import FeePayment  # lazy import to avoid circulars

    if total_paid <= ZERO:
        return FeePayment.Status.PENDING
    if total_paid < amount_due:
        return FeePayment.Status.PARTIAL
    return FeePayment.Status.PAID


def total_paid_for(student, fee_structure, *, using: str = "default") -> Decimal:
    from main.models import FeePayment

    total = (
        FeePayment.objects.using(using)
        .filter(student=student, fee_structure=fee_structure)
        .aggregate(total=Sum("amount_paid"))["total"]
    )
    return total or ZERO


def sync_fee_status(student, fee_structure, *, using: str = "default") -> str:
    """
    Recompute and stamp the derived status on every payment row of the pair.
    Idempotent: rows already carrying the status are left untouched.
    Returns the status.
    """
    from main.models import FeePayment

    with transaction.atomic(using=using):
        status = derive_fee_status(
            fee_structure.amount, total_paid_for(student, fee_structure, using=using))
        (
            FeePayment.objects.using(using)
            .filter(student=student, fee_structure=fee_structure)
            .exclude(status=status)
            .update(status=status)
        )
    return status
