"""Per-student fee ledger.

The ledger owns four derived columns on ``Student``: ``final_fee``,
``paid_amount``, ``due_amount`` and ``payment_status``. Nothing else writes
them. Callers are responsible for the surrounding transaction; the helpers
here only mutate the ORM object they are given.
"""
from decimal import Decimal, ROUND_HALF_UP

from academy.exceptions import ValidationError

D = Decimal
ZERO = D("0.00")
CENT = D("0.01")

PENDING = "pending"
PARTIAL = "partial"
COMPLETED = "completed"


def money(value) -> Decimal:
    """Coerce ints, floats, strings and Decimals to a 2-place Decimal."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = D(str(value))
    if not value.is_finite():
        raise ValidationError("Amount must be a finite number", {"amount": str(value)})
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def payment_status_for(paid_amount, final_fee) -> str:
    paid = money(paid_amount)
    if paid <= ZERO:
        return PENDING
    if paid < money(final_fee):
        return PARTIAL
    return COMPLETED


def due_for(paid_amount, final_fee) -> Decimal:
    return max(ZERO, money(final_fee) - money(paid_amount))


def _check_terms(total_fee, admission_fee, discount_amount):
    errors = {}
    for name, value in (("total_fee", total_fee), ("admission_fee", admission_fee),
                        ("discount_amount", discount_amount)):
        if value < ZERO:
            errors[name] = "must not be negative"
    if not errors and discount_amount > total_fee:
        errors["discount_amount"] = f"discount {discount_amount} exceeds total fee {total_fee}"
    if errors:
        raise ValidationError("Invalid fee terms", errors)


def enroll(student, total_fee, admission_fee, discount_amount=0):
    """Open a fresh ledger: nothing paid, the whole final fee due."""
    total, admission, discount = money(total_fee), money(admission_fee), money(discount_amount)
    _check_terms(total, admission, discount)

    student.total_fee = total
    student.admission_fee = admission
    student.discount_amount = discount
    student.final_fee = max(ZERO, total - discount)
    student.paid_amount = ZERO
    student.due_amount = student.final_fee
    student.payment_status = PENDING
    return student


def reprice(student, total_fee, admission_fee, discount_amount):
    """Change the fee terms of an existing ledger, keeping what was paid."""
    total, admission, discount = money(total_fee), money(admission_fee), money(discount_amount)
    _check_terms(total, admission, discount)

    student.total_fee = total
    student.admission_fee = admission
    student.discount_amount = discount
    student.final_fee = max(ZERO, total - discount)
    return recompute(student, ZERO)


def recompute(student, paid_amount_delta):
    paid = money(student.paid_amount) + money(paid_amount_delta)
    if paid < ZERO:
        raise ValidationError(
            f"Adjustment would take paid amount of student {student.id} below zero",
            {"paid_amount": str(money(student.paid_amount)), "delta": str(money(paid_amount_delta))},
        )
    final = money(student.final_fee)
    student.paid_amount = paid
    student.due_amount = due_for(paid, final)
    student.payment_status = payment_status_for(paid, final)
    return student
