"""Payment recorder: appends payment rows and drives the fee ledger.

A payment insert and the ledger update it causes are committed together or
not at all. Concurrent writers on the same student are serialized by a row
lock where the database supports ``SELECT ... FOR UPDATE`` and, everywhere,
by the optimistic ``Student.version`` counter: a writer that loses the race
gets ``StaleDataError`` on flush, rolls back and tries again on fresh state.
"""
import logging
import uuid
from datetime import date, datetime, time
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from academy import ledger, models
from academy.config import settings
from academy.exceptions import ConflictError, NotFoundError, ValidationError

LOG = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "bkash", "nagad", "bank_transfer", "card", "online")
PAYMENT_TYPES = ("admission", "installment")
ADJUSTMENT = "adjustment"
ADJUSTMENT_REASONS = ("refund", "reversal", "correction", "waiver")


def next_receipt_no(student_id: int) -> str:
    return f"RCP-{student_id:04d}-{uuid.uuid4().hex[:8].upper()}"


def _lock_student(db: Session, student_id: int) -> models.Student:
    stmt = (
        select(models.Student)
        .where(models.Student.id == student_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    student = db.execute(stmt).scalar_one_or_none()
    if student is None or student.deleted_at is not None:
        raise NotFoundError(f"Student {student_id} does not exist")
    if not student.is_active:
        raise ValidationError(f"Student {student_id} is {student.status}; payments are not accepted")
    return student


def _record(db: Session, student_id: int, amount, fields: dict, retries: Optional[int]) -> models.Payment:
    limit = settings.LEDGER_RETRY_LIMIT if retries is None else retries
    if limit < 1:
        raise ValidationError("Retry budget must be at least one attempt", {"retries": str(limit)})
    for attempt in range(1, limit + 1):
        try:
            student = _lock_student(db, student_id)
            payment = models.Payment(
                receipt_no=next_receipt_no(student_id),
                student_id=student.id,
                amount=amount,
                **fields,
            )
            db.add(payment)
            ledger.recompute(student, amount)
            db.commit()
        except StaleDataError:
            db.rollback()
            LOG.warning("ledger update for student %s lost a concurrent race (attempt %d/%d)",
                        student_id, attempt, limit)
            continue
        except Exception:
            db.rollback()
            raise
        db.refresh(payment)
        return payment

    LOG.error("giving up on ledger update for student %s after %d attempts", student_id, limit)
    raise ConflictError(f"Payment for student {student_id} could not be recorded due to concurrent updates, "
                        f"please retry")


def collect(db: Session, student_id: int, amount, payment_method: str, payment_type: str,
            transaction_id: Optional[str] = None, notes: Optional[str] = None,
            collected_by: Optional[str] = None, paid_at: Optional[datetime] = None,
            retries: Optional[int] = None) -> models.Payment:
    """Record a fee collection and credit it to the student's ledger."""
    amount = ledger.money(amount)
    if amount <= ledger.ZERO:
        raise ValidationError("Payment amount must be greater than zero", {"amount": str(amount)})
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method '{payment_method}'",
                              {"payment_method": f"must be one of {', '.join(PAYMENT_METHODS)}"})
    if payment_type not in PAYMENT_TYPES:
        raise ValidationError(f"Invalid payment type '{payment_type}'",
                              {"payment_type": f"must be one of {', '.join(PAYMENT_TYPES)}"})

    payment = _record(db, student_id, amount, dict(
        payment_method=payment_method,
        payment_type=payment_type,
        transaction_id=transaction_id,
        notes=notes,
        collected_by=collected_by,
        paid_at=paid_at or datetime.utcnow(),
    ), retries)
    LOG.info("collected %s (%s, %s) from student %s, receipt %s",
             amount, payment_type, payment_method, student_id, payment.receipt_no)
    return payment


def adjust(db: Session, student_id: int, amount, reason: str, payment_method: str = "cash",
           transaction_id: Optional[str] = None, notes: Optional[str] = None,
           collected_by: Optional[str] = None, retries: Optional[int] = None) -> models.Payment:
    """Append a signed correction entry; negative amounts reverse earlier collections."""
    amount = ledger.money(amount)
    if amount == ledger.ZERO:
        raise ValidationError("Adjustment amount must not be zero", {"amount": str(amount)})
    if reason not in ADJUSTMENT_REASONS:
        raise ValidationError(f"Invalid adjustment reason '{reason}'",
                              {"reason": f"must be one of {', '.join(ADJUSTMENT_REASONS)}"})
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method '{payment_method}'",
                              {"payment_method": f"must be one of {', '.join(PAYMENT_METHODS)}"})

    payment = _record(db, student_id, amount, dict(
        payment_method=payment_method,
        payment_type=ADJUSTMENT,
        reason=reason,
        transaction_id=transaction_id,
        notes=notes,
        collected_by=collected_by,
        paid_at=datetime.utcnow(),
    ), retries)
    LOG.info("adjusted ledger of student %s by %s (%s), receipt %s",
             student_id, amount, reason, payment.receipt_no)
    return payment


def get_payment(db: Session, payment_id: int) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(models.Payment.id == payment_id).first()


def list_payments(db: Session, student_id: Optional[int] = None, branch_id: Optional[int] = None,
                  payment_type: Optional[str] = None, start: Optional[date] = None,
                  end: Optional[date] = None, skip: int = 0, limit: int = 100) -> List[models.Payment]:
    q = db.query(models.Payment)
    if student_id is not None:
        q = q.filter(models.Payment.student_id == student_id)
    if branch_id is not None:
        q = q.join(models.Student).filter(models.Student.branch_id == branch_id)
    if payment_type:
        q = q.filter(models.Payment.payment_type == payment_type)
    if start is not None:
        q = q.filter(models.Payment.paid_at >= datetime.combine(start, time.min))
    if end is not None:
        q = q.filter(models.Payment.paid_at <= datetime.combine(end, time.max))
    return q.order_by(models.Payment.paid_at.desc(), models.Payment.id.desc()).offset(skip).limit(limit).all()
