"""Read-only rollups over the fee ledger, attendance and income/expense books.

Nothing computed here is stored. Each function issues plain SELECTs and is
safe to run alongside payment writes.
"""
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from academy import models
from academy.exceptions import NotFoundError, ValidationError
from academy.ledger import ZERO, money


def require_batch(db: Session, batch_id: int) -> models.Batch:
    batch = db.get(models.Batch, batch_id)
    if batch is None:
        raise NotFoundError(f"Batch {batch_id} does not exist")
    return batch


def require_branch(db: Session, branch_id: int) -> models.Branch:
    branch = db.get(models.Branch, branch_id)
    if branch is None:
        raise NotFoundError(f"Branch {branch_id} does not exist")
    return branch


def check_range(start: date, end: date):
    if end < start:
        raise ValidationError("End date must not be before start date",
                              {"start_date": str(start), "end_date": str(end)})


def live_students(db: Session):
    return db.query(models.Student).filter(models.Student.deleted_at.is_(None))


def _sum(db: Session, column, *criteria) -> Decimal:
    total = db.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar()
    return money(total)


def profit_margin(income: Decimal, profit_loss: Decimal) -> float:
    if income == ZERO:
        return 0
    return round(float(profit_loss / income * 100), 2)


# ---------- attendance ----------
def attendance_counts(db: Session, batch_id: int, on: date) -> dict:
    rows = (
        db.query(models.Attendance.status, func.count(models.Attendance.id))
        .filter(models.Attendance.batch_id == batch_id, models.Attendance.date == on)
        .group_by(models.Attendance.status)
        .all()
    )
    counts = {"present": 0, "absent": 0, "late": 0}
    counts.update({status: n for status, n in rows})
    return counts


def attendance_rate(db: Session, batch_id: int, on: date) -> float:
    """Share of present marks among all marks for the batch on one day, in percent."""
    counts = attendance_counts(db, batch_id, on)
    marked = counts["present"] + counts["absent"] + counts["late"]
    if marked == 0:
        return 0
    return round(counts["present"] / marked * 100, 1)


def overall_attendance_rate(db: Session, batch_id: int) -> float:
    total = db.query(func.count(models.Attendance.id)).filter(models.Attendance.batch_id == batch_id).scalar()
    if not total:
        return 0
    present = db.query(func.count(models.Attendance.id)).filter(
        models.Attendance.batch_id == batch_id, models.Attendance.status == "present").scalar()
    return round(present / total * 100, 1)


def batch_attendance_stats(db: Session, batch_id: int, on: date) -> dict:
    batch = require_batch(db, batch_id)
    counts = attendance_counts(db, batch.id, on)
    return {
        "total_students": batch.current_students,
        "present_count": counts["present"],
        "absent_count": counts["absent"],
        "late_count": counts["late"],
        "attendance_rate": attendance_rate(db, batch.id, on),
        "date": on.isoformat(),
    }


# ---------- batch money ----------
def batch_income(db: Session, batch_id: int) -> Decimal:
    """Billed income: the sum of final fees, not of collections."""
    return _sum(db, models.Student.final_fee,
                models.Student.batch_id == batch_id, models.Student.deleted_at.is_(None))


def batch_collected(db: Session, batch_id: int) -> Decimal:
    return _sum(db, models.Student.paid_amount,
                models.Student.batch_id == batch_id, models.Student.deleted_at.is_(None))


def batch_pending_dues(db: Session, batch_id: int) -> Decimal:
    return _sum(db, models.Student.due_amount,
                models.Student.batch_id == batch_id, models.Student.deleted_at.is_(None))


def batch_statistics(db: Session, batch_id: int) -> dict:
    batch = require_batch(db, batch_id)
    return {
        "batch_id": batch.id,
        "total_students": batch.current_students,
        "capacity_percentage": batch.capacity_percentage,
        "attendance_rate": overall_attendance_rate(db, batch.id),
        "total_income": batch_income(db, batch.id),
        "collected_income": batch_collected(db, batch.id),
        "pending_dues": batch_pending_dues(db, batch.id),
    }


# ---------- branch money ----------
def income_total(db: Session, start: date, end: date, branch_id: Optional[int] = None) -> Decimal:
    criteria = [models.Income.income_date >= start, models.Income.income_date <= end]
    if branch_id is not None:
        criteria.append(models.Income.branch_id == branch_id)
    return _sum(db, models.Income.amount, *criteria)


def expense_total(db: Session, start: date, end: date, branch_id: Optional[int] = None) -> Decimal:
    criteria = [models.Expense.expense_date >= start, models.Expense.expense_date <= end]
    if branch_id is not None:
        criteria.append(models.Expense.branch_id == branch_id)
    return _sum(db, models.Expense.amount, *criteria)


def branch_financials(db: Session, branch_id: int, start: date, end: date) -> dict:
    check_range(start, end)
    branch = require_branch(db, branch_id)
    total_income = income_total(db, start, end, branch.id)
    total_expense = expense_total(db, start, end, branch.id)
    profit_loss = total_income - total_expense
    return {
        "total_income": total_income,
        "total_expense": total_expense,
        "profit_loss": profit_loss,
        "profit_margin": profit_margin(total_income, profit_loss),
    }


def branch_outstanding_dues(db: Session, branch_id: int) -> Decimal:
    return _sum(db, models.Student.due_amount,
                models.Student.branch_id == branch_id, models.Student.deleted_at.is_(None))


def branch_statistics(db: Session, branch_id: int) -> dict:
    branch = require_branch(db, branch_id)
    students = live_students(db).filter(models.Student.branch_id == branch.id)
    batches = db.query(models.Batch).filter(models.Batch.branch_id == branch.id)
    courses = db.query(models.Course).filter(models.Course.branch_id == branch.id)
    return {
        "students": {
            "total": students.count(),
            "active": students.filter(models.Student.status == "active").count(),
            "inactive": students.filter(models.Student.status == "inactive").count(),
        },
        "batches": {
            "total": batches.count(),
            "active": batches.filter(models.Batch.status == "active").count(),
            "upcoming": batches.filter(models.Batch.status == "upcoming").count(),
            "completed": batches.filter(models.Batch.status == "completed").count(),
        },
        "courses": {
            "total": courses.count(),
            "active": courses.filter(models.Course.is_active.is_(True)).count(),
        },
        "outstanding_dues": branch_outstanding_dues(db, branch.id),
    }
