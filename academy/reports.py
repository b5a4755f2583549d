"""Financial and academic statements composed from the aggregates."""
from collections import OrderedDict
from datetime import date, timedelta
from typing import Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from academy import aggregates, models
from academy.config import settings
from academy.exceptions import ValidationError
from academy.ledger import ZERO, money


def month_starts(start: date, end: date) -> Iterator[date]:
    """First day of every calendar month touched by [start, end]."""
    current = start.replace(day=1)
    while current <= end:
        yield current
        current = (current + timedelta(days=32)).replace(day=1)


def month_end(first: date) -> date:
    return (first + timedelta(days=32)).replace(day=1) - timedelta(days=1)


def _check_filters(db: Session, branch_id: Optional[int] = None, batch_id: Optional[int] = None):
    if branch_id is not None:
        aggregates.require_branch(db, branch_id)
    if batch_id is not None:
        aggregates.require_batch(db, batch_id)


def monthly_trend(db: Session, branch_id: int, start: date, end: date) -> List[dict]:
    # whole calendar months, even where the range only covers part of one
    aggregates.check_range(start, end)
    aggregates.require_branch(db, branch_id)
    months = []
    for first in month_starts(start, end):
        last = month_end(first)
        income = aggregates.income_total(db, first, last, branch_id)
        expense = aggregates.expense_total(db, first, last, branch_id)
        months.append({
            "month": first.strftime("%Y-%m"),
            "income": income,
            "expense": expense,
            "profit_loss": income - expense,
        })
    return months


def consolidated_report(db: Session, start: date, end: date) -> dict:
    aggregates.check_range(start, end)
    branches = (
        db.query(models.Branch)
        .filter(models.Branch.is_active.is_(True))
        .order_by(models.Branch.id)
        .all()
    )
    summary = {
        "total_branches": len(branches),
        "total_income": ZERO,
        "total_expenses": ZERO,
        "total_profit_loss": ZERO,
        "total_students": 0,
        "total_batches": 0,
    }
    comparison = []
    for branch in branches:
        income = aggregates.income_total(db, start, end, branch.id)
        expenses = aggregates.expense_total(db, start, end, branch.id)
        students = aggregates.live_students(db).filter(models.Student.branch_id == branch.id).count()
        batches = len(branch.batches)

        summary["total_income"] += income
        summary["total_expenses"] += expenses
        summary["total_profit_loss"] += income - expenses
        summary["total_students"] += students
        summary["total_batches"] += batches

        comparison.append({
            "branch": {"id": branch.id, "name": branch.name, "code": branch.code, "location": branch.location},
            "income": income,
            "expenses": expenses,
            "profit_loss": income - expenses,
            "students": students,
            "batches": batches,
        })

    # best first; equal results keep branch id order
    comparison.sort(key=lambda row: (-row["profit_loss"], row["branch"]["id"]))
    return {
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "summary": summary,
        "branch_comparison": comparison,
        "top_performers": comparison[:settings.TOP_PERFORMERS],
    }


def outstanding_dues_report(db: Session, branch_id: Optional[int] = None,
                            batch_id: Optional[int] = None) -> dict:
    _check_filters(db, branch_id, batch_id)
    q = aggregates.live_students(db).filter(models.Student.due_amount > 0)
    if branch_id is not None:
        q = q.filter(models.Student.branch_id == branch_id)
    if batch_id is not None:
        q = q.filter(models.Student.batch_id == batch_id)
    students = q.order_by(models.Student.batch_id, models.Student.id).all()

    groups = OrderedDict()
    for s in students:
        group = groups.get(s.batch_id)
        if group is None:
            group = groups[s.batch_id] = {
                "batch_id": s.batch_id,
                "batch_name": s.batch.name if s.batch else "N/A",
                "total_students": 0,
                "total_dues": ZERO,
                "students": [],
            }
        group["total_students"] += 1
        group["total_dues"] += money(s.due_amount)
        group["students"].append({
            "id": s.id,
            "name": s.full_name,
            "course": s.course.name if s.course else "N/A",
            "branch": s.branch.name if s.branch else "N/A",
            "final_fee": s.final_fee,
            "paid_amount": s.paid_amount,
            "due_amount": s.due_amount,
            "payment_status": s.payment_status,
            "phone": s.phone,
            "email": s.email,
        })

    return {
        "filters": {"branch_id": branch_id, "batch_id": batch_id},
        "summary": {
            "total_students_with_dues": len(students),
            "total_outstanding_amount": sum((g["total_dues"] for g in groups.values()), ZERO),
        },
        "batch_wise_dues": list(groups.values()),
    }


def _entries(db: Session, model, date_column, start: date, end: date, branch_id: Optional[int]):
    q = db.query(model).filter(date_column >= start, date_column <= end)
    if branch_id is not None:
        q = q.filter(model.branch_id == branch_id)
    return q.order_by(date_column, model.id).all()


def _entry(row, date_field: str, kind_field: str) -> dict:
    return {
        "id": row.id,
        "branch_id": row.branch_id,
        "title": row.title,
        "amount": row.amount,
        kind_field: getattr(row, kind_field),
        "status": row.status,
        date_field: getattr(row, date_field).isoformat(),
    }


def daily_cashbook(db: Session, on: date, branch_id: Optional[int] = None) -> dict:
    _check_filters(db, branch_id)
    incomes = _entries(db, models.Income, models.Income.income_date, on, on, branch_id)
    expenses = _entries(db, models.Expense, models.Expense.expense_date, on, on, branch_id)
    total_income = sum((money(i.amount) for i in incomes), ZERO)
    total_expense = sum((money(e.amount) for e in expenses), ZERO)
    return {
        "date": on.isoformat(),
        "branch_id": branch_id,
        "summary": {
            "total_income": total_income,
            "total_expense": total_expense,
            "net_cash": total_income - total_expense,
        },
        "incomes": [_entry(i, "income_date", "type") for i in incomes],
        "expenses": [_entry(e, "expense_date", "category") for e in expenses],
    }


def income_vs_expense(db: Session, start: date, end: date, branch_id: Optional[int] = None) -> dict:
    aggregates.check_range(start, end)
    _check_filters(db, branch_id)
    incomes = _entries(db, models.Income, models.Income.income_date, start, end, branch_id)
    expenses = _entries(db, models.Expense, models.Expense.expense_date, start, end, branch_id)

    income_by_date = OrderedDict()
    for i in incomes:
        key = i.income_date.isoformat()
        income_by_date[key] = income_by_date.get(key, ZERO) + money(i.amount)
    expense_by_date = OrderedDict()
    for e in expenses:
        key = e.expense_date.isoformat()
        expense_by_date[key] = expense_by_date.get(key, ZERO) + money(e.amount)

    total_income = sum(income_by_date.values(), ZERO)
    total_expense = sum(expense_by_date.values(), ZERO)
    profit_loss = total_income - total_expense
    return {
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "branch_id": branch_id,
        "summary": {
            "total_income": total_income,
            "total_expense": total_expense,
            "profit_loss": profit_loss,
            "profit_margin": aggregates.profit_margin(total_income, profit_loss),
        },
        "trends": {"income_by_date": income_by_date, "expense_by_date": expense_by_date},
        "incomes": [_entry(i, "income_date", "type") for i in incomes],
        "expenses": [_entry(e, "expense_date", "category") for e in expenses],
    }


def profit_loss(db: Session, start: date, end: date, group_by: str = "overall") -> dict:
    aggregates.check_range(start, end)
    period = {"start_date": start.isoformat(), "end_date": end.isoformat()}
    if group_by == "overall":
        total_income = aggregates.income_total(db, start, end)
        total_expense = aggregates.expense_total(db, start, end)
        result = total_income - total_expense
        return {
            "type": "overall",
            "period": period,
            "summary": {
                "total_income": total_income,
                "total_expense": total_expense,
                "profit_loss": result,
                "profit_margin": aggregates.profit_margin(total_income, result),
            },
        }
    if group_by == "branch":
        rows = []
        for branch in db.query(models.Branch).order_by(models.Branch.id).all():
            figures = aggregates.branch_financials(db, branch.id, start, end)
            rows.append({"branch_id": branch.id, "branch_name": branch.name, "branch_code": branch.code,
                         "income": figures["total_income"], "expense": figures["total_expense"],
                         "profit_loss": figures["profit_loss"], "profit_margin": figures["profit_margin"]})
        total_income = sum((r["income"] for r in rows), ZERO)
        total_expense = sum((r["expense"] for r in rows), ZERO)
        result = total_income - total_expense
        return {
            "type": "branch_wise",
            "period": period,
            "summary": {
                "total_income": total_income,
                "total_expense": total_expense,
                "total_profit_loss": result,
                "total_profit_margin": aggregates.profit_margin(total_income, result),
            },
            "branches": rows,
        }
    raise ValidationError(f"Unsupported grouping '{group_by}'", {"group_by": "must be overall or branch"})


def branch_financial_report(db: Session, branch_id: int, start: date, end: date) -> dict:
    figures = aggregates.branch_financials(db, branch_id, start, end)
    branch = aggregates.require_branch(db, branch_id)

    admissions = aggregates.live_students(db).filter(
        models.Student.branch_id == branch_id,
        models.Student.admission_date >= start,
        models.Student.admission_date <= end,
    ).count()
    income_by_type = (
        db.query(models.Income.type, func.sum(models.Income.amount))
        .filter(models.Income.branch_id == branch_id,
                models.Income.income_date >= start, models.Income.income_date <= end)
        .group_by(models.Income.type)
        .order_by(models.Income.type)
        .all()
    )
    expense_by_category = (
        db.query(models.Expense.category, func.sum(models.Expense.amount))
        .filter(models.Expense.branch_id == branch_id,
                models.Expense.expense_date >= start, models.Expense.expense_date <= end)
        .group_by(models.Expense.category)
        .order_by(models.Expense.category)
        .all()
    )
    return {
        "branch": {"id": branch.id, "name": branch.name, "code": branch.code, "location": branch.location},
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "summary": dict(figures,
                        student_admissions=admissions,
                        outstanding_dues=aggregates.branch_outstanding_dues(db, branch_id)),
        "income_by_type": [{"type": t, "total": money(total)} for t, total in income_by_type],
        "expenses_by_category": [{"category": c, "total": money(total)} for c, total in expense_by_category],
        "monthly_trends": monthly_trend(db, branch_id, start, end),
    }


def batch_attendance_report(db: Session, batch_id: int, start: date, end: date) -> dict:
    aggregates.check_range(start, end)
    batch = aggregates.require_batch(db, batch_id)

    records = (
        db.query(models.Attendance)
        .filter(models.Attendance.batch_id == batch_id,
                models.Attendance.date >= start, models.Attendance.date <= end)
        .order_by(models.Attendance.student_id, models.Attendance.date)
        .all()
    )
    per_student = OrderedDict()
    for r in records:
        row = per_student.get(r.student_id)
        if row is None:
            row = per_student[r.student_id] = {
                "student_id": r.student_id,
                "student_name": r.student.full_name,
                "total_classes": 0,
                "present_count": 0,
                "absent_count": 0,
                "late_count": 0,
            }
        row["total_classes"] += 1
        row[f"{r.status}_count"] += 1

    summary = []
    for row in per_student.values():
        row["attendance_percentage"] = round(row["present_count"] / row["total_classes"] * 100, 2)
        summary.append(row)
    average = round(sum(r["attendance_percentage"] for r in summary) / len(summary), 2) if summary else 0

    return {
        "batch": {"id": batch.id, "name": batch.name, "course": batch.course.name},
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "attendance_summary": summary,
        "overall_stats": {"total_students": batch.current_students, "average_attendance": average},
    }


def enrollment_trend(db: Session, start: date, end: date, branch_id: Optional[int] = None) -> dict:
    aggregates.check_range(start, end)
    _check_filters(db, branch_id)
    q = (
        db.query(models.Course.name, models.Student.admission_date)
        .join(models.Course, models.Student.course_id == models.Course.id)
        .filter(models.Student.admission_date >= start, models.Student.admission_date <= end,
                models.Student.deleted_at.is_(None))
    )
    if branch_id is not None:
        q = q.filter(models.Student.branch_id == branch_id)

    trends = {}
    for course_name, admitted in q.all():
        month = admitted.strftime("%Y-%m")
        by_month = trends.setdefault(course_name, {})
        by_month[month] = by_month.get(month, 0) + 1
    return {
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "branch_id": branch_id,
        "trends": {course: dict(sorted(months.items())) for course, months in sorted(trends.items())},
    }
