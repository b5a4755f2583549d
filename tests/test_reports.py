from datetime import date
from decimal import Decimal

import pytest

from academy import crud, payments, reports, schemas
from academy.config import settings
from academy.exceptions import NotFoundError, ValidationError


def income(db, branch_id, amount, day, type="tuition"):
    return crud.create_income(db, schemas.IncomeCreate(
        branch_id=branch_id, title="Income", amount=amount, type=type, income_date=day))


def expense(db, branch_id, amount, day, category="other"):
    return crud.create_expense(db, schemas.ExpenseCreate(
        branch_id=branch_id, title="Expense", amount=amount, category=category, expense_date=day))


def branch(db, code, is_active=True):
    return crud.create_branch(db, schemas.BranchCreate(name=f"Branch {code}", code=code, location="Chattogram",
                                                       is_active=is_active))


def test_month_starts_cover_partial_months():
    assert list(reports.month_starts(date(2024, 1, 31), date(2024, 3, 1))) == \
        [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
    assert list(reports.month_starts(date(2024, 12, 5), date(2025, 1, 2))) == [date(2024, 12, 1), date(2025, 1, 1)]


def test_monthly_trend_sums_whole_calendar_months(db, academy):
    bid = academy["branch"].id
    income(db, bid, 1000, date(2024, 1, 15))
    income(db, bid, 2000, date(2024, 2, 10))
    expense(db, bid, 500, date(2024, 2, 20))
    income(db, bid, 700, date(2024, 3, 31))

    trend = reports.monthly_trend(db, bid, date(2024, 1, 20), date(2024, 3, 5))
    assert [m["month"] for m in trend] == ["2024-01", "2024-02", "2024-03"]
    assert trend[0]["income"] == Decimal("1000.00")
    assert trend[1]["profit_loss"] == Decimal("1500.00")
    assert trend[2]["income"] == Decimal("700.00")
    assert trend[2]["expense"] == Decimal("0.00")


def test_monthly_trend_rejects_reversed_range(db, academy):
    with pytest.raises(ValidationError):
        reports.monthly_trend(db, academy["branch"].id, date(2024, 5, 1), date(2024, 4, 1))


def test_consolidated_report_ranks_active_branches(db, academy, monkeypatch):
    first = academy["branch"]
    second, third = branch(db, "CT01"), branch(db, "SY01")
    closed = branch(db, "KH01", is_active=False)
    day = date(2024, 4, 10)
    income(db, first.id, 5000, day)
    income(db, second.id, 9000, day)
    income(db, third.id, 5000, day)
    income(db, closed.id, 100000, day)

    report = reports.consolidated_report(db, date(2024, 4, 1), date(2024, 4, 30))
    assert report["summary"]["total_branches"] == 3
    assert report["summary"]["total_income"] == Decimal("19000.00")
    assert [row["branch"]["id"] for row in report["branch_comparison"]] == [second.id, first.id, third.id]

    monkeypatch.setattr(settings, "TOP_PERFORMERS", 2)
    report = reports.consolidated_report(db, date(2024, 4, 1), date(2024, 4, 30))
    assert [row["branch"]["code"] for row in report["top_performers"]] == ["CT01", "DH01"]


def test_outstanding_dues_grouped_by_batch(db, academy, make_student):
    owing = make_student(total_fee=8000)
    paid_up = make_student(total_fee=3000)
    unplaced = make_student(total_fee=2000, batch=False)
    payments.collect(db, owing.id, 3000, "cash", "admission")
    payments.collect(db, paid_up.id, 3000, "cash", "admission")

    report = reports.outstanding_dues_report(db, branch_id=academy["branch"].id)
    assert report["summary"]["total_students_with_dues"] == 2
    assert report["summary"]["total_outstanding_amount"] == Decimal("7000.00")

    groups = {g["batch_id"]: g for g in report["batch_wise_dues"]}
    assert groups[academy["batch"].id]["total_dues"] == Decimal("5000.00")
    assert [s["id"] for s in groups[academy["batch"].id]["students"]] == [owing.id]
    assert groups[None]["batch_name"] == "N/A"
    assert groups[None]["students"][0]["id"] == unplaced.id

    only_batch = reports.outstanding_dues_report(db, batch_id=academy["batch"].id)
    assert only_batch["summary"]["total_outstanding_amount"] == Decimal("5000.00")


def test_daily_cashbook(db, academy):
    bid = academy["branch"].id
    income(db, bid, 1200, date(2024, 5, 2))
    income(db, bid, 800, date(2024, 5, 2), type="workshop")
    expense(db, bid, 300, date(2024, 5, 2), category="supplies")
    expense(db, bid, 999, date(2024, 5, 3))

    book = reports.daily_cashbook(db, date(2024, 5, 2), bid)
    assert book["summary"] == {
        "total_income": Decimal("2000.00"),
        "total_expense": Decimal("300.00"),
        "net_cash": Decimal("1700.00"),
    }
    assert len(book["incomes"]) == 2
    assert book["expenses"][0]["category"] == "supplies"


def test_income_vs_expense(db, academy):
    bid = academy["branch"].id
    income(db, bid, 3000, date(2024, 6, 1))
    income(db, bid, 1000, date(2024, 6, 1))
    expense(db, bid, 1000, date(2024, 6, 2))

    result = reports.income_vs_expense(db, date(2024, 6, 1), date(2024, 6, 30), bid)
    assert result["summary"]["profit_loss"] == Decimal("3000.00")
    assert result["summary"]["profit_margin"] == 75.0
    assert result["trends"]["income_by_date"] == {"2024-06-01": Decimal("4000.00")}
    assert result["trends"]["expense_by_date"] == {"2024-06-02": Decimal("1000.00")}


def test_profit_loss_overall_and_by_branch(db, academy):
    other = branch(db, "RJ01")
    income(db, academy["branch"].id, 6000, date(2024, 7, 1))
    expense(db, other.id, 2000, date(2024, 7, 1))

    overall = reports.profit_loss(db, date(2024, 7, 1), date(2024, 7, 31))
    assert overall["summary"]["profit_loss"] == Decimal("4000.00")

    by_branch = reports.profit_loss(db, date(2024, 7, 1), date(2024, 7, 31), group_by="branch")
    rows = {r["branch_code"]: r for r in by_branch["branches"]}
    assert rows["DH01"]["profit_margin"] == 100.0
    assert rows["RJ01"]["profit_loss"] == Decimal("-2000.00")
    assert by_branch["summary"]["total_profit_loss"] == Decimal("4000.00")

    with pytest.raises(ValidationError):
        reports.profit_loss(db, date(2024, 7, 1), date(2024, 7, 31), group_by="course")


def test_branch_financial_report(db, academy, make_student):
    bid = academy["branch"].id
    make_student(total_fee=4000)
    income(db, bid, 1000, date(2024, 1, 3))
    income(db, bid, 500, date(2024, 1, 4), type="donation")
    expense(db, bid, 200, date(2024, 1, 5), category="rent")

    report = reports.branch_financial_report(db, bid, date(2024, 1, 1), date(2024, 1, 31))
    assert report["branch"]["code"] == "DH01"
    assert report["summary"]["profit_loss"] == Decimal("1300.00")
    assert report["summary"]["student_admissions"] == 1
    assert report["summary"]["outstanding_dues"] == Decimal("4000.00")
    assert report["income_by_type"] == [
        {"type": "donation", "total": Decimal("500.00")},
        {"type": "tuition", "total": Decimal("1000.00")},
    ]
    assert report["expenses_by_category"] == [{"category": "rent", "total": Decimal("200.00")}]
    assert len(report["monthly_trends"]) == 1

    with pytest.raises(NotFoundError):
        reports.branch_financial_report(db, 404, date(2024, 1, 1), date(2024, 1, 31))


def test_batch_attendance_report(db, academy, make_student):
    batch_id = academy["batch"].id
    students = [make_student() for _ in range(3)]
    for day, statuses in ((date(2024, 2, 1), ["present", "present", "absent"]),
                          (date(2024, 2, 2), ["present", "absent", "absent"])):
        crud.mark_batch_attendance(db, schemas.BatchAttendanceMark(
            batch_id=batch_id, date=day,
            attendance_data=[schemas.AttendanceEntry(student_id=s.id, status=st)
                             for s, st in zip(students, statuses)]))

    report = reports.batch_attendance_report(db, batch_id, date(2024, 2, 1), date(2024, 2, 29))
    assert [row["attendance_percentage"] for row in report["attendance_summary"]] == [100.0, 50.0, 0.0]
    assert report["overall_stats"] == {"total_students": 3, "average_attendance": 50.0}


def test_enrollment_trend(db, academy, make_student):
    make_student()
    make_student()
    make_student(admission_date=date(2024, 2, 3))

    result = reports.enrollment_trend(db, date(2024, 1, 1), date(2024, 3, 31))
    assert result["trends"] == {"Web Development": {"2024-01": 2, "2024-02": 1}}

    with pytest.raises(ValidationError):
        reports.enrollment_trend(db, date(2024, 3, 1), date(2024, 1, 1))


@pytest.mark.parametrize("call", [
    lambda db: reports.outstanding_dues_report(db, branch_id=9999),
    lambda db: reports.outstanding_dues_report(db, batch_id=9999),
    lambda db: reports.daily_cashbook(db, date(2024, 5, 2), branch_id=9999),
    lambda db: reports.income_vs_expense(db, date(2024, 6, 1), date(2024, 6, 30), branch_id=9999),
    lambda db: reports.enrollment_trend(db, date(2024, 1, 1), date(2024, 3, 31), branch_id=9999),
    lambda db: reports.monthly_trend(db, 9999, date(2024, 1, 1), date(2024, 3, 31)),
])
def test_unknown_filter_ids_are_not_found(db, academy, call):
    with pytest.raises(NotFoundError):
        call(db)
