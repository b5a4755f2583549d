import re
import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from academy import crud, ledger, models, payments, schemas
from academy.db import init_db
from academy.exceptions import ConflictError, NotFoundError, ValidationError


def payment_count(db, student_id):
    return db.query(func.count(models.Payment.id)).filter(models.Payment.student_id == student_id).scalar()


def test_collect_in_two_installments(db, make_student):
    s = make_student(total_fee=10000)

    p = payments.collect(db, s.id, 4000, "cash", "admission", collected_by="u-acc")
    db.refresh(s)
    assert (s.paid_amount, s.due_amount, s.payment_status) == (Decimal("4000.00"), Decimal("6000.00"), "partial")
    assert p.collected_by == "u-acc"
    assert re.fullmatch(r"RCP-\d{4}-[0-9A-F]{8}", p.receipt_no)

    payments.collect(db, s.id, 6000, "bkash", "installment", transaction_id="TX123")
    db.refresh(s)
    assert (s.paid_amount, s.due_amount, s.payment_status) == (Decimal("10000.00"), Decimal("0.00"), "completed")
    assert [x.amount for x in s.payments] == [Decimal("4000.00"), Decimal("6000.00")]


def test_negative_amount_leaves_ledger_untouched(db, make_student):
    s = make_student(total_fee=10000)
    with pytest.raises(ValidationError):
        payments.collect(db, s.id, -100, "cash", "installment")
    db.refresh(s)
    assert s.paid_amount == Decimal("0.00")
    assert s.due_amount == Decimal("10000.00")
    assert payment_count(db, s.id) == 0


@pytest.mark.parametrize("method, ptype", [("cheque", "installment"), ("cash", "tuition")])
def test_unknown_method_or_type_is_rejected(db, make_student, method, ptype):
    s = make_student()
    with pytest.raises(ValidationError):
        payments.collect(db, s.id, 100, method, ptype)


def test_missing_student(db, academy):
    with pytest.raises(NotFoundError):
        payments.collect(db, 999, 100, "cash", "installment")


def test_inactive_student_cannot_pay(db, make_student):
    s = make_student(status="inactive")
    with pytest.raises(ValidationError) as exc:
        payments.collect(db, s.id, 100, "cash", "installment")
    assert not isinstance(exc.value, NotFoundError)


def test_soft_deleted_student_is_not_found(db, make_student):
    s = make_student()
    payments.collect(db, s.id, 100, "cash", "admission")
    crud.delete_student(db, s.id)
    with pytest.raises(NotFoundError):
        payments.collect(db, s.id, 100, "cash", "installment")


def test_failed_ledger_update_rolls_back_payment(db, make_student, monkeypatch):
    s = make_student()

    def broken(student, delta):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(ledger, "recompute", broken)
    with pytest.raises(RuntimeError):
        payments.collect(db, s.id, 500, "cash", "installment")
    assert payment_count(db, s.id) == 0
    db.refresh(s)
    assert s.paid_amount == Decimal("0.00")


def test_lost_races_give_up_with_conflict(db, make_student, monkeypatch):
    s = make_student()
    calls = []

    def always_stale(student, delta):
        calls.append(delta)
        raise StaleDataError("row version changed")

    monkeypatch.setattr(ledger, "recompute", always_stale)
    with pytest.raises(ConflictError):
        payments.collect(db, s.id, 500, "cash", "installment", retries=2)
    assert len(calls) == 2
    assert payment_count(db, s.id) == 0


def test_collect_reads_fresh_ledger_state(Session, make_student):
    s = make_student(total_fee=5000)
    first, second = Session(), Session()
    stale = first.get(models.Student, s.id)
    assert stale.paid_amount == Decimal("0.00")

    payments.collect(second, s.id, 1000, "cash", "installment")
    payments.collect(first, s.id, 1000, "cash", "installment")

    assert first.get(models.Student, s.id).paid_amount == Decimal("2000.00")
    first.close()
    second.close()


def test_concurrent_collections_do_not_lose_updates(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}",
                           connect_args={"check_same_thread": False, "timeout": 15})
    init_db(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = Session()
    branch = crud.create_branch(setup, schemas.BranchCreate(name="Uttara", code="UT01", location="Dhaka"))
    course = crud.create_course(setup, schemas.CourseCreate(name="Networking", total_fee=5000, branch_id=branch.id))
    student = crud.create_student(setup, schemas.StudentCreate(
        first_name="Race", last_name="Condition", email="race@example.com", phone="01800000000",
        course_id=course.id, branch_id=branch.id, admission_date=date(2024, 2, 1),
        total_fee=5000, admission_fee=0))
    student_id = student.id
    setup.close()

    barrier = threading.Barrier(2)
    errors = []

    def worker():
        session = Session()
        try:
            barrier.wait()
            payments.collect(session, student_id, 1000, "cash", "installment", retries=5)
        except Exception as exc:  # surfaced through the errors list
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    check = Session()
    s = check.get(models.Student, student_id)
    assert s.paid_amount == Decimal("2000.00")
    assert s.due_amount == Decimal("3000.00")
    assert payment_count(check, student_id) == 2
    check.close()
    engine.dispose()


def test_payments_are_append_only(db, make_student):
    s = make_student()
    p = payments.collect(db, s.id, 700, "cash", "admission")

    p.amount = 1
    with pytest.raises(ValidationError):
        db.commit()
    db.rollback()

    db.delete(p)
    with pytest.raises(ValidationError):
        db.commit()
    db.rollback()

    assert db.get(models.Payment, p.id).amount == Decimal("700.00")


def test_negative_adjustment_reverses_a_collection(db, make_student):
    s = make_student(total_fee=10000)
    payments.collect(db, s.id, 1000, "cash", "admission")

    adj = payments.adjust(db, s.id, -400, "refund", collected_by="u-mgr")
    assert adj.payment_type == "adjustment"
    assert adj.reason == "refund"
    assert adj.amount == Decimal("-400.00")
    db.refresh(s)
    assert s.paid_amount == Decimal("600.00")
    assert s.due_amount == Decimal("9400.00")
    assert s.payment_status == "partial"


def test_adjustment_cannot_take_paid_below_zero(db, make_student):
    s = make_student(total_fee=10000)
    payments.collect(db, s.id, 1000, "cash", "admission")
    with pytest.raises(ValidationError):
        payments.adjust(db, s.id, -1500, "reversal")
    assert payment_count(db, s.id) == 1
    db.refresh(s)
    assert s.paid_amount == Decimal("1000.00")


@pytest.mark.parametrize("amount, reason", [(0, "refund"), (-10, "goodwill")])
def test_adjustment_validation(db, make_student, amount, reason):
    s = make_student()
    with pytest.raises(ValidationError):
        payments.adjust(db, s.id, amount, reason)


def test_list_payments_filters(db, make_student):
    a, b = make_student(), make_student()
    payments.collect(db, a.id, 100, "cash", "admission")
    payments.collect(db, a.id, 200, "card", "installment")
    payments.collect(db, b.id, 300, "cash", "admission")

    assert len(payments.list_payments(db, student_id=a.id)) == 2
    assert [p.amount for p in payments.list_payments(db, payment_type="admission")] == \
        [Decimal("300.00"), Decimal("100.00")]
    assert payments.list_payments(db, start=date(2000, 1, 1), end=date(2000, 12, 31)) == []


def test_non_finite_amount_is_rejected(db, make_student):
    s = make_student()
    with pytest.raises(ValidationError):
        payments.collect(db, s.id, float("nan"), "cash", "installment")
    with pytest.raises(ValidationError):
        payments.adjust(db, s.id, float("-inf"), "correction")
    assert payment_count(db, s.id) == 0


def test_retry_budget_must_allow_one_attempt(db, make_student):
    s = make_student()
    with pytest.raises(ValidationError):
        payments.collect(db, s.id, 100, "cash", "installment", retries=0)
    assert payment_count(db, s.id) == 0

    payments.collect(db, s.id, 100, "cash", "installment", retries=1)
    assert payment_count(db, s.id) == 1


def test_non_finite_book_amount_is_rejected(db, academy):
    with pytest.raises(ValidationError):
        crud.create_income(db, schemas.IncomeCreate(
            branch_id=academy["branch"].id, title="Fees", amount=float("nan"), income_date=date(2024, 1, 1)))
