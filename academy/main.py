# academy/main.py
import logging
from datetime import date
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from academy import aggregates, crud, db, payments, policy, reports, schemas
from academy.config import settings
from academy.exceptions import AcademyError, AuthenticationError

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
LOG = logging.getLogger(__name__)

app = FastAPI(title="Academy Billing API")


# dependency
def get_db():
    db_session = db.SessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()


def get_actor(x_user_id: Optional[str] = Header(None), x_user_role: Optional[str] = Header(None)) -> schemas.Actor:
    if not x_user_role:
        raise AuthenticationError("X-User-Role header is required")
    if x_user_role not in policy.ROLES:
        raise AuthenticationError(f"Unknown role '{x_user_role}'")
    return schemas.Actor(id=x_user_id, role=x_user_role)


def require(resource: str, action: str):
    def dependency(actor: schemas.Actor = Depends(get_actor)) -> schemas.Actor:
        policy.authorize(actor.role, resource, action)
        return actor
    return dependency


def period(start_date: Optional[date] = None, end_date: Optional[date] = None):
    # month to date unless told otherwise
    end = end_date or date.today()
    return start_date or end.replace(day=1), end


@app.exception_handler(AcademyError)
def academy_error_handler(request: Request, exc: AcademyError):
    if exc.status_code >= 500:
        LOG.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "errors": exc.details})


@app.on_event("startup")
def startup():
    db.init_db()


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


# ---------- Branch endpoints ----------
@app.post("/branches/", response_model=schemas.BranchOut)
def create_branch(branch: schemas.BranchCreate, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("branches", "create"))):
    return crud.create_branch(database, branch)

@app.get("/branches/", response_model=List[schemas.BranchOut])
def list_branches(search: Optional[str] = None, is_active: Optional[bool] = None, skip: int = 0, limit: int = 100,
                  database: Session = Depends(get_db), actor: schemas.Actor = Depends(require("branches", "read"))):
    return crud.list_branches(database, search, is_active, skip, limit)

@app.get("/branches/{branch_id}", response_model=schemas.BranchOut)
def read_branch(branch_id: int, database: Session = Depends(get_db),
                actor: schemas.Actor = Depends(require("branches", "read"))):
    b = crud.get_branch(database, branch_id)
    if not b:
        raise HTTPException(status_code=404, detail="Branch not found")
    return b

@app.patch("/branches/{branch_id}", response_model=schemas.BranchOut)
def patch_branch(branch_id: int, updates: schemas.BranchUpdate, database: Session = Depends(get_db),
                 actor: schemas.Actor = Depends(require("branches", "update"))):
    b = crud.update_branch(database, branch_id, updates.model_dump(exclude_none=True))
    if not b:
        raise HTTPException(status_code=404, detail="Branch not found")
    return b

@app.patch("/branches/{branch_id}/toggle-status", response_model=schemas.BranchOut)
def toggle_branch(branch_id: int, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("branches", "update"))):
    b = crud.toggle_branch(database, branch_id)
    if not b:
        raise HTTPException(status_code=404, detail="Branch not found")
    return b

@app.delete("/branches/{branch_id}")
def remove_branch(branch_id: int, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("branches", "delete"))):
    if not crud.delete_branch(database, branch_id):
        raise HTTPException(status_code=404, detail="Branch not found")
    return {"ok": True}

@app.get("/branches/{branch_id}/statistics")
def branch_statistics(branch_id: int, database: Session = Depends(get_db),
                      actor: schemas.Actor = Depends(require("branches", "read"))):
    return aggregates.branch_statistics(database, branch_id)

@app.get("/branches/{branch_id}/financials")
def branch_financials(branch_id: int, dates=Depends(period), database: Session = Depends(get_db),
                      actor: schemas.Actor = Depends(require("reports", "read"))):
    start, end = dates
    return aggregates.branch_financials(database, branch_id, start, end)


# ---------- Course endpoints ----------
@app.post("/courses/", response_model=schemas.CourseOut)
def create_course(course: schemas.CourseCreate, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("courses", "create"))):
    return crud.create_course(database, course)

@app.get("/courses/", response_model=List[schemas.CourseOut])
def list_courses(branch_id: Optional[int] = None, is_active: Optional[bool] = None, skip: int = 0, limit: int = 100,
                 database: Session = Depends(get_db), actor: schemas.Actor = Depends(require("courses", "read"))):
    return crud.list_courses(database, branch_id, is_active, skip, limit)

@app.get("/courses/{course_id}", response_model=schemas.CourseOut)
def read_course(course_id: int, database: Session = Depends(get_db),
                actor: schemas.Actor = Depends(require("courses", "read"))):
    c = crud.get_course(database, course_id)
    if not c:
        raise HTTPException(status_code=404, detail="Course not found")
    return c

@app.patch("/courses/{course_id}", response_model=schemas.CourseOut)
def patch_course(course_id: int, updates: schemas.CourseUpdate, database: Session = Depends(get_db),
                 actor: schemas.Actor = Depends(require("courses", "update"))):
    c = crud.update_course(database, course_id, updates.model_dump(exclude_none=True))
    if not c:
        raise HTTPException(status_code=404, detail="Course not found")
    return c

@app.delete("/courses/{course_id}")
def remove_course(course_id: int, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("courses", "delete"))):
    if not crud.delete_course(database, course_id):
        raise HTTPException(status_code=404, detail="Course not found")
    return {"ok": True}


# ---------- Batch endpoints ----------
@app.post("/batches/", response_model=schemas.BatchOut)
def create_batch(batch: schemas.BatchCreate, database: Session = Depends(get_db),
                 actor: schemas.Actor = Depends(require("batches", "create"))):
    return crud.create_batch(database, batch)

@app.get("/batches/", response_model=List[schemas.BatchOut])
def list_batches(branch_id: Optional[int] = None, course_id: Optional[int] = None, status: Optional[str] = None,
                 is_active: Optional[bool] = None, skip: int = 0, limit: int = 100,
                 database: Session = Depends(get_db), actor: schemas.Actor = Depends(require("batches", "read"))):
    return crud.list_batches(database, branch_id, course_id, status, is_active, skip, limit)

@app.get("/batches/{batch_id}", response_model=schemas.BatchOut)
def read_batch(batch_id: int, database: Session = Depends(get_db),
               actor: schemas.Actor = Depends(require("batches", "read"))):
    b = crud.get_batch(database, batch_id)
    if not b:
        raise HTTPException(status_code=404, detail="Batch not found")
    return b

@app.patch("/batches/{batch_id}", response_model=schemas.BatchOut)
def patch_batch(batch_id: int, updates: schemas.BatchUpdate, database: Session = Depends(get_db),
                actor: schemas.Actor = Depends(require("batches", "update"))):
    b = crud.update_batch(database, batch_id, updates.model_dump(exclude_none=True))
    if not b:
        raise HTTPException(status_code=404, detail="Batch not found")
    return b

@app.delete("/batches/{batch_id}")
def remove_batch(batch_id: int, database: Session = Depends(get_db),
                 actor: schemas.Actor = Depends(require("batches", "delete"))):
    if not crud.delete_batch(database, batch_id):
        raise HTTPException(status_code=404, detail="Batch not found")
    return {"ok": True}

@app.get("/batches/{batch_id}/statistics")
def batch_statistics(batch_id: int, database: Session = Depends(get_db),
                     actor: schemas.Actor = Depends(require("batches", "read"))):
    return aggregates.batch_statistics(database, batch_id)

@app.get("/batches/{batch_id}/attendance")
def batch_attendance(batch_id: int, on: Optional[date] = Query(None, alias="date"),
                     database: Session = Depends(get_db),
                     actor: schemas.Actor = Depends(require("attendance", "read"))):
    return aggregates.batch_attendance_stats(database, batch_id, on or date.today())


# ---------- Student endpoints ----------
@app.post("/students/", response_model=schemas.StudentOut)
def create_student(student: schemas.StudentCreate, database: Session = Depends(get_db),
                   actor: schemas.Actor = Depends(require("students", "create"))):
    return crud.create_student(database, student)

@app.get("/students/", response_model=List[schemas.StudentOut])
def list_students(search: Optional[str] = None, status: Optional[str] = None, course_id: Optional[int] = None,
                  branch_id: Optional[int] = None, batch_id: Optional[int] = None,
                  payment_status: Optional[str] = None, skip: int = 0, limit: int = 100,
                  database: Session = Depends(get_db), actor: schemas.Actor = Depends(require("students", "read"))):
    return crud.list_students(database, search, status, course_id, branch_id, batch_id, payment_status, skip, limit)

@app.get("/students/{student_id}", response_model=schemas.StudentOut)
def read_student(student_id: int, database: Session = Depends(get_db),
                 actor: schemas.Actor = Depends(require("students", "read"))):
    s = crud.get_student(database, student_id)
    if not s:
        raise HTTPException(status_code=404, detail="Student not found")
    return s

@app.patch("/students/{student_id}", response_model=schemas.StudentOut)
def patch_student(student_id: int, updates: schemas.StudentUpdate, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("students", "update"))):
    s = crud.update_student(database, student_id, updates.model_dump(exclude_none=True))
    if not s:
        raise HTTPException(status_code=404, detail="Student not found")
    return s

@app.delete("/students/{student_id}")
def remove_student(student_id: int, database: Session = Depends(get_db),
                   actor: schemas.Actor = Depends(require("students", "delete"))):
    if not crud.delete_student(database, student_id):
        raise HTTPException(status_code=404, detail="Student not found")
    return {"ok": True}

@app.get("/students/{student_id}/payments", response_model=List[schemas.PaymentOut])
def student_payments(student_id: int, skip: int = 0, limit: int = 100, database: Session = Depends(get_db),
                     actor: schemas.Actor = Depends(require("payments", "read"))):
    if not crud.get_student(database, student_id, include_deleted=True):
        raise HTTPException(status_code=404, detail="Student not found")
    return payments.list_payments(database, student_id=student_id, skip=skip, limit=limit)


# ---------- Payment endpoints ----------
@app.post("/payments/", response_model=schemas.PaymentOut)
def collect_payment(payment: schemas.PaymentCreate, database: Session = Depends(get_db),
                    actor: schemas.Actor = Depends(require("payments", "create"))):
    return payments.collect(database, collected_by=actor.id, **payment.model_dump())

@app.post("/payments/adjustments", response_model=schemas.PaymentOut)
def adjust_payment(adjustment: schemas.AdjustmentCreate, database: Session = Depends(get_db),
                   actor: schemas.Actor = Depends(require("payments", "adjust"))):
    return payments.adjust(database, collected_by=actor.id, **adjustment.model_dump(exclude_none=True))

@app.get("/payments/", response_model=List[schemas.PaymentOut])
def list_payments(student_id: Optional[int] = None, branch_id: Optional[int] = None,
                  payment_type: Optional[str] = None, start_date: Optional[date] = None,
                  end_date: Optional[date] = None, skip: int = 0, limit: int = 100,
                  database: Session = Depends(get_db), actor: schemas.Actor = Depends(require("payments", "read"))):
    return payments.list_payments(database, student_id, branch_id, payment_type, start_date, end_date, skip, limit)

@app.get("/payments/{payment_id}", response_model=schemas.PaymentOut)
def read_payment(payment_id: int, database: Session = Depends(get_db),
                 actor: schemas.Actor = Depends(require("payments", "read"))):
    p = payments.get_payment(database, payment_id)
    if not p:
        raise HTTPException(status_code=404, detail="Payment not found")
    return p


# ---------- Attendance endpoints ----------
@app.post("/attendance/", response_model=schemas.AttendanceOut)
def mark_attendance(mark: schemas.AttendanceMark, database: Session = Depends(get_db),
                    actor: schemas.Actor = Depends(require("attendance", "create"))):
    return crud.mark_attendance(database, mark, marked_by=actor.id)

@app.post("/attendance/batch", response_model=List[schemas.AttendanceOut])
def mark_batch_attendance(mark: schemas.BatchAttendanceMark, database: Session = Depends(get_db),
                          actor: schemas.Actor = Depends(require("attendance", "create"))):
    return crud.mark_batch_attendance(database, mark, marked_by=actor.id)

@app.get("/attendance/", response_model=List[schemas.AttendanceOut])
def list_attendance(batch_id: Optional[int] = None, student_id: Optional[int] = None,
                    on: Optional[date] = Query(None, alias="date"), status: Optional[str] = None,
                    skip: int = 0, limit: int = 100, database: Session = Depends(get_db),
                    actor: schemas.Actor = Depends(require("attendance", "read"))):
    return crud.list_attendance(database, batch_id, student_id, on, status, skip, limit)

@app.get("/attendance/{attendance_id}", response_model=schemas.AttendanceOut)
def read_attendance(attendance_id: int, database: Session = Depends(get_db),
                    actor: schemas.Actor = Depends(require("attendance", "read"))):
    a = crud.get_attendance(database, attendance_id)
    if not a:
        raise HTTPException(status_code=404, detail="Attendance record not found")
    return a

@app.patch("/attendance/{attendance_id}", response_model=schemas.AttendanceOut)
def patch_attendance(attendance_id: int, updates: schemas.AttendanceUpdate, database: Session = Depends(get_db),
                     actor: schemas.Actor = Depends(require("attendance", "update"))):
    a = crud.update_attendance(database, attendance_id, updates.model_dump(exclude_none=True), marked_by=actor.id)
    if not a:
        raise HTTPException(status_code=404, detail="Attendance record not found")
    return a

@app.delete("/attendance/{attendance_id}")
def remove_attendance(attendance_id: int, database: Session = Depends(get_db),
                      actor: schemas.Actor = Depends(require("attendance", "delete"))):
    if not crud.delete_attendance(database, attendance_id):
        raise HTTPException(status_code=404, detail="Attendance record not found")
    return {"ok": True}


# ---------- Income endpoints ----------
@app.post("/incomes/", response_model=schemas.IncomeOut)
def create_income(income: schemas.IncomeCreate, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("incomes", "create"))):
    return crud.create_income(database, income, recorded_by=actor.id)

@app.get("/incomes/", response_model=List[schemas.IncomeOut])
def list_incomes(branch_id: Optional[int] = None, start_date: Optional[date] = None,
                 end_date: Optional[date] = None, type: Optional[str] = None, status: Optional[str] = None,
                 skip: int = 0, limit: int = 100, database: Session = Depends(get_db),
                 actor: schemas.Actor = Depends(require("incomes", "read"))):
    return crud.list_incomes(database, branch_id, start_date, end_date, type, status, skip, limit)

@app.get("/incomes/{income_id}", response_model=schemas.IncomeOut)
def read_income(income_id: int, database: Session = Depends(get_db),
                actor: schemas.Actor = Depends(require("incomes", "read"))):
    i = crud.get_income(database, income_id)
    if not i:
        raise HTTPException(status_code=404, detail="Income not found")
    return i

@app.patch("/incomes/{income_id}", response_model=schemas.IncomeOut)
def patch_income(income_id: int, updates: schemas.IncomeUpdate, database: Session = Depends(get_db),
                 actor: schemas.Actor = Depends(require("incomes", "update"))):
    i = crud.update_income(database, income_id, updates.model_dump(exclude_none=True))
    if not i:
        raise HTTPException(status_code=404, detail="Income not found")
    return i

@app.delete("/incomes/{income_id}")
def remove_income(income_id: int, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("incomes", "delete"))):
    if not crud.delete_income(database, income_id):
        raise HTTPException(status_code=404, detail="Income not found")
    return {"ok": True}


# ---------- Expense endpoints ----------
@app.post("/expenses/", response_model=schemas.ExpenseOut)
def create_expense(expense: schemas.ExpenseCreate, database: Session = Depends(get_db),
                   actor: schemas.Actor = Depends(require("expenses", "create"))):
    return crud.create_expense(database, expense, recorded_by=actor.id)

@app.get("/expenses/", response_model=List[schemas.ExpenseOut])
def list_expenses(branch_id: Optional[int] = None, start_date: Optional[date] = None,
                  end_date: Optional[date] = None, category: Optional[str] = None, status: Optional[str] = None,
                  skip: int = 0, limit: int = 100, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("expenses", "read"))):
    return crud.list_expenses(database, branch_id, start_date, end_date, category, status, skip, limit)

@app.get("/expenses/{expense_id}", response_model=schemas.ExpenseOut)
def read_expense(expense_id: int, database: Session = Depends(get_db),
                 actor: schemas.Actor = Depends(require("expenses", "read"))):
    e = crud.get_expense(database, expense_id)
    if not e:
        raise HTTPException(status_code=404, detail="Expense not found")
    return e

@app.patch("/expenses/{expense_id}", response_model=schemas.ExpenseOut)
def patch_expense(expense_id: int, updates: schemas.ExpenseUpdate, database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("expenses", "update"))):
    e = crud.update_expense(database, expense_id, updates.model_dump(exclude_none=True))
    if not e:
        raise HTTPException(status_code=404, detail="Expense not found")
    return e

@app.delete("/expenses/{expense_id}")
def remove_expense(expense_id: int, database: Session = Depends(get_db),
                   actor: schemas.Actor = Depends(require("expenses", "delete"))):
    if not crud.delete_expense(database, expense_id):
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"ok": True}


# ---------- Report endpoints ----------
@app.get("/reports/consolidated")
def consolidated_report(dates=Depends(period), database: Session = Depends(get_db),
                        actor: schemas.Actor = Depends(require("reports", "read"))):
    start, end = dates
    return reports.consolidated_report(database, start, end)

@app.get("/reports/outstanding-dues")
def outstanding_dues(branch_id: Optional[int] = None, batch_id: Optional[int] = None,
                     database: Session = Depends(get_db), actor: schemas.Actor = Depends(require("reports", "read"))):
    return reports.outstanding_dues_report(database, branch_id, batch_id)

@app.get("/reports/daily-cashbook")
def daily_cashbook(on: Optional[date] = Query(None, alias="date"), branch_id: Optional[int] = None,
                   database: Session = Depends(get_db), actor: schemas.Actor = Depends(require("reports", "read"))):
    return reports.daily_cashbook(database, on or date.today(), branch_id)

@app.get("/reports/income-vs-expense")
def income_vs_expense(branch_id: Optional[int] = None, dates=Depends(period), database: Session = Depends(get_db),
                      actor: schemas.Actor = Depends(require("reports", "read"))):
    start, end = dates
    return reports.income_vs_expense(database, start, end, branch_id)

@app.get("/reports/profit-loss")
def profit_loss(group_by: str = Query("overall", pattern="^(overall|branch)$"), dates=Depends(period),
                database: Session = Depends(get_db), actor: schemas.Actor = Depends(require("reports", "read"))):
    start, end = dates
    return reports.profit_loss(database, start, end, group_by)

@app.get("/reports/enrollment-trend")
def enrollment_trend(branch_id: Optional[int] = None, dates=Depends(period), database: Session = Depends(get_db),
                     actor: schemas.Actor = Depends(require("reports", "read"))):
    start, end = dates
    return reports.enrollment_trend(database, start, end, branch_id)

@app.get("/reports/branches/{branch_id}/monthly-trend")
def monthly_trend(branch_id: int, dates=Depends(period), database: Session = Depends(get_db),
                  actor: schemas.Actor = Depends(require("reports", "read"))):
    start, end = dates
    return reports.monthly_trend(database, branch_id, start, end)

@app.get("/reports/branches/{branch_id}/financial")
def branch_financial_report(branch_id: int, dates=Depends(period), database: Session = Depends(get_db),
                            actor: schemas.Actor = Depends(require("reports", "read"))):
    start, end = dates
    return reports.branch_financial_report(database, branch_id, start, end)

@app.get("/reports/batches/{batch_id}/attendance")
def batch_attendance_report(batch_id: int, dates=Depends(period), database: Session = Depends(get_db),
                            actor: schemas.Actor = Depends(require("reports", "read"))):
    start, end = dates
    return reports.batch_attendance_report(database, batch_id, start, end)


if __name__ == "__main__":
    uvicorn.run("academy.main:app", host="127.0.0.1", port=8000)
