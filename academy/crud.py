# academy/crud.py
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from academy import ledger, models, schemas
from academy.exceptions import ConflictError, NotFoundError, ValidationError

LOG = logging.getLogger(__name__)

BATCH_STATUSES = ("upcoming", "active", "completed", "cancelled")
STUDENT_STATUSES = ("active", "inactive", "completed", "dropped")
GENDERS = ("male", "female", "other")
ATTENDANCE_STATUSES = ("present", "absent", "late")
INCOME_TYPES = ("tuition", "other", "donation", "workshop", "course_sale")
INCOME_STATUSES = ("received", "pending", "cancelled")
EXPENSE_CATEGORIES = ("rent", "utilities", "salary", "supplies", "marketing", "maintenance", "other")
EXPENSE_STATUSES = ("paid", "pending", "cancelled")
MAX_BATCH_SIZE = 200

FEE_FIELDS = ("total_fee", "admission_fee", "discount_amount")


# ---------- HELPERS ----------
def _commit(db: Session, conflict_message: str):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(conflict_message)


def _require(db: Session, model, obj_id, label: str):
    obj = db.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} {obj_id} does not exist")
    return obj


def _check_choice(field: str, value, choices):
    if value is not None and value not in choices:
        raise ValidationError(f"Invalid {field} '{value}'", {field: f"must be one of {', '.join(choices)}"})


def _check_amount(value):
    if value is not None and ledger.money(value) < 0:
        raise ValidationError("Amount must not be negative", {"amount": "must be >= 0"})


# ---------- BRANCH CRUD ----------
def create_branch(db: Session, branch: schemas.BranchCreate) -> models.Branch:
    db_branch = models.Branch(**branch.model_dump())
    db.add(db_branch)
    _commit(db, f"Branch code '{branch.code}' is already taken")
    db.refresh(db_branch)
    return db_branch

def get_branch(db: Session, branch_id: int) -> Optional[models.Branch]:
    return db.query(models.Branch).filter(models.Branch.id == branch_id).first()

def list_branches(db: Session, search: Optional[str] = None, is_active: Optional[bool] = None,
                  skip: int = 0, limit: int = 100) -> List[models.Branch]:
    q = db.query(models.Branch)
    if is_active is not None:
        q = q.filter(models.Branch.is_active == is_active)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(models.Branch.name.ilike(like), models.Branch.code.ilike(like),
                         models.Branch.location.ilike(like)))
    return q.order_by(models.Branch.name).offset(skip).limit(limit).all()

def update_branch(db: Session, branch_id: int, updates: dict) -> Optional[models.Branch]:
    b = get_branch(db, branch_id)
    if not b:
        return None
    for k, v in updates.items():
        setattr(b, k, v)
    _commit(db, f"Branch code '{updates.get('code')}' is already taken")
    db.refresh(b)
    return b

def toggle_branch(db: Session, branch_id: int) -> Optional[models.Branch]:
    b = get_branch(db, branch_id)
    if not b:
        return None
    b.is_active = not b.is_active
    db.commit()
    db.refresh(b)
    return b

def delete_branch(db: Session, branch_id: int) -> bool:
    b = get_branch(db, branch_id)
    if not b:
        return False
    if b.students or b.batches or b.incomes or b.expenses:
        raise ValidationError("Cannot delete branch with students, batches or ledger entries")
    db.delete(b)
    db.commit()
    return True


# ---------- COURSE CRUD ----------
def create_course(db: Session, course: schemas.CourseCreate) -> models.Course:
    data = course.model_dump()
    _check_amount(data.get("total_fee"))
    _check_amount(data.get("admission_fee"))
    if data.get("branch_id") is not None:
        _require(db, models.Branch, data["branch_id"], "Branch")
    db_course = models.Course(**data)
    db.add(db_course)
    db.commit()
    db.refresh(db_course)
    return db_course

def get_course(db: Session, course_id: int) -> Optional[models.Course]:
    return db.query(models.Course).filter(models.Course.id == course_id).first()

def list_courses(db: Session, branch_id: Optional[int] = None, is_active: Optional[bool] = None,
                 skip: int = 0, limit: int = 100) -> List[models.Course]:
    q = db.query(models.Course)
    if branch_id is not None:
        q = q.filter(models.Course.branch_id == branch_id)
    if is_active is not None:
        q = q.filter(models.Course.is_active == is_active)
    return q.order_by(models.Course.name).offset(skip).limit(limit).all()

def update_course(db: Session, course_id: int, updates: dict) -> Optional[models.Course]:
    c = get_course(db, course_id)
    if not c:
        return None
    _check_amount(updates.get("total_fee"))
    _check_amount(updates.get("admission_fee"))
    if updates.get("branch_id") is not None:
        _require(db, models.Branch, updates["branch_id"], "Branch")
    for k, v in updates.items():
        setattr(c, k, v)
    db.commit()
    db.refresh(c)
    return c

def delete_course(db: Session, course_id: int) -> bool:
    c = get_course(db, course_id)
    if not c:
        return False
    if c.students or c.batches:
        raise ValidationError("Cannot delete course with enrolled students or batches")
    db.delete(c)
    db.commit()
    return True


# ---------- BATCH CRUD ----------
def _check_batch(db: Session, data: dict):
    _check_choice("status", data.get("status"), BATCH_STATUSES)
    if data["end_date"] <= data["start_date"]:
        raise ValidationError("Batch must end after it starts", {"end_date": "must be after start_date"})
    size = data.get("max_students")
    if size is None or not 1 <= size <= MAX_BATCH_SIZE:
        raise ValidationError("Invalid batch capacity", {"max_students": f"must be between 1 and {MAX_BATCH_SIZE}"})
    _require(db, models.Course, data["course_id"], "Course")
    _require(db, models.Branch, data["branch_id"], "Branch")

def create_batch(db: Session, batch: schemas.BatchCreate) -> models.Batch:
    data = batch.model_dump()
    _check_batch(db, data)
    db_batch = models.Batch(**data)
    db.add(db_batch)
    db.commit()
    db.refresh(db_batch)
    return db_batch

def get_batch(db: Session, batch_id: int) -> Optional[models.Batch]:
    return db.query(models.Batch).filter(models.Batch.id == batch_id).first()

def list_batches(db: Session, branch_id: Optional[int] = None, course_id: Optional[int] = None,
                 status: Optional[str] = None, is_active: Optional[bool] = None,
                 skip: int = 0, limit: int = 100) -> List[models.Batch]:
    q = db.query(models.Batch)
    if branch_id is not None:
        q = q.filter(models.Batch.branch_id == branch_id)
    if course_id is not None:
        q = q.filter(models.Batch.course_id == course_id)
    if status:
        q = q.filter(models.Batch.status == status)
    if is_active is not None:
        q = q.filter(models.Batch.is_active == is_active)
    return q.order_by(models.Batch.start_date.desc(), models.Batch.id.desc()).offset(skip).limit(limit).all()

def update_batch(db: Session, batch_id: int, updates: dict) -> Optional[models.Batch]:
    b = get_batch(db, batch_id)
    if not b:
        return None
    merged = {c: getattr(b, c) for c in ("course_id", "branch_id", "start_date", "end_date",
                                         "max_students", "status")}
    merged.update(updates)
    _check_batch(db, merged)
    if merged["max_students"] < b.current_students:
        raise ValidationError(f"Batch {batch_id} already has {b.current_students} students",
                              {"max_students": f"must be at least {b.current_students}"})
    for k, v in updates.items():
        setattr(b, k, v)
    db.commit()
    db.refresh(b)
    return b

def delete_batch(db: Session, batch_id: int) -> bool:
    b = get_batch(db, batch_id)
    if not b:
        return False
    if b.students:
        raise ValidationError("Cannot delete batch with enrolled students")
    db.delete(b)
    db.commit()
    return True


# ---------- STUDENT CRUD ----------
def _check_placement(db: Session, course_id: int, branch_id: int, batch_id: Optional[int],
                     student_id: Optional[int] = None):
    _require(db, models.Course, course_id, "Course")
    _require(db, models.Branch, branch_id, "Branch")
    if batch_id is None:
        return
    batch = _require(db, models.Batch, batch_id, "Batch")
    if batch.branch_id != branch_id:
        raise ValidationError(f"Batch {batch_id} does not belong to branch {branch_id}")
    if batch.course_id != course_id:
        raise ValidationError(f"Batch {batch_id} does not run course {course_id}")
    already_in = student_id is not None and any(s.id == student_id for s in batch.students)
    if batch.is_full and not already_in:
        raise ValidationError(f"Batch {batch_id} is full ({batch.max_students} students)")

def create_student(db: Session, student: schemas.StudentCreate) -> models.Student:
    data = student.model_dump()
    fees = {k: data.pop(k) for k in FEE_FIELDS}
    _check_choice("status", data.get("status"), STUDENT_STATUSES)
    _check_choice("gender", data.get("gender"), GENDERS)
    _check_placement(db, data["course_id"], data["branch_id"], data.get("batch_id"))
    if data.get("admission_date") is None:
        data["admission_date"] = date.today()

    db_student = models.Student(**data)
    ledger.enroll(db_student, fees["total_fee"], fees["admission_fee"], fees["discount_amount"] or 0)
    db.add(db_student)
    _commit(db, f"Email {student.email} is already registered")
    db.refresh(db_student)
    LOG.info("enrolled student %s in batch %s, final fee %s",
             db_student.id, db_student.batch_id, db_student.final_fee)
    return db_student

def get_student(db: Session, student_id: int, include_deleted: bool = False) -> Optional[models.Student]:
    q = db.query(models.Student).filter(models.Student.id == student_id)
    if not include_deleted:
        q = q.filter(models.Student.deleted_at.is_(None))
    return q.first()

def update_student(db: Session, student_id: int, updates: dict) -> Optional[models.Student]:
    s = get_student(db, student_id)
    if not s:
        return None
    fees = {k: updates.pop(k) for k in FEE_FIELDS if k in updates}
    _check_choice("status", updates.get("status"), STUDENT_STATUSES)
    _check_choice("gender", updates.get("gender"), GENDERS)
    if {"course_id", "branch_id", "batch_id"} & updates.keys():
        _check_placement(db, updates.get("course_id", s.course_id), updates.get("branch_id", s.branch_id),
                         updates.get("batch_id", s.batch_id), student_id=s.id)
    try:
        for k, v in updates.items():
            setattr(s, k, v)
        if fees:
            ledger.reprice(s,
                           fees.get("total_fee", s.total_fee),
                           fees.get("admission_fee", s.admission_fee),
                           fees.get("discount_amount", s.discount_amount))
        _commit(db, f"Email {updates.get('email')} is already registered")
    except StaleDataError:
        db.rollback()
        raise ConflictError(f"Student {student_id} was modified concurrently, retry the update")
    except Exception:
        db.rollback()
        raise
    db.refresh(s)
    return s

def delete_student(db: Session, student_id: int) -> bool:
    s = get_student(db, student_id)
    if not s:
        return False
    if s.payments:
        # payments reference the student; keep the row for the audit trail
        s.deleted_at = datetime.utcnow()
        s.status = "inactive"
        LOG.info("soft-deleted student %s with %d payments", s.id, len(s.payments))
    else:
        db.query(models.Attendance).filter(models.Attendance.student_id == s.id).delete(synchronize_session=False)
        db.delete(s)
    db.commit()
    return True

# list / query helpers
def list_students(db: Session, search: Optional[str] = None, status: Optional[str] = None,
                  course_id: Optional[int] = None, branch_id: Optional[int] = None,
                  batch_id: Optional[int] = None, payment_status: Optional[str] = None,
                  skip: int = 0, limit: int = 100) -> List[models.Student]:
    q = db.query(models.Student).filter(models.Student.deleted_at.is_(None))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(models.Student.first_name.ilike(like), models.Student.last_name.ilike(like),
                         models.Student.email.ilike(like), models.Student.phone.ilike(like)))
    if status:
        q = q.filter(models.Student.status == status)
    if course_id is not None:
        q = q.filter(models.Student.course_id == course_id)
    if branch_id is not None:
        q = q.filter(models.Student.branch_id == branch_id)
    if batch_id is not None:
        q = q.filter(models.Student.batch_id == batch_id)
    if payment_status:
        q = q.filter(models.Student.payment_status == payment_status)
    return q.order_by(models.Student.created_at.desc(), models.Student.id.desc()).offset(skip).limit(limit).all()


# ---------- ATTENDANCE ----------
def _upsert_attendance(db: Session, student_id: int, batch_id: int, on: date, status: str,
                       notes: Optional[str], marked_by: Optional[str]) -> models.Attendance:
    _check_choice("status", status, ATTENDANCE_STATUSES)
    student = get_student(db, student_id)
    if student is None:
        raise NotFoundError(f"Student {student_id} does not exist")
    if student.batch_id != batch_id:
        raise ValidationError(f"Student {student_id} is not enrolled in batch {batch_id}")

    record = db.query(models.Attendance).filter(
        models.Attendance.student_id == student_id,
        models.Attendance.batch_id == batch_id,
        models.Attendance.date == on,
    ).first()
    if record is None:
        record = models.Attendance(student_id=student_id, batch_id=batch_id, date=on)
        db.add(record)
    elif notes is None:
        notes = record.notes
    record.status = status
    record.notes = notes
    record.marked_by = marked_by
    record.marked_at = datetime.utcnow()
    return record

def mark_attendance(db: Session, mark: schemas.AttendanceMark, marked_by: Optional[str] = None) -> models.Attendance:
    _require(db, models.Batch, mark.batch_id, "Batch")
    try:
        record = _upsert_attendance(db, mark.student_id, mark.batch_id, mark.date, mark.status, mark.notes, marked_by)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    return record

def mark_batch_attendance(db: Session, mark: schemas.BatchAttendanceMark,
                          marked_by: Optional[str] = None) -> List[models.Attendance]:
    _require(db, models.Batch, mark.batch_id, "Batch")
    try:
        records = [
            _upsert_attendance(db, entry.student_id, mark.batch_id, mark.date, entry.status, entry.notes,
                               marked_by or "system")
            for entry in mark.attendance_data
        ]
        db.commit()
    except Exception:
        db.rollback()
        raise
    for r in records:
        db.refresh(r)
    return records

def get_attendance(db: Session, attendance_id: int) -> Optional[models.Attendance]:
    return db.query(models.Attendance).filter(models.Attendance.id == attendance_id).first()

def list_attendance(db: Session, batch_id: Optional[int] = None, student_id: Optional[int] = None,
                    on: Optional[date] = None, status: Optional[str] = None,
                    skip: int = 0, limit: int = 100) -> List[models.Attendance]:
    q = db.query(models.Attendance)
    if batch_id is not None:
        q = q.filter(models.Attendance.batch_id == batch_id)
    if student_id is not None:
        q = q.filter(models.Attendance.student_id == student_id)
    if on is not None:
        q = q.filter(models.Attendance.date == on)
    if status:
        q = q.filter(models.Attendance.status == status)
    return q.order_by(models.Attendance.date.desc(), models.Attendance.id).offset(skip).limit(limit).all()

def update_attendance(db: Session, attendance_id: int, updates: dict,
                      marked_by: Optional[str] = None) -> Optional[models.Attendance]:
    a = get_attendance(db, attendance_id)
    if not a:
        return None
    _check_choice("status", updates.get("status"), ATTENDANCE_STATUSES)
    for k, v in updates.items():
        setattr(a, k, v)
    a.marked_by = marked_by or a.marked_by
    a.marked_at = datetime.utcnow()
    db.commit()
    db.refresh(a)
    return a

def delete_attendance(db: Session, attendance_id: int) -> bool:
    a = get_attendance(db, attendance_id)
    if not a:
        return False
    db.delete(a)
    db.commit()
    return True


# ---------- INCOME CRUD ----------
def create_income(db: Session, income: schemas.IncomeCreate, recorded_by: Optional[str] = None) -> models.Income:
    data = income.model_dump()
    _check_amount(data["amount"])
    _check_choice("type", data.get("type"), INCOME_TYPES)
    _check_choice("status", data.get("status"), INCOME_STATUSES)
    _require(db, models.Branch, data["branch_id"], "Branch")
    data["amount"] = ledger.money(data["amount"])
    db_income = models.Income(**data, recorded_by=recorded_by)
    db.add(db_income)
    db.commit()
    db.refresh(db_income)
    return db_income

def get_income(db: Session, income_id: int) -> Optional[models.Income]:
    return db.query(models.Income).filter(models.Income.id == income_id).first()

def list_incomes(db: Session, branch_id: Optional[int] = None, start: Optional[date] = None,
                 end: Optional[date] = None, type: Optional[str] = None, status: Optional[str] = None,
                 skip: int = 0, limit: int = 100) -> List[models.Income]:
    q = db.query(models.Income)
    if branch_id is not None:
        q = q.filter(models.Income.branch_id == branch_id)
    if start is not None:
        q = q.filter(models.Income.income_date >= start)
    if end is not None:
        q = q.filter(models.Income.income_date <= end)
    if type:
        q = q.filter(models.Income.type == type)
    if status:
        q = q.filter(models.Income.status == status)
    return q.order_by(models.Income.income_date.desc(), models.Income.id.desc()).offset(skip).limit(limit).all()

def update_income(db: Session, income_id: int, updates: dict) -> Optional[models.Income]:
    i = get_income(db, income_id)
    if not i:
        return None
    _check_amount(updates.get("amount"))
    _check_choice("type", updates.get("type"), INCOME_TYPES)
    _check_choice("status", updates.get("status"), INCOME_STATUSES)
    if "amount" in updates:
        updates["amount"] = ledger.money(updates["amount"])
    for k, v in updates.items():
        setattr(i, k, v)
    db.commit()
    db.refresh(i)
    return i

def delete_income(db: Session, income_id: int) -> bool:
    i = get_income(db, income_id)
    if not i:
        return False
    db.delete(i)
    db.commit()
    return True


# ---------- EXPENSE CRUD ----------
def create_expense(db: Session, expense: schemas.ExpenseCreate, recorded_by: Optional[str] = None) -> models.Expense:
    data = expense.model_dump()
    _check_amount(data["amount"])
    _check_choice("category", data.get("category"), EXPENSE_CATEGORIES)
    _check_choice("status", data.get("status"), EXPENSE_STATUSES)
    _require(db, models.Branch, data["branch_id"], "Branch")
    data["amount"] = ledger.money(data["amount"])
    db_expense = models.Expense(**data, recorded_by=recorded_by)
    db.add(db_expense)
    db.commit()
    db.refresh(db_expense)
    return db_expense

def get_expense(db: Session, expense_id: int) -> Optional[models.Expense]:
    return db.query(models.Expense).filter(models.Expense.id == expense_id).first()

def list_expenses(db: Session, branch_id: Optional[int] = None, start: Optional[date] = None,
                  end: Optional[date] = None, category: Optional[str] = None, status: Optional[str] = None,
                  skip: int = 0, limit: int = 100) -> List[models.Expense]:
    q = db.query(models.Expense)
    if branch_id is not None:
        q = q.filter(models.Expense.branch_id == branch_id)
    if start is not None:
        q = q.filter(models.Expense.expense_date >= start)
    if end is not None:
        q = q.filter(models.Expense.expense_date <= end)
    if category:
        q = q.filter(models.Expense.category == category)
    if status:
        q = q.filter(models.Expense.status == status)
    return q.order_by(models.Expense.expense_date.desc(), models.Expense.id.desc()).offset(skip).limit(limit).all()

def update_expense(db: Session, expense_id: int, updates: dict) -> Optional[models.Expense]:
    e = get_expense(db, expense_id)
    if not e:
        return None
    _check_amount(updates.get("amount"))
    _check_choice("category", updates.get("category"), EXPENSE_CATEGORIES)
    _check_choice("status", updates.get("status"), EXPENSE_STATUSES)
    if "amount" in updates:
        updates["amount"] = ledger.money(updates["amount"])
    for k, v in updates.items():
        setattr(e, k, v)
    db.commit()
    db.refresh(e)
    return e

def delete_expense(db: Session, expense_id: int) -> bool:
    e = get_expense(db, expense_id)
    if not e:
        return False
    db.delete(e)
    db.commit()
    return True
