# academy/schemas.py
from pydantic import BaseModel, EmailStr
from typing import Optional, List
from datetime import date, datetime


# ---------- Request context ----------
class Actor(BaseModel):
    id: Optional[str] = None
    role: str


# ---------- Branches ----------
class BranchBase(BaseModel):
    name: str
    code: str
    location: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    is_active: Optional[bool] = True

class BranchCreate(BranchBase):
    pass

class BranchUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    location: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    is_active: Optional[bool] = None

class BranchOut(BranchBase):
    id: int

    model_config = {"from_attributes": True}


# ---------- Courses ----------
class CourseBase(BaseModel):
    name: str
    description: Optional[str] = None
    duration_months: Optional[int] = 1
    total_fee: Optional[float] = 0.0
    admission_fee: Optional[float] = 0.0
    installment_count: Optional[int] = 1
    branch_id: Optional[int] = None
    is_active: Optional[bool] = True

class CourseCreate(CourseBase):
    pass

class CourseUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    duration_months: Optional[int] = None
    total_fee: Optional[float] = None
    admission_fee: Optional[float] = None
    installment_count: Optional[int] = None
    branch_id: Optional[int] = None
    is_active: Optional[bool] = None

class CourseOut(CourseBase):
    id: int

    model_config = {"from_attributes": True}


# ---------- Batches ----------
class BatchBase(BaseModel):
    name: str
    course_id: int
    branch_id: int
    faculty: Optional[str] = None
    start_date: date
    end_date: date
    max_students: Optional[int] = 30
    status: Optional[str] = "active"
    description: Optional[str] = None
    is_active: Optional[bool] = True

class BatchCreate(BatchBase):
    pass

class BatchUpdate(BaseModel):
    name: Optional[str] = None
    course_id: Optional[int] = None
    branch_id: Optional[int] = None
    faculty: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    max_students: Optional[int] = None
    status: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

class BatchOut(BatchBase):
    id: int
    current_students: int
    capacity_percentage: float
    is_full: bool

    model_config = {"from_attributes": True}


# ---------- Students ----------
class StudentBase(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    phone: str
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    course_id: int
    branch_id: int
    batch_id: Optional[int] = None
    admission_date: Optional[date] = None
    status: Optional[str] = "active"
    notes: Optional[str] = None

class StudentCreate(StudentBase):
    total_fee: float
    admission_fee: float
    discount_amount: Optional[float] = 0.0

class StudentUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    course_id: Optional[int] = None
    branch_id: Optional[int] = None
    batch_id: Optional[int] = None
    admission_date: Optional[date] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    total_fee: Optional[float] = None
    admission_fee: Optional[float] = None
    discount_amount: Optional[float] = None

class StudentOut(StudentBase):
    id: int
    full_name: str
    admission_date: date
    total_fee: float
    admission_fee: float
    discount_amount: float
    final_fee: float
    paid_amount: float
    due_amount: float
    payment_status: str

    model_config = {"from_attributes": True}


# ---------- Payments ----------
class PaymentCreate(BaseModel):
    student_id: int
    amount: float
    payment_method: str
    payment_type: str
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None

class AdjustmentCreate(BaseModel):
    student_id: int
    amount: float
    reason: str
    payment_method: Optional[str] = "cash"
    transaction_id: Optional[str] = None
    notes: Optional[str] = None

class PaymentOut(BaseModel):
    id: int
    receipt_no: str
    student_id: int
    amount: float
    payment_method: str
    payment_type: str
    reason: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    collected_by: Optional[str] = None
    paid_at: datetime

    model_config = {"from_attributes": True}


# ---------- Attendance ----------
class AttendanceMark(BaseModel):
    student_id: int
    batch_id: int
    date: date
    status: str
    notes: Optional[str] = None

class AttendanceEntry(BaseModel):
    student_id: int
    status: str
    notes: Optional[str] = None

class BatchAttendanceMark(BaseModel):
    batch_id: int
    date: date
    attendance_data: List[AttendanceEntry]

class AttendanceUpdate(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = None

class AttendanceOut(BaseModel):
    id: int
    student_id: int
    batch_id: int
    date: date
    status: str
    notes: Optional[str] = None
    marked_by: Optional[str] = None
    marked_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ---------- Incomes ----------
class IncomeBase(BaseModel):
    branch_id: int
    title: str
    description: Optional[str] = None
    amount: float
    type: Optional[str] = "tuition"
    payment_method: Optional[str] = None
    reference_number: Optional[str] = None
    income_date: date
    status: Optional[str] = "received"

class IncomeCreate(IncomeBase):
    pass

class IncomeUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    type: Optional[str] = None
    payment_method: Optional[str] = None
    reference_number: Optional[str] = None
    income_date: Optional[date] = None
    status: Optional[str] = None

class IncomeOut(IncomeBase):
    id: int
    recorded_by: Optional[str] = None

    model_config = {"from_attributes": True}


# ---------- Expenses ----------
class ExpenseBase(BaseModel):
    branch_id: int
    title: str
    description: Optional[str] = None
    amount: float
    category: Optional[str] = "other"
    payment_method: Optional[str] = None
    reference_number: Optional[str] = None
    expense_date: date
    status: Optional[str] = "paid"
    notes: Optional[str] = None

class ExpenseCreate(ExpenseBase):
    pass

class ExpenseUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    category: Optional[str] = None
    payment_method: Optional[str] = None
    reference_number: Optional[str] = None
    expense_date: Optional[date] = None
    status: Optional[str] = None
    notes: Optional[str] = None

class ExpenseOut(ExpenseBase):
    id: int
    recorded_by: Optional[str] = None

    model_config = {"from_attributes": True}
