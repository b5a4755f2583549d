from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Text, Numeric, Boolean, Date, DateTime, ForeignKey,
    UniqueConstraint, event,
)
from sqlalchemy.orm import relationship

from academy.db import Base
from academy.exceptions import ValidationError

Money = Numeric(12, 2)


class Branch(Base):
    __tablename__ = 'branches'
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    code = Column(String, unique=True, nullable=False, index=True)
    location = Column(String, nullable=False)
    address = Column(Text, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    courses = relationship('Course', back_populates='branch')
    batches = relationship('Batch', back_populates='branch')
    students = relationship('Student', back_populates='branch')
    incomes = relationship('Income', back_populates='branch')
    expenses = relationship('Expense', back_populates='branch')


class Course(Base):
    __tablename__ = 'courses'
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    duration_months = Column(Integer, default=1)
    total_fee = Column(Money, default=0)
    admission_fee = Column(Money, default=0)
    installment_count = Column(Integer, default=1)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    branch = relationship('Branch', back_populates='courses')
    batches = relationship('Batch', back_populates='course')
    students = relationship('Student', back_populates='course')


class Batch(Base):
    __tablename__ = 'batches'
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    course_id = Column(Integer, ForeignKey('courses.id'), nullable=False, index=True)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=False, index=True)
    faculty = Column(String, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    max_students = Column(Integer, default=30, nullable=False)
    status = Column(String, default='active', nullable=False, index=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    course = relationship('Course', back_populates='batches')
    branch = relationship('Branch', back_populates='batches')
    students = relationship('Student', back_populates='batch')
    attendance = relationship('Attendance', back_populates='batch', cascade='all, delete-orphan')

    @property
    def current_students(self):
        return sum(1 for s in self.students if s.deleted_at is None)

    @property
    def capacity_percentage(self):
        if not self.max_students:
            return 0
        return round(self.current_students / self.max_students * 100, 1)

    @property
    def is_full(self):
        return self.current_students >= self.max_students


class Student(Base):
    __tablename__ = 'students'
    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, index=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    course_id = Column(Integer, ForeignKey('courses.id'), nullable=False, index=True)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey('batches.id'), nullable=True, index=True)
    admission_date = Column(Date, nullable=False)

    # fee ledger; paid_amount, due_amount and payment_status are written by academy.ledger only
    total_fee = Column(Money, nullable=False, default=0)
    admission_fee = Column(Money, nullable=False, default=0)
    discount_amount = Column(Money, nullable=False, default=0)
    final_fee = Column(Money, nullable=False, default=0)
    paid_amount = Column(Money, nullable=False, default=0)
    due_amount = Column(Money, nullable=False, default=0)
    payment_status = Column(String, nullable=False, default='pending', index=True)

    status = Column(String, nullable=False, default='active', index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    course = relationship('Course', back_populates='students')
    branch = relationship('Branch', back_populates='students')
    batch = relationship('Batch', back_populates='students')
    payments = relationship('Payment', back_populates='student', order_by='Payment.id')

    __mapper_args__ = {"version_id_col": version}

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self):
        return self.status == 'active' and self.deleted_at is None


class Payment(Base):
    __tablename__ = 'payments'
    id = Column(Integer, primary_key=True, index=True)
    receipt_no = Column(String, unique=True, nullable=False)
    student_id = Column(Integer, ForeignKey('students.id'), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    payment_method = Column(String, nullable=False)
    payment_type = Column(String, nullable=False, index=True)  # admission / installment / adjustment
    reason = Column(String, nullable=True)  # adjustments only
    transaction_id = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    collected_by = Column(String, nullable=True)
    paid_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    student = relationship('Student', back_populates='payments')


@event.listens_for(Payment, 'before_update')
def _payment_is_immutable(mapper, connection, target):
    raise ValidationError(f"Payment {target.id} is immutable; record an adjustment instead")


@event.listens_for(Payment, 'before_delete')
def _payment_is_permanent(mapper, connection, target):
    raise ValidationError(f"Payment {target.id} cannot be deleted; record an adjustment instead")


class Attendance(Base):
    __tablename__ = 'attendance'
    __table_args__ = (UniqueConstraint('student_id', 'batch_id', 'date', name='uq_attendance_student_batch_date'),)
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey('students.id'), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey('batches.id'), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    status = Column(String, nullable=False)  # present / absent / late
    notes = Column(Text, nullable=True)
    marked_by = Column(String, nullable=True)
    marked_at = Column(DateTime, default=datetime.utcnow)

    student = relationship('Student')
    batch = relationship('Batch', back_populates='attendance')


class Income(Base):
    __tablename__ = 'incomes'
    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Money, nullable=False, default=0)
    type = Column(String, nullable=False, default='tuition')
    payment_method = Column(String, nullable=True)
    reference_number = Column(String, nullable=True)
    income_date = Column(Date, nullable=False, index=True)
    status = Column(String, nullable=False, default='received')
    recorded_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    branch = relationship('Branch', back_populates='incomes')


class Expense(Base):
    __tablename__ = 'expenses'
    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, ForeignKey('branches.id'), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Money, nullable=False, default=0)
    category = Column(String, nullable=False, default='other')
    payment_method = Column(String, nullable=True)
    reference_number = Column(String, nullable=True)
    expense_date = Column(Date, nullable=False, index=True)
    status = Column(String, nullable=False, default='paid')
    notes = Column(Text, nullable=True)
    recorded_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    branch = relationship('Branch', back_populates='expenses')
