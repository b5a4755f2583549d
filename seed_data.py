# Run: python seed_data.py (creates/overwrites academy.db)
from faker import Faker
import random
from datetime import date, timedelta
from academy.db import SessionLocal, init_db
from academy import crud, models, payments, schemas


fake = Faker()


NUM_BRANCHES = 3
COURSES_PER_BRANCH = 3
STUDENTS_PER_BATCH = 25
DAYS_OF_ATTENDANCE = 10
DAYS_OF_BOOKS = 90


def seed():
    init_db()
    db = SessionLocal()
    # clear existing; payments are append-only through the ORM, so go through the table
    db.query(models.Attendance).delete()
    db.execute(models.Payment.__table__.delete())
    db.query(models.Student).delete()
    db.query(models.Batch).delete()
    db.query(models.Course).delete()
    db.query(models.Income).delete()
    db.query(models.Expense).delete()
    db.query(models.Branch).delete()
    db.commit()

    today = date.today()
    student_count = payment_count = 0
    for b in range(NUM_BRANCHES):
        city = fake.city()
        branch = crud.create_branch(db, schemas.BranchCreate(
            name=f"{city} Campus", code=f"BR{b + 1:02d}", location=city,
            address=fake.address(), phone=fake.msisdn()[:11], email=f"branch{b + 1}@academy.example.com"))

        for c in range(COURSES_PER_BRANCH):
            total_fee = random.choice([15000, 25000, 40000, 60000])
            course = crud.create_course(db, schemas.CourseCreate(
                name=random.choice(['Web Development', 'Data Science', 'Graphic Design', 'Spoken English',
                                    'Accounting', 'Networking']) + f" {c + 1}",
                duration_months=random.choice([3, 6, 12]), total_fee=total_fee,
                admission_fee=round(total_fee * 0.2), installment_count=random.randint(1, 4),
                branch_id=branch.id))
            start = today - timedelta(days=random.randint(30, 120))
            batch = crud.create_batch(db, schemas.BatchCreate(
                name=f"{branch.code}-{course.id:03d}", course_id=course.id, branch_id=branch.id,
                faculty=fake.name(), start_date=start, end_date=start + timedelta(days=30 * course.duration_months),
                max_students=STUDENTS_PER_BATCH + 5, status='active'))

            # simulate some having paid none, partial, or full
            for i in range(STUDENTS_PER_BATCH):
                first, last = fake.first_name(), fake.last_name()
                student = crud.create_student(db, schemas.StudentCreate(
                    first_name=first, last_name=last,
                    email=f"{first.lower()}.{last.lower()}{student_count}@student.example.com",
                    phone=fake.msisdn()[:11], gender=random.choice(['male', 'female']),
                    date_of_birth=fake.date_between(start_date='-30y', end_date='-16y'),
                    address=fake.address(), course_id=course.id, branch_id=branch.id, batch_id=batch.id,
                    admission_date=start - timedelta(days=random.randint(0, 20)),
                    total_fee=total_fee, admission_fee=float(course.admission_fee),
                    discount_amount=random.choice([0, 0, 0, 1000, 2500])))
                student_count += 1

                paid_choice = random.random()
                if paid_choice < 0.25:
                    continue
                payments.collect(db, student.id, student.admission_fee, 'cash', 'admission', collected_by='seed')
                payment_count += 1
                if paid_choice < 0.75:
                    installment = round(random.uniform(1000, float(student.due_amount) * 0.9), 2)
                else:
                    installment = student.due_amount
                if installment > 0:
                    payments.collect(db, student.id, installment, random.choice(payments.PAYMENT_METHODS),
                                     'installment', collected_by='seed')
                    payment_count += 1

            for d in range(DAYS_OF_ATTENDANCE):
                crud.mark_batch_attendance(db, schemas.BatchAttendanceMark(
                    batch_id=batch.id, date=today - timedelta(days=d),
                    attendance_data=[
                        schemas.AttendanceEntry(student_id=s.id,
                                                status=random.choices(['present', 'absent', 'late'], [85, 10, 5])[0])
                        for s in batch.students
                    ]), marked_by='seed')

        for d in range(DAYS_OF_BOOKS):
            day = today - timedelta(days=d)
            if random.random() < 0.6:
                crud.create_income(db, schemas.IncomeCreate(
                    branch_id=branch.id, title=fake.catch_phrase(), amount=round(random.uniform(500, 20000), 2),
                    type=random.choice(crud.INCOME_TYPES), income_date=day), recorded_by='seed')
            if random.random() < 0.4:
                crud.create_expense(db, schemas.ExpenseCreate(
                    branch_id=branch.id, title=fake.bs(), amount=round(random.uniform(200, 15000), 2),
                    category=random.choice(crud.EXPENSE_CATEGORIES), expense_date=day), recorded_by='seed')

    db.close()
    print('Seeded database with', NUM_BRANCHES, 'branches,', student_count, 'students and',
          payment_count, 'payments')

if __name__ == '__main__':
    seed()
