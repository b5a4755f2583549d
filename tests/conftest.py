from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from academy import crud, schemas
from academy.db import init_db
from academy.main import app, get_db


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def Session(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(Session):
    session = Session()
    yield session
    session.close()


@pytest.fixture
def academy(db):
    """One branch running one course in one batch."""
    branch = crud.create_branch(db, schemas.BranchCreate(name="Dhanmondi Campus", code="DH01", location="Dhaka"))
    course = crud.create_course(db, schemas.CourseCreate(
        name="Web Development", duration_months=6, total_fee=25000, admission_fee=5000, branch_id=branch.id))
    batch = crud.create_batch(db, schemas.BatchCreate(
        name="WD-01", course_id=course.id, branch_id=branch.id, faculty="R. Karim",
        start_date=date(2024, 1, 1), end_date=date(2024, 6, 30), max_students=30))
    return {"branch": branch, "course": course, "batch": batch}


@pytest.fixture
def make_student(db, academy):
    counter = {"n": 0}

    def _make(total_fee=10000, admission_fee=0, discount_amount=0, batch=True, **extra):
        counter["n"] += 1
        data = dict(
            first_name="Student",
            last_name=str(counter["n"]),
            email=f"student{counter['n']}@example.com",
            phone="01700000000",
            course_id=academy["course"].id,
            branch_id=academy["branch"].id,
            batch_id=academy["batch"].id if batch else None,
            admission_date=date(2024, 1, 5),
            total_fee=total_fee,
            admission_fee=admission_fee,
            discount_amount=discount_amount,
        )
        data.update(extra)
        return crud.create_student(db, schemas.StudentCreate(**data))

    return _make


@pytest.fixture
def client(Session):
    def override_get_db():
        session = Session()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
