import os
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Set testing environment before the application is imported
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"

from medibook.main import app
from medibook.core.database import get_db, get_redis, Base
from medibook.core.security import UserRole, create_token_pair
from medibook.models.appointment import Appointment, AppointmentStatus
from medibook.schemas.auth import UserRegister
from medibook.services.auth_service import AuthService

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db

PASSWORD = "TestPassword123"

def next_weekday(days_ahead: int = 7) -> date:
    """First working day at least ``days_ahead`` days from today."""
    day = date.today() + timedelta(days=days_ahead)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day

def next_weekend_day(days_ahead: int = 1) -> date:
    day = date.today() + timedelta(days=days_ahead)
    while day.weekday() < 5:
        day += timedelta(days=1)
    return day

@pytest.fixture(scope="function")
def test_db():
    Base.metadata.create_all(bind=engine)
    get_redis().flushall()
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db_session(test_db):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def client(test_db):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

def register(db, email: str, role: UserRole = UserRole.PATIENT, **profile) -> dict:
    """Create a user with its profile and return ids plus auth headers."""
    data = {
        "email": email,
        "password": PASSWORD,
        "role": role,
        "first_name": profile.pop("first_name", "Test"),
        "last_name": profile.pop("last_name", "User"),
        **profile,
    }
    if role == UserRole.DOCTOR:
        data.setdefault("specialization", "Cardiology")
        data.setdefault("license_number", f"LIC-{email}")
        data.setdefault("consultation_fee", 150.0)
        data.setdefault("years_of_experience", 10)

    user = AuthService(db).register_user(UserRegister(**data))
    tokens = create_token_pair(user.id, user.email, user.role)

    profile_id = None
    if user.doctor is not None:
        profile_id = user.doctor.id
    elif user.patient is not None:
        profile_id = user.patient.id

    return {
        "user_id": user.id,
        "id": profile_id,
        "email": user.email,
        "headers": {"Authorization": f"Bearer {tokens.access_token}"},
    }

@pytest.fixture
def patient(db_session):
    return register(db_session, "patient@example.com", first_name="Jane", last_name="Doe")

@pytest.fixture
def other_patient(db_session):
    return register(db_session, "other.patient@example.com", first_name="John", last_name="Roe")

@pytest.fixture
def doctor(db_session):
    return register(
        db_session, "doctor@example.com", UserRole.DOCTOR,
        first_name="Gregory", last_name="House", specialization="Diagnostics"
    )

@pytest.fixture
def other_doctor(db_session):
    return register(
        db_session, "other.doctor@example.com", UserRole.DOCTOR,
        first_name="Lisa", last_name="Cuddy", specialization="Endocrinology"
    )

@pytest.fixture
def admin(db_session):
    return register(db_session, "admin@example.com", UserRole.ADMIN)

@pytest.fixture
def booking_day():
    return next_weekday()

def insert_appointment(db, patient_id, doctor_id, day, at, status=AppointmentStatus.PENDING, **fields):
    """Insert an appointment directly, bypassing the booking rules."""
    appointment = Appointment(
        patient_id=patient_id,
        doctor_id=doctor_id,
        appointment_date=day,
        appointment_time=at,
        status=status,
        **fields,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment
