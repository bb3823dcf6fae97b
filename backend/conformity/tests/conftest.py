import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path
from types import SimpleNamespace

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from conformity.main import app
from conformity.database import Base, get_db
from conformity.auth import create_access_token
from conformity import models, notify
from conformity.services import reference

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

with TestingSessionLocal() as _seed_session:
    reference.seed_all(_seed_session)
    _seed_session.commit()


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture(autouse=True)
def email_outbox():
    notify.EMAIL_OUTBOX.clear()
    yield notify.EMAIL_OUTBOX
    notify.EMAIL_OUTBOX.clear()


@pytest.fixture
def make_personnel():
    """Return a factory creating an active actor holding the named role."""

    def _make(role_name: str) -> models.Personnel:
        with TestingSessionLocal(expire_on_commit=False) as session:
            role = session.query(models.Role).filter(models.Role.name == role_name).one()
            person = models.Personnel(
                email=f"user-{uuid.uuid4()}@example.com",
                full_name=f"{role_name} {uuid.uuid4().hex[:6]}",
                role_id=role.id,
                is_active=True,
            )
            session.add(person)
            session.commit()
            return person

    return _make


@pytest.fixture
def auth_headers():
    def _headers(person: models.Personnel) -> dict[str, str]:
        token = create_access_token({"sub": person.email})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def hydraulic_type():
    """Test type with a critical and a minor mandatory item plus an optional one."""

    with TestingSessionLocal(expire_on_commit=False) as session:
        test_type = models.TestType(
            code=f"HYD-{uuid.uuid4().hex[:8]}",
            label="Essai hydraulique",
            is_active=True,
        )
        pressure = models.ChecklistItem(
            number=1,
            label="Pression",
            reference_value=100.0,
            tolerance_min=98.0,
            tolerance_max=102.0,
            unit="bar",
            criticality=4,
            mandatory=True,
        )
        temperature = models.ChecklistItem(
            number=2,
            label="Temperature",
            reference_value=20.0,
            tolerance_min=18.0,
            tolerance_max=22.0,
            unit="C",
            criticality=2,
            mandatory=True,
        )
        visual = models.ChecklistItem(number=3, label="Aspect visuel", criticality=1, mandatory=False)
        test_type.checklist_items = [pressure, temperature, visual]
        session.add(test_type)
        session.commit()
        return SimpleNamespace(
            id=test_type.id,
            pressure_id=pressure.id,
            temperature_id=temperature.id,
            visual_id=visual.id,
        )
