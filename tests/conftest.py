"""
Shared fixtures.

Every test gets its own SQLite file, a controllable clock and an in-memory
mailer. The app-level engine is pointed at an in-memory database so importing
familybudget never touches ./data.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MAIL_BACKEND"] = "memory"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from familybudget.api import deps
from familybudget.config import Settings
from familybudget.database import build_engine, get_db, init_db
from familybudget.main import app
from familybudget.models.user import Family, User
from familybudget.services.mailer import MemoryMailer
from familybudget.services.passwords import hash_password
from familybudget.services.tokens import TokenConsumer, TokenIssuer


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def token_from(notification):
    return notification.link.split("token=", 1)[1]


@pytest.fixture
def cfg():
    return Settings(_env_file=None, bcrypt_rounds=4, public_app_url="http://app.test")


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'test.sqlite'}")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return MemoryMailer()


@pytest.fixture
def issuer(session, mailer, cfg, clock):
    return TokenIssuer(session, mailer, cfg=cfg, clock=clock)


@pytest.fixture
def consumer(session, cfg, clock):
    return TokenConsumer(session, cfg=cfg, clock=clock)


@pytest.fixture
def make_user(session):
    """
    Insert a user (and a family unless family_id is given) directly.
    """

    def _make(email, password="secret123", name="Test User", verified=True, family_id=None):
        if family_id is None:
            family = Family(name=f"{name}'s Family")
            session.add(family)
            session.flush()
            family_id = family.id
        user = User(
            email=email,
            name=name,
            password_hash=hash_password(password, 4) if password else None,
            family_id=family_id,
            is_verified=verified,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def client(engine, mailer, clock, cfg):
    def _get_db():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_mailer] = lambda: mailer
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_settings] = lambda: cfg
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    def _login(email, password="secret123"):
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}

    return _login
