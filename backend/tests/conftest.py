import os

# 測試環境設定必須在匯入 escala 之前完成
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RESEND_API_KEY"] = ""
os.environ["TELEGRAM_BOT_TOKEN"] = ""

from datetime import timedelta
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from escala import models  # noqa: F401
from escala.core.database import Base, get_db
from escala.core.security import create_access_token, get_password_hash
from escala.main import app, _rate_buckets
from escala.models.user import User
from escala.routes import websocket as websocket_routes
from escala.tasks import exchange_tasks

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
_mech_numbers = count(1000)


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db, monkeypatch):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # 不經 get_db 自行開啟 session 的地方
    monkeypatch.setattr(websocket_routes, "SessionLocal", TestingSessionLocal)
    monkeypatch.setattr(exchange_tasks, "SessionLocal", TestingSessionLocal)
    _rate_buckets.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    def _make_user(email, name=None, mech=None, role="user", password="secret123", active=True):
        user = User(
            email=email,
            name=name or email.split("@")[0].title(),
            mechanographic_number=mech or str(next(_mech_numbers)),
            hashed_password=get_password_hash(password),
            role=role,
            active=active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture()
def admin(make_user):
    return make_user("admin@example.com", name="Admin", mech="0000", role="admin")


@pytest.fixture()
def alice(make_user):
    return make_user("alice@example.com", name="Alice", mech="123")


@pytest.fixture()
def bob(make_user):
    return make_user("bob@example.com", name="Bob", mech="456")


def auth_headers(user, role=None):
    token = create_access_token(
        {"sub": user.email, "role": role or user.role},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}
