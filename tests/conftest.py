# tests/conftest.py
import os

# 앱 import 전에: 기본 엔진은 메모리 DB, 회의 시크릿은 테스트에서 직접 주입
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("JITSI_APP_SECRET", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.api.auth import PWD_CONTEXT, create_access_token
from app.api.sessions import get_issuer
from app.database import Base, get_db, get_session_factory, make_engine
from app.models.user import User
from main import app
from services.meeting_credentials import MeetingCredentialIssuer
from services.session_lifecycle import SessionLifecycle

TEST_SECRET = "test-jitsi-secret"
TEST_DOMAIN = "meet.test"


class RecordingNotifier:
    """publish 호출을 기록만 하는 가짜 notifier."""

    def __init__(self):
        self.events = []

    def publish(self, user_id, event, payload):
        self.events.append((user_id, event, payload))
        return True

    def names_for(self, user_id):
        return [event for uid, event, _ in self.events if uid == user_id]


@pytest.fixture
def engine(tmp_path):
    # 파일 DB: 스레드마다 별도 커넥션을 쓰는 동시성 테스트용
    engine = make_engine(f"sqlite:///{tmp_path / 'skillsync_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make_user(name=None, skills=None, learning_goals=None):
        counter["n"] += 1
        name = name or f"User {counter['n']}"
        user = User(
            email=f"{name.lower().replace(' ', '.')}.{counter['n']}@example.com",
            hashed_password=PWD_CONTEXT.hash("password123"),
            name=name,
            skills=skills or [],
            learning_goals=learning_goals or [],
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def issuer():
    return MeetingCredentialIssuer(app_id="skillsync", app_secret=TEST_SECRET, domain=TEST_DOMAIN)


@pytest.fixture
def degraded_issuer():
    return MeetingCredentialIssuer(app_id="skillsync", app_secret=None, domain=TEST_DOMAIN)


@pytest.fixture
def recorder():
    return RecordingNotifier()


@pytest.fixture
def lifecycle(db_session, issuer, recorder):
    return SessionLifecycle(db_session, issuer=issuer, notifier=recorder)


@pytest.fixture
def client(session_factory, issuer):
    """
    DB 는 임시 파일 DB, 회의 자격증명은 테스트 시크릿으로 교체한 TestClient.
    with 블록이라 lifespan(알림 루프 바인딩)도 실행된다.
    """
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_issuer] = lambda: issuer
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers
