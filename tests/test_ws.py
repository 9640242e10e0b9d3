import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from starlette.websockets import WebSocketDisconnect

from app.api.auth import PWD_CONTEXT, create_access_token
from app.api.sessions import get_issuer
from app.database import Base, get_db, get_session_factory, make_engine
from app.models.user import User
from main import app


def _connect(client: TestClient, user):
    return client.websocket_connect(f"/ws/notifications?token={create_access_token(user.id)}")


def _next_event(ws, name):
    """name 이벤트가 올 때까지 읽는다."""
    for _ in range(10):
        message = ws.receive_json()
        if message["event"] == name:
            return message
    raise AssertionError(f"{name} was not received")


def test_unauthenticated_channel_is_closed(client: TestClient):
    with client.websocket_connect("/ws/notifications?token=garbage") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()

    assert exc_info.value.code == 1008


def test_ping_pong(client: TestClient, make_user):
    user = make_user("Ada")

    with _connect(client, user) as ws:
        assert ws.receive_json() == {"event": "connected", "data": {"userId": user.id}}
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"event": "pong"}


def test_guest_channel_receives_invite_and_end(client: TestClient, make_user, auth_headers):
    host, guest = make_user("Ada"), make_user("Alan")

    with _connect(client, guest) as ws:
        _next_event(ws, "connected")

        session = client.post(
            "/api/sessions/start", json={"guestId": guest.id, "topic": "Rust"}, headers=auth_headers(host)
        ).json()["session"]
        invite = _next_event(ws, "session_invite")
        assert invite["data"]["sessionId"] == session["id"]
        assert invite["data"]["host"]["name"] == "Ada"
        assert invite["data"]["topic"] == "Rust"
        assert "hostToken" not in invite["data"] and "meeting" not in invite["data"]

        client.post(f"/api/sessions/{session['id']}/accept", headers=auth_headers(guest))
        client.post(f"/api/sessions/{session['id']}/end", headers=auth_headers(host))
        ended = _next_event(ws, "session_ended")
        assert ended["data"]["endedBy"] == "host"


def test_relay_reaches_the_other_party(client: TestClient, make_user, auth_headers):
    host, guest = make_user("Ada"), make_user("Alan")
    session_id = client.post(
        "/api/sessions/start", json={"guestId": guest.id}, headers=auth_headers(host)
    ).json()["session"]["id"]
    client.post(f"/api/sessions/{session_id}/accept", headers=auth_headers(guest))

    with _connect(client, guest) as guest_ws, _connect(client, host) as host_ws:
        _next_event(guest_ws, "connected")
        _next_event(host_ws, "connected")

        host_ws.send_json({"type": "moderator_joined", "sessionId": session_id})
        ack = _next_event(host_ws, "relayed")
        assert ack["data"]["event"] == "moderator_ready"

        ready = _next_event(guest_ws, "moderator_ready")
        assert ready["data"]["sessionId"] == session_id


def test_relay_errors_are_reported_on_the_channel(client: TestClient, make_user, auth_headers):
    host, guest = make_user("Ada"), make_user("Alan")
    session_id = client.post(
        "/api/sessions/start", json={"guestId": guest.id}, headers=auth_headers(host)
    ).json()["session"]["id"]

    with _connect(client, guest) as ws:
        _next_event(ws, "connected")
        ws.send_json({"type": "moderator_joined", "sessionId": session_id})
        error = _next_event(ws, "error")

    assert "host" in error["data"]["detail"]


def test_video_signal_over_channel(client: TestClient, make_user, auth_headers):
    host, guest = make_user("Ada"), make_user("Alan")
    session = client.post(
        "/api/sessions/start", json={"guestId": guest.id}, headers=auth_headers(host)
    ).json()["session"]

    with _connect(client, host) as ws:
        _next_event(ws, "connected")
        ws.send_json({"type": "video_signal", "sessionId": session["id"], "signal": "auth_failed"})
        result = _next_event(ws, "video_signal_result")

    assert result["data"]["action"] == "fallback"
    assert result["data"]["url"] == session["meeting"]["publicUrl"]


def test_disconnect_unregisters_channel(client: TestClient, make_user):
    user = make_user("Ada")

    with _connect(client, user) as ws:
        _next_event(ws, "connected")
        assert client.get("/health").json()["channels"] == 1

    assert client.get("/health").json()["channels"] == 0


@pytest.fixture
def tight_pool(tmp_path, issuer):
    """커넥션 2개짜리 풀에 묶인 앱. 대기 중인 알림 채널이 커넥션을 붙잡는지 확인용."""
    engine = make_engine(
        f"sqlite:///{tmp_path / 'tight_pool.db'}",
        poolclass=QueuePool,
        pool_size=2,
        max_overflow=0,
        pool_timeout=1,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: factory
    app.dependency_overrides[get_issuer] = lambda: issuer
    with TestClient(app) as test_client:
        yield test_client, engine, factory
    app.dependency_overrides.clear()
    engine.dispose()


def _add_user(factory, name):
    db = factory()
    try:
        user = User(
            email=f"{name.lower()}@example.com",
            hashed_password=PWD_CONTEXT.hash("password123"),
            name=name,
            skills=[],
            learning_goals=[],
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    finally:
        db.close()


def test_idle_channels_do_not_hold_database_connections(tight_pool):
    client, engine, factory = tight_pool
    ada, alan, eve = (_add_user(factory, name) for name in ("Ada", "Alan", "Eve"))

    with _connect(client, ada) as ada_ws, _connect(client, alan) as alan_ws:
        _next_event(ada_ws, "connected")
        _next_event(alan_ws, "connected")
        assert engine.pool.checkedout() == 0

        response = client.get(
            "/api/sessions/active",
            headers={"Authorization": f"Bearer {create_access_token(eve.id)}"},
        )

        assert response.status_code == 200
        assert response.json() == {"sessions": []}

        ada_ws.send_json({"type": "ping"})
        assert ada_ws.receive_json() == {"event": "pong"}
