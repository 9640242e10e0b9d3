from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.database import get_db
from app.models.user import User
from app.schemas.learning_session import (
    InviteListResponse,
    SessionActionResponse,
    SessionListResponse,
    SessionResponse,
    StartSessionRequest,
    VideoSignalRequest,
    VideoSignalResponse,
)
from config import settings
from services.meeting_credentials import MeetingCredentialIssuer
from services.notifier import Notifier, get_notifier
from services.session_lifecycle import SessionLifecycle

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

_issuer = MeetingCredentialIssuer()


def get_issuer() -> MeetingCredentialIssuer:
    return _issuer


def get_lifecycle(
    db: Session = Depends(get_db),
    issuer: MeetingCredentialIssuer = Depends(get_issuer),
    notifier: Notifier = Depends(get_notifier),
) -> SessionLifecycle:
    return SessionLifecycle(db, issuer=issuer, notifier=notifier)


# 라우트는 동기 def: 스레드풀에서 실행되고 알림은 notifier.publish 로 루프에 예약된다

@router.post("/start", response_model=SessionActionResponse, status_code=201)
def start_session(
    request: StartSessionRequest,
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    session = lifecycle.start(current_user.id, request.guestId, request.topic)
    return {"message": "Learning session created successfully", "session": session}


@router.get("/pending", response_model=InviteListResponse)
def get_pending_invites(
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    return {"invites": lifecycle.list_pending_invites(current_user.id)}


@router.get("/active", response_model=SessionListResponse)
def get_active_sessions(
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    return {"sessions": lifecycle.list_active(current_user.id)}


@router.get("/history", response_model=SessionListResponse)
def get_session_history(
    limit: int = Query(settings.HISTORY_LIMIT, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    return {"sessions": lifecycle.list_history(current_user.id, limit)}


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    return lifecycle.get(session_id, current_user.id)


@router.post("/{session_id}/accept", response_model=SessionActionResponse)
def accept_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    session = lifecycle.accept(session_id, current_user.id)
    return {"message": "Session accepted successfully", "session": session}


@router.post("/{session_id}/decline", response_model=SessionActionResponse)
def decline_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    session = lifecycle.decline(session_id, current_user.id)
    return {"message": "Session declined successfully", "session": session}


@router.post("/{session_id}/join", response_model=SessionActionResponse)
def join_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    session = lifecycle.join(session_id, current_user.id)
    return {"message": "Joined session successfully", "session": session}


@router.post("/{session_id}/end", response_model=SessionActionResponse)
def end_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    session = lifecycle.end(session_id, current_user.id)
    return {"message": "Session ended successfully", "session": session}


@router.post("/{session_id}/video-signal", response_model=VideoSignalResponse)
def report_video_signal(
    session_id: str,
    request: VideoSignalRequest,
    current_user: User = Depends(get_current_user),
    lifecycle: SessionLifecycle = Depends(get_lifecycle),
):
    """화상 서비스 신호(joined / auth_failed / connection_failed)에 따라 접속 URL 안내."""
    result = lifecycle.report_video_signal(session_id, current_user.id, request.signal)
    return {
        "action": result.action,
        "url": result.url,
        "publicUrl": result.public_url,
        "session": result.session,
    }
