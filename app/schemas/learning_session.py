from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from app.models.learning_session import LearningSession, Role, SessionStatus
from services.meeting_credentials import client_config

DEFAULT_TOPIC = "Learning Session"


class StartSessionRequest(BaseModel):
    guestId: int
    topic: Optional[str] = Field(None, max_length=200)


class VideoSignalRequest(BaseModel):
    # 외부 화상 서비스가 클라이언트에 준 세 가지 신호
    signal: Literal["joined", "auth_failed", "connection_failed"]


class Participant(BaseModel):
    id: int
    name: str
    email: Optional[str] = None


class MeetingInfo(BaseModel):
    """보는 사람 본인의 접속 정보만 담는다. token 이 None 이면 폴백 모드."""
    domain: str
    roomId: str
    joinUrl: str
    token: Optional[str] = None
    publicUrl: str
    authenticated: bool
    config: dict


class SessionResponse(BaseModel):
    id: str
    roomId: str
    host: Participant
    guest: Participant
    topic: str
    status: SessionStatus
    role: Role
    hostJoined: bool
    guestJoined: bool
    createdAt: datetime
    startedAt: Optional[datetime] = None
    endedAt: Optional[datetime] = None
    duration: Optional[int] = None  # 분 단위, 이력 조회에서만
    meeting: Optional[MeetingInfo] = None


class SessionActionResponse(BaseModel):
    message: str
    session: SessionResponse


class InviteListResponse(BaseModel):
    invites: List[SessionResponse]


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]


class VideoSignalResponse(BaseModel):
    action: Literal["joined", "fallback", "retry"]
    url: str
    publicUrl: str
    session: SessionResponse


def _participant(user, user_id: int) -> Participant:
    if user is None:
        return Participant(id=user_id, name="Unknown user")
    return Participant(id=user.id, name=user.name, email=user.email)


def can_see_meeting(session: LearningSession, role: Role) -> bool:
    """호스트는 진행 중이면 항상, 게스트는 수락 이후에만 접속 정보를 받는다."""
    status = SessionStatus(session.status)
    if role is Role.HOST:
        return status in (SessionStatus.PENDING, SessionStatus.ACCEPTED, SessionStatus.ACTIVE)
    return status in (SessionStatus.ACCEPTED, SessionStatus.ACTIVE)


def meeting_info(session: LearningSession, role: Role) -> MeetingInfo:
    token = session.token_for(role)
    return MeetingInfo(
        domain=session.domain,
        roomId=session.room_id,
        joinUrl=session.url_for(role),
        token=token,
        publicUrl=session.public_url,
        authenticated=token is not None,
        config=client_config(token is not None),
    )


def session_view(session: LearningSession, viewer_id: int, with_duration: bool = False) -> SessionResponse:
    """세션을 보는 사람 역할에 맞춰 투영. 상대방 토큰은 절대 포함하지 않는다."""
    role = session.role_of(viewer_id)
    if role is None:
        raise ValueError(f"user {viewer_id} is not a party of session {session.id}")
    return SessionResponse(
        id=session.id,
        roomId=session.room_id,
        host=_participant(session.host, session.host_id),
        guest=_participant(session.guest, session.guest_id),
        topic=session.topic,
        status=SessionStatus(session.status),
        role=role,
        hostJoined=session.host_joined,
        guestJoined=session.guest_joined,
        createdAt=session.created_at,
        startedAt=session.started_at,
        endedAt=session.ended_at,
        duration=session.duration_minutes if with_duration else None,
        meeting=meeting_info(session, role) if can_see_meeting(session, role) else None,
    )
