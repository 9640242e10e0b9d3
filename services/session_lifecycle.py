"""
학습 세션 상태 머신.

    pending  -> accepted | declined
    accepted -> active (양쪽 모두 join) | ended
    active   -> ended

declined, ended 는 종료 상태. 모든 전이는 "현재 상태가 X일 때만" 조건부 UPDATE 로
적용하므로 오래된 읽기 위에서 전이가 적용되지 않는다. 알림은 DB 반영 이후 best-effort.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.crud.session_store import SessionStore
from app.crud.users import UserDirectory, public_profile
from app.errors import DuplicateSession, Forbidden, InvalidState, NotFound, SelfInvite, TargetNotFound
from app.models.learning_session import (
    LearningSession,
    Role,
    SessionStatus,
    TERMINAL_STATUSES,
)
from app.schemas.learning_session import DEFAULT_TOPIC, SessionResponse, session_view
from config import settings
from services.meeting_credentials import Identity, MeetingCredentialIssuer
from services.notifier import Notifier, notifier as default_notifier

logger = logging.getLogger(__name__)

# 역할별 join 가능 상태: 게스트는 수락 후에만 회의실에 들어간다
JOINABLE = {
    Role.HOST: (SessionStatus.PENDING, SessionStatus.ACCEPTED, SessionStatus.ACTIVE),
    Role.GUEST: (SessionStatus.ACCEPTED, SessionStatus.ACTIVE),
}

# 회의 중 presence 중계: 클라이언트 메시지 -> (보낼 수 있는 역할, 상대에게 보낼 이벤트)
RELAY_EVENTS = {
    "moderator_joined": (Role.HOST, "moderator_ready"),
    "guest_joined": (Role.GUEST, "guest_ready"),
    "meeting_ended": (None, "meeting_terminated"),
}


@dataclass
class VideoSignalResult:
    action: str
    url: str
    public_url: str
    session: SessionResponse


def _user_id(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class SessionLifecycle:
    def __init__(
        self,
        db: Session,
        issuer: Optional[MeetingCredentialIssuer] = None,
        notifier: Optional[Notifier] = None,
        store: Optional[SessionStore] = None,
        users: Optional[UserDirectory] = None,
    ):
        self.store = store or SessionStore(db)
        self.users = users or UserDirectory(db)
        self.issuer = issuer or MeetingCredentialIssuer()
        self.notifier = notifier or default_notifier

    # ----- 내부 헬퍼 -----

    def _emit(self, user_id: int, event: str, payload: dict) -> None:
        if not self.notifier.publish(user_id, event, payload):
            logger.debug("No live channel for user %s, %s not pushed", user_id, event)

    def _party(self, session_id: str, requester_id) -> tuple[LearningSession, Role, int]:
        session = self.store.get(session_id)
        user_id = _user_id(requester_id)
        role = session.role_of(user_id) if user_id is not None else None
        if role is None:
            raise Forbidden()
        return session, role, user_id

    # ----- 전이 -----

    def start(self, requester_id, target_id, topic: Optional[str] = None) -> SessionResponse:
        host_id, guest_id = _user_id(requester_id), _user_id(target_id)
        if host_id is not None and host_id == guest_id:
            raise SelfInvite()
        host = self.users.get(host_id)
        if host is None:
            raise NotFound("Your account could not be found.")
        guest = self.users.get(guest_id)
        if guest is None:
            raise TargetNotFound()

        existing = self.store.find_active_between(host.id, guest.id)
        if existing is not None:
            raise DuplicateSession(existing.id, existing.room_id)

        credentials = self.issuer.issue(
            f"session-{host.id}-{guest.id}",
            Identity(name=host.name, email=host.email),
            Identity(name=guest.name, email=guest.email),
        )
        session = self.store.create(
            LearningSession(
                room_id=credentials.room_id,
                host_id=host.id,
                guest_id=guest.id,
                topic=(topic or "").strip() or DEFAULT_TOPIC,
                domain=credentials.domain,
                host_token=credentials.host_token,
                guest_token=credentials.guest_token,
                host_url=credentials.host_url,
                guest_url=credentials.guest_url,
                public_url=credentials.public_url,
            )
        )
        logger.info(
            "Session %s created: host=%s guest=%s credentials=%s",
            session.id, host.id, guest.id, credentials.status.value,
        )

        self._emit(guest.id, "session_invite", {
            "sessionId": session.id,
            "roomId": session.room_id,
            "host": public_profile(host),
            "topic": session.topic,
            "status": session.status,
            "createdAt": session.created_at,
        })
        return session_view(session, host.id)

    def accept(self, session_id: str, requester_id) -> SessionResponse:
        session, role, user_id = self._party(session_id, requester_id)
        if role is not Role.GUEST:
            raise Forbidden("Only the invited guest can accept this session.")

        session = self.store.update(
            session_id,
            {"status": SessionStatus.ACCEPTED, "started_at": datetime.utcnow()},
            expected_statuses=[SessionStatus.PENDING],
            message="This session is no longer pending.",
        )
        logger.info("Session %s accepted by %s", session_id, user_id)

        self._emit(session.host_id, "session_accepted", {
            "sessionId": session.id,
            "guest": public_profile(session.guest),
            "status": session.status,
            "startedAt": session.started_at,
        })
        return session_view(session, user_id)

    def decline(self, session_id: str, requester_id) -> SessionResponse:
        session, role, user_id = self._party(session_id, requester_id)
        if role is not Role.GUEST:
            raise Forbidden("Only the invited guest can decline this session.")

        session = self.store.update(
            session_id,
            {"status": SessionStatus.DECLINED, "live_pair_key": None},
            expected_statuses=[SessionStatus.PENDING],
            message="This session is no longer pending.",
        )
        logger.info("Session %s declined by %s", session_id, user_id)

        self._emit(session.host_id, "session_declined", {
            "sessionId": session.id,
            "guest": public_profile(session.guest),
            "status": session.status,
        })
        return session_view(session, user_id)

    def join(self, session_id: str, requester_id) -> SessionResponse:
        session, role, user_id = self._party(session_id, requester_id)
        flag = LearningSession.host_joined if role is Role.HOST else LearningSession.guest_joined

        # 자기 플래그만 쓴다. 이미 True 여도 같은 값을 다시 쓰는 것이라 멱등
        if not self.store.try_update(session_id, {flag.key: True}, expected_statuses=JOINABLE[role]):
            current = self.store.get(session_id)
            if role is Role.GUEST and current.status == SessionStatus.PENDING.value:
                raise InvalidState("Accept the invite before joining the session.", status=current.status)
            raise InvalidState("This session is no longer available to join.", status=current.status)

        # active 전이는 쓰기 이후의 DB 상태로 판단 (동시 join 에서도 전이를 잃지 않음)
        activated = self.store.try_update(
            session_id,
            {"status": SessionStatus.ACTIVE},
            expected_statuses=[SessionStatus.ACCEPTED],
            conditions=[LearningSession.host_joined == True, LearningSession.guest_joined == True],  # noqa: E712
        )
        session = self.store.get(session_id)
        if activated:
            logger.info("Session %s is now active", session_id)

        self._emit(session.counterpart_of(role), "session_user_joined", {
            "sessionId": session.id,
            "userType": role.value,
            "hostJoined": session.host_joined,
            "guestJoined": session.guest_joined,
            "status": session.status,
        })
        return session_view(session, user_id)

    def end(self, session_id: str, requester_id) -> SessionResponse:
        session, role, user_id = self._party(session_id, requester_id)
        if session.status == SessionStatus.ENDED.value:
            return session_view(session, user_id)

        ended = self.store.try_update(
            session_id,
            {"status": SessionStatus.ENDED, "ended_at": datetime.utcnow(), "live_pair_key": None},
            expected_statuses=[SessionStatus.ACCEPTED, SessionStatus.ACTIVE],
        )
        session = self.store.get(session_id)
        if not ended:
            # 상대가 먼저 종료한 경우도 성공으로 취급
            if session.status == SessionStatus.ENDED.value:
                return session_view(session, user_id)
            raise InvalidState(f"A {session.status} session cannot be ended.", status=session.status)
        logger.info("Session %s ended by %s", session_id, role.value)

        self._emit(session.counterpart_of(role), "session_ended", {
            "sessionId": session.id,
            "endedBy": role.value,
            "endedAt": session.ended_at,
            "status": session.status,
        })
        return session_view(session, user_id)

    # ----- 조회 -----

    def get(self, session_id: str, requester_id) -> SessionResponse:
        session, _, user_id = self._party(session_id, requester_id)
        return session_view(session, user_id, with_duration=session.status in TERMINAL_STATUSES)

    def list_pending_invites(self, user_id) -> list[SessionResponse]:
        user_id = _user_id(user_id)
        sessions = self.store.list_for_user(user_id, [SessionStatus.PENDING], role=Role.GUEST)
        return [session_view(s, user_id) for s in sessions]

    def list_active(self, user_id) -> list[SessionResponse]:
        user_id = _user_id(user_id)
        sessions = self.store.list_for_user(user_id, [SessionStatus.ACCEPTED, SessionStatus.ACTIVE])
        return [session_view(s, user_id) for s in sessions]

    def list_history(self, user_id, limit: Optional[int] = None) -> list[SessionResponse]:
        user_id = _user_id(user_id)
        sessions = self.store.list_for_user(
            user_id, TERMINAL_STATUSES, limit=limit or settings.HISTORY_LIMIT
        )
        return [session_view(s, user_id, with_duration=True) for s in sessions]

    # ----- 외부 화상 서비스 / 회의 중 중계 -----

    def report_video_signal(self, session_id: str, requester_id, signal: str) -> VideoSignalResult:
        """
        joined: join 처리
        auth_failed: 토큰 인증 실패 -> 공개 URL 로 폴백
        connection_failed: 본인 URL 로 재시도 안내 (공개 URL 도 함께)
        """
        session, role, user_id = self._party(session_id, requester_id)
        if signal == "joined":
            view = self.join(session_id, user_id)
            # join 직후 상대가 종료했으면 meeting 정보가 빠진다
            url = view.meeting.joinUrl if view.meeting is not None else session.public_url
            return VideoSignalResult("joined", url, session.public_url, view)

        if SessionStatus(session.status) not in JOINABLE[role]:
            raise InvalidState("This session is no longer available to join.", status=session.status)
        view = session_view(session, user_id)
        if signal == "auth_failed":
            logger.warning("Video auth failed for session %s (%s), falling back to public room", session_id, role.value)
            return VideoSignalResult("fallback", session.public_url, session.public_url, view)
        if signal == "connection_failed":
            logger.warning("Video connection failed for session %s (%s)", session_id, role.value)
            return VideoSignalResult("retry", session.url_for(role), session.public_url, view)
        raise ValueError(f"unknown video signal: {signal}")

    def relay(self, session_id: str, requester_id, kind: str, reason: Optional[str] = None) -> str:
        """회의 중 presence 이벤트를 상대에게 전달. 대상은 항상 세션에서 결정한다."""
        if kind not in RELAY_EVENTS:
            raise ValueError(f"unknown relay event: {kind}")
        allowed_role, event = RELAY_EVENTS[kind]
        session, role, _ = self._party(session_id, requester_id)
        if allowed_role is not None and role is not allowed_role:
            raise Forbidden(f"Only the {allowed_role.value} can send {kind}.")
        if session.status in TERMINAL_STATUSES and kind != "meeting_ended":
            raise InvalidState("This session is no longer active.", status=session.status)

        payload = {"sessionId": session.id}
        if kind == "moderator_joined":
            payload["message"] = "Moderator has joined the meeting"
        elif kind == "guest_joined":
            payload["message"] = "Guest has joined the meeting"
        else:
            payload["reason"] = reason or "Meeting ended by other participant"
        self._emit(session.counterpart_of(role), event, payload)
        return event
