import enum
import uuid
from datetime import datetime
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from app.database import Base


class SessionStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    ACTIVE = "active"
    ENDED = "ended"


class Role(str, enum.Enum):
    """세션 내 역할. 토큰의 moderator 여부와 읽을 수 있는 URL 필드를 결정."""
    HOST = "host"
    GUEST = "guest"


LIVE_STATUSES = (SessionStatus.PENDING, SessionStatus.ACCEPTED, SessionStatus.ACTIVE)
TERMINAL_STATUSES = (SessionStatus.ENDED, SessionStatus.DECLINED)


def pair_key(user_a: int, user_b: int) -> str:
    """순서 없는 유저 쌍 키 (A,B)와 (B,A)가 같은 값."""
    low, high = sorted((int(user_a), int(user_b)))
    return f"{low}:{high}"


def new_session_id() -> str:
    return uuid.uuid4().hex


class LearningSession(Base):
    """
    두 유저 간 학습 세션. 삭제하지 않고 종료/거절 상태로 이력을 남긴다.
    live_pair_key는 진행 중(pending/accepted/active)일 때만 채워지고 유니크 제약으로
    같은 쌍에 진행 중 세션이 두 개 생기지 않게 한다.
    """
    __tablename__ = "learning_sessions"
    __table_args__ = (
        CheckConstraint("host_id <> guest_id", name="ck_learning_sessions_distinct_parties"),
        Index("ix_learning_sessions_host_status", "host_id", "status"),
        Index("ix_learning_sessions_guest_status", "guest_id", "status"),
    )

    id = Column(String(32), primary_key=True, default=new_session_id)
    room_id = Column(String, unique=True, nullable=False)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    guest_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(16), nullable=False, default=SessionStatus.PENDING.value)
    topic = Column(String, nullable=False, default="Learning Session")

    host_joined = Column(Boolean, nullable=False, default=False)
    guest_joined = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)

    # 회의 접속 정보. 토큰이 NULL이면 폴백(공개 URL) 모드
    domain = Column(String, nullable=False)
    host_token = Column(String, nullable=True)
    guest_token = Column(String, nullable=True)
    host_url = Column(String, nullable=False)
    guest_url = Column(String, nullable=False)
    public_url = Column(String, nullable=False)

    live_pair_key = Column(String, unique=True, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    host = relationship("User", foreign_keys=[host_id], lazy="joined")
    guest = relationship("User", foreign_keys=[guest_id], lazy="joined")

    def role_of(self, user_id) -> Role | None:
        if user_id == self.host_id:
            return Role.HOST
        if user_id == self.guest_id:
            return Role.GUEST
        return None

    def counterpart_of(self, role: Role) -> int:
        return self.guest_id if role is Role.HOST else self.host_id

    def token_for(self, role: Role) -> str | None:
        return self.host_token if role is Role.HOST else self.guest_token

    def url_for(self, role: Role) -> str:
        return self.host_url if role is Role.HOST else self.guest_url

    @property
    def duration_minutes(self) -> int | None:
        if self.started_at and self.ended_at:
            return round((self.ended_at - self.started_at).total_seconds() / 60)
        return None
