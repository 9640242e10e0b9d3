# app/crud/session_store.py
import logging
from typing import Iterable, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.crud.base import store_call
from app.errors import DuplicateSession, InvalidState, NotFound, ServiceUnavailable
from app.models.learning_session import (
    LIVE_STATUSES,
    LearningSession,
    Role,
    SessionStatus,
    pair_key,
)

logger = logging.getLogger(__name__)


def _values(statuses: Iterable[SessionStatus]) -> list[str]:
    return [SessionStatus(s).value for s in statuses]


class SessionStore:
    """learning_sessions 테이블 접근. 상태 전이는 모두 조건부 UPDATE 한 번으로 처리한다."""

    def __init__(self, db: Session):
        self.db = db

    @store_call
    def create(self, session: LearningSession) -> LearningSession:
        host_id, guest_id = session.host_id, session.guest_id
        session.status = SessionStatus.PENDING.value
        session.live_pair_key = pair_key(host_id, guest_id)
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError as e:
            # 동시에 같은 쌍으로 생성된 세션이 먼저 커밋된 경우
            self.db.rollback()
            existing = self.find_active_between(host_id, guest_id)
            if existing is not None:
                raise DuplicateSession(existing.id, existing.room_id) from e
            logger.error("Session insert rejected without a live duplicate: %s", e)
            raise ServiceUnavailable("Could not create the session. Please try again.") from e
        self.db.refresh(session)
        return session

    @store_call
    def get(self, session_id: str) -> LearningSession:
        session = (
            self.db.query(LearningSession)
            .populate_existing()
            .filter(LearningSession.id == session_id)
            .first()
        )
        if session is None:
            raise NotFound()
        return session

    @store_call
    def find_active_between(self, user_a: int, user_b: int) -> Optional[LearningSession]:
        return (
            self.db.query(LearningSession)
            .populate_existing()
            .filter(
                or_(
                    (LearningSession.host_id == user_a) & (LearningSession.guest_id == user_b),
                    (LearningSession.host_id == user_b) & (LearningSession.guest_id == user_a),
                ),
                LearningSession.status.in_(_values(LIVE_STATUSES)),
            )
            .order_by(LearningSession.created_at.desc())
            .first()
        )

    @store_call
    def try_update(
        self,
        session_id: str,
        values: dict,
        expected_statuses: Optional[Sequence[SessionStatus]] = None,
        conditions: Sequence = (),
    ) -> bool:
        """조건이 맞을 때만 적용. 적용 여부를 반환."""
        values = dict(values)
        if "status" in values:
            values["status"] = SessionStatus(values["status"]).value
        values["version"] = LearningSession.version + 1

        query = self.db.query(LearningSession).filter(LearningSession.id == session_id)
        if expected_statuses:
            query = query.filter(LearningSession.status.in_(_values(expected_statuses)))
        for condition in conditions:
            query = query.filter(condition)
        updated = query.update(values, synchronize_session=False)
        self.db.commit()
        return updated > 0

    def update(
        self,
        session_id: str,
        values: dict,
        expected_statuses: Optional[Sequence[SessionStatus]] = None,
        conditions: Sequence = (),
        message: Optional[str] = None,
    ) -> LearningSession:
        if self.try_update(session_id, values, expected_statuses, conditions):
            return self.get(session_id)
        current = self.get(session_id)
        raise InvalidState(message or f"This session is already {current.status}.", status=current.status)

    @store_call
    def list_for_user(
        self,
        user_id: int,
        statuses: Iterable[SessionStatus],
        role: Optional[Role] = None,
        limit: Optional[int] = None,
    ) -> list[LearningSession]:
        query = self.db.query(LearningSession).populate_existing()
        if role is Role.HOST:
            query = query.filter(LearningSession.host_id == user_id)
        elif role is Role.GUEST:
            query = query.filter(LearningSession.guest_id == user_id)
        else:
            query = query.filter(
                or_(LearningSession.host_id == user_id, LearningSession.guest_id == user_id)
            )
        query = query.filter(LearningSession.status.in_(_values(statuses)))
        query = query.order_by(LearningSession.created_at.desc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()
