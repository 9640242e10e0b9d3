# app/crud/users.py
from typing import Optional
from sqlalchemy.orm import Session

from app.crud.base import store_call
from app.models.user import User


class UserDirectory:
    """프로필 서비스 경계: 세션 코어는 존재 확인과 이름/이메일 조회만 필요하다."""

    def __init__(self, db: Session):
        self.db = db

    @store_call
    def get(self, user_id) -> Optional[User]:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            return None
        return self.db.query(User).filter(User.id == user_id).first()

    @store_call
    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()


def public_profile(user: Optional[User]) -> Optional[dict]:
    """알림/응답에 싣는 최소 정보."""
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email}
