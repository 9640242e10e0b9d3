"""
로컬 개발용 샘플 유저 생성. 이미 있는 이메일은 건너뛰므로 여러 번 실행해도 된다.

사용법 (프로젝트 루트에서):
  python scripts/seed_users.py
"""
import sys
from pathlib import Path

# 프로젝트 루트를 import 경로에 추가 (scripts/ 에서 직접 실행할 때)
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.exc import SQLAlchemyError

from app.api.auth import PWD_CONTEXT
from app.database import Base, SessionLocal, engine
from app.models.user import User

SAMPLE_PASSWORD = "password123"

SAMPLE_USERS = [
    {
        "name": "Sarah Chen",
        "email": "sarah@example.com",
        "skills": ["React", "JavaScript", "UI/UX Design", "Figma"],
        "learning_goals": ["Machine Learning", "Python", "Data Science"],
    },
    {
        "name": "Alex Rodriguez",
        "email": "alex@example.com",
        "skills": ["Python", "Machine Learning", "Data Science", "TensorFlow"],
        "learning_goals": ["React", "Frontend Development", "UI/UX Design"],
    },
    {
        "name": "Maya Patel",
        "email": "maya@example.com",
        "skills": ["Node.js", "Express", "MongoDB", "DevOps"],
        "learning_goals": ["React Native", "Mobile Development", "Swift"],
    },
    {
        "name": "Jordan Kim",
        "email": "jordan@example.com",
        "skills": ["Swift", "iOS Development", "React Native", "Mobile UI"],
        "learning_goals": ["Backend Development", "Node.js", "Database Design"],
    },
    {
        "name": "Emily Johnson",
        "email": "emily@example.com",
        "skills": ["Digital Marketing", "Content Strategy", "SEO", "Analytics"],
        "learning_goals": ["Web Development", "JavaScript", "No-Code Tools"],
    },
]


def seed(db) -> int:
    """없는 샘플 유저만 추가하고 추가한 수를 반환."""
    existing = {email for (email,) in db.query(User.email).all()}
    created = 0
    for sample in SAMPLE_USERS:
        if sample["email"] in existing:
            continue
        db.add(User(hashed_password=PWD_CONTEXT.hash(SAMPLE_PASSWORD), **sample))
        created += 1
    db.commit()
    return created


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        created = seed(db)
        print(f"샘플 유저 {created}명 추가 (비밀번호: {SAMPLE_PASSWORD})")
        return 0
    except SQLAlchemyError as e:
        print(f"오류: {e}", file=sys.stderr)
        db.rollback()
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
