# app/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def make_engine(url: str, timeout: float = settings.STORE_TIMEOUT_SECONDS, **kwargs):
    """스토어 타임아웃을 드라이버 레벨에 걸어 둔 엔진 생성."""
    # SQLite일 때만 check_same_thread 옵션 적용
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
        return create_engine(url, connect_args=connect_args, **kwargs)
    connect_args = {
        "connect_timeout": max(1, int(timeout)),
        "options": f"-c statement_timeout={int(timeout * 1000)}",
    }
    return create_engine(url, connect_args=connect_args, pool_timeout=timeout, pool_pre_ping=True, **kwargs)


engine = make_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# DB 세션 의존성 주입용
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# 오래 열려 있는 연결(WebSocket)은 요청 단위 세션 대신 팩토리를 받아 작업마다 세션을 연다
def get_session_factory():
    return SessionLocal
