from dotenv import load_dotenv

load_dotenv()

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import auth, sessions, users, ws
from app.database import Base, engine
from app.errors import SessionError, session_error_handler
from app.models import learning_session, user  # noqa: F401  (create_all 대상 등록)
from config import settings
from services.notifier import notifier

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("skillsync")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 테이블 생성 후 알림 채널 맵을 현재 루프에 묶는다
    Base.metadata.create_all(bind=engine)
    notifier.bind(asyncio.get_running_loop())
    logger.info("SkillSync session service starting up")
    yield
    await notifier.shutdown()
    logger.info("SkillSync session service shut down")


app = FastAPI(title="SkillSync Sessions", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(SessionError, session_error_handler)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(sessions.router)
app.include_router(ws.router)


@app.get("/")
def read_root():
    return {"Hello": "SkillSync", "docs": f"http://localhost:{settings.PORT}/docs"}


@app.get("/health")
async def health():
    """서버 상태 확인용 헬스체크 API"""
    return {
        "status": "ok",
        "service": "SkillSync-sessions",
        "channels": notifier.connection_count,
        "timestamp": datetime.utcnow().isoformat(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT)
