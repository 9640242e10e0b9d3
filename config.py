import os
from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./skillsync.db")
    # 스토어 호출 상한 (초). 초과 시 ServiceUnavailable
    STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", 5))

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "fallback-for-local-dev")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

    # Jitsi: 시크릿이 없으면 공개 회의 URL(폴백 모드)로 동작
    JITSI_APP_ID = os.getenv("JITSI_APP_ID", "skillsync")
    JITSI_APP_SECRET = os.getenv("JITSI_APP_SECRET") or None
    JITSI_DOMAIN = os.getenv("JITSI_DOMAIN", "meet.jit.si")
    JITSI_TOKEN_TTL_HOURS = float(os.getenv("JITSI_TOKEN_TTL_HOURS", 2))

    HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", 20))
    CORS_ORIGINS = _csv(os.getenv("CORS_ORIGINS", "http://localhost:5173"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = int(os.getenv("PORT", 8000))

settings = Settings()
