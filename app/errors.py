"""
세션 코어 에러 분류.

NotFound / Forbidden / InvalidState / SelfInvite / DuplicateSession 은 호출자가 바로
대응할 수 있는 정상 결과이고, ServiceUnavailable 만 재시도 대상이다.
자격증명 발급 실패(폴백)는 예외가 아니라 MeetingCredentials.status 로 표현한다.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class SessionError(Exception):
    status_code = 400
    message = "The request could not be completed."

    def __init__(self, message: str | None = None, **extra):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, **self.extra}


class NotFound(SessionError):
    status_code = 404
    message = "Session not found."


class TargetNotFound(NotFound):
    message = "The user you invited does not exist."


class Forbidden(SessionError):
    status_code = 403
    message = "You are not a participant of this session."


class InvalidState(SessionError):
    status_code = 409
    message = "This session can no longer be changed this way."


class SelfInvite(SessionError):
    status_code = 400
    message = "You cannot invite yourself."


class DuplicateSession(SessionError):
    status_code = 409
    message = "You already have an active session with this person."

    def __init__(self, session_id: str, room_id: str | None = None, message: str | None = None):
        super().__init__(message, sessionId=session_id, roomId=room_id)
        self.session_id = session_id
        self.room_id = room_id


class ServiceUnavailable(SessionError):
    status_code = 503
    message = "The session service is temporarily unavailable. Please try again."


async def session_error_handler(request: Request, exc: SessionError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
