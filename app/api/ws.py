import asyncio
import functools
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.api.auth import user_id_from_token
from app.api.sessions import get_issuer
from app.crud.users import UserDirectory
from app.database import get_session_factory
from app.errors import ServiceUnavailable, SessionError
from services.meeting_credentials import MeetingCredentialIssuer
from services.notifier import Notifier, get_notifier
from services.session_lifecycle import RELAY_EVENTS, SessionLifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["websocket"])

POLICY_VIOLATION = 1008
TRY_AGAIN_LATER = 1013


async def _run_sync(func, *args):
    """DB 작업은 이벤트 루프 밖에서."""
    return await asyncio.get_running_loop().run_in_executor(None, functools.partial(func, *args))


def _lookup_user_id(session_factory, user_id: Optional[int]) -> Optional[int]:
    if user_id is None:
        return None
    db = session_factory()
    try:
        user = UserDirectory(db).get(user_id)
        return user.id if user is not None else None
    finally:
        db.close()


def _call_lifecycle(session_factory, issuer, notifier, method: str, *args):
    # 메시지 하나마다 세션을 열고 닫는다. 소켓이 열려 있는 동안 커넥션을 붙잡지 않음
    db = session_factory()
    try:
        lifecycle = SessionLifecycle(db, issuer=issuer, notifier=notifier)
        return getattr(lifecycle, method)(*args)
    finally:
        db.close()


async def _handle_message(websocket: WebSocket, run, user_id: int, data: dict):
    kind = data.get("type")
    session_id = data.get("sessionId")

    if kind == "ping":
        await websocket.send_json({"event": "pong"})
        return

    if kind in RELAY_EVENTS:
        event = await run("relay", session_id, user_id, kind, data.get("reason"))
        await websocket.send_json({"event": "relayed", "data": {"type": kind, "event": event, "sessionId": session_id}})
        return

    if kind == "video_signal":
        signal = data.get("signal")
        if signal not in ("joined", "auth_failed", "connection_failed"):
            await websocket.send_json({"event": "error", "data": {"detail": f"Unknown video signal: {signal}"}})
            return
        result = await run("report_video_signal", session_id, user_id, signal)
        await websocket.send_json({
            "event": "video_signal_result",
            "data": {
                "sessionId": session_id,
                "action": result.action,
                "url": result.url,
                "publicUrl": result.public_url,
            },
        })
        return

    await websocket.send_json({"event": "error", "data": {"detail": f"Unknown message type: {kind}"}})


@router.websocket("/notifications")
async def notifications_endpoint(
    websocket: WebSocket,
    session_factory=Depends(get_session_factory),
    notifier: Notifier = Depends(get_notifier),
    issuer: MeetingCredentialIssuer = Depends(get_issuer),
):
    """
    유저별 알림 채널. ?token=<access token> 으로 인증한 뒤 세션 이벤트를 push 받는다.
    클라이언트 -> 서버 메시지:
      {"type": "ping"}
      {"type": "moderator_joined" | "guest_joined" | "meeting_ended", "sessionId": ...}
      {"type": "video_signal", "sessionId": ..., "signal": "joined" | "auth_failed" | "connection_failed"}
    끊기면 채널만 제거되고 세션 상태는 바뀌지 않는다.
    """
    await websocket.accept()
    try:
        user_id = await _run_sync(
            _lookup_user_id, session_factory, user_id_from_token(websocket.query_params.get("token"))
        )
    except ServiceUnavailable:
        await websocket.close(code=TRY_AGAIN_LATER, reason="Service temporarily unavailable")
        return
    if user_id is None:
        await websocket.close(code=POLICY_VIOLATION, reason="Invalid or missing token")
        return

    async def run(method: str, *args):
        return await _run_sync(_call_lifecycle, session_factory, issuer, notifier, method, *args)

    notifier.register_channel(user_id, websocket)
    await websocket.send_json({"event": "connected", "data": {"userId": user_id}})
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"event": "error", "data": {"detail": "Messages must be JSON."}})
                continue
            if not isinstance(data, dict):
                await websocket.send_json({"event": "error", "data": {"detail": "Messages must be JSON objects."}})
                continue
            try:
                await _handle_message(websocket, run, user_id, data)
            except SessionError as e:
                await websocket.send_json({"event": "error", "data": e.to_dict()})
    except WebSocketDisconnect:
        logger.info("Notification channel closed for user %s", user_id)
    finally:
        notifier.unregister_channel(websocket)
