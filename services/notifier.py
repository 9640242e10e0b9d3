"""
실시간 알림 팬아웃.

프로세스 전역 객체 하나(notifier)가 user id -> 연결된 WebSocket 채널들을 들고 있다.
- 앱 시작 시 bind(loop) 로 이벤트 루프를 묶고
- 연결/해제 시 register_channel / unregister_channel
- 종료 시 shutdown()
세션 상태의 원본은 DB이고, 여기는 전달 최적화일 뿐이다. 연결이 없으면 조용히 무시하고
재시도나 보관도 하지 않는다. 클라이언트는 재연결 시 조회 API로 상태를 맞춘다.
"""
import asyncio
import functools
import logging
import threading
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from starlette.websockets import WebSocketDisconnect

logger = logging.getLogger(__name__)

_SEND_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)


def _log_send_failure(user_id, event: str, future) -> None:
    """예약된 send 가 예상 밖의 오류로 끝났을 때 기록 (Task, concurrent Future 공용)."""
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error("Delivering %s to user %s failed: %r", event, user_id, error, exc_info=error)


class Notifier:
    def __init__(self):
        self._channels: dict[str, dict[int, Any]] = {}
        self._owners: dict[int, str] = {}
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def register_channel(self, user_id, channel) -> None:
        key = str(user_id)
        with self._lock:
            self._channels.setdefault(key, {})[id(channel)] = channel
            self._owners[id(channel)] = key
        logger.info("Channel registered for user %s (%d open)", key, len(self.channels_for(key)))

    def unregister_channel(self, channel) -> None:
        with self._lock:
            key = self._owners.pop(id(channel), None)
            if key is None:
                return
            user_channels = self._channels.get(key, {})
            user_channels.pop(id(channel), None)
            if not user_channels:
                self._channels.pop(key, None)
        logger.info("Channel unregistered for user %s", key)

    def channels_for(self, user_id) -> list:
        with self._lock:
            return list(self._channels.get(str(user_id), {}).values())

    def is_connected(self, user_id) -> bool:
        return bool(self.channels_for(user_id))

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._owners)

    async def send(self, user_id, event: str, payload: dict) -> int:
        """유저의 모든 채널로 전송. 전달된 채널 수를 반환."""
        message = jsonable_encoder({"event": event, "data": payload})
        delivered = 0
        for channel in self.channels_for(user_id):
            try:
                await channel.send_json(message)
                delivered += 1
            except _SEND_ERRORS as e:
                logger.warning("Dropping dead channel for user %s: %s", user_id, e)
                self.unregister_channel(channel)
        return delivered

    def publish(self, user_id, event: str, payload: dict) -> bool:
        """
        동기 코드(스레드풀의 라우트)에서 호출하는 진입점. 바인딩된 루프에 send 를 예약하고
        바로 반환한다. 예약했으면 True.
        """
        loop = self._loop
        if loop is None or loop.is_closed() or not self.is_connected(user_id):
            return False

        coro = self.send(user_id, event, payload)
        try:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                future = loop.create_task(coro)
            else:
                future = asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError as e:
            coro.close()
            logger.warning("Could not schedule %s for user %s: %s", event, user_id, e)
            return False
        future.add_done_callback(functools.partial(_log_send_failure, user_id, event))
        return True

    async def shutdown(self) -> None:
        with self._lock:
            channels = [c for user_channels in self._channels.values() for c in user_channels.values()]
            self._channels.clear()
            self._owners.clear()
        for channel in channels:
            try:
                await channel.close(code=1001)
            except _SEND_ERRORS as e:
                logger.debug("Channel already closed at shutdown: %s", e)
        self._loop = None
        logger.info("Notifier shut down, %d channels closed", len(channels))


notifier = Notifier()


def get_notifier() -> Notifier:
    return notifier
