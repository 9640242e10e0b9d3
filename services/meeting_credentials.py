"""
Jitsi 회의 자격증명 발급.

방 이름 생성 + 참가자별 JWT 서명 + 접속 URL 구성. 서명 키가 없거나 서명이 실패해도
예외를 던지지 않고 status=DEGRADED 결과를 돌려준다. 호출자는 이 값으로
인증 URL 대신 공개(폴백) URL을 안내한다.
"""
import enum
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from jose import jwt
from jose.exceptions import JOSEError

from config import settings

logger = logging.getLogger(__name__)

ROOM_PREFIX = "SkillSync"


class IssuanceStatus(str, enum.Enum):
    ISSUED = "issued"
    # 서명 실패: 에러가 아니라 폴백 신호
    DEGRADED = "degraded"


@dataclass(frozen=True)
class Identity:
    name: str
    email: Optional[str] = None


@dataclass(frozen=True)
class MeetingCredentials:
    room_id: str
    domain: str
    status: IssuanceStatus
    host_token: Optional[str]
    guest_token: Optional[str]
    host_url: str
    guest_url: str
    public_url: str

    @property
    def degraded(self) -> bool:
        return self.status is IssuanceStatus.DEGRADED


class RoomIdGenerator:
    """seed + 나노초 시각 + 카운터 + uuid. 동시에 호출해도 겹치지 않는다."""

    def __init__(self, prefix: str = ROOM_PREFIX):
        self.prefix = prefix
        self._counter = 0
        self._lock = threading.Lock()

    def __call__(self, seed: str) -> str:
        with self._lock:
            self._counter += 1
            counter = self._counter
        safe_seed = "".join(c if c.isalnum() or c in "-_" else "-" for c in seed) or "room"
        return f"{self.prefix}-{safe_seed}-{time.time_ns()}-{counter}-{uuid.uuid4().hex[:8]}"


def public_room_url(domain: str, room_id: str) -> str:
    return f"https://{domain}/{room_id}"


def room_url(domain: str, room_id: str, token: Optional[str]) -> str:
    if not token:
        return public_room_url(domain, room_id)
    return f"{public_room_url(domain, room_id)}?jwt={token}"


def client_config(authenticated: bool) -> dict:
    """프론트 임베드용 Jitsi 설정."""
    return {
        "startWithAudioMuted": False,
        "startWithVideoMuted": False,
        "enableWelcomePage": False,
        "enableClosePage": False,
        "prejoinPageEnabled": False,
        "requireDisplayName": True,
        "disableModeratorIndicator": False,
        "enableUserRolesBasedOnToken": authenticated,
        "liveStreamingEnabled": False,
        "recordingEnabled": False,
        "fileRecordingsEnabled": False,
        "localRecordingEnabled": False,
        "transcribingEnabled": False,
        "channelLastN": 4,
        "startLastN": 1,
        "disableInviteFunctions": True,
        "doNotStoreRoom": True,
    }


class MeetingCredentialIssuer:
    def __init__(
        self,
        app_id: str = settings.JITSI_APP_ID,
        app_secret: Optional[str] = settings.JITSI_APP_SECRET,
        domain: str = settings.JITSI_DOMAIN,
        ttl_hours: float = settings.JITSI_TOKEN_TTL_HOURS,
        room_ids: Optional[RoomIdGenerator] = None,
        clock=time.time,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.domain = domain
        self.ttl_seconds = int(ttl_hours * 3600)
        self.room_ids = room_ids or RoomIdGenerator()
        self.clock = clock

    def sign(self, room_id: str, identity: Identity, moderator: bool) -> Optional[str]:
        """참가자 토큰 서명. 실패하면 None (폴백)."""
        if not self.app_secret:
            return None
        now = int(self.clock())
        payload = {
            "iss": self.app_id,
            "sub": self.domain,
            "aud": "jitsi",
            "iat": now,
            "nbf": now,
            "exp": now + self.ttl_seconds,
            "jti": str(uuid.uuid4()),
            "room": room_id,
            "context": {
                "user": {
                    "id": str(uuid.uuid4()),
                    "name": identity.name,
                    "email": identity.email,
                    "avatar": f"https://ui-avatars.com/api/?name={quote(identity.name)}&background=3b82f6&color=fff",
                    "moderator": "true" if moderator else "false",
                },
                "features": {
                    "livestreaming": False,
                    "recording": False,
                    "transcription": False,
                    "outbound-call": False,
                },
            },
        }
        try:
            return jwt.encode(payload, self.app_secret, algorithm="HS256")
        except (JOSEError, TypeError, ValueError) as e:
            logger.warning("Meeting token signing failed for room %s: %s", room_id, e)
            return None

    def issue(self, room_seed: str, host: Identity, guest: Identity) -> MeetingCredentials:
        room_id = self.room_ids(room_seed)
        host_token = self.sign(room_id, host, moderator=True)
        guest_token = self.sign(room_id, guest, moderator=False)

        # 두 토큰이 모두 있어야 인증 모드
        if host_token and guest_token:
            status = IssuanceStatus.ISSUED
        else:
            status = IssuanceStatus.DEGRADED
            host_token = guest_token = None
            logger.warning("Meeting credentials degraded for room %s, using public URL", room_id)

        return MeetingCredentials(
            room_id=room_id,
            domain=self.domain,
            status=status,
            host_token=host_token,
            guest_token=guest_token,
            host_url=room_url(self.domain, room_id, host_token),
            guest_url=room_url(self.domain, room_id, guest_token),
            public_url=public_room_url(self.domain, room_id),
        )
