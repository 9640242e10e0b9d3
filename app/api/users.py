from fastapi import APIRouter, Depends
from app.models.user import User
from app.schemas.user import UserProfile, to_profile
from app.api.auth import get_current_user

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=UserProfile)
def get_my_profile(current_user: User = Depends(get_current_user)):
    """
    현재 로그인한 사용자의 프로필. 클라이언트가 알림 채널 연결 전에 자기 id 를 확인하는 용도.
    """
    return to_profile(current_user)
