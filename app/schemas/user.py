from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, EmailStr, Field

class UserProfile(BaseModel):
    id: int
    email: EmailStr
    name: str
    bio: Optional[str] = None
    skills: List[str] = []
    learningGoals: List[str] = []
    createdAt: Optional[datetime] = None

class RegisterRequest(BaseModel): # 회원가입 요청
    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str = Field(..., min_length=1)
    bio: Optional[str] = None
    skills: List[str] = Field(default_factory=list, max_length=30)
    learningGoals: List[str] = Field(default_factory=list, max_length=30)

class LoginRequest(BaseModel): # 로그인 요청
    email: EmailStr
    password: str

class LoginResponse(BaseModel):
    status: str = "ok"
    token: str
    userProfile: UserProfile


def to_profile(user) -> UserProfile:
    return UserProfile(
        id=user.id,
        email=user.email,
        name=user.name,
        bio=user.bio,
        skills=user.skills or [],
        learningGoals=user.learning_goals or [],
        createdAt=user.created_at,
    )
