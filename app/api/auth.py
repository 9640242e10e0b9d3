from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.crud.users import UserDirectory
from app.database import get_db
from app.models.user import User
from app.schemas.user import LoginRequest, LoginResponse, RegisterRequest, UserProfile, to_profile
from config import settings

PWD_CONTEXT = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
SECRET_KEY = settings.JWT_SECRET_KEY
ALGORITHM = settings.JWT_ALGORITHM
ACCESS_TOKEN_TTL = timedelta(days=7)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def create_access_token(user_id: int) -> str:
    expire = datetime.utcnow() + ACCESS_TOKEN_TTL
    return jwt.encode({"sub": str(user_id), "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def user_id_from_token(token: Optional[str]) -> Optional[int]:
    """토큰의 sub(user id). 검증 실패 시 None. WebSocket 인증에서도 사용."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        return None


@router.post("/register", response_model=UserProfile, status_code=201)
def register(user_data: RegisterRequest, db: Session = Depends(get_db)):
    email = user_data.email.lower()
    # 1. 중복 체크
    if UserDirectory(db).get_by_email(email):
        raise HTTPException(status_code=400, detail="An account with this email already exists.")

    # 2. 유저 저장
    new_user = User(
        email=email,
        hashed_password=PWD_CONTEXT.hash(user_data.password),
        name=user_data.name.strip(),
        bio=user_data.bio,
        skills=user_data.skills,
        learning_goals=user_data.learningGoals,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    return to_profile(new_user)


@router.post("/login", response_model=LoginResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)):
    user = UserDirectory(db).get_by_email(request.email)
    if not user or not PWD_CONTEXT.verify(request.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    return LoginResponse(token=create_access_token(user.id), userProfile=to_profile(user))


# Swagger Authorize용: OAuth2 형식(form)으로 받아 access_token 반환
@router.post("/token")
def login_token(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """
    Swagger/OpenAPI Authorize 버튼용. username에 이메일, password에 비밀번호를 넣으세요.
    """
    user = UserDirectory(db).get_by_email(form.username)
    if not user or not PWD_CONTEXT.verify(form.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    return {"access_token": create_access_token(user.id), "token_type": "bearer"}


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")

def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials.",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user_id = user_id_from_token(token)
    if user_id is None:
        raise credentials_exception

    user = UserDirectory(db).get(user_id)
    if user is None:
        raise credentials_exception
    return user
