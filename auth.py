import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, Field

import moderation
import storage
from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, BCRYPT_ROUNDS, SECRET_KEY
from database import utcnow
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

# Auth setup
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login")


# Helpers

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def reject_banned(*texts: Optional[str]) -> None:
    banned = storage.find_banned_name(*texts)
    if banned:
        raise HTTPException(status_code=400, detail=f"Name contains a banned word: {banned}")


def authenticate_token(token: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Resolve a bearer token to (user, session) or raise 401/403."""
    credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        session_id: str = payload.get("sid")
        if user_id is None or session_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    session = storage.get_session(session_id)
    if not session or not session.get("is_active") or session.get("user_id") != user_id:
        raise HTTPException(status_code=401, detail="Session expired")
    user = storage.get_user(user_id)
    if not user:
        raise credentials_exception
    user = moderation.refresh_block(user)
    if user.get("is_blocked"):
        raise HTTPException(status_code=403, detail=moderation.block_details(user))
    return storage.public_user(user), session


def get_current_session(token: str = Depends(oauth2_scheme)):
    return authenticate_token(token)


def get_current_user(auth=Depends(get_current_session)):
    return auth[0]


def require_role(*roles):
    allowed = {getattr(r, "value", r) for r in roles}

    def role_dep(current_user=Depends(get_current_user)):
        if current_user.get("role") not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user
    return role_dep


def start_session(user: Dict[str, Any]) -> "TokenResponse":
    session = storage.create_session(user["id"])
    updated = storage.update_user(user["id"], {"last_login_at": utcnow()})
    token = create_access_token({"sub": user["id"], "sid": session["id"]})
    return TokenResponse(access_token=token, user=storage.public_user(updated))


# Request/Response Models
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=40)
    password: str = Field(..., min_length=6, max_length=72)
    display_name: Optional[str] = Field(None, max_length=60)


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class UpdateProfileRequest(BaseModel):
    display_name: Optional[str] = Field(None, max_length=60)
    avatar_url: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=1000)


class UpdatePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=72)


# Auth Routes
@router.post("/register", response_model=TokenResponse)
def register(payload: RegisterRequest):
    if not storage.get_settings().get("registration_enabled", True):
        raise HTTPException(status_code=403, detail="Registration is disabled")
    reject_banned(payload.username, payload.display_name)
    user_doc = UserSchema(
        username=payload.username,
        password_hash=hash_password(payload.password),
        display_name=payload.display_name or payload.username,
    )
    try:
        user = storage.create_user(user_doc)
    except storage.ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Registered user %s", user["username"])
    return start_session(user)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest):
    user = storage.get_user_by_username(payload.username)
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    user = moderation.refresh_block(user)
    if user.get("is_blocked"):
        logger.warning("Blocked user %s tried to log in", user["username"])
        raise HTTPException(status_code=403, detail=moderation.block_details(user))
    return start_session(user)


@router.post("/logout")
def logout(auth=Depends(get_current_session)):
    _, session = auth
    storage.end_session(session["id"])
    return {"message": "Logged out"}


@router.get("/user")
def me(current_user=Depends(get_current_user)):
    return current_user


@router.patch("/user/profile")
def update_profile(payload: UpdateProfileRequest, current_user=Depends(get_current_user)):
    updates = payload.model_dump(exclude_unset=True)
    reject_banned(updates.get("display_name"))
    user = storage.update_user(current_user["id"], updates)
    return storage.public_user(user)


@router.patch("/user/password")
def update_password(payload: UpdatePasswordRequest, current_user=Depends(get_current_user)):
    user = storage.get_user(current_user["id"])
    if not user or not verify_password(payload.current_password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    storage.update_user(user["id"], {"password_hash": hash_password(payload.new_password)})
    return {"message": "Password updated"}
