# auth.py — Who may manage projects, integrations and workflow rules
#
# Board members log in with email + password and carry a short-lived JWT.
# Integration and workflow rule changes need org_admin or above; any member
# may work on projects and tasks. Tracker webhooks never pass through here,
# each delivery is checked against its integration's HMAC secret instead.

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from collections import defaultdict

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User, UserRole

logger = logging.getLogger("boardsync.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "⚠️  JWT_SECRET_KEY not set. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

security = HTTPBearer()


class LoginThrottle:
    """Failed logins per email within a sliding window; one process only"""

    def __init__(self, max_failures: int, window_minutes: int):
        self.max_failures = max_failures
        self.window = timedelta(minutes=window_minutes)
        self._failures: Dict[str, List[datetime]] = defaultdict(list)

    def check(self, email: str) -> None:
        cutoff = datetime.now(timezone.utc) - self.window
        recent = [t for t in self._failures[email] if t > cutoff]
        self._failures[email] = recent
        if len(recent) >= self.max_failures:
            logger.warning(f"Login for {email} locked after {len(recent)} failures")
            minutes = int(self.window.total_seconds() // 60)
            raise HTTPException(
                status_code=429,
                detail=f"Too many login attempts. Try again in {minutes} minutes.",
            )

    def record_failure(self, email: str) -> None:
        self._failures[email].append(datetime.now(timezone.utc))

    def reset(self, email: str) -> None:
        self._failures.pop(email, None)


login_throttle = LoginThrottle(
    max_failures=int(os.getenv("LOGIN_MAX_FAILURES", "5")),
    window_minutes=int(os.getenv("LOGIN_LOCKOUT_MINUTES", "15")),
)


# ============================================================
# ROLE HIERARCHY
# ============================================================

ROLE_HIERARCHY = {
    UserRole.SUPER_ADMIN: 4,
    UserRole.ORG_ADMIN: 3,
    UserRole.POWER_USER: 2,
    UserRole.USER: 1,
}


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserLogin(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    id: str
    email: str
    display_name: str
    organisation_id: str
    role: str
    is_active: bool


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        login_throttle.check(email)

        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            login_throttle.record_failure(email)
            return None
        if not user.is_active or user.deleted_at is not None:
            return None

        login_throttle.reset(email)
        return user


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user or not user.is_active or user.deleted_at is not None:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    return CurrentUser(
        id=user.id,
        email=user.email,
        display_name=user.display_name or "",
        organisation_id=user.organisation_id,
        role=user.role.value if isinstance(user.role, UserRole) else user.role,
        is_active=user.is_active,
    )


def require_min_role(min_role: UserRole):
    """Dependency factory: require user role level >= min_role"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        user_level = ROLE_HIERARCHY.get(UserRole(user.role), 0)
        required_level = ROLE_HIERARCHY.get(min_role, 0)
        if user_level < required_level:
            raise HTTPException(status_code=403, detail="Insufficient role level")
        return user
    return _check
