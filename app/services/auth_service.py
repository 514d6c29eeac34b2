from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from loguru import logger

from app.core.config import Settings, settings


# Security setup
security = HTTPBearer()


class AuthService:
    def __init__(self, settings: Settings = settings):
        self.secret_key = settings.jwt_secret_key
        self.algorithm = settings.jwt_algorithm

    def create_access_token(self, data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        """Create JWT access token"""
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=24))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify JWT token and return payload"""
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.error(f"JWT verification failed: {e}")
            return None


# Global auth service instance
auth_service = AuthService()


# User model for type hints
class CurrentUser:
    def __init__(self, user_data: Dict[str, Any]):
        self.user_id: Union[int, str] = user_data["user_id"]
        self.username = user_data.get("username", str(self.user_id))


@dataclass
class RequestContext:
    """Everything an upload request needs to know about its caller"""
    user: CurrentUser
    user_root: str
    settings: Settings


# Dependency to get current user from JWT token
async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> CurrentUser:
    """
    Dependency to extract and validate current user from JWT token
    Returns user info if valid, raises HTTPException if invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = auth_service.verify_token(credentials.credentials)
    if not payload or "user_id" not in payload:
        raise credentials_exception

    return CurrentUser(payload)


async def get_request_context(user: CurrentUser = Depends(get_current_user)) -> RequestContext:
    return RequestContext(user=user, user_root=settings.user_root(user.user_id), settings=settings)
