import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import ValidationError

from fundingapi.config import Settings, get_settings
from fundingapi.core.exceptions import AuthenticationError, AuthorizationError
from fundingapi.schemas.auth import TokenPayload


def create_access_token(
    data: dict, settings: Settings, expires_delta: Optional[timedelta] = None
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# Security scheme
security = HTTPBearer(auto_error=False)


def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> int:
    """JWT 토큰을 검증하고 user_id를 반환합니다."""
    if credentials is None:
        raise AuthenticationError("Missing bearer token")
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload.model_validate(payload).user_id
    except (JWTError, ValidationError):
        raise AuthenticationError("Invalid authentication credentials")


def verify_admin_token(
    x_admin_token: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """관리자 API 토큰 확인 (AUTH_TOKEN 미설정 시 관리자 API 비활성화)"""
    if not settings.AUTH_TOKEN:
        raise AuthorizationError("Admin API is disabled")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, settings.AUTH_TOKEN):
        raise AuthorizationError("Invalid admin token")


def verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """WEBHOOK_SECRET 이 설정된 경우에만 헤더 값을 비교합니다."""
    if not settings.WEBHOOK_SECRET:
        return
    if not x_webhook_secret or not hmac.compare_digest(
        x_webhook_secret, settings.WEBHOOK_SECRET
    ):
        raise AuthenticationError("Invalid webhook secret")
