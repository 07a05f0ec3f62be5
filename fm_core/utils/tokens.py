"""
JWT 令牌
用户身份由上游登录服务签发，这里只负责签发（测试/内部调用）与校验
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from jose import JWTError, jwt

from fm_core.config import get_settings
from fm_core.utils.errors import UnauthorizedError


def create_access_token(
    user_id: int,
    role: str = "user",
    expires_delta: Optional[timedelta] = None
) -> str:
    """创建访问令牌"""
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "type": "access",
        "jti": str(uuid4()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    """解码并校验访问令牌"""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        raise UnauthorizedError(code="INVALID_TOKEN", detail=f"Token validation failed: {str(e)}")

    if payload.get("type") != "access":
        raise UnauthorizedError(code="INVALID_TOKEN", detail="Not an access token")

    sub = payload.get("sub")
    if sub is None or not str(sub).isdigit():
        raise UnauthorizedError(code="INVALID_TOKEN", detail="Token subject is missing")
    return payload
