"""
JWT 令牌解析，sub 为用户 id。令牌由上游账号服务签发，本服务只做校验。
"""
from typing import Optional

from jose import JWTError, jwt

from ragpipe.core.config import settings


def decode_access_token(token: str) -> Optional[str]:
    """解析令牌，返回用户 id；无效或过期返回 None"""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    sub = payload.get("sub")
    return str(sub) if sub else None
