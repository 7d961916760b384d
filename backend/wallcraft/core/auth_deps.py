"""用户认证依赖函数

认证本身由外部服务完成，这里只校验其签发的 JWT 并取出用户 ID（sub）。
"""

import jwt
from typing import Optional

from fastapi import Depends, Header

from wallcraft.core.config import Settings, get_settings
from wallcraft.core.errors import AuthError


def decode_user_id(token: str, settings: Settings) -> str:
    """校验 token 并返回用户 ID"""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("登录已过期")
    except jwt.PyJWTError:
        raise AuthError("无效的登录凭证")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("无效的登录凭证")
    return str(user_id)


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    获取当前登录用户 ID（必须登录）

    从 Authorization header 中解析 Bearer token
    """
    if not authorization:
        raise AuthError()

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthError("无效的 Authorization 头")
    if scheme.lower() != "bearer":
        raise AuthError("不支持的认证方式")

    return decode_user_id(token, settings)

