"""Issuing HS256 access tokens for authenticated users."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

import jwt

from docagent.ctxdata import CTX_KEY_JWT_USER_ID


@dataclass(frozen=True)
class TokenPair:
    """An access token with its expiry and suggested refresh time (Unix seconds)."""

    access_token: str
    access_expire: int
    refresh_after: int


def get_jwt_token(secret: str, iat: int, seconds: int, user_id: int) -> str:
    """Sign a token issued at ``iat`` that expires ``seconds`` later."""
    claims = {
        "exp": iat + seconds,
        "iat": iat,
        CTX_KEY_JWT_USER_ID: user_id,
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def generate_token(
    secret: str,
    expire_seconds: int,
    user_id: int,
    now: Optional[int] = None,
) -> TokenPair:
    """Issue a token for ``user_id`` valid for ``expire_seconds``."""
    if now is None:
        now = int(time.time())
    token = get_jwt_token(secret, now, expire_seconds, user_id)
    return TokenPair(
        access_token=token,
        access_expire=now + expire_seconds,
        refresh_after=now + int(expire_seconds / 2),
    )