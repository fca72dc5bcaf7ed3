"""Reading the user id carried in verified JWT claims."""

from __future__ import annotations

import logging
from typing import Any, Mapping

log = logging.getLogger(__name__)

CTX_KEY_JWT_USER_ID = "jwtUserId"

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


class JwtError(Exception):
    """The token carries a user id that is not a 64-bit integer."""


def uid_from_claims(claims: Mapping[str, Any]) -> int:
    """Return the user id from the claims, or 0 when no numeric id is present.

    Raises JwtError when the id is numeric but not a 64-bit integer.
    """
    value = claims.get(CTX_KEY_JWT_USER_ID)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) or not _INT64_MIN <= value <= _INT64_MAX:
        log.error("uid_from_claims err: %r is not an int64", value)
        raise JwtError("invalid user id in token")
    return value