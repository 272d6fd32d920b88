from __future__ import annotations
from typing import Any
import jwt
from quizguard.config import settings

# Tokens are issued by the identity provider; this service only verifies them.

def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])

def is_admin(claims: dict[str, Any]) -> bool:
    return claims.get("role") == "admin"
