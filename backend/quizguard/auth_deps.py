from __future__ import annotations
from typing import Any
import jwt
from uuid import UUID
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from quizguard.security import decode_token, is_admin

security = HTTPBearer()

async def get_claims(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict[str, Any]:
    token = credentials.credentials
    try:
        data = decode_token(token)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if data.get("type", "access") != "access":
        raise HTTPException(status_code=401, detail="Wrong token type")
    return data

async def get_participant_id(claims: dict[str, Any] = Depends(get_claims)) -> UUID:
    try:
        return UUID(str(claims.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid subject")

async def require_admin(
    claims: dict[str, Any] = Depends(get_claims),
    participant_id: UUID = Depends(get_participant_id),
) -> UUID:
    if not is_admin(claims):
        raise HTTPException(status_code=403, detail="Admin access required")
    return participant_id
