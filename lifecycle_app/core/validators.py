import uuid

import jwt
from fastapi import HTTPException, Request

from models.enums import ActorRole

from .settings import settings


def decode_http_access_token(token: str) -> dict:
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.ALGORITHM],
    )

    user_id = payload.get("sub")
    if not user_id:
        raise jwt.InvalidTokenError("Token missing user ID")

    try:
        uuid.UUID(str(user_id))
        ActorRole(payload.get("role", ActorRole.CLIENT.value))
    except ValueError:
        raise jwt.InvalidTokenError("Token carries an invalid subject or role")

    return payload


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return request.cookies.get("access_token")


async def jwt_protect(request: Request) -> dict:
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        return decode_http_access_token(token)

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def optional_jwt(request: Request) -> dict | None:
    if not _bearer_token(request):
        return None
    return await jwt_protect(request)
