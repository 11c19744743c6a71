import uuid

from fastapi import Depends

from models.enums import ActorRole
from schemas.schema import Actor

from .validators import jwt_protect, optional_jwt


def _actor_from_claims(claims: dict) -> Actor:
    return Actor(
        id=uuid.UUID(str(claims["sub"])),
        role=ActorRole(claims.get("role", ActorRole.CLIENT.value)),
    )


async def get_current_actor(claims: dict = Depends(jwt_protect)) -> Actor:
    return _actor_from_claims(claims)


async def get_optional_actor(
    claims: dict | None = Depends(optional_jwt),
) -> Actor | None:
    """Guest bookings are allowed, so a missing token yields ``None``."""
    if claims is None:
        return None
    return _actor_from_claims(claims)
