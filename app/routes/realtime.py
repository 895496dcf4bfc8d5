"""
realtime.py
-----------
Purpose:
    Presence endpoints backed by the realtime session registry.

    - Secured with `auth_dependency`; callers send
      `Authorization: Bearer <access_token>`.
    - `/realtime/me` reports the caller's own socket connections.
    - `/realtime/presence/{user_id}` answers whether a user is online.
"""

from fastapi import APIRouter, Depends

from app.auth.verify import TokenClaims, auth_dependency
from app.infrastructure.observability.logging import get_logger
from app.services.container import AppServices, get_services

router = APIRouter(prefix="/realtime", tags=["realtime"])
logger = get_logger(__name__)


@router.get("/me")
async def my_connections(
    claims: TokenClaims = Depends(auth_dependency),
    services: AppServices = Depends(get_services),
):
    sockets = services.realtime.sockets_for(claims.user_id)
    rooms: set[str] = set()
    for sid in sockets:
        session = services.realtime.session(sid)
        if session:
            rooms |= session.rooms

    return {
        "user_id": claims.user_id,
        "online": bool(sockets),
        "connections": len(sockets),
        "rooms": sorted(rooms),
    }


@router.get("/presence/{user_id}")
async def presence(
    user_id: str,
    claims: TokenClaims = Depends(auth_dependency),
    services: AppServices = Depends(get_services),
):
    logger.debug("Presence lookup", requested_by=claims.user_id, user_id=user_id)
    return {
        "user_id": user_id,
        "online": services.realtime.is_online(user_id),
        "online_users": services.realtime.online_count(),
    }
