"""Read-only HTTP mirror of the chat state.

Endpoints:
    GET /api/health                        - Liveness check
    GET /api/rooms                         - All rooms
    GET /api/rooms/{room_id}/messages      - Paginated room history (cursor/limit)
    GET /api/users/online                  - Online users
    GET /api/search?roomId=&query=         - Substring search in one room

History and search go through the same ChatSession read paths as the
WebSocket ``load_messages`` and ``search_messages`` handlers; the only
difference is that HTTP search is not capped.
"""
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from .router import get_session
from .session import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


@router.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the server time in epoch milliseconds.
    """
    return {"status": "ok", "timestamp": int(time.time() * 1000)}


@router.get("/rooms")
async def list_rooms(session: ChatSession = Depends(get_session)) -> dict:
    return {"rooms": session.room_list()}


@router.get("/rooms/{room_id}/messages")
async def get_room_messages(
    room_id: str,
    cursor: Optional[str] = Query(None, description="createdAt of the oldest message already held"),
    limit: int = Query(25, description="Number of messages to return"),
    session: ChatSession = Depends(get_session),
) -> JSONResponse:
    """Get one page of a room's history, walking backwards from ``cursor``.

    Example:
        GET /api/rooms/general/messages?limit=25
        GET /api/rooms/general/messages?cursor=2024-05-01T10:00:00.000Z&limit=25
    """
    if not session.rooms.exists(room_id):
        return JSONResponse({"error": "Room not found"}, status_code=404)

    page = session.history_page(room_id, cursor, limit)
    return JSONResponse({"roomId": room_id, **page.to_client()})


@router.get("/users/online")
async def online_users(session: ChatSession = Depends(get_session)) -> dict:
    return {"users": session.online_users()}


@router.get("/search")
async def search_messages(
    roomId: Optional[str] = Query(None),
    query: Optional[str] = Query(None),
    session: ChatSession = Depends(get_session),
) -> JSONResponse:
    """Case-insensitive substring search over one room's messages."""
    if not roomId or not query:
        return JSONResponse({"error": "roomId and query are required"}, status_code=400)

    results = session.search_messages(roomId, query)
    return JSONResponse({
        "roomId": roomId,
        "query": query,
        "total": len(results),
        "results": [msg.to_client() for msg in results],
    })
