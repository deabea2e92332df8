"""
API v1 Router

Every endpoint is tenant-scoped through the caller's identity token.
"""

from fastapi import APIRouter
from . import boards, cards, feed

router = APIRouter()

router.include_router(boards.router, prefix="/boards", tags=["Boards"])
router.include_router(cards.router, prefix="/cards", tags=["Cards"])
router.include_router(feed.router, prefix="/feed", tags=["Feed"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/boards",
            "/boards/{boardId}/members",
            "/boards/{boardId}/follow",
            "/boards/{boardId}/watchers",
            "/cards",
            "/cards/{cardId}/follow",
            "/cards/{cardId}/mute",
            "/feed",
        ],
    }
