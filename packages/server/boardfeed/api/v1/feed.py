"""
Feed endpoint: the caller's personal activity feed.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from boardfeed.core.auth import Identity, get_optional_identity
from boardfeed.core.config import get_settings
from boardfeed.core.database import get_session
from boardfeed.services.feed import get_feed
from boardfeed_shared.schemas.activity import FeedPage

router = APIRouter()
settings = get_settings()


@router.get("", response_model=FeedPage)
async def get_feed_endpoint(
    cursor: Optional[str] = None,
    page_size: int = Query(settings.feed_page_size, ge=1, le=settings.feed_max_page_size),
    identity: Optional[Identity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(get_session),
):
    """Newest-first page of feed items. Anonymous callers get an empty page."""
    if identity is None:
        return FeedPage()
    return await get_feed(session, identity.user_id, identity.org_id, cursor, page_size)
