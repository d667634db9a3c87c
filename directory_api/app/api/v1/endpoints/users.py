"""
Public per-user views.

The ratings a user has written are shown on their profile.  The list
is cached under ``user:{id}:ratings`` and dropped whenever one of the
user's reviews is written, edited, deleted, voted on or flagged.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends

from directory_api.app.core.cache import CacheBackend, cache_key, get_cache
from directory_api.app.core.rate_limit import rate_limited
from directory_api.app.schemas.common import DataResponse
from directory_api.app.schemas.review import ReviewRead
from directory_api.app.services.rating_service import RatingService


router = APIRouter()


@router.get(
    "/{user_id}/ratings",
    response_model=DataResponse[List[ReviewRead]],
    summary="List the ratings written by a user",
)
async def list_user_ratings(
    user_id: str,
    _caller: Optional[Dict[str, Any]] = Depends(rate_limited("read", require_user=False)),
    cache: CacheBackend = Depends(get_cache),
) -> DataResponse[List[ReviewRead]]:
    async def load() -> List[Dict[str, Any]]:
        reviews = await RatingService.list_user_reviews(user_id)
        return [review.model_dump(mode="json") for review in reviews]

    view = await cache.get_or_load(cache_key("user", user_id, "ratings"), load)
    return DataResponse(data=[ReviewRead.model_validate(item) for item in view])
