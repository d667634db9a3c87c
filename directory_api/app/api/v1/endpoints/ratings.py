"""
API endpoint for submitting ratings.

A signed-in user rates a listing on trustworthiness and usefulness
(1-5 each) with optional text.  Posting again for the same listing
updates the existing rating.  The request passes the origin guard and
the ``ratings`` rate limit before the body is looked at.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response, status

from directory_api.app.core.cache import CacheInvalidator, get_cache_invalidator
from directory_api.app.core.rate_limit import rate_limited
from directory_api.app.schemas.common import DataResponse
from directory_api.app.schemas.review import RatingCreate, ReviewRead
from directory_api.app.services.rating_service import RatingService


router = APIRouter()


@router.post(
    "/ratings",
    response_model=DataResponse[ReviewRead],
    status_code=status.HTTP_201_CREATED,
    summary="Submit or update a rating",
)
async def submit_rating(
    data: RatingCreate,
    response: Response,
    current_user: Dict[str, Any] = Depends(rate_limited("ratings")),
    invalidator: CacheInvalidator = Depends(get_cache_invalidator),
) -> DataResponse[ReviewRead]:
    """Create the caller's rating of a listing, or overwrite it.

    Returns 201 for a new rating and 200 when an existing one was
    replaced.  Rating a listing you own is forbidden.
    """
    review, created = await RatingService.submit_rating(data, current_user)
    await invalidator.invalidate(
        CacheInvalidator.keys_for_review_change(review.author_id, review.listing_id)
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return DataResponse(data=review)
