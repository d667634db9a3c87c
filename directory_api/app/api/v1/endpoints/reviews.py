"""
API endpoints acting on a single review.

Authors can edit or delete their own review; other users can vote on
whether it was helpful and flag it for abuse.  All four routes are
state-changing and go through the origin guard, authentication and a
rate limit, in that order, before the service layer runs.  Cached
views showing the review are dropped before the response is sent.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from directory_api.app.core.cache import CacheInvalidator, get_cache_invalidator
from directory_api.app.core.rate_limit import rate_limited
from directory_api.app.schemas.common import DataResponse, SuccessResult
from directory_api.app.schemas.review import (
    FlagResult,
    ReviewRead,
    ReviewUpdate,
    VoteCreate,
    VoteResult,
)
from directory_api.app.services.flag_service import FlagService
from directory_api.app.services.rating_service import RatingService
from directory_api.app.services.vote_service import VoteService


router = APIRouter()


@router.patch(
    "/reviews/{review_id}",
    response_model=DataResponse[ReviewRead],
    summary="Edit a review",
)
async def update_review(
    review_id: int,
    data: ReviewUpdate,
    current_user: Dict[str, Any] = Depends(rate_limited("ratings")),
    invalidator: CacheInvalidator = Depends(get_cache_invalidator),
) -> DataResponse[ReviewRead]:
    """Change scores and/or text of your own review.

    An edit re-approves a review that was hidden by flags.
    """
    review = await RatingService.update_review(review_id, data, current_user)
    await invalidator.invalidate(
        CacheInvalidator.keys_for_review_change(review.author_id, review.listing_id)
    )
    return DataResponse(data=review)


@router.delete(
    "/reviews/{review_id}",
    response_model=DataResponse[SuccessResult],
    summary="Delete a review",
)
async def delete_review(
    review_id: int,
    current_user: Dict[str, Any] = Depends(rate_limited("ratings")),
    invalidator: CacheInvalidator = Depends(get_cache_invalidator),
) -> DataResponse[SuccessResult]:
    """Delete your own review together with its votes and flags."""
    review = await RatingService.delete_review(review_id, current_user)
    await invalidator.invalidate(
        CacheInvalidator.keys_for_review_change(review.author_id, review.listing_id)
    )
    return DataResponse(data=SuccessResult())


@router.post(
    "/reviews/{review_id}/vote",
    response_model=DataResponse[VoteResult],
    summary="Vote on a review",
)
async def vote_on_review(
    review_id: int,
    data: VoteCreate,
    current_user: Dict[str, Any] = Depends(rate_limited("votes")),
    invalidator: CacheInvalidator = Depends(get_cache_invalidator),
) -> DataResponse[VoteResult]:
    """Mark a review as helpful or not; voting again changes your vote.

    Returns the recounted ``helpfulCount`` and ``notHelpfulCount``.
    You cannot vote on your own review.
    """
    result = await VoteService.cast_vote(review_id, current_user["user_id"], data.helpful)
    await invalidator.invalidate(
        CacheInvalidator.keys_for_review_change(result.author_id, result.listing_id)
    )
    return DataResponse(data=result)


@router.post(
    "/reviews/{review_id}/flag",
    response_model=DataResponse[FlagResult],
    summary="Flag a review",
)
async def flag_review(
    review_id: int,
    current_user: Dict[str, Any] = Depends(rate_limited("flags")),
    invalidator: CacheInvalidator = Depends(get_cache_invalidator),
) -> DataResponse[FlagResult]:
    """Report a review for abuse; each user can flag a review once.

    When enough distinct users flag a review it is moved to
    ``flagged`` and ``statusChanged`` is true in that response.
    """
    result = await FlagService.file_flag(review_id, current_user["user_id"])
    await invalidator.invalidate(
        CacheInvalidator.keys_for_review_change(result.author_id, result.listing_id)
    )
    return DataResponse(data=result)
