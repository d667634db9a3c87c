"""
API endpoints for listings.

``GET /listings/{id}`` is public and served from the cache when
possible; rating changes invalidate the cached entry.  ``POST
/listings`` lets a signed-in user submit a listing they then own.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status

from directory_api.app.core.cache import CacheBackend, cache_key, get_cache
from directory_api.app.core.rate_limit import rate_limited
from directory_api.app.schemas.common import DataResponse
from directory_api.app.schemas.listing import ListingCreate, ListingRead
from directory_api.app.services.listing_service import ListingService


router = APIRouter()


@router.post(
    "",
    response_model=DataResponse[ListingRead],
    status_code=status.HTTP_201_CREATED,
    summary="Submit a listing",
)
async def create_listing(
    data: ListingCreate,
    current_user: Dict[str, Any] = Depends(rate_limited("listings")),
) -> DataResponse[ListingRead]:
    """Create a user listing; 409 if ``organization/name`` is taken."""
    listing = await ListingService.create_listing(data, current_user)
    return DataResponse(data=listing)


@router.get(
    "/{listing_id:path}",
    response_model=DataResponse[ListingRead],
    summary="Get a listing with its rating statistics",
)
async def get_listing(
    listing_id: str,
    _caller: Optional[Dict[str, Any]] = Depends(rate_limited("read", require_user=False)),
    cache: CacheBackend = Depends(get_cache),
) -> DataResponse[ListingRead]:
    async def load() -> Dict[str, Any]:
        listing = await ListingService.get_listing(listing_id)
        return listing.model_dump(mode="json")

    view = await cache.get_or_load(cache_key("listing", listing_id), load)
    return DataResponse(data=ListingRead.model_validate(view))
