"""
Top-level router for version 1 of the API.

This router aggregates the domain routers (ratings, reviews, listings,
users) under a unified prefix.  When new domains are introduced,
include their routers here.
"""

from fastapi import APIRouter

from .endpoints import listings, ratings, reviews, users

router = APIRouter()

# ratings and reviews declare their full paths internally; a prefix
# here would nest them under /ratings/ratings.
router.include_router(ratings.router, tags=["ratings"])
router.include_router(reviews.router, tags=["reviews"])
router.include_router(listings.router, prefix="/listings", tags=["listings"])
router.include_router(users.router, prefix="/users", tags=["users"])
