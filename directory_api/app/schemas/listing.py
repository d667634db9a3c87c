"""
Pydantic models for listings.

Only the fields the review core needs are modelled: identity,
ownership and the derived rating statistics.  The statistics are
read-only; they are recomputed from the review rows on every rating
change and never accepted from clients.
"""

from typing import Optional

from pydantic import Field

from .common import CamelModel


NAME_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$"
ORGANIZATION_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9._\s-]*$"


class ListingCreate(CamelModel):
    """Schema for submitting a user listing; its id is ``organization/name``."""

    organization: str = Field(..., min_length=1, max_length=100, pattern=ORGANIZATION_PATTERN)
    name: str = Field(..., min_length=1, max_length=100, pattern=NAME_PATTERN)
    description: Optional[str] = Field(None, max_length=2000)

    @property
    def listing_id(self) -> str:
        return f"{self.organization.strip()}/{self.name}"


class ListingStats(CamelModel):
    avg_trustworthiness: float
    avg_usefulness: float
    total_ratings: int
    combined_score: float
    recent_ratings_count: int


class ListingRead(ListingStats):
    """Schema for reading a listing together with its statistics."""

    id: str
    name: str
    description: Optional[str]
    source: str
    owner_id: Optional[str]
    created_at: str
