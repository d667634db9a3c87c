"""
Pydantic schemas for ratings, reviews, votes and flags.

A rating is the pair of 1-5 scores (trustworthiness and usefulness)
plus optional free text that one user gives one listing; the stored
row is called a review.  Field names are snake_case in Python and
camelCase on the wire.
"""

import re
from typing import Optional

from pydantic import BaseModel, Field, StrictBool, field_validator

from .common import CamelModel


LISTING_ID_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9._\s-]*/[a-zA-Z0-9][a-zA-Z0-9._-]*$"
MAX_TEXT_LENGTH = 2000

_NULL_BYTES = re.compile(r"\x00")
_INLINE_WHITESPACE = re.compile(r"[\t\v\f\r]+")


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Strip null bytes and stray control whitespace, keep line breaks.

    Blank text is stored as ``None``.
    """
    if value is None:
        return None
    value = _NULL_BYTES.sub("", value)
    value = _INLINE_WHITESPACE.sub(" ", value).strip()
    if len(value) > MAX_TEXT_LENGTH:
        raise ValueError(f"Text must be {MAX_TEXT_LENGTH} characters or fewer")
    return value or None


class RatingCreate(CamelModel):
    """Schema for submitting (or re-submitting) a rating."""

    listing_id: str = Field(
        ...,
        min_length=1,
        max_length=201,
        pattern=LISTING_ID_PATTERN,
        description="Listing identifier in organization/name form",
    )
    trustworthiness: int = Field(..., ge=1, le=5, strict=True)
    usefulness: int = Field(..., ge=1, le=5, strict=True)
    text: Optional[str] = Field(None, description="Optional review text")

    @field_validator("text")
    @classmethod
    def sanitize(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_text(v)


class ReviewUpdate(CamelModel):
    """Schema for editing an own review; omitted fields are unchanged."""

    trustworthiness: Optional[int] = Field(None, ge=1, le=5, strict=True)
    usefulness: Optional[int] = Field(None, ge=1, le=5, strict=True)
    text: Optional[str] = None

    @field_validator("text")
    @classmethod
    def sanitize(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_text(v)


class VoteCreate(BaseModel):
    helpful: StrictBool


class ReviewRead(CamelModel):
    """Schema for reading a review from the API."""

    id: int
    listing_id: str
    author_id: str
    trustworthiness: int
    usefulness: int
    text: Optional[str]
    status: str
    helpful_count: int
    not_helpful_count: int
    flag_count: int
    created_at: str
    updated_at: str


class ReviewTarget(CamelModel):
    """Where a voted or flagged review lives; used for cache invalidation.

    These fields are not part of the response body.
    """

    listing_id: Optional[str] = Field(None, exclude=True)
    author_id: Optional[str] = Field(None, exclude=True)


class VoteResult(ReviewTarget):
    helpful_count: int
    not_helpful_count: int


class FlagResult(ReviewTarget):
    flag_count: int
    status: str
    # True only for the flag that moved the review to ``flagged``.
    status_changed: bool
