"""
Business logic for listings.

Listings are mostly maintained elsewhere (official uploads, registry
sync).  This service covers what the rating core relies on: looking a
listing up with its derived statistics and letting a user submit their
own listing, which makes them its owner and therefore unable to rate
it.
"""

import logging
import sqlite3
from typing import Any, Dict

from directory_api.app.core.db import get_connection, unit_of_work, utc_timestamp
from directory_api.app.core.errors import ConflictError, NotFoundError
from directory_api.app.schemas.listing import ListingCreate, ListingRead


logger = logging.getLogger(__name__)

LISTING_COLUMNS = (
    "id, name, description, source, owner_id, avg_trustworthiness, avg_usefulness, "
    "total_ratings, combined_score, recent_ratings_count, created_at"
)


def row_to_listing(row: sqlite3.Row) -> ListingRead:
    return ListingRead(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        source=row["source"],
        owner_id=row["owner_id"],
        avg_trustworthiness=row["avg_trustworthiness"],
        avg_usefulness=row["avg_usefulness"],
        total_ratings=row["total_ratings"],
        combined_score=row["combined_score"],
        recent_ratings_count=row["recent_ratings_count"],
        created_at=row["created_at"],
    )


class ListingService:
    """Service for reading and submitting listings."""

    @classmethod
    async def get_listing(cls, listing_id: str) -> ListingRead:
        conn = get_connection()
        try:
            row = conn.execute(
                f"SELECT {LISTING_COLUMNS} FROM listings WHERE id = ?",
                (listing_id,),
            ).fetchone()
            if not row:
                raise NotFoundError("Listing not found")
            return row_to_listing(row)
        finally:
            conn.close()

    @classmethod
    async def create_listing(cls, data: ListingCreate, current_user: Dict[str, Any]) -> ListingRead:
        """Create a user listing owned by the caller.

        Raises ``ConflictError`` when a listing with the same
        ``organization/name`` already exists.
        """
        owner_id = current_user["user_id"]
        listing_id = data.listing_id
        now = utc_timestamp()
        with unit_of_work() as cursor:
            try:
                cursor.execute(
                    """
                    INSERT INTO listings (id, name, description, source, owner_id, created_at, updated_at)
                    VALUES (?, ?, ?, 'user', ?, ?, ?)
                    """,
                    (listing_id, data.name, data.description, owner_id, now, now),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError(f"Listing {listing_id} already exists") from exc
            row = cursor.execute(
                f"SELECT {LISTING_COLUMNS} FROM listings WHERE id = ?",
                (listing_id,),
            ).fetchone()
        logger.info("User %s created listing %s", owner_id, listing_id)
        return row_to_listing(row)
