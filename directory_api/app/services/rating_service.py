"""
Business logic for ratings and the listing statistics derived from them.

A user rates a listing at most once; submitting again overwrites the
previous scores and text.  Every write to the ``reviews`` table runs
in the same unit of work as :meth:`RatingService.recompute_listing_stats`,
which rebuilds the listing's averages, combined score, total and
recent counts from the review rows.  The statistics are therefore
never edited independently and cannot drift from the reviews they
summarise.

Every create, edit or delete puts the review back into (or removes it
from) the ``approved`` state: a fresh edit counts as new content and
lifts flag-driven moderation.
"""

import html
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from directory_api.app.core.config import settings
from directory_api.app.core.db import get_connection, unit_of_work, utc_timestamp
from directory_api.app.core.errors import ForbiddenError, InvalidInputError, NotFoundError
from directory_api.app.schemas.listing import ListingStats
from directory_api.app.schemas.review import RatingCreate, ReviewRead, ReviewUpdate


logger = logging.getLogger(__name__)

REVIEW_COLUMNS = (
    "id, listing_id, author_id, trustworthiness, usefulness, text, status, "
    "helpful_count, not_helpful_count, flag_count, created_at, updated_at"
)


def row_to_review(row: sqlite3.Row) -> ReviewRead:
    # Escape text when returning
    text = html.escape(row["text"]) if row["text"] is not None else None
    return ReviewRead(
        id=row["id"],
        listing_id=row["listing_id"],
        author_id=row["author_id"],
        trustworthiness=row["trustworthiness"],
        usefulness=row["usefulness"],
        text=text,
        status=row["status"],
        helpful_count=row["helpful_count"],
        not_helpful_count=row["not_helpful_count"],
        flag_count=row["flag_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class RatingService:
    """Service for rating submission and listing aggregates."""

    @classmethod
    async def submit_rating(
        cls,
        data: RatingCreate,
        current_user: Dict[str, Any],
    ) -> Tuple[ReviewRead, bool]:
        """Create or overwrite the caller's rating of a listing.

        The listing must exist and must not be a user listing owned by
        the caller.  The review is upserted on ``(listing_id,
        author_id)``: a repeat submission replaces scores and text,
        keeps ``created_at`` and resets ``status`` to ``approved``.
        Returns the stored review and whether it was newly created.
        """
        author_id = current_user["user_id"]
        now = utc_timestamp()
        with unit_of_work() as cursor:
            listing = cursor.execute(
                "SELECT id, source, owner_id FROM listings WHERE id = ?",
                (data.listing_id,),
            ).fetchone()
            if not listing:
                raise NotFoundError("Listing not found")
            if listing["source"] == "user" and listing["owner_id"] and listing["owner_id"] == author_id:
                raise ForbiddenError("You cannot rate your own listing")

            existing = cursor.execute(
                "SELECT id FROM reviews WHERE listing_id = ? AND author_id = ?",
                (data.listing_id, author_id),
            ).fetchone()
            cursor.execute(
                """
                INSERT INTO reviews (listing_id, author_id, trustworthiness, usefulness, text,
                                     status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 'approved', ?, ?)
                ON CONFLICT(listing_id, author_id) DO UPDATE SET
                    trustworthiness = excluded.trustworthiness,
                    usefulness = excluded.usefulness,
                    text = excluded.text,
                    status = 'approved',
                    updated_at = excluded.updated_at
                """,
                (data.listing_id, author_id, data.trustworthiness, data.usefulness, data.text, now, now),
            )
            row = cursor.execute(
                f"SELECT {REVIEW_COLUMNS} FROM reviews WHERE listing_id = ? AND author_id = ?",
                (data.listing_id, author_id),
            ).fetchone()
            stats = cls.recompute_listing_stats(cursor, data.listing_id)
        created = existing is None
        logger.info(
            "User %s %s review %s for listing %s (total ratings %s)",
            author_id,
            "created" if created else "updated",
            row["id"],
            data.listing_id,
            stats.total_ratings,
        )
        return row_to_review(row), created

    @classmethod
    async def update_review(
        cls,
        review_id: int,
        data: ReviewUpdate,
        current_user: Dict[str, Any],
    ) -> ReviewRead:
        """Edit scores and/or text of the caller's own review.

        Fields left out of ``data`` keep their value.  The edit
        re-approves the review and refreshes the listing statistics.
        """
        author_id = current_user["user_id"]
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise InvalidInputError("Nothing to update")
        with unit_of_work() as cursor:
            review = cursor.execute(
                "SELECT id, listing_id, author_id FROM reviews WHERE id = ?",
                (review_id,),
            ).fetchone()
            if not review:
                raise NotFoundError("Review not found")
            if review["author_id"] != author_id:
                raise ForbiddenError("You can only edit your own reviews")

            assignments = ["status = 'approved'", "updated_at = ?"]
            params: List[Any] = [utc_timestamp()]
            for field in ("trustworthiness", "usefulness", "text"):
                # Scores cannot be cleared, only replaced; text can.
                if field in changes and (field == "text" or changes[field] is not None):
                    assignments.append(f"{field} = ?")
                    params.append(changes[field])
            params.append(review_id)
            cursor.execute(
                f"UPDATE reviews SET {', '.join(assignments)} WHERE id = ?",
                tuple(params),
            )
            row = cursor.execute(
                f"SELECT {REVIEW_COLUMNS} FROM reviews WHERE id = ?",
                (review_id,),
            ).fetchone()
            cls.recompute_listing_stats(cursor, review["listing_id"])
        logger.info("User %s edited review %s", author_id, review_id)
        return row_to_review(row)

    @classmethod
    async def delete_review(cls, review_id: int, current_user: Dict[str, Any]) -> ReviewRead:
        """Delete the caller's own review.

        Votes and flags on the review are removed by the foreign key
        cascade.  Returns the deleted review so callers can invalidate
        the views that showed it.
        """
        author_id = current_user["user_id"]
        with unit_of_work() as cursor:
            row = cursor.execute(
                f"SELECT {REVIEW_COLUMNS} FROM reviews WHERE id = ?",
                (review_id,),
            ).fetchone()
            if not row:
                raise NotFoundError("Review not found")
            if row["author_id"] != author_id:
                raise ForbiddenError("You can only delete your own reviews")
            cursor.execute("DELETE FROM reviews WHERE id = ?", (review_id,))
            cls.recompute_listing_stats(cursor, row["listing_id"])
        logger.info("User %s deleted review %s", author_id, review_id)
        return row_to_review(row)

    @classmethod
    def recompute_listing_stats(
        cls,
        cursor: sqlite3.Cursor,
        listing_id: str,
        now: Optional[datetime] = None,
    ) -> ListingStats:
        """Rebuild and store the derived statistics of a listing.

        Must be called with the cursor of the unit of work that changed
        the reviews.  Averages are 0 for a listing without reviews; the
        combined score is the mean of the two dimension averages.
        """
        now = now or datetime.now(timezone.utc)
        recent_since = utc_timestamp(now - timedelta(days=settings.recent_ratings_days))
        row = cursor.execute(
            """
            SELECT COUNT(*) AS total,
                   AVG(trustworthiness) AS avg_trust,
                   AVG(usefulness) AS avg_use,
                   COALESCE(SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END), 0) AS recent
            FROM reviews
            WHERE listing_id = ?
            """,
            (recent_since, listing_id),
        ).fetchone()
        avg_trust = row["avg_trust"] or 0.0
        avg_use = row["avg_use"] or 0.0
        stats = ListingStats(
            avg_trustworthiness=avg_trust,
            avg_usefulness=avg_use,
            total_ratings=row["total"],
            combined_score=(avg_trust + avg_use) / 2,
            recent_ratings_count=row["recent"],
        )
        cursor.execute(
            """
            UPDATE listings
            SET avg_trustworthiness = ?, avg_usefulness = ?, total_ratings = ?,
                combined_score = ?, recent_ratings_count = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                stats.avg_trustworthiness,
                stats.avg_usefulness,
                stats.total_ratings,
                stats.combined_score,
                stats.recent_ratings_count,
                utc_timestamp(now),
                listing_id,
            ),
        )
        return stats

    @classmethod
    async def list_user_reviews(cls, user_id: str) -> List[ReviewRead]:
        """Return every review written by ``user_id``, newest first."""
        conn = get_connection()
        try:
            rows = conn.execute(
                f"SELECT {REVIEW_COLUMNS} FROM reviews WHERE author_id = ? ORDER BY created_at DESC, id DESC",
                (user_id,),
            ).fetchall()
            return [row_to_review(row) for row in rows]
        finally:
            conn.close()
