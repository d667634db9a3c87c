"""
Helpful / not-helpful voting on reviews.

Each user has at most one vote per review; voting again replaces the
previous choice.  After every vote both tallies on the review are
recounted from the vote rows rather than incremented.  The extra read
keeps the counters exact when a voter flips repeatedly or a request is
retried: ``helpful_count + not_helpful_count`` always equals the number
of distinct voters.
"""

import logging

from directory_api.app.core.db import unit_of_work, utc_timestamp
from directory_api.app.core.errors import ForbiddenError, NotFoundError
from directory_api.app.schemas.review import VoteResult


logger = logging.getLogger(__name__)


class VoteService:
    """Service maintaining vote tallies on reviews."""

    @classmethod
    async def cast_vote(cls, review_id: int, voter_id: str, helpful: bool) -> VoteResult:
        """Record ``voter_id``'s vote on a review and return fresh tallies.

        Raises ``NotFoundError`` if the review does not exist and
        ``ForbiddenError`` if the voter wrote the review.  The vote
        upsert, the recount and the counter update commit together.
        """
        now = utc_timestamp()
        with unit_of_work() as cursor:
            review = cursor.execute(
                "SELECT listing_id, author_id FROM reviews WHERE id = ?",
                (review_id,),
            ).fetchone()
            if not review:
                raise NotFoundError("Review not found")
            if review["author_id"] == voter_id:
                raise ForbiddenError("You cannot vote on your own review")

            cursor.execute(
                """
                INSERT INTO review_votes (review_id, voter_id, helpful, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(review_id, voter_id) DO UPDATE SET
                    helpful = excluded.helpful,
                    updated_at = excluded.updated_at
                """,
                (review_id, voter_id, 1 if helpful else 0, now, now),
            )
            counts = {1: 0, 0: 0}
            for row in cursor.execute(
                "SELECT helpful, COUNT(*) AS total FROM review_votes WHERE review_id = ? GROUP BY helpful",
                (review_id,),
            ).fetchall():
                counts[row["helpful"]] = row["total"]
            cursor.execute(
                "UPDATE reviews SET helpful_count = ?, not_helpful_count = ? WHERE id = ?",
                (counts[1], counts[0], review_id),
            )
        logger.info(
            "User %s voted %s on review %s (%s/%s)",
            voter_id,
            "helpful" if helpful else "not helpful",
            review_id,
            counts[1],
            counts[0],
        )
        return VoteResult(
            helpful_count=counts[1],
            not_helpful_count=counts[0],
            listing_id=review["listing_id"],
            author_id=review["author_id"],
        )
