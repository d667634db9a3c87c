"""
Abuse flags and automatic moderation of reviews.

Any signed-in user other than the author may flag a review once.  When
the number of distinct flags reaches ``settings.flag_threshold`` while
the review is still ``approved``, the review moves to ``flagged``.  The
transition only goes one way here; an edit by the author (see
``RatingService``) is the only way back to ``approved``.
"""

import logging
import sqlite3

from directory_api.app.core.config import settings
from directory_api.app.core.db import unit_of_work, utc_timestamp
from directory_api.app.core.errors import AlreadyFlaggedError, ForbiddenError, NotFoundError
from directory_api.app.schemas.review import FlagResult


logger = logging.getLogger(__name__)


class FlagService:
    """Service for filing flags against reviews."""

    @classmethod
    async def file_flag(cls, review_id: int, flagger_id: str) -> FlagResult:
        """File a flag and apply auto-moderation.

        The flag row, the recounted ``flag_count`` and the possibly
        changed status are committed together.  A second flag by the
        same user violates the ``(review_id, flagger_id)`` key and is
        rejected with ``AlreadyFlaggedError``, whatever the review's
        current status.
        """
        with unit_of_work() as cursor:
            review = cursor.execute(
                "SELECT listing_id, author_id, status FROM reviews WHERE id = ?",
                (review_id,),
            ).fetchone()
            if not review:
                raise NotFoundError("Review not found")
            if review["author_id"] == flagger_id:
                raise ForbiddenError("You cannot flag your own review")

            try:
                cursor.execute(
                    "INSERT INTO review_flags (review_id, flagger_id, created_at) VALUES (?, ?, ?)",
                    (review_id, flagger_id, utc_timestamp()),
                )
            except sqlite3.IntegrityError as exc:
                raise AlreadyFlaggedError() from exc

            flag_count = cursor.execute(
                "SELECT COUNT(*) AS total FROM review_flags WHERE review_id = ?",
                (review_id,),
            ).fetchone()["total"]
            status = review["status"]
            status_changed = status == "approved" and flag_count >= settings.flag_threshold
            if status_changed:
                status = "flagged"
            cursor.execute(
                "UPDATE reviews SET flag_count = ?, status = ? WHERE id = ?",
                (flag_count, status, review_id),
            )
        if status_changed:
            logger.warning("Review %s auto-flagged after %s flags", review_id, flag_count)
        else:
            logger.info("User %s flagged review %s (%s flags)", flagger_id, review_id, flag_count)
        return FlagResult(
            flag_count=flag_count,
            status=status,
            status_changed=status_changed,
            listing_id=review["listing_id"],
            author_id=review["author_id"],
        )
