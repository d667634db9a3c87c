"""
Unit tests for helpful votes and flag-driven moderation.
"""

import asyncio
import sqlite3

import pytest
import pytest_asyncio

from directory_api.app.core.config import settings
from directory_api.app.core.db import get_cursor
from directory_api.app.core.errors import AlreadyFlaggedError, ForbiddenError, NotFoundError
from directory_api.app.schemas.review import RatingCreate
from directory_api.app.services.flag_service import FlagService
from directory_api.app.services.rating_service import RatingService
from directory_api.app.services.vote_service import VoteService

from .conftest import as_user, fetch_one


@pytest_asyncio.fixture
async def review_id(listing):
    review, _ = await RatingService.submit_rating(
        RatingCreate(listing_id=listing, trustworthiness=4, usefulness=5),
        as_user("alice"),
    )
    return review.id


def stored_counts(review_id):
    row = fetch_one(
        "SELECT helpful_count, not_helpful_count, flag_count, status FROM reviews WHERE id = ?",
        (review_id,),
    )
    return dict(row)


@pytest.mark.asyncio
async def test_votes_are_recounted_after_each_change(review_id):
    result = await VoteService.cast_vote(review_id, "carol", True)
    assert (result.helpful_count, result.not_helpful_count) == (1, 0)
    result = await VoteService.cast_vote(review_id, "dave", False)
    assert (result.helpful_count, result.not_helpful_count) == (1, 1)
    result = await VoteService.cast_vote(review_id, "carol", False)
    assert (result.helpful_count, result.not_helpful_count) == (0, 2)

    counts = stored_counts(review_id)
    assert counts["helpful_count"] == 0
    assert counts["not_helpful_count"] == 2


@pytest.mark.asyncio
async def test_vote_totals_equal_distinct_voters_after_flips(review_id):
    for _ in range(5):
        await VoteService.cast_vote(review_id, "carol", True)
        await VoteService.cast_vote(review_id, "carol", False)
    await VoteService.cast_vote(review_id, "dave", True)
    await VoteService.cast_vote(review_id, "dave", True)

    counts = stored_counts(review_id)
    voters = fetch_one("SELECT COUNT(*) AS n FROM review_votes WHERE review_id = ?", (review_id,))["n"]
    assert voters == 2
    assert counts["helpful_count"] + counts["not_helpful_count"] == voters
    assert (counts["helpful_count"], counts["not_helpful_count"]) == (1, 1)


@pytest.mark.asyncio
async def test_concurrent_votes_keep_counts_exact(review_id):
    # Each vote runs on its own thread and connection.
    def vote(i):
        return asyncio.run(VoteService.cast_vote(review_id, f"voter-{i}", i % 2 == 0))

    await asyncio.gather(*(asyncio.to_thread(vote, i) for i in range(10)))
    counts = stored_counts(review_id)
    assert (counts["helpful_count"], counts["not_helpful_count"]) == (5, 5)


@pytest.mark.asyncio
async def test_vote_carries_invalidation_target_but_not_in_body(review_id, listing):
    result = await VoteService.cast_vote(review_id, "carol", True)
    assert result.listing_id == listing
    assert result.author_id == "alice"
    assert result.model_dump(by_alias=True) == {"helpfulCount": 1, "notHelpfulCount": 0}


@pytest.mark.asyncio
async def test_author_cannot_vote_on_own_review(review_id):
    with pytest.raises(ForbiddenError):
        await VoteService.cast_vote(review_id, "alice", True)
    assert stored_counts(review_id)["helpful_count"] == 0


@pytest.mark.asyncio
async def test_vote_on_missing_review(db):
    with pytest.raises(NotFoundError):
        await VoteService.cast_vote(999, "carol", True)


@pytest.mark.asyncio
async def test_third_distinct_flag_moves_review_to_flagged(review_id):
    first = await FlagService.file_flag(review_id, "erin")
    second = await FlagService.file_flag(review_id, "frank")
    assert (second.flag_count, second.status, second.status_changed) == (2, "approved", False)
    assert first.status_changed is False

    third = await FlagService.file_flag(review_id, "grace")
    assert (third.flag_count, third.status, third.status_changed) == (3, "flagged", True)

    fourth = await FlagService.file_flag(review_id, "heidi")
    assert (fourth.flag_count, fourth.status, fourth.status_changed) == (4, "flagged", False)
    assert stored_counts(review_id)["flag_count"] == 4


@pytest.mark.asyncio
async def test_repeat_flag_is_rejected_and_changes_nothing(review_id):
    await FlagService.file_flag(review_id, "erin")
    with pytest.raises(AlreadyFlaggedError):
        await FlagService.file_flag(review_id, "erin")
    assert stored_counts(review_id)["flag_count"] == 1


@pytest.mark.asyncio
async def test_repeat_flag_rejected_after_review_is_flagged(review_id):
    for flagger in ("erin", "frank", "grace"):
        await FlagService.file_flag(review_id, flagger)
    with pytest.raises(AlreadyFlaggedError):
        await FlagService.file_flag(review_id, "grace")


@pytest.mark.asyncio
async def test_author_cannot_flag_own_review(review_id):
    with pytest.raises(ForbiddenError):
        await FlagService.file_flag(review_id, "alice")
    assert fetch_one("SELECT COUNT(*) AS n FROM review_flags")["n"] == 0


@pytest.mark.asyncio
async def test_threshold_is_configurable(review_id, monkeypatch):
    monkeypatch.setattr(settings, "flag_threshold", 1)
    result = await FlagService.file_flag(review_id, "erin")
    assert result.status_changed is True
    assert result.status == "flagged"


def fail_updates_of(column):
    """Make every later ``UPDATE`` of ``reviews.<column>`` abort."""
    with get_cursor() as cursor:
        cursor.execute(
            f"CREATE TRIGGER fail_{column} BEFORE UPDATE OF {column} ON reviews "
            "BEGIN SELECT RAISE(ABORT, 'recount failed'); END"
        )


def allow_updates_of(column):
    with get_cursor() as cursor:
        cursor.execute(f"DROP TRIGGER fail_{column}")


@pytest.mark.asyncio
async def test_failed_recount_rolls_back_the_vote(review_id):
    await VoteService.cast_vote(review_id, "carol", True)
    before = stored_counts(review_id)

    fail_updates_of("helpful_count")
    with pytest.raises(sqlite3.IntegrityError, match="recount failed"):
        await VoteService.cast_vote(review_id, "dave", False)
    with pytest.raises(sqlite3.IntegrityError):
        await VoteService.cast_vote(review_id, "carol", False)

    assert fetch_one("SELECT COUNT(*) AS n FROM review_votes")["n"] == 1
    vote = fetch_one("SELECT voter_id, helpful FROM review_votes WHERE review_id = ?", (review_id,))
    assert dict(vote) == {"voter_id": "carol", "helpful": 1}
    assert stored_counts(review_id) == before


@pytest.mark.asyncio
async def test_failed_status_update_rolls_back_the_flag(review_id):
    fail_updates_of("flag_count")
    with pytest.raises(sqlite3.IntegrityError, match="recount failed"):
        await FlagService.file_flag(review_id, "erin")

    assert fetch_one("SELECT COUNT(*) AS n FROM review_flags")["n"] == 0
    assert stored_counts(review_id)["flag_count"] == 0

    # No flag row survived, so the same user may flag again.
    allow_updates_of("flag_count")
    result = await FlagService.file_flag(review_id, "erin")
    assert result.flag_count == 1
