"""
Unit tests for rating submission and listing statistics.
"""

from datetime import datetime, timedelta, timezone

import pytest

from directory_api.app.core.db import unit_of_work, utc_timestamp
from directory_api.app.core.errors import ForbiddenError, NotFoundError
from directory_api.app.schemas.review import RatingCreate, ReviewUpdate
from directory_api.app.services.flag_service import FlagService
from directory_api.app.services.rating_service import RatingService
from directory_api.app.services.vote_service import VoteService

from .conftest import as_user, fetch_one, insert_listing


def rating(listing_id, trust, use, text=None):
    return RatingCreate(listing_id=listing_id, trustworthiness=trust, usefulness=use, text=text)


@pytest.mark.asyncio
async def test_averages_follow_each_new_rating(listing):
    await RatingService.submit_rating(rating(listing, 4, 5), as_user("alice"))
    row = fetch_one("SELECT * FROM listings WHERE id = ?", (listing,))
    assert row["avg_trustworthiness"] == 4
    assert row["avg_usefulness"] == 5
    assert row["total_ratings"] == 1
    assert row["combined_score"] == 4.5

    await RatingService.submit_rating(rating(listing, 2, 3), as_user("bob"))
    row = fetch_one("SELECT * FROM listings WHERE id = ?", (listing,))
    assert row["avg_trustworthiness"] == 3
    assert row["avg_usefulness"] == 4
    assert row["total_ratings"] == 2
    assert row["combined_score"] == 3.5


@pytest.mark.asyncio
async def test_resubmission_overwrites_instead_of_adding(listing):
    first, created = await RatingService.submit_rating(rating(listing, 1, 1, "meh"), as_user("alice"))
    assert created is True
    second, created = await RatingService.submit_rating(rating(listing, 5, 4, "better now"), as_user("alice"))
    assert created is False
    assert second.id == first.id
    assert second.created_at == first.created_at
    assert (second.trustworthiness, second.usefulness, second.text) == (5, 4, "better now")

    row = fetch_one("SELECT total_ratings, avg_trustworthiness FROM listings WHERE id = ?", (listing,))
    assert row["total_ratings"] == 1
    assert row["avg_trustworthiness"] == 5


@pytest.mark.asyncio
async def test_stats_match_direct_aggregation(listing):
    scores = {"u1": (5, 1), "u2": (3, 3), "u3": (4, 2), "u4": (1, 5)}
    for user_id, (trust, use) in scores.items():
        await RatingService.submit_rating(rating(listing, trust, use), as_user(user_id))

    direct = fetch_one(
        "SELECT COUNT(*) AS n, AVG(trustworthiness) AS t, AVG(usefulness) AS u FROM reviews WHERE listing_id = ?",
        (listing,),
    )
    stored = fetch_one("SELECT * FROM listings WHERE id = ?", (listing,))
    assert stored["total_ratings"] == direct["n"] == 4
    assert stored["avg_trustworthiness"] == pytest.approx(direct["t"])
    assert stored["avg_usefulness"] == pytest.approx(direct["u"])
    assert stored["combined_score"] == pytest.approx((direct["t"] + direct["u"]) / 2)


@pytest.mark.asyncio
async def test_recent_count_only_includes_trailing_window(listing):
    await RatingService.submit_rating(rating(listing, 4, 4), as_user("fresh"))
    await RatingService.submit_rating(rating(listing, 2, 2), as_user("old"))
    old = utc_timestamp(datetime.now(timezone.utc) - timedelta(days=45))
    with unit_of_work() as cursor:
        cursor.execute("UPDATE reviews SET created_at = ? WHERE author_id = 'old'", (old,))
        stats = RatingService.recompute_listing_stats(cursor, listing)
    assert stats.total_ratings == 2
    assert stats.recent_ratings_count == 1


@pytest.mark.asyncio
async def test_missing_listing_is_not_found(db):
    with pytest.raises(NotFoundError):
        await RatingService.submit_rating(rating("nobody/nothing", 3, 3), as_user("alice"))


@pytest.mark.asyncio
async def test_owner_cannot_rate_own_user_listing(db):
    insert_listing("alice/tool", source="user", owner_id="alice")
    with pytest.raises(ForbiddenError):
        await RatingService.submit_rating(rating("alice/tool", 5, 5), as_user("alice"))
    assert fetch_one("SELECT COUNT(*) AS n FROM reviews")["n"] == 0

    review, _ = await RatingService.submit_rating(rating("alice/tool", 5, 5), as_user("bob"))
    assert review.author_id == "bob"


@pytest.mark.asyncio
async def test_text_is_sanitized_and_escaped(listing):
    review, _ = await RatingService.submit_rating(
        rating(listing, 3, 3, "  <b>nice</b>\x00\ttool\n "), as_user("alice")
    )
    assert review.text == "&lt;b&gt;nice&lt;/b&gt; tool"
    stored = fetch_one("SELECT text FROM reviews WHERE id = ?", (review.id,))
    assert stored["text"] == "<b>nice</b> tool"


@pytest.mark.asyncio
async def test_edit_reapproves_flagged_review(listing):
    review, _ = await RatingService.submit_rating(rating(listing, 2, 2), as_user("alice"))
    for flagger in ("e", "f", "g"):
        await FlagService.file_flag(review.id, flagger)
    assert fetch_one("SELECT status FROM reviews WHERE id = ?", (review.id,))["status"] == "flagged"

    updated = await RatingService.update_review(review.id, ReviewUpdate(text="rewritten"), as_user("alice"))
    assert updated.status == "approved"
    assert updated.text == "rewritten"
    assert (updated.trustworthiness, updated.usefulness) == (2, 2)


@pytest.mark.asyncio
async def test_resubmission_also_reapproves(listing):
    review, _ = await RatingService.submit_rating(rating(listing, 2, 2), as_user("alice"))
    for flagger in ("e", "f", "g"):
        await FlagService.file_flag(review.id, flagger)
    again, _ = await RatingService.submit_rating(rating(listing, 3, 3), as_user("alice"))
    assert again.status == "approved"


@pytest.mark.asyncio
async def test_only_author_can_edit_or_delete(listing):
    review, _ = await RatingService.submit_rating(rating(listing, 2, 2), as_user("alice"))
    with pytest.raises(ForbiddenError):
        await RatingService.update_review(review.id, ReviewUpdate(usefulness=5), as_user("mallory"))
    with pytest.raises(ForbiddenError):
        await RatingService.delete_review(review.id, as_user("mallory"))
    with pytest.raises(NotFoundError):
        await RatingService.delete_review(review.id + 100, as_user("alice"))


@pytest.mark.asyncio
async def test_delete_cascades_and_resets_stats(listing):
    review, _ = await RatingService.submit_rating(rating(listing, 4, 4), as_user("alice"))
    await VoteService.cast_vote(review.id, "bob", True)
    await FlagService.file_flag(review.id, "carol")

    await RatingService.delete_review(review.id, as_user("alice"))

    assert fetch_one("SELECT COUNT(*) AS n FROM review_votes")["n"] == 0
    assert fetch_one("SELECT COUNT(*) AS n FROM review_flags")["n"] == 0
    stored = fetch_one("SELECT * FROM listings WHERE id = ?", (listing,))
    assert stored["total_ratings"] == 0
    assert stored["avg_trustworthiness"] == 0
    assert stored["combined_score"] == 0


@pytest.mark.asyncio
async def test_list_user_reviews(listing):
    insert_listing("acme/gadget")
    await RatingService.submit_rating(rating(listing, 4, 4), as_user("alice"))
    await RatingService.submit_rating(rating("acme/gadget", 1, 2), as_user("alice"))
    await RatingService.submit_rating(rating(listing, 3, 3), as_user("bob"))

    reviews = await RatingService.list_user_reviews("alice")
    assert {r.listing_id for r in reviews} == {listing, "acme/gadget"}
    assert await RatingService.list_user_reviews("nobody") == []
