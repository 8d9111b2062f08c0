import pytest

from needledrop.config import settings
from needledrop.core.feed import FeedFilter, FeedSort
from needledrop.errors import NotFound, ValidationFailed


def _ids(page):
    return [entry.item.post_id for entry in page.entries]


@pytest.mark.asyncio
async def test_cold_start_shows_every_post(feed, seed):
    viewer, a, b = await seed.user(), await seed.user(), await seed.user()
    older = await seed.post(a, minutes_ago=10)
    newer = await seed.post(b, minutes_ago=1)

    page = await feed.compose_feed(viewer.user_id)

    assert _ids(page) == [newer.post_id, older.post_id]
    assert page.total == 2


@pytest.mark.asyncio
async def test_restricted_filters_never_fall_back(feed, seed):
    viewer, author = await seed.user(), await seed.user()
    await seed.post(author)

    following = await feed.compose_feed(viewer.user_id, FeedFilter.FOLLOWING)
    communities = await feed.compose_feed(viewer.user_id, FeedFilter.COMMUNITIES)

    for page in (following, communities):
        assert page.entries == []
        assert page.total == 0
        assert page.total_pages == 0


@pytest.mark.asyncio
async def test_following_filter_only_returns_followed_authors(feed, seed):
    viewer, followed, stranger = await seed.user(), await seed.user(), await seed.user()
    await seed.follow(viewer, followed)
    mine = await seed.post(followed)
    await seed.post(stranger)

    page = await feed.compose_feed(viewer.user_id, FeedFilter.FOLLOWING)

    assert _ids(page) == [mine.post_id]


@pytest.mark.asyncio
async def test_communities_filter_only_returns_joined_communities(feed, seed):
    viewer, author = await seed.user(), await seed.user()
    joined, other = await seed.community(), await seed.community()
    await seed.member(viewer, joined)
    shared = await seed.post(author, communities=[joined])
    await seed.post(author, communities=[other])
    await seed.post(author)

    page = await feed.compose_feed(viewer.user_id, FeedFilter.COMMUNITIES)

    assert _ids(page) == [shared.post_id]


@pytest.mark.asyncio
async def test_all_filter_is_union_without_duplicates(feed, seed):
    viewer, followed, other, stranger = (
        await seed.user(), await seed.user(), await seed.user(), await seed.user()
    )
    scene = await seed.community()
    await seed.follow(viewer, followed)
    await seed.member(viewer, scene)

    both = await seed.post(followed, minutes_ago=1, communities=[scene])
    via_follow = await seed.post(followed, minutes_ago=2)
    via_scene = await seed.post(other, minutes_ago=3, communities=[scene])
    await seed.post(stranger, minutes_ago=4)

    page = await feed.compose_feed(viewer.user_id, FeedFilter.ALL)

    assert _ids(page) == [both.post_id, via_follow.post_id, via_scene.post_id]
    assert page.total == 3


@pytest.mark.asyncio
async def test_top_sort_breaks_upvote_ties_by_recency(feed, seed):
    viewer, author = await seed.user(), await seed.user()
    await seed.follow(viewer, author)
    old_tie = await seed.post(author, minutes_ago=30, upvotes=5)
    new_tie = await seed.post(author, minutes_ago=5, upvotes=5)
    leader = await seed.post(author, minutes_ago=60, upvotes=9)
    newest = await seed.post(author, minutes_ago=1, upvotes=0)

    top = await feed.compose_feed(viewer.user_id, FeedFilter.FOLLOWING, FeedSort.TOP)
    latest = await feed.compose_feed(viewer.user_id, FeedFilter.FOLLOWING, FeedSort.LATEST)

    assert _ids(top) == [leader.post_id, new_tie.post_id, old_tie.post_id, newest.post_id]
    assert _ids(latest) == [newest.post_id, new_tie.post_id, old_tie.post_id, leader.post_id]


@pytest.mark.asyncio
async def test_pages_cover_results_exactly_once(feed, seed):
    viewer, author = await seed.user(), await seed.user()
    await seed.follow(viewer, author)
    posts = await seed.posts(author, 45)

    pages = [
        await feed.compose_feed(viewer.user_id, FeedFilter.FOLLOWING, page=n, limit=20)
        for n in (1, 2, 3, 4)
    ]

    assert [len(p.entries) for p in pages] == [20, 20, 5, 0]
    assert all(p.total == 45 and p.total_pages == 3 for p in pages)
    seen = [pid for p in pages for pid in _ids(p)]
    assert seen == [p.post_id for p in posts]


@pytest.mark.asyncio
async def test_has_upvoted_is_per_viewer(feed, ledger, seed):
    viewer, other, author = await seed.user(), await seed.user(), await seed.user()
    liked = await seed.post(author, minutes_ago=1)
    await seed.post(author, minutes_ago=2)
    await ledger.upvote(viewer.user_id, "post", liked.post_id)

    mine = await feed.compose_feed(viewer.user_id)
    theirs = await feed.compose_feed(other.user_id)

    assert {e.item.post_id: e.has_upvoted for e in mine.entries}[liked.post_id] is True
    assert sum(e.has_upvoted for e in mine.entries) == 1
    assert not any(e.has_upvoted for e in theirs.entries)
    assert mine.entries[0].item.upvote_count == 1


@pytest.mark.asyncio
async def test_community_feed(feed, seed):
    author = await seed.user()
    scene, other = await seed.community(), await seed.community()
    first = await seed.post(author, minutes_ago=2, communities=[scene])
    second = await seed.post(author, minutes_ago=1, communities=[scene, other])
    await seed.post(author, communities=[other])

    page = await feed.compose_community_feed(scene.community_id)

    assert _ids(page) == [second.post_id, first.post_id]
    assert {c.slug for c in page.entries[0].item.communities} == {scene.slug, other.slug}


@pytest.mark.asyncio
async def test_community_feed_unknown_community(feed):
    with pytest.raises(NotFound) as exc:
        await feed.compose_community_feed("missing")
    assert exc.value.reason == "community_not_found"


@pytest.mark.asyncio
async def test_tagged_feed(feed, seed):
    author = await seed.user()
    tagged = await seed.post(author, new_and_upcoming=True)
    await seed.post(author)

    page = await feed.compose_tagged_feed("new-and-upcoming")

    assert _ids(page) == [tagged.post_id]
    with pytest.raises(NotFound):
        await feed.compose_tagged_feed("yacht-rock")


@pytest.mark.asyncio
@pytest.mark.parametrize("page,limit", [(0, 20), (1, 0), (1, settings.feed_max_limit + 1)])
async def test_invalid_window_is_rejected(feed, seed, page, limit):
    viewer = await seed.user()
    with pytest.raises(ValidationFailed):
        await feed.compose_feed(viewer.user_id, page=page, limit=limit)
