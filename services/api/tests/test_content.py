import pytest

from needledrop.config import settings
from needledrop.errors import Conflict, Forbidden, NotFound, ValidationFailed
from needledrop.models import Comment, Follow, Notification, Post, Upvote, post_communities


# ── Posts ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_post_shares_to_member_communities(content, seed):
    author = await seed.user()
    scene = await seed.community()
    await seed.member(author, scene)

    entry = await content.create_post(
        author.user_id,
        "Listen to this",
        link_url="https://open.spotify.com/album/xyz",
        link_type="album",
        community_ids=[scene.community_id],
    )

    post = entry.item
    assert post.upvote_count == 0 and post.comment_count == 0
    assert post.author.username == author.username
    assert [c.community_id for c in post.communities] == [scene.community_id]


@pytest.mark.asyncio
async def test_create_post_requires_membership(content, seed):
    author = await seed.user()
    scene = await seed.community()

    with pytest.raises(Forbidden) as exc:
        await content.create_post(author.user_id, "hi", community_ids=[scene.community_id])

    assert exc.value.reason == "not_a_member"
    assert await seed.count(Post) == 0


@pytest.mark.asyncio
async def test_create_post_rejects_unknown_community(content, seed):
    author = await seed.user()
    with pytest.raises(NotFound) as exc:
        await content.create_post(author.user_id, "hi", community_ids=["nowhere"])
    assert exc.value.reason == "community_not_found"


@pytest.mark.asyncio
async def test_create_post_validates_input(content, seed):
    author = await seed.user()
    too_many = [f"c{i}" for i in range(settings.max_post_communities + 1)]

    with pytest.raises(ValidationFailed):
        await content.create_post(author.user_id, "   ")
    with pytest.raises(ValidationFailed):
        await content.create_post(author.user_id, "hi", link_type="podcast")
    with pytest.raises(ValidationFailed):
        await content.create_post(author.user_id, "hi", community_ids=too_many)


@pytest.mark.asyncio
async def test_new_and_upcoming_cooldown(content, seed):
    author, other = await seed.user(), await seed.user()
    expired = settings.new_and_upcoming_cooldown_days + 1
    await seed.post(author, new_and_upcoming=True, days_ago=expired)

    await content.create_post(author.user_id, "fresh find", is_new_and_upcoming=True)
    with pytest.raises(ValidationFailed) as exc:
        await content.create_post(author.user_id, "another one", is_new_and_upcoming=True)

    assert "days remaining" in exc.value.reason
    # Untagged posts and other authors are unaffected
    await content.create_post(author.user_id, "regular post")
    await content.create_post(other.user_id, "my find", is_new_and_upcoming=True)


@pytest.mark.asyncio
async def test_delete_post_cleans_up_dependents(content, ledger, seed):
    author, fan = await seed.user(), await seed.user()
    scene = await seed.community()
    post = await seed.post(author, communities=[scene])
    top = (await content.create_comment(post.post_id, fan.user_id, "great")).item
    await content.create_comment(post.post_id, author.user_id, "thanks", top.comment_id)
    await ledger.upvote(fan.user_id, "post", post.post_id)
    await ledger.upvote(author.user_id, "comment", top.comment_id)

    with pytest.raises(Forbidden):
        await content.delete_post(post.post_id, fan.user_id)
    await content.delete_post(post.post_id, author.user_id)

    assert await seed.get(Post, post.post_id) is None
    assert await seed.count(Comment) == 0
    assert await seed.count(Upvote) == 0
    assert await seed.count(post_communities) == 0
    with pytest.raises(NotFound):
        await content.delete_post(post.post_id, author.user_id)


# ── Comments ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_comment_and_reply_count_and_notify(content, seed):
    author, fan, replier = await seed.user(), await seed.user(), await seed.user()
    post = await seed.post(author)

    top = (await content.create_comment(post.post_id, fan.user_id, "love it")).item
    reply = (
        await content.create_comment(post.post_id, replier.user_id, "same", top.comment_id)
    ).item

    assert reply.parent_comment_id == top.comment_id
    assert (await seed.get(Post, post.post_id)).comment_count == 2
    assert await seed.count(
        Notification,
        Notification.recipient_id == author.user_id,
        Notification.type == "comment",
        Notification.target_id == top.comment_id,
    ) == 1
    assert await seed.count(
        Notification,
        Notification.recipient_id == fan.user_id,
        Notification.type == "reply",
        Notification.target_id == reply.comment_id,
    ) == 1


@pytest.mark.asyncio
async def test_reply_depth_is_limited_to_one(content, seed):
    author = await seed.user()
    post, other_post = await seed.post(author), await seed.post(author)
    top = (await content.create_comment(post.post_id, author.user_id, "top")).item
    reply = (await content.create_comment(post.post_id, author.user_id, "r", top.comment_id)).item

    with pytest.raises(ValidationFailed):
        await content.create_comment(post.post_id, author.user_id, "deeper", reply.comment_id)
    with pytest.raises(ValidationFailed):
        await content.create_comment(other_post.post_id, author.user_id, "x", top.comment_id)
    with pytest.raises(NotFound) as exc:
        await content.create_comment(post.post_id, author.user_id, "x", "missing")
    assert exc.value.reason == "parent_comment_not_found"

    assert (await seed.get(Post, post.post_id)).comment_count == 2
    assert (await seed.get(Post, other_post.post_id)).comment_count == 0


@pytest.mark.asyncio
async def test_comment_on_missing_post(content, seed):
    author = await seed.user()
    with pytest.raises(NotFound) as exc:
        await content.create_comment("missing", author.user_id, "hello")
    assert exc.value.reason == "post_not_found"


@pytest.mark.asyncio
async def test_delete_comment_removes_replies_and_their_upvotes(content, ledger, seed):
    author, fan = await seed.user(), await seed.user()
    post = await seed.post(author)
    top = (await content.create_comment(post.post_id, fan.user_id, "top")).item
    r1 = (await content.create_comment(post.post_id, author.user_id, "r1", top.comment_id)).item
    await content.create_comment(post.post_id, author.user_id, "r2", top.comment_id)
    keeper = (await content.create_comment(post.post_id, author.user_id, "other")).item
    await ledger.upvote(author.user_id, "comment", r1.comment_id)

    with pytest.raises(Forbidden):
        await content.delete_comment(top.comment_id, author.user_id)
    await content.delete_comment(top.comment_id, fan.user_id)

    stored = await seed.get(Post, post.post_id)
    assert stored.comment_count == 1
    assert await seed.count(Comment, Comment.post_id == post.post_id) == 1
    assert await seed.get(Comment, keeper.comment_id) is not None
    assert await seed.count(Upvote, Upvote.target_type == "comment") == 0


@pytest.mark.asyncio
async def test_list_comments_threads_replies(content, ledger, seed):
    author, fan = await seed.user(), await seed.user()
    post = await seed.post(author)
    first = (await content.create_comment(post.post_id, fan.user_id, "first")).item
    second = (await content.create_comment(post.post_id, fan.user_id, "second")).item
    r1 = (await content.create_comment(post.post_id, author.user_id, "a", first.comment_id)).item
    r2 = (await content.create_comment(post.post_id, author.user_id, "b", first.comment_id)).item
    await ledger.upvote(fan.user_id, "comment", r2.comment_id)

    page = await content.list_comments(post.post_id, viewer_id=fan.user_id)

    assert page.total == 2
    assert [e.item.comment_id for e in page.entries] == [second.comment_id, first.comment_id]
    replies = page.entries[1].replies
    assert [e.item.comment_id for e in replies] == [r1.comment_id, r2.comment_id]
    assert [e.has_upvoted for e in replies] == [False, True]
    assert page.entries[0].replies == []


# ── Social graph ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_follow_rules(content, seed):
    a, b = await seed.user(), await seed.user()

    with pytest.raises(ValidationFailed):
        await content.follow(a.user_id, a.user_id)
    with pytest.raises(NotFound):
        await content.follow(a.user_id, "ghost")

    await content.follow(a.user_id, b.user_id)
    with pytest.raises(Conflict) as exc:
        await content.follow(a.user_id, b.user_id)
    assert exc.value.reason == "already_following"
    assert await seed.count(Follow) == 1
    assert await seed.count(
        Notification, Notification.recipient_id == b.user_id, Notification.type == "follow"
    ) == 1

    await content.unfollow(a.user_id, b.user_id)
    with pytest.raises(NotFound):
        await content.unfollow(a.user_id, b.user_id)


@pytest.mark.asyncio
async def test_membership_rules(content, seed):
    user = await seed.user()
    scene = await seed.community()

    membership = await content.join_community(user.user_id, scene.community_id)
    assert membership.role == "member"
    with pytest.raises(Conflict):
        await content.join_community(user.user_id, scene.community_id)
    with pytest.raises(NotFound):
        await content.join_community(user.user_id, "nowhere")

    await content.leave_community(user.user_id, scene.community_id)
    with pytest.raises(NotFound) as exc:
        await content.leave_community(user.user_id, scene.community_id)
    assert exc.value.reason == "not_a_member"
