from datetime import timedelta

import pytest

from needledrop.errors import Forbidden, NotFound
from needledrop.models import Notification, utcnow


async def _notify(seed, recipient, actor, minutes_ago=0, is_read=False):
    return await seed.add(
        Notification(
            recipient_id=recipient.user_id,
            actor_id=actor.user_id,
            type="follow",
            target_type="user",
            target_id=actor.user_id,
            is_read=is_read,
            created_at=utcnow() - timedelta(minutes=minutes_ago),
        )
    )


@pytest.mark.asyncio
async def test_self_notification_is_suppressed(fanout, seed):
    user = await seed.user()

    result = await fanout.notify(user.user_id, user.user_id, "upvote_post", "post", "p1")

    assert result is None
    assert await seed.count(Notification) == 0


@pytest.mark.asyncio
async def test_inbox_lists_newest_first_with_unread_count(inbox, seed):
    me, a, b = await seed.user(), await seed.user(), await seed.user()
    old = await _notify(seed, me, a, minutes_ago=10, is_read=True)
    new = await _notify(seed, me, b, minutes_ago=1)
    await _notify(seed, a, b)

    page, unread = await inbox.list_notifications(me.user_id)

    assert [e.item.notification_id for e in page.entries] == [
        new.notification_id,
        old.notification_id,
    ]
    assert page.entries[0].item.actor.user_id == b.user_id
    assert page.total == 2
    assert unread == 1
    assert await inbox.unread_count(me.user_id) == 1


@pytest.mark.asyncio
async def test_mark_read_only_by_recipient(inbox, seed):
    me, other = await seed.user(), await seed.user()
    notification = await _notify(seed, me, other)

    with pytest.raises(Forbidden) as exc:
        await inbox.mark_read(notification.notification_id, other.user_id)
    assert exc.value.reason == "not_recipient"
    with pytest.raises(NotFound):
        await inbox.mark_read("missing", me.user_id)

    await inbox.mark_read(notification.notification_id, me.user_id)
    assert (await seed.get(Notification, notification.notification_id)).is_read is True


@pytest.mark.asyncio
async def test_mark_all_read(inbox, seed):
    me, a = await seed.user(), await seed.user()
    for minutes in (1, 2, 3):
        await _notify(seed, me, a, minutes_ago=minutes)
    await _notify(seed, a, me)

    assert await inbox.mark_all_read(me.user_id) == 3
    assert await inbox.unread_count(me.user_id) == 0
    assert await inbox.unread_count(a.user_id) == 1
