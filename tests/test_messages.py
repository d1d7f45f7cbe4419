import json
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from treehole.db import Base
from treehole.messages import (
    AdminList,
    Message,
    MessageType,
    MessageUser,
    Notification,
    clean_notification_description,
    merge_notifications,
    send_all,
)
from treehole.users import User, UserConfig
from treehole.utils import Settings


@pytest.fixture
def session():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    with Session(engine) as s:
        s.add(User(id=1, config=UserConfig(notify=["reply"], show_folded="hide"), ban_division={}, special_tags=[]))
        s.add(User(id=2, config=UserConfig(notify=["mention"], show_folded="hide"), ban_division={}, special_tags=[]))
        s.flush()
        yield s


def _recipients(session, message):
    return set(session.scalars(select(MessageUser.user_id).where(MessageUser.message_id == message.id)))


def test_clean_formula():
    assert clean_notification_description("$x^2$") == "[公式]"


def test_clean_sticker_and_image():
    assert clean_notification_description("![](dx_smile)") == "[表情]"
    assert clean_notification_description("![alt](http://img.example.com/a.png)") == "[图片]"


def test_clean_removes_newlines():
    result = clean_notification_description("line one\nline two")
    assert "\n" not in result
    assert result.startswith("line one")


def test_clean_only_mentions_returns_original():
    assert clean_notification_description("#123") == "#123"


def test_merge_removes_already_reached():
    first = Notification("a", "d", MessageType.REPLY, recipients=[2])
    new = Notification("b", "d", MessageType.MENTION, recipients=[1, 2, 3])
    merged = merge_notifications([first], new)
    assert len(merged) == 2
    assert merged[1].recipients == [1, 3]
    assert new.recipients == [1, 2, 3]


def test_merge_empty_and_full_overlap():
    first = Notification("a", "d", MessageType.REPLY, recipients=[1, 2])
    existing = [first]
    assert merge_notifications(existing, Notification("b", "d", MessageType.MENTION)) is existing
    assert merge_notifications(existing, Notification("b", "d", MessageType.MENTION, recipients=[2, 1])) == existing


def test_admin_list_round_robin():
    admins = AdminList([5, 6, 7])
    order = admins.snapshot()
    assert sorted(order) == [5, 6, 7]
    picks = [admins.next_admin() for _ in range(6)]
    assert picks == order + order


def test_admin_list_empty():
    assert AdminList().next_admin() is None


def test_send_filters_by_user_config(session):
    message = Notification("t", "d", MessageType.MENTION, recipients=[1, 2]).send(session, Settings())
    assert _recipients(session, message) == {2}
    assert message.type == "mention"


def test_send_type_outside_defaults_reaches_all(session):
    message = Notification("t", "d", MessageType.REPLY, data={"k": 1}, recipients=[1, 2]).send(session, Settings())
    assert _recipients(session, message) == {1, 2}
    assert message.data == {"k": 1}
    assert message.message_id == message.id


def test_send_without_recipients(session):
    assert Notification("t", "d", MessageType.REPLY).send(session, Settings()) is None
    assert session.scalars(select(Message)).all() == []


def test_send_posts_to_service(session):
    settings = Settings(mode="production", notification_url="http://notify.example.com")
    title = "题" * 40
    with patch("treehole.messages.requests.post") as post:
        post.return_value = MagicMock(status_code=201, text="{}")
        message = Notification(title, "hi", MessageType.REPLY, recipients=[1]).send(session, settings)
    assert message.title == title
    args, kwargs = post.call_args
    assert args[0] == "http://notify.example.com/messages"
    payload = json.loads(kwargs["data"])
    assert payload["message"] == "题" * 32
    assert payload["recipients"] == [1]
    assert payload["code"] == "reply"


def test_send_failure_raises(session):
    settings = Settings(mode="production", notification_url="http://notify.example.com")
    with patch("treehole.messages.requests.post") as post:
        post.return_value = MagicMock(status_code=500, text="boom")
        with pytest.raises(RuntimeError):
            send_all(session, [Notification("t", "d", MessageType.REPLY, recipients=[1])], settings)


def test_send_bench_skips_request(session):
    settings = Settings(mode="bench", notification_url="http://notify.example.com")
    with patch("treehole.messages.requests.post") as post:
        message = Notification("t", "d", MessageType.REPLY, recipients=[2]).send(session, settings)
    assert post.call_count == 0
    assert _recipients(session, message) == {2}