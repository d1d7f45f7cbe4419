from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from treehole.cache import get_cache
from treehole.db import Base
from treehole.sensitive import CheckType, SensitiveResult
from treehole.tags import Tag, find_or_create_tags, preprocess_tags, update_tag_cache
from treehole.utils import HttpError, Settings

ADMIN = SimpleNamespace(is_admin=True)
USER = SimpleNamespace(is_admin=False)


@pytest.fixture
def session():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    with Session(engine) as s:
        yield s


def passing(text, check_type, data_id):
    return SensitiveResult(passed=True)


def test_sensitive_prefers_manual_verdict():
    assert Tag(name="a", is_sensitive=True).sensitive() is True
    assert Tag(name="a", is_sensitive=True, is_actual_sensitive=False).sensitive() is False
    assert Tag(name="a", is_sensitive=False, is_actual_sensitive=True).sensitive() is True


def test_preprocess_blanks_sensitive_names():
    tags = preprocess_tags([Tag(name="bad", is_sensitive=True), Tag(name="good", is_sensitive=False)])
    assert [tag.name for tag in tags] == ["", "good"]


def test_create_strips_and_reuses(session):
    created = find_or_create_tags(session, USER, ["  python "], passing, Settings())
    assert [tag.name for tag in created] == ["python"]
    assert created[0].id is not None
    again = find_or_create_tags(session, USER, ["python"], passing, Settings())
    assert [tag.id for tag in again] == [created[0].id]
    assert len(session.scalars(select(Tag)).all()) == 1


def test_sensitive_checker_marks_tag(session):
    calls = []

    def failing(text, check_type, data_id):
        calls.append((text, check_type))
        return SensitiveResult(passed=False)

    tags = find_or_create_tags(session, USER, ["rude"], failing, Settings())
    assert tags[0].is_sensitive is True
    assert calls == [("rude", CheckType.TAG)]


@pytest.mark.parametrize("name", ["#notice", "@someone", "*adult", "abcdefghijklmnop"])
def test_user_cannot_create_restricted(session, name):
    with pytest.raises(HttpError) as info:
        find_or_create_tags(session, USER, [name], passing, Settings())
    assert info.value.code == 400


def test_admin_creates_nsfw(session):
    tags = find_or_create_tags(session, ADMIN, ["*adult"], passing, Settings())
    assert tags[0].nsfw is True


def test_admin_only_tag_forbidden(session):
    tag = find_or_create_tags(session, ADMIN, ["official"], passing, Settings())[0]
    settings = Settings(admin_only_tag_ids=[tag.id])
    with pytest.raises(HttpError) as info:
        find_or_create_tags(session, USER, ["official"], passing, settings)
    assert info.value.code == 403
    assert [t.id for t in find_or_create_tags(session, ADMIN, ["official"], passing, settings)] == [tag.id]


def test_update_tag_cache_orders_by_temperature(session):
    session.add_all([Tag(name="cold", temperature=1), Tag(name="hot", temperature=9)])
    session.flush()
    update_tag_cache(session, None)
    cached = get_cache("tags")
    assert [entry["name"] for entry in cached] == ["hot", "cold"]
    assert cached[0]["tag_id"] == cached[0]["id"]