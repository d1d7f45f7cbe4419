import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from treehole.db import (
    AdminLog,
    AdminLogType,
    Base,
    FloorHistory,
    FloorLike,
    HoleTag,
    UrlHostnameWhitelist,
    create_admin_log,
    load_url_whitelist,
)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    return engine


def test_admin_log_type_values():
    assert AdminLogType("hide_hole") is AdminLogType.HIDE_HOLE
    assert AdminLogType.HOLE.value == "edit_hole"


def test_create_admin_log_round_trip(engine):
    with Session(engine) as session:
        entry = create_admin_log(session, AdminLogType.TAG, 7, {"tag_id": 3})
        session.commit()
        assert entry.id == session.scalars(select(AdminLog.id)).one()
    with Session(engine) as session:
        stored = session.scalars(select(AdminLog)).one()
        assert stored.type is AdminLogType.TAG
        assert stored.user_id == 7
        assert stored.data == {"tag_id": 3}


def test_load_url_whitelist(engine):
    with Session(engine) as session:
        session.add_all([UrlHostnameWhitelist(hostname="example.com"), UrlHostnameWhitelist(hostname="example.org")])
        session.commit()
        assert sorted(load_url_whitelist(session)) == ["example.com", "example.org"]


def test_load_url_whitelist_empty(engine):
    with Session(engine) as session:
        assert load_url_whitelist(session) == []


def test_floor_history_defaults(engine):
    with Session(engine) as session:
        session.add(FloorHistory(content="old", reason="edit", floor_id=1, user_id=2))
        session.commit()
        history = session.scalars(select(FloorHistory)).one()
        assert history.is_actual_sensitive is None
        assert history.sensitive_detail == ""
        assert history.content == "old"


def test_floor_like_primary_key_is_unique(engine):
    with Session(engine) as session:
        session.add(FloorLike(floor_id=1, user_id=1, like_data=1))
        session.commit()
    with Session(engine) as session:
        session.add(FloorLike(floor_id=1, user_id=1, like_data=-1))
        with pytest.raises(IntegrityError):
            session.commit()


def test_hole_tag_round_trip(engine):
    with Session(engine) as session:
        session.add_all([HoleTag(hole_id=1, tag_id=2), HoleTag(hole_id=1, tag_id=3)])
        session.commit()
        tag_ids = session.scalars(select(HoleTag.tag_id).where(HoleTag.hole_id == 1).order_by(HoleTag.tag_id)).all()
        assert tag_ids == [2, 3]