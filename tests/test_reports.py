from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

import treehole.holes  # noqa: F401
from treehole.db import Base
from treehole.floors import Floor
from treehole.holes import Hole
from treehole.messages import AdminList, MessageUser
from treehole.reports import Report, ReportPunishment, create_report, create_report_punishment
from treehole.users import User, load_user
from treehole.utils import HttpError, Settings

REPORTER = 2
VIEWER = SimpleNamespace(id=REPORTER, is_admin=False)


@pytest.fixture
def session():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    with Session(engine) as s:
        yield s


@pytest.fixture
def floor(session):
    hole = Hole(user_id=7, division_id=1)
    session.add(hole)
    session.flush()
    made = Floor(hole_id=hole.id, user_id=7, content="hello", anonyname="A", ranking=0)
    session.add(made)
    session.flush()
    return made


@pytest.fixture
def settings():
    return Settings(notification_url="")


def test_create_new_report(session, floor):
    report = create_report(session, Report(floor_id=floor.id, reason="spam"), REPORTER, VIEWER)
    assert report.user_id == REPORTER
    assert report.report_id == report.id
    assert report.floor.id == floor.id
    assert report.hole_id == floor.hole_id


def test_second_report_appends_reason(session, floor):
    first = create_report(session, Report(floor_id=floor.id, reason="spam"), REPORTER, VIEWER)
    first.dealt = True
    session.flush()
    again = create_report(session, Report(floor_id=floor.id, reason="rude"), REPORTER, VIEWER)
    assert again.id == first.id
    assert again.reason == "spam\nrude"
    assert again.dealt is False
    assert session.scalar(select(func.count()).select_from(Report)) == 1


def test_report_missing_floor(session, floor):
    with pytest.raises(HttpError):
        create_report(session, Report(floor_id=floor.id + 50, reason="x"), REPORTER, VIEWER)


def test_preprocess_hides_sensitive_floor(session, floor):
    floor.is_sensitive = True
    session.flush()
    report = create_report(session, Report(floor_id=floor.id, reason="x"), REPORTER, VIEWER)
    assert report.floor.content == "该内容正在审核中"


def test_send_create_goes_to_admin(session, floor, settings):
    load_user(session, 3)
    report = create_report(session, Report(floor_id=floor.id, reason="spam"), REPORTER, VIEWER)
    message = report.send_create(session, AdminList([3]), settings)
    assert message.type == "report"
    assert message.description == "理由：spam，内容：hello"
    recipients = session.scalars(select(MessageUser.user_id).where(MessageUser.message_id == message.id)).all()
    assert recipients == [3]


def test_send_create_without_admins(session, floor, settings):
    report = create_report(session, Report(floor_id=floor.id, reason="spam"), REPORTER, VIEWER)
    assert report.send_create(session, AdminList(), settings) is None


def test_send_modify_to_reporter(session, floor, settings):
    load_user(session, REPORTER)
    report = create_report(session, Report(floor_id=floor.id, reason="spam"), REPORTER, VIEWER)
    report.result = "ok"
    message = report.send_modify(session, settings)
    assert message.description == "处理结果：ok\n感谢您为维护社区秩序所做的贡献。"
    assert message.url == f"/api/reports/{report.id}"


def test_report_punishment(session):
    load_user(session, 5)
    duration = timedelta(days=1)
    punishment = ReportPunishment(user_id=5, report_id=1, duration=duration, reason="abuse")
    user = create_report_punishment(session, punishment)
    assert user.ban_report == punishment.end_time
    assert user.ban_report_count == 1
    assert punishment.end_time - punishment.start_time == duration
    assert "解封时间" in user.ban_report_message()


def test_punishments_follow_each_other(session):
    load_user(session, 5)
    first = ReportPunishment(user_id=5, report_id=1, duration=timedelta(days=1))
    second = ReportPunishment(user_id=5, report_id=2, duration=timedelta(days=2))
    create_report_punishment(session, first)
    user = create_report_punishment(session, second)
    assert second.start_time == first.end_time
    assert user.ban_report == second.end_time
    assert user.ban_report_count == 2


def test_same_report_twice_forbidden(session):
    load_user(session, 5)
    create_report_punishment(session, ReportPunishment(user_id=5, report_id=1, duration=timedelta(days=1)))
    with pytest.raises(HttpError):
        create_report_punishment(session, ReportPunishment(user_id=5, report_id=1, duration=timedelta(days=1)))


def test_missing_user_is_created(session):
    user = create_report_punishment(session, ReportPunishment(user_id=6, report_id=9, duration=timedelta(hours=1)))
    assert session.get(User, 6) is user
    assert user.ban_report_count == 1


def test_duration_required(session):
    with pytest.raises(ValueError):
        create_report_punishment(session, ReportPunishment(user_id=5, report_id=1))