"""Reports of floors and bans from reporting."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Union

from sqlalchemy import DateTime, ForeignKey, Integer, Interval, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .db import Base
from .floors import Floor
from .messages import AdminList, Message, MessageType, Notification
from .names import NameGenerator
from .users import User, load_user
from .utils import Settings, forbidden, not_found


class Report(Base):
    __tablename__ = "report"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)
    floor_id: Mapped[int] = mapped_column(Integer, ForeignKey("floor.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reason: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    dealt: Mapped[bool] = mapped_column(nullable=False, default=False)
    dealt_by: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    result: Mapped[str] = mapped_column(String(128), nullable=False, default="")

    floor: Mapped[Optional[Floor]] = relationship(Floor)

    @property
    def report_id(self) -> int:
        return self.id

    @property
    def hole_id(self) -> Optional[int]:
        return self.floor.hole_id if self.floor is not None else None

    def preprocess(self, viewer: Any, generator: Optional[NameGenerator] = None) -> "Report":
        """Prepare the reported floor and its mentions for ``viewer``."""
        if self.floor is not None:
            self.floor.set_defaults(viewer, generator)
        return self

    def send_create(
        self, session: Session, admins: Union[AdminList, Iterable[int]], settings: Settings
    ) -> Optional[Message]:
        """Hand the report to the next admin in turn; None when there is no admin."""
        if isinstance(admins, AdminList):
            admin = admins.next_admin()
        else:
            admin = next(iter(admins), None)
        if admin is None:
            return None
        content = self.floor.content if self.floor is not None else ""
        notification = Notification(
            title="您有举报需要处理",
            description=f"理由：{self.reason}，内容：{content}",
            type=MessageType.REPORT,
            url=f"/api/reports/{self.id}",
            data=self,
            recipients=[admin],
        )
        return notification.send(session, settings)

    def send_modify(self, session: Session, settings: Settings) -> Optional[Message]:
        """Tell the reporter how the report was dealt with."""
        notification = Notification(
            title="您的举报已得到处理",
            description=f"处理结果：{self.result}\n感谢您为维护社区秩序所做的贡献。",
            type=MessageType.REPORT_DEALT,
            url=f"/api/reports/{self.id}",
            data=self,
            recipients=[self.user_id],
        )
        return notification.send(session, settings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "time_created": self.created_at,
            "time_updated": self.updated_at,
            "report_id": self.id,
            "floor_id": self.floor_id,
            "hole_id": self.hole_id,
            "floor": self.floor.to_dict() if self.floor is not None else None,
            "reason": self.reason,
            "dealt": bool(self.dealt),
            "dealt_by": self.dealt_by,
            "result": self.result,
        }


class ReportPunishment(Base):
    """A ban from reporting; bans follow one another in time."""

    __tablename__ = "report_punishment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    duration: Mapped[Optional[timedelta]] = mapped_column(Interval, nullable=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    made_by: Mapped[int] = mapped_column(Integer, default=0)
    report_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    reason: Mapped[str] = mapped_column(String(128), default="")


def create_report(
    session: Session,
    report: Report,
    user_id: int,
    viewer: Any,
    generator: Optional[NameGenerator] = None,
) -> Report:
    """Store a report, or add the reason to the user's earlier report of the same floor."""
    existing = session.scalars(
        select(Report)
        .where(Report.user_id == user_id, Report.floor_id == report.floor_id)
        .order_by(Report.id)
        .limit(1)
    ).first()

    if existing is not None:
        existing.reason = f"{existing.reason}\n{report.reason}"
        existing.dealt = False
        session.flush()
        return existing

    if session.get(Floor, report.floor_id) is None:
        raise not_found("record not found")
    report.user_id = user_id
    session.add(report)
    session.flush()
    return report.preprocess(viewer, generator)


def create_report_punishment(session: Session, punishment: ReportPunishment) -> User:
    """Ban a user from reporting, starting when their current ban ends."""
    if punishment.duration is None:
        raise ValueError("punishment duration is required")

    user = session.get(User, punishment.user_id, with_for_update=True)
    if user is None:
        user = load_user(session, punishment.user_id)

    already = session.scalars(
        select(ReportPunishment.id).where(
            ReportPunishment.user_id == user.id,
            ReportPunishment.report_id == punishment.report_id,
            ReportPunishment.deleted_at.is_(None),
        )
    ).first()
    if already is not None:
        raise forbidden("该用户已被限制使用举报功能")

    last = session.scalars(
        select(ReportPunishment)
        .where(ReportPunishment.user_id == user.id, ReportPunishment.deleted_at.is_(None))
        .order_by(ReportPunishment.id.desc())
        .limit(1)
    ).first()
    now = datetime.now()
    if last is None or last.end_time < now:
        punishment.start_time = now
    else:
        punishment.start_time = last.end_time
    punishment.end_time = punishment.start_time + punishment.duration

    user.ban_report = punishment.end_time
    user.ban_report_count = (user.ban_report_count or 0) + 1
    session.add(punishment)
    session.flush()
    return user