"""Bans of users from posting in a division."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import DateTime, Integer, Interval, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from .db import Base
from .users import User
from .utils import not_found


class Punishment(Base):
    """One ban; bans for different floors add up, a second ban for the same floor replaces it."""

    __tablename__ = "punishment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    duration: Mapped[Optional[timedelta]] = mapped_column(Interval, nullable=True)
    day: Mapped[int] = mapped_column(Integer, default=0)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    made_by: Mapped[int] = mapped_column(Integer, default=0)
    floor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, unique=True)
    division_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(128), default="")


def create_punishment(session: Session, punishment: Punishment) -> User:
    """Apply a punishment to its user and return the updated user."""
    if punishment.duration is None:
        raise ValueError("punishment duration is required")

    user = session.get(User, punishment.user_id, with_for_update=True)
    if user is None:
        raise not_found("record not found")

    previous = None
    if punishment.floor_id is not None:
        previous = session.scalars(
            select(Punishment).where(
                Punishment.user_id == user.id,
                Punishment.floor_id == punishment.floor_id,
                Punishment.deleted_at.is_(None),
            )
        ).first()

    bans = dict(user.ban_division or {})
    division_id = punishment.division_id
    day = punishment.day or 0

    if previous is not None:
        if previous.duration == punishment.duration and (previous.day or 0) == day:
            return user

        diff = timedelta(days=day - (previous.day or 0))
        previous.duration = punishment.duration
        previous.day = day
        previous.end_time = previous.start_time + punishment.duration
        previous.reason = punishment.reason
        previous.made_by = punishment.made_by
        previous.division_id = division_id

        current = bans.get(division_id)
        bans[division_id] = previous.end_time if current is None else current + diff
    else:
        user.offence_count = (user.offence_count or 0) + 1
        punishment.start_time = datetime.now()
        punishment.end_time = punishment.start_time + punishment.duration

        current = bans.get(division_id)
        bans[division_id] = punishment.end_time if current is None else current + punishment.duration
        session.add(punishment)

    user.ban_division = bans
    session.flush()
    return user