"""Declarative base and the simple record tables."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Integer, SmallInteger, String, Text, select
from sqlalchemy import Enum as SAEnum
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

logger = logging.getLogger("treehole")


class Base(DeclarativeBase):
    pass


class AdminLogType(str, Enum):
    HOLE = "edit_hole"
    HIDE_HOLE = "hide_hole"
    TAG = "edit_tag"
    DIVISION = "edit_division"
    MESSAGE = "send_message"
    DELETE_REPORT = "delete_report"
    CHANGE_SENSITIVE = "change_sensitive"


class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    type: Mapped[AdminLogType] = mapped_column(
        SAEnum(
            AdminLogType,
            native_enum=False,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)


class FloorHistory(Base):
    __tablename__ = "floor_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.now, onupdate=datetime.now)
    content: Mapped[str] = mapped_column(String(15000), default="")
    reason: Mapped[str] = mapped_column(Text, default="")
    floor_id: Mapped[int] = mapped_column(Integer, index=True)
    is_sensitive: Mapped[bool] = mapped_column(default=False)
    is_actual_sensitive: Mapped[Optional[bool]] = mapped_column(nullable=True)
    sensitive_detail: Mapped[str] = mapped_column(Text, default="")
    user_id: Mapped[int] = mapped_column(Integer, default=0)


class FloorLike(Base):
    __tablename__ = "floor_like"

    floor_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    like_data: Mapped[int] = mapped_column(SmallInteger, default=0)


class HoleTag(Base):
    __tablename__ = "hole_tags"

    hole_id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    tag_id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)


class UrlHostnameWhitelist(Base):
    __tablename__ = "url_hostname_whitelist"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hostname: Mapped[str] = mapped_column(String(255), nullable=False)


def create_admin_log(session: Session, log_type: AdminLogType, user_id: int, data: Any) -> Optional[AdminLog]:
    """Record an admin action for auditing; a failure is logged, not raised."""
    entry = AdminLog(type=AdminLogType(log_type), user_id=user_id, data=data)
    try:
        with session.begin_nested():
            session.add(entry)
    except (SQLAlchemyError, TypeError, ValueError):
        logger.exception("failed to create admin log")
        return None
    return entry


def load_url_whitelist(session: Session) -> list[str]:
    """Return every whitelisted hostname."""
    return list(session.scalars(select(UrlHostnameWhitelist.hostname)))