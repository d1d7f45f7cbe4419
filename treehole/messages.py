"""Stored messages, outgoing notifications and the rota of notifiable admins."""

from __future__ import annotations

import dataclasses
import json
import logging
import random
import re
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Optional

import requests
from sqlalchemy import JSON, DateTime, Integer, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from .db import Base
from .users import DEFAULT_NOTIFY, User
from .utils import Settings, strip_content

logger = logging.getLogger("treehole")

NOTIFICATION_TIMEOUT = 10
TITLE_MAX_SIZE = 32
DESCRIPTION_MAX_SIZE = 64


class MessageType(str, Enum):
    FAVORITE = "favorite"
    REPLY = "reply"
    MENTION = "mention"
    MODIFY = "modify"
    PERMISSION = "permission"
    REPORT = "report"
    REPORT_DEALT = "report_dealt"
    MAIL = "mail"
    SENSITIVE = "sensitive"


class Message(Base):
    __tablename__ = "message"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)
    title: Mapped[str] = mapped_column(String(1024), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    url: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    has_read: Mapped[bool] = mapped_column(default=False)

    @property
    def message_id(self) -> int:
        return self.id


class MessageUser(Base):
    __tablename__ = "message_user"

    message_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    has_read: Mapped[bool] = mapped_column(default=False)


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    mapper = getattr(type(obj), "__mapper__", None)
    if mapper is not None:
        return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serialisable")


def _plain(data: Any) -> Any:
    if data is None:
        return None
    return json.loads(json.dumps(data, default=_jsonable, ensure_ascii=False))


_MENTION_RE = re.compile(r"#{1,2}\d+")
_FORMULA_RE = re.compile(r"\${1,2}.*?\${1,2}", re.S)
_STICKER_RE = re.compile(r"!\[\]\(dx_\S+?\)")
_IMAGE_RE = re.compile(r"!\[.*?\]\(.*?\)")


def clean_notification_description(content: str) -> str:
    """Replace mentions, formulas, stickers and images with short placeholders."""
    cleaned = _MENTION_RE.sub("", content)
    cleaned = _FORMULA_RE.sub("[公式]", cleaned)
    cleaned = _STICKER_RE.sub("[表情]", cleaned)
    cleaned = _IMAGE_RE.sub("[图片]", cleaned)
    cleaned = cleaned.replace("\n", "")
    return cleaned or content


@dataclass
class Notification:
    """A message to be stored and pushed to a set of users."""

    title: str
    description: str
    type: MessageType
    url: str = ""
    data: Any = None
    recipients: list[int] = field(default_factory=list)

    def _accepting_recipients(self, session: Session) -> list[int]:
        if not self.recipients:
            return []
        kind = MessageType(self.type).value
        users = session.scalars(select(User).where(User.id.in_(self.recipients)))
        accepted = []
        for user in users:
            notify = (user.config.notify if user.config is not None else None) or []
            if kind in DEFAULT_NOTIFY and kind not in notify:
                continue
            accepted.append(user.id)
        return accepted

    def send(self, session: Session, settings: Settings) -> Optional[Message]:
        """Store the message for the users who accept it and push it out.

        Returns None when nobody is left to receive it.
        """
        recipients = self._accepting_recipients(session)
        if not recipients:
            return None

        kind = MessageType(self.type).value
        message = Message(
            type=kind,
            title=self.title,
            description=self.description,
            data=_plain(self.data),
            url=self.url,
        )
        session.add(message)
        session.flush()
        session.add_all(MessageUser(message_id=message.id, user_id=user_id) for user_id in recipients)
        session.flush()

        if not settings.notification_url:
            return message

        payload = {
            "message": strip_content(self.title, TITLE_MAX_SIZE),
            "description": strip_content(clean_notification_description(self.description), DESCRIPTION_MAX_SIZE),
            "data": message.data,
            "code": kind,
            "url": self.url,
            "recipients": recipients,
        }
        body = json.dumps(payload, ensure_ascii=False).encode()

        if settings.mode == "bench":
            time.sleep(0.001)
            return message

        response = requests.post(
            f"{settings.notification_url}/messages",
            data=body,
            headers={"Content-Type": "application/json"},
            timeout=NOTIFICATION_TIMEOUT,
        )
        if response.status_code != 201:
            logger.error("notification response failed: %s", response.text)
            raise RuntimeError(f"notification response failed: {response.text}")
        return message


def merge_notifications(notifications: list[Notification], new: Notification) -> list[Notification]:
    """Append ``new`` without the recipients already reached by earlier notifications."""
    if not new.recipients:
        return notifications
    remaining = list(new.recipients)
    for existing in notifications:
        for recipient in existing.recipients:
            if recipient in remaining:
                remaining.remove(recipient)
        if not remaining:
            return notifications
    return [*notifications, replace(new, recipients=remaining)]


def send_all(session: Session, notifications: Iterable[Notification], settings: Settings) -> None:
    """Send each notification in turn, stopping at the first failure."""
    for notification in notifications:
        notification.send(session, settings)


class AdminList:
    """Thread-safe, shuffled list of admins that take turns handling reports."""

    def __init__(self, ids: Iterable[int] = ()) -> None:
        self._lock = threading.Lock()
        self._ids: list[int] = []
        self._counter = 0
        self.refresh(ids)

    def refresh(self, ids: Iterable[int]) -> None:
        shuffled = list(ids)
        random.shuffle(shuffled)
        with self._lock:
            self._ids = shuffled

    def snapshot(self) -> list[int]:
        with self._lock:
            return list(self._ids)

    def next_admin(self) -> Optional[int]:
        """Return the next admin in turn, or None if there are none."""
        with self._lock:
            if not self._ids:
                return None
            self._counter += 1
            index = (self._counter - 1) % len(self._ids)
            if self._counter >= len(self._ids):
                self._counter = 0
            return self._ids[index]


admin_list = AdminList()