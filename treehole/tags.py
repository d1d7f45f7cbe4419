"""Tags attached to holes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import DateTime, Integer, String, event, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Mapped, Session, mapped_column
from sqlalchemy.orm.attributes import set_committed_value

from .cache import set_cache
from .db import Base
from .sensitive import Checker, CheckType, check_sensitive
from .utils import Settings, bad_request, forbidden

logger = logging.getLogger("treehole")

TAG_CACHE_EXPIRE = 10 * 60
MAX_TAG_NAME_BYTES = 15
_ADMIN_PREFIXES = ("#", "@", "*")


class Tag(Base):
    __tablename__ = "tag"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now, onupdate=datetime.now
    )
    name: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    temperature: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_zzmg: Mapped[bool] = mapped_column(nullable=False, default=False)
    is_sensitive: Mapped[bool] = mapped_column(default=False, index=True)
    is_actual_sensitive: Mapped[Optional[bool]] = mapped_column(nullable=True)
    nsfw: Mapped[bool] = mapped_column(nullable=False, default=False, index=True)

    @property
    def tag_id(self) -> int:
        return self.id

    def sensitive(self) -> bool:
        """The manual verdict if there is one, else the automatic one."""
        if self.is_actual_sensitive is not None:
            return self.is_actual_sensitive
        return bool(self.is_sensitive)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "temperature": self.temperature,
            "tag_id": self.id,
            "nsfw": bool(self.nsfw),
        }


@event.listens_for(Tag, "before_insert")
def _mark_nsfw(mapper: Any, connection: Any, target: Tag) -> None:
    if target.name and target.name.startswith("*"):
        target.nsfw = True


def _validate_new_name(name: str) -> None:
    if len(name.encode()) > MAX_TAG_NAME_BYTES:
        raise bad_request("标签长度不能超过 15 个字符")
    for prefix in _ADMIN_PREFIXES:
        if name.startswith(prefix):
            raise bad_request(f"只有管理员才能创建 {prefix} 开头的 tag")


def find_or_create_tags(
    session: Session,
    user: Any,
    names: Iterable[str],
    checker: Checker,
    settings: Settings,
) -> list[Tag]:
    """Return the tags with the given names, creating the missing ones."""
    cleaned = [name.strip() for name in names]
    is_admin = bool(getattr(user, "is_admin", False))
    tags = list(session.scalars(select(Tag).where(Tag.name.in_(cleaned)))) if cleaned else []

    admin_only = set(settings.admin_only_tag_ids)
    existing = set()
    for tag in tags:
        existing.add(tag.name.lower())
        if not is_admin and tag.id in admin_only:
            raise forbidden(f"标签 {tag.name} 为管理员专用标签")

    new_names: list[str] = []
    for name in cleaned:
        if name.lower() not in existing and name not in new_names:
            new_names.append(name)
    if not new_names:
        return tags

    if not is_admin:
        for name in new_names:
            _validate_new_name(name)

    new_tags = [
        Tag(name=name, is_sensitive=not check_sensitive(name, CheckType.TAG, checker, settings).passed)
        for name in new_names
    ]

    created: list[Tag] = []
    for tag in new_tags:
        try:
            with session.begin_nested():
                session.add(tag)
        except IntegrityError:
            present = session.scalars(select(Tag).where(Tag.name == tag.name)).first()
            if present is not None:
                created.append(present)
        else:
            created.append(tag)

    update_tag_cache(session, None)
    return tags + created


def update_tag_cache(session: Session, tags: Optional[list[Tag]] = None) -> list[Tag]:
    """Cache the given tags, or all tags hottest first when none are given."""
    if not tags:
        try:
            tags = list(session.scalars(select(Tag).order_by(Tag.temperature.desc())))
        except SQLAlchemyError:
            logger.exception("update tag cache error")
            tags = []
    set_cache("tags", [tag.to_dict() for tag in tags], TAG_CACHE_EXPIRE)
    return tags


def preprocess_tags(tags: Iterable[Tag]) -> list[Tag]:
    """Blank the names of sensitive tags for display, without marking them for saving."""
    result = list(tags)
    for tag in result:
        if tag.sensitive():
            set_committed_value(tag, "name", "")
    return result