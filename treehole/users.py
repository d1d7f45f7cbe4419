"""Users, their settings and their favourite groups."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, String, select, update
from sqlalchemy.orm import Mapped, Session, mapped_column
from sqlalchemy.types import TypeDecorator

from .db import Base
from .utils import Settings, bad_request, forbidden, not_found

MAX_GROUP_PER_USER = 10
SHOW_FOLDED_OPTIONS = ("hide", "fold", "show")
DEFAULT_NOTIFY = ("mention", "favorite", "report")
DEFAULT_SHOW_FOLDED = "hide"
DEFAULT_FAVORITE_GROUP_NAME = "默认收藏夹"
MAX_TIME = datetime(9999, 1, 1)
MIN_TIME = datetime.fromtimestamp(0)
BAN_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class UserConfig:
    """Per-user preferences: which notifications to receive and how to show folded content."""

    notify: Optional[list[str]] = None
    show_folded: str = ""


def _default_config() -> UserConfig:
    return UserConfig(notify=list(DEFAULT_NOTIFY), show_folded=DEFAULT_SHOW_FOLDED)


class _UserConfigType(TypeDecorator):
    impl = JSON
    cache_ok = True

    def process_bind_param(self, value: Optional[UserConfig], dialect: Any) -> dict:
        if value is None:
            return {}
        return {"notify": value.notify, "show_folded": value.show_folded}

    def process_result_value(self, value: Optional[dict], dialect: Any) -> UserConfig:
        value = value or {}
        return UserConfig(notify=value.get("notify"), show_folded=value.get("show_folded") or "")


class _BanDivisionType(TypeDecorator):
    impl = JSON
    cache_ok = True

    def process_bind_param(self, value: Optional[dict], dialect: Any) -> dict:
        return {
            str(division_id): end.isoformat() if end is not None else None
            for division_id, end in (value or {}).items()
        }

    def process_result_value(self, value: Optional[dict], dialect: Any) -> dict:
        return {
            int(division_id): datetime.fromisoformat(end) if end else None
            for division_id, end in (value or {}).items()
        }


class User(Base):
    __tablename__ = "user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    config: Mapped[UserConfig] = mapped_column(_UserConfigType, nullable=False, default=UserConfig)
    ban_division: Mapped[dict] = mapped_column(_BanDivisionType, nullable=False, default=dict)
    offence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ban_report: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ban_report_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    default_special_tag: Mapped[str] = mapped_column(String(32), default="")
    special_tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    favorite_group_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Filled from the login, not stored.
    is_admin = False
    has_answered_questions = False
    nickname = ""
    joined_time = None
    permission = None

    @property
    def user_id(self) -> int:
        return self.id

    def ban_division_message(self, division_id: int) -> str:
        end = (self.ban_division or {}).get(division_id)
        if end is None:
            return "您在此板块已被禁言"
        return f"您在此板块已被禁言，解封时间：{end.strftime(BAN_TIME_FORMAT)}"

    def ban_report_message(self) -> str:
        if self.ban_report is None:
            return "您已被限制使用举报功能"
        return f"您已被限制使用举报功能，解封时间：{self.ban_report.strftime(BAN_TIME_FORMAT)}"


class FavoriteGroup(Base):
    __tablename__ = "favorite_groups"

    favorite_group_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False, default="默认")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)
    deleted: Mapped[bool] = mapped_column(default=False)
    count: Mapped[int] = mapped_column(Integer, default=0)


class UserFavorite(Base):
    __tablename__ = "user_favorites"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    favorite_group_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    hole_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)


_ORDER_FIELDS = {
    "favorite_group_id": "favorite_group_id",
    "name": "name",
    "created_at": "created_at",
    "time_created": "created_at",
    "updated_at": "updated_at",
    "time_updated": "updated_at",
    "count": "count",
}


def _order_clause(order: str) -> Any:
    parts = order.split()
    if not parts or len(parts) > 2 or parts[0] not in _ORDER_FIELDS:
        raise bad_request(f"invalid order: {order}")
    column = getattr(FavoriteGroup, _ORDER_FIELDS[parts[0]])
    direction = parts[1].lower() if len(parts) == 2 else "asc"
    if direction == "asc":
        return column.asc()
    if direction == "desc":
        return column.desc()
    raise bad_request(f"invalid order: {order}")


def _change_group_count(session: Session, user_id: int, delta: int) -> None:
    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(favorite_group_count=User.favorite_group_count + delta)
    )


def load_user(session: Session, user_id: int) -> User:
    """Load a user, creating it when missing, and drop expired bans and bad settings."""
    user = session.get(User, user_id, with_for_update=True)
    if user is None:
        user = User(
            id=user_id,
            config=_default_config(),
            ban_division={},
            offence_count=0,
            ban_report_count=0,
            special_tags=[],
            favorite_group_count=0,
        )
        session.add(user)
        session.flush()

    check_default_favorite_group(session, user_id)

    now = datetime.now()
    current_bans = dict(user.ban_division or {})
    bans = {division_id: end for division_id, end in current_bans.items() if end is None or not end < now}
    modified = len(bans) != len(current_bans)

    config = user.config or UserConfig()
    notify = config.notify
    show_folded = config.show_folded
    if show_folded not in SHOW_FOLDED_OPTIONS:
        show_folded = DEFAULT_SHOW_FOLDED
        modified = True
    if notify is None:
        notify = list(DEFAULT_NOTIFY)
        modified = True

    if modified:
        user.ban_division = bans
        user.config = UserConfig(notify=notify, show_folded=show_folded)
        session.flush()
    return user


def get_current_user(session: Session, user_id: int, is_admin: bool, settings: Settings) -> User:
    """Return the logged-in user; in dev and test mode a default administrator."""
    if settings.mode in ("dev", "test"):
        user = User(id=1, ban_division={}, config=_default_config())
        user.is_admin = True
        user.has_answered_questions = True
        return user

    user = load_user(session, user_id)
    user.is_admin = is_admin
    user.permission = {
        "admin": MAX_TIME if is_admin else MIN_TIME,
        "silent": user.ban_division,
        "offense_count": user.offence_count,
    }
    if settings.user_all_show_hidden:
        user.config.show_folded = "hide"
    return user


def check_default_favorite_group(session: Session, user_id: int) -> None:
    """Create the user's default favourite group if it does not exist yet."""
    existing = session.scalar(
        select(FavoriteGroup.favorite_group_id).where(
            FavoriteGroup.user_id == user_id, FavoriteGroup.favorite_group_id == 0
        )
    )
    if existing is not None:
        return
    session.add(
        FavoriteGroup(
            user_id=user_id,
            favorite_group_id=0,
            name=DEFAULT_FAVORITE_GROUP_NAME,
            created_at=datetime.now(),
            deleted=False,
            count=0,
        )
    )
    session.flush()
    _change_group_count(session, user_id, 1)


def user_get_favorite_groups(session: Session, user_id: int, order: Optional[str] = None) -> list[FavoriteGroup]:
    """Return the user's live favourite groups, optionally ordered like ``"name desc"``."""
    check_default_favorite_group(session, user_id)
    query = select(FavoriteGroup).where(FavoriteGroup.user_id == user_id, FavoriteGroup.deleted.is_(False))
    if order is not None:
        query = query.order_by(_order_clause(order))
    return list(session.scalars(query))


def add_user_favorite_group(session: Session, user_id: int, name: str) -> FavoriteGroup:
    """Add a favourite group, reusing the id of a deleted one once the limit is reached."""
    max_id = session.scalar(
        select(FavoriteGroup.favorite_group_id)
        .where(FavoriteGroup.user_id == user_id, FavoriteGroup.deleted.is_(False))
        .order_by(FavoriteGroup.favorite_group_id.desc())
        .limit(1)
    )
    group_id = (max_id or 0) + 1
    if group_id >= MAX_GROUP_PER_USER:
        group_id = session.scalar(
            select(FavoriteGroup.favorite_group_id)
            .where(FavoriteGroup.user_id == user_id, FavoriteGroup.deleted.is_(True))
            .order_by(FavoriteGroup.favorite_group_id)
            .limit(1)
        )
        if group_id is None:
            raise forbidden("收藏夹数量已达上限")

    now = datetime.now()
    group = session.get(FavoriteGroup, {"favorite_group_id": group_id, "user_id": user_id})
    if group is None:
        group = FavoriteGroup(
            user_id=user_id, favorite_group_id=group_id, name=name, created_at=now, deleted=False, count=0
        )
        session.add(group)
    else:
        group.name = name
        group.created_at = now
        group.updated_at = now
        group.deleted = False
        group.count = 0
    session.flush()
    _change_group_count(session, user_id, 1)
    return group


def delete_user_favorite_group(session: Session, user_id: int, group_id: int) -> None:
    """Mark an empty, non-default favourite group as deleted."""
    if group_id == 0:
        raise forbidden("默认收藏夹不可删除")
    favorite = session.scalar(
        select(UserFavorite.hole_id)
        .where(UserFavorite.user_id == user_id, UserFavorite.favorite_group_id == group_id)
        .limit(1)
    )
    if favorite is not None:
        raise forbidden("收藏夹中存在收藏内容，请先移除")

    result = session.execute(
        update(FavoriteGroup)
        .where(FavoriteGroup.user_id == user_id, FavoriteGroup.favorite_group_id == group_id)
        .values(deleted=True, updated_at=datetime.now())
    )
    if result.rowcount == 0:
        raise not_found("收藏夹不存在")
    _change_group_count(session, user_id, -1)


def modify_user_favorite_group(session: Session, user_id: int, group_id: int, name: str) -> None:
    """Rename a favourite group."""
    session.execute(
        update(FavoriteGroup)
        .where(FavoriteGroup.user_id == user_id, FavoriteGroup.favorite_group_id == group_id)
        .values(name=name, updated_at=datetime.now())
    )