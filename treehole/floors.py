"""Floors (posts inside a hole), their likes, history and notifications."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Union

from sqlalchemy import (
    Boolean,
    DateTime,
    Integer,
    Select,
    String,
    Text,
    UniqueConstraint,
    column,
    delete,
    false,
    func,
    inspect,
    or_,
    select,
    table,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, Session, foreign, mapped_column, relationship
from sqlalchemy.orm.attributes import set_committed_value

from .db import Base, FloorHistory, FloorLike
from .mentions import FloorMention, parse_mention_ids
from .messages import AdminList, Message, MessageType, Notification
from .names import NameGenerator
from .subscriptions import UserSubscription
from .utils import Settings

PENDING_REVIEW_CONTENT = "该内容正在审核中"
REMOVED_CONTENT = "该内容因违反社区规范被删除"

_mention_table = FloorMention.__table__
_hole = table("hole", column("id", Integer), column("user_id", Integer), column("hidden", Boolean))


class Floor(Base):
    __tablename__ = "floor"
    __table_args__ = (UniqueConstraint("hole_id", "ranking", name="idx_hole_ranking"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, index=True
    )
    content: Mapped[str] = mapped_column(String(15000), nullable=False, default="")
    anonyname: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    ranking: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reply_to: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    like: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dislike: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted: Mapped[bool] = mapped_column(nullable=False, default=False)
    modified: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fold: Mapped[str] = mapped_column(Text, nullable=False, default="")
    special_tag: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    is_sensitive: Mapped[bool] = mapped_column(nullable=False, default=False)
    is_actual_sensitive: Mapped[Optional[bool]] = mapped_column(nullable=True)
    sensitive_detail: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    hole_id: Mapped[int] = mapped_column(Integer, nullable=False)

    mention: Mapped[list["Floor"]] = relationship(
        "Floor",
        secondary=_mention_table,
        primaryjoin=lambda: Floor.id == foreign(_mention_table.c.floor_id),
        secondaryjoin=lambda: Floor.id == foreign(_mention_table.c.mention_id),
    )

    # Per-viewer state, filled in when the floor is prepared for display.
    liked = 0
    liked_frontend = False
    disliked_frontend = False
    is_me = False

    @property
    def floor_id(self) -> int:
        return self.id

    @property
    def fold_frontend(self) -> list[str]:
        return [self.fold] if self.fold else []

    def _loaded_mentions(self) -> list["Floor"]:
        state = inspect(self)
        if "mention" in state.unloaded and state.session is None:
            return []
        return list(self.mention or [])

    def sensitive(self) -> bool:
        """The manual verdict if there is one, else the automatic one."""
        if self.is_actual_sensitive is not None:
            return bool(self.is_actual_sensitive)
        return bool(self.is_sensitive)

    def _display(self, key: str, value: Any) -> None:
        set_committed_value(self, key, value)

    def _apply_defaults(self, viewer: Any, generator: Optional[NameGenerator], nested: bool) -> None:
        is_admin = bool(getattr(viewer, "is_admin", False))
        if generator is not None:
            self._display("anonyname", generator.fuzz_name(self.anonyname or ""))
        if self.sensitive():
            if is_admin:
                self._display("special_tag", "sensitive")
            if not self.deleted:
                if self.is_actual_sensitive:
                    self._display("content", REMOVED_CONTENT)
                    self._display("deleted", True)
                else:
                    self._display("content", PENDING_REVIEW_CONTENT)
                self._display("fold", self.content)
        if not is_admin:
            self._display("sensitive_detail", "")
        if not nested:
            for mentioned in self._loaded_mentions():
                mentioned._apply_defaults(viewer, generator, nested=True)

    def set_defaults(self, viewer: Any, generator: Optional[NameGenerator] = None) -> "Floor":
        """Prepare the floor for ``viewer``: fuzz the name and hide content under review.

        The changes are for display only and are never written back.
        """
        self._apply_defaults(viewer, generator, nested=False)
        return self

    def backup(self, session: Session, user_id: int, reason: str) -> FloorHistory:
        """Save the current content as a history entry."""
        history = FloorHistory(
            content=self.content,
            reason=reason,
            floor_id=self.id,
            user_id=user_id,
            is_sensitive=bool(self.is_sensitive),
            is_actual_sensitive=self.is_actual_sensitive,
            sensitive_detail=self.sensitive_detail or "",
        )
        session.add(history)
        session.flush()
        return history

    def modify_like(self, session: Session, user_id: int, like_option: int) -> None:
        """Set the user's like (1), dislike (-1) or neither (0) and recount."""
        if user_id == self.user_id:
            self.is_me = True
        if like_option == 0:
            session.execute(
                delete(FloorLike).where(FloorLike.floor_id == self.id, FloorLike.user_id == user_id)
            )
        else:
            existing = session.get(FloorLike, {"floor_id": self.id, "user_id": user_id})
            if existing is None:
                session.add(FloorLike(floor_id=self.id, user_id=user_id, like_data=like_option))
            else:
                existing.like_data = like_option
        session.flush()

        def count(value: int) -> int:
            return session.scalar(
                select(func.count())
                .select_from(FloorLike)
                .where(FloorLike.floor_id == self.id, FloorLike.like_data == value)
            ) or 0

        self.like = count(1)
        self.dislike = count(-1)
        self.liked = like_option
        if like_option == 1:
            self.liked_frontend = True
        elif like_option == -1:
            self.disliked_frontend = True

    def _notification(self, title: str, kind: MessageType, recipients: list[int], description: Optional[str] = None) -> Notification:
        return Notification(
            title=title,
            description=self.content if description is None else description,
            type=kind,
            url=f"/api/floors/{self.id}",
            data=self,
            recipients=recipients,
        )

    def send_subscription(self, session: Session) -> Notification:
        """A notification for the followers of the hole, the author excepted."""
        try:
            subscribers = list(
                session.scalars(select(UserSubscription.user_id).where(UserSubscription.hole_id == self.hole_id))
            )
        except SQLAlchemyError:
            subscribers = []
        recipients = [user_id for user_id in subscribers if user_id != self.user_id]
        return self._notification("您关注的帖子有新回复", MessageType.FAVORITE, recipients)

    def send_reply(self, session: Session) -> Notification:
        """A notification for the owner of the hole, unless that is the author."""
        try:
            owner = session.scalar(select(_hole.c.user_id).where(_hole.c.id == self.hole_id)) or 0
        except SQLAlchemyError:
            owner = 0
        recipients = [owner] if owner and owner != self.user_id else []
        return self._notification("您的内容有新回复", MessageType.REPLY, recipients)

    def send_mention(self, session: Session) -> Notification:
        """A notification for the authors of the mentioned floors."""
        recipients = [m.user_id for m in self._loaded_mentions() if m.user_id != self.user_id]
        return self._notification("您的内容被引用了", MessageType.MENTION, recipients)

    def send_modify(self, session: Session, settings: Settings) -> Optional[Message]:
        """Tell the author that an administrator changed the floor."""
        notification = self._notification("您的内容被管理员修改了", MessageType.MODIFY, [self.user_id])
        return notification.send(session, settings)

    def send_sensitive(
        self, session: Session, admins: Union[AdminList, Iterable[int]], settings: Settings
    ) -> Optional[Message]:
        """Ask the admins to review the floor; returns None when there are none."""
        ids = admins.snapshot() if isinstance(admins, AdminList) else list(admins)
        if not ids:
            return None
        notification = self._notification(
            "您有待审核的内容", MessageType.SENSITIVE, ids, description="Sensitive Review Required"
        )
        return notification.send(session, settings)

    def to_dict(self, include_mention: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "time_created": self.created_at,
            "time_updated": self.updated_at,
            "content": self.content,
            "anonyname": self.anonyname,
            "ranking": self.ranking,
            "reply_to": self.reply_to,
            "like": self.like,
            "dislike": self.dislike,
            "deleted": bool(self.deleted),
            "modified": self.modified,
            "fold_v2": self.fold or "",
            "fold": self.fold_frontend,
            "special_tag": self.special_tag or "",
            "is_sensitive": bool(self.is_sensitive),
            "is_actual_sensitive": self.is_actual_sensitive,
            "hole_id": self.hole_id,
            "mention": [m.to_dict(include_mention=False) for m in self._loaded_mentions()] if include_mention else [],
            "floor_id": self.id,
            "liked": self.liked_frontend,
            "disliked": self.disliked_frontend,
            "is_me": self.is_me,
        }
        if self.sensitive_detail:
            data["sensitive_detail"] = self.sensitive_detail
        return data


def load_floor_mentions(session: Session, content: str) -> list[Floor]:
    """Return the floors mentioned in ``content``: first floors of #holes and ##floors."""
    hole_ids, floor_ids = parse_mention_ids(content)
    conditions = []
    if hole_ids:
        conditions.append(Floor.hole_id.in_(hole_ids) & (Floor.ranking == 0))
    if floor_ids:
        conditions.append(Floor.id.in_(floor_ids))
    if not conditions:
        return []
    return list(session.scalars(select(Floor).where(or_(*conditions)).order_by(Floor.id)))


def preprocess_floors(
    session: Session, floors: Iterable[Floor], viewer: Any, generator: Optional[NameGenerator] = None
) -> list[Floor]:
    """Fill in the viewer's likes and authorship and prepare each floor for display."""
    result = list(floors)
    if not result:
        return result
    viewer_id = getattr(viewer, "id", None)
    by_id = {floor.id: floor for floor in result}
    likes = session.scalars(
        select(FloorLike).where(FloorLike.floor_id.in_(list(by_id)), FloorLike.user_id == viewer_id)
    )
    for floor_like in likes:
        floor = by_id.get(floor_like.floor_id)
        if floor is None:
            continue
        floor.liked = floor_like.like_data
        if floor_like.like_data == 1:
            floor.liked_frontend = True
        elif floor_like.like_data == -1:
            floor.disliked_frontend = True
    for floor in result:
        floor.is_me = viewer_id == floor.user_id
        floor.set_defaults(viewer, generator)
    return result


def floor_query(
    session: Session,
    hole_id: Optional[int] = None,
    offset: Optional[int] = None,
    size: Optional[int] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
) -> Select:
    """Build a floor query filtered by hole and creation time, with paging."""
    query = select(Floor)
    if hole_id is not None:
        query = query.where(Floor.hole_id == hole_id)
    if offset is not None:
        query = query.offset(offset)
    if size is not None:
        query = query.limit(size)
    if start_time is not None:
        query = query.where(Floor.created_at >= start_time)
    if end_time is not None:
        query = query.where(Floor.created_at <= end_time)
    return query


def search_floors(
    session: Session,
    keyword: str,
    size: Optional[int] = None,
    offset: Optional[int] = None,
    start_time: Optional[int] = None,
    end_time: Optional[int] = None,
) -> list[Floor]:
    """Find floors of visible holes containing ``keyword``, newest first.

    ``start_time`` and ``end_time`` are Unix timestamps.
    """
    start = datetime.fromtimestamp(start_time) if start_time is not None else None
    end = datetime.fromtimestamp(end_time) if end_time is not None else None
    visible_holes = select(_hole.c.id).where(_hole.c.hidden == false())
    query = (
        floor_query(session, None, offset, size, start, end)
        .where(Floor.content.like(f"%{keyword}%"))
        .where(Floor.hole_id.in_(visible_holes))
        .order_by(Floor.id.desc())
    )
    return list(session.scalars(query))