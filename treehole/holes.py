"""Holes (threads) and divisions (boards), with cached previews of their floors."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

import requests
from sqlalchemy import JSON, DateTime, Integer, Select, String, and_, false, inspect, or_, select, update
from sqlalchemy.orm import Mapped, Session, mapped_column, reconstructor

from .anonyname import find_or_generate_anonyname, new_anonyname
from .cache import delete_cache, get_cache, set_cache
from .db import Base, HoleTag
from .floors import Floor, load_floor_mentions, preprocess_floors
from .messages import Notification, admin_list, merge_notifications, send_all
from .names import NameGenerator
from .sensitive import Checker, CheckType, check_sensitive
from .tags import Tag, find_or_create_tags
from .utils import Settings, models_to_ids, not_found, order_in_given_order

logger = logging.getLogger("treehole")

HOLE_CACHE_EXPIRE = 10 * 60
DEFAULT_HOLE_FLOOR_SIZE = 10


@dataclass
class HoleFloor:
    """The floors shown with a hole: the first, the last and a prefetched run."""

    first_floor: Optional[Floor] = None
    last_floor: Optional[Floor] = None
    floors: list[Floor] = field(default_factory=list)


class Hole(Base):
    __tablename__ = "hole"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now, onupdate=datetime.now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    view: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reply: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hidden: Mapped[bool] = mapped_column(nullable=False, default=False)
    locked: Mapped[bool] = mapped_column(nullable=False, default=False)
    good: Mapped[bool] = mapped_column(nullable=False, default=False)
    no_purge: Mapped[bool] = mapped_column(nullable=False, default=False)
    division_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._init_transient()

    @reconstructor
    def _init_transient(self) -> None:
        self.tags: list[Tag] = []
        self.floors: list[Floor] = []
        self.hole_floor = HoleFloor()

    @property
    def hole_id(self) -> int:
        return self.id

    def cache_name(self) -> str:
        return f"hole_{self.id}"

    def set_hole_floor(self, hole_floor_size: int = DEFAULT_HOLE_FLOOR_SIZE) -> None:
        """Derive the preview from ``floors`` (fresh load) or from the prefetch (cache)."""
        if self.floors:
            floors = list(self.floors)
            prefetch = floors if len(floors) <= hole_floor_size else floors[:-1]
            self.hole_floor = HoleFloor(floors[0], floors[-1], prefetch)
        elif self.hole_floor.floors:
            prefetch = list(self.hole_floor.floors)
            self.hole_floor = HoleFloor(prefetch[0], prefetch[-1], prefetch)
            self.floors = prefetch

    def to_dict(self) -> dict[str, Any]:
        first = self.hole_floor.first_floor
        last = self.hole_floor.last_floor
        data: dict[str, Any] = {
            "id": self.id,
            "time_created": self.created_at,
            "time_updated": self.updated_at,
            "view": self.view,
            "reply": self.reply,
            "hidden": bool(self.hidden),
            "locked": bool(self.locked),
            "good": bool(self.good),
            "no_purge": bool(self.no_purge),
            "division_id": self.division_id,
            "tags": [tag.to_dict() for tag in self.tags],
            "hole_id": self.id,
            "floors": {
                "first_floor": first.to_dict() if first is not None else None,
                "last_floor": last.to_dict() if last is not None else None,
                "prefetch": [floor.to_dict() for floor in self.hole_floor.floors],
            },
        }
        if self.deleted_at is not None:
            data["time_deleted"] = self.deleted_at
        return data


class Division(Base):
    __tablename__ = "division"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now, onupdate=datetime.now
    )
    name: Mapped[str] = mapped_column(String(10), unique=True, default="")
    description: Mapped[str] = mapped_column(String(64), default="")
    hidden: Mapped[bool] = mapped_column(nullable=False, default=False)
    pinned: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._init_transient()

    @reconstructor
    def _init_transient(self) -> None:
        self.holes: list[Hole] = []

    @property
    def division_id(self) -> int:
        return self.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "time_created": self.created_at,
            "time_updated": self.updated_at,
            "name": self.name,
            "description": self.description,
            "hidden": bool(self.hidden),
            "pinned": [hole.to_dict() for hole in self.holes],
            "division_id": self.id,
        }


def _columns(obj: Any) -> dict[str, Any]:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(type(obj)).column_attrs}


def _restore(cls: type, data: dict[str, Any]) -> Any:
    kwargs = {}
    for attr in inspect(cls).column_attrs:
        if attr.key not in data:
            continue
        value = data[attr.key]
        if isinstance(value, str) and isinstance(attr.columns[0].type, DateTime):
            value = datetime.fromisoformat(value)
        kwargs[attr.key] = value
    return cls(**kwargs)


def _cache_hole(hole: Hole) -> None:
    payload = {
        "floors": [_columns(floor) for floor in hole.floors],
        "tags": [_columns(tag) for tag in hole.tags],
    }
    set_cache(hole.cache_name(), payload, HOLE_CACHE_EXPIRE)


def _load_cached(hole: Hole) -> bool:
    data = get_cache(hole.cache_name())
    if not isinstance(data, dict):
        return False
    hole.floors = [_restore(Floor, item) for item in data.get("floors", [])]
    hole.tags = [_restore(Tag, item) for item in data.get("tags", [])]
    hole.hole_floor = HoleFloor()
    return True


def holes_exist(session: Session, hole_ids: Iterable[int]) -> bool:
    """Whether every id names a hole that has not been deleted."""
    ids = list(hole_ids)
    if not ids:
        return True
    found = session.scalars(select(Hole.id).where(Hole.id.in_(ids), Hole.deleted_at.is_(None))).all()
    return len(found) == len(ids)


def load_floors(session: Session, holes: Iterable[Hole], hole_floor_size: int = DEFAULT_HOLE_FLOOR_SIZE) -> None:
    """Load the first ``hole_floor_size`` floors and the last floor of each hole."""
    holes = list(holes)
    if not holes:
        return
    ids = models_to_ids(holes)
    replies = dict(session.execute(select(Hole.id, Hole.reply).where(Hole.id.in_(ids))).all())
    last_floors = [and_(Floor.hole_id == hole_id, Floor.ranking == reply) for hole_id, reply in replies.items()]
    query = (
        select(Floor)
        .where(or_(and_(Floor.hole_id.in_(ids), Floor.ranking < hole_floor_size), *last_floors))
        .order_by(Floor.hole_id, Floor.ranking)
    )
    grouped: dict[int, list[Floor]] = {}
    for floor in session.scalars(query):
        grouped.setdefault(floor.hole_id, []).append(floor)
    for hole in holes:
        hole.floors = grouped.get(hole.id, [])
        hole.hole_floor = HoleFloor()
        hole.set_hole_floor(hole_floor_size)


def load_tags(session: Session, holes: Iterable[Hole]) -> None:
    """Attach the non-sensitive tags of each hole."""
    holes = list(holes)
    if not holes:
        return
    for hole in holes:
        hole.tags = []
    rows = session.execute(
        select(HoleTag.hole_id, HoleTag.tag_id).where(HoleTag.hole_id.in_(models_to_ids(holes)))
    ).all()
    mapping: dict[int, list[int]] = {}
    for hole_id, tag_id in rows:
        mapping.setdefault(hole_id, []).append(tag_id)
    tag_ids = {tag_id for _, tag_id in rows}
    if not tag_ids:
        return
    tags = {
        tag.id: tag
        for tag in session.scalars(select(Tag).where(Tag.id.in_(tag_ids)))
        if not tag.sensitive()
    }
    for hole in holes:
        hole.tags = [tags[tag_id] for tag_id in mapping.get(hole.id, []) if tag_id in tags]


def update_hole_cache(session: Session, holes: Iterable[Hole], hole_floor_size: int = DEFAULT_HOLE_FLOOR_SIZE) -> None:
    """Reload floors and tags of the holes and store them in the cache."""
    holes = list(holes)
    load_floors(session, holes, hole_floor_size)
    load_tags(session, holes)
    for hole in holes:
        _cache_hole(hole)


def preprocess_holes(
    session: Session,
    holes: Iterable[Hole],
    viewer: Any,
    generator: Optional[NameGenerator] = None,
    hole_floor_size: int = DEFAULT_HOLE_FLOOR_SIZE,
) -> list[Hole]:
    """Fill floors and tags from the cache or the database and prepare them for ``viewer``."""
    holes = list(holes)
    missing = [hole for hole in holes if not _load_cached(hole)]
    if missing:
        update_hole_cache(session, missing, hole_floor_size)
    floors: list[Floor] = []
    for hole in holes:
        hole.set_hole_floor(hole_floor_size)
        floors.extend(hole.floors)
    preprocess_floors(session, floors, viewer, generator)
    return holes


def hole_query(
    session: Session, viewer: Any, offset: datetime, size: int, order: str = "time_updated"
) -> Select:
    """Holes before ``offset``, newest first; hidden and deleted ones only for admins."""
    query = select(Hole)
    if not getattr(viewer, "is_admin", False):
        query = query.where(Hole.hidden == false(), Hole.deleted_at.is_(None))
    if order in ("time_created", "created_at"):
        return query.where(Hole.created_at < offset).order_by(Hole.created_at.desc()).limit(size)
    return query.where(Hole.updated_at < offset).order_by(Hole.updated_at.desc()).limit(size)


def _send_sensitive_quietly(session: Session, floor: Floor, settings: Settings) -> None:
    try:
        floor.send_sensitive(session, admin_list, settings)
    except (RuntimeError, requests.RequestException):
        logger.exception("sending sensitive review notice failed")


def create_hole(
    session: Session,
    hole: Hole,
    user: Any,
    tag_names: Iterable[str],
    first_floor: Floor,
    checker: Checker,
    settings: Settings,
    generator: NameGenerator,
) -> Hole:
    """Create a hole with its tags and first floor, then cache it."""
    tags = find_or_create_tags(session, user, tag_names, checker, settings)
    first_floor.mention = load_floor_mentions(session, first_floor.content or "")

    session.add(hole)
    session.flush()
    first_floor.hole_id = hole.id
    if first_floor.user_id is None:
        first_floor.user_id = hole.user_id

    unique_tags = list({tag.id: tag for tag in tags}.values())
    tag_ids = [tag.id for tag in unique_tags]
    session.add_all(HoleTag(hole_id=hole.id, tag_id=tag_id) for tag_id in tag_ids)
    if tag_ids:
        session.execute(update(Tag).where(Tag.id.in_(tag_ids)).values(temperature=Tag.temperature + 1))

    first_floor.anonyname = new_anonyname(session, hole.id, hole.user_id, generator)
    session.add(first_floor)
    session.flush()

    hole.tags = unique_tags
    hole.floors = [first_floor]
    hole.set_hole_floor(settings.hole_floor_size)
    first_floor.set_defaults(user, generator)

    if first_floor.sensitive():
        _send_sensitive_quietly(session, first_floor, settings)

    _cache_hole(hole)
    return hole


def create_floor(
    session: Session,
    floor: Floor,
    viewer: Any,
    checker: Checker,
    settings: Settings,
    generator: NameGenerator,
) -> Floor:
    """Check and add a reply to its hole, notify the people concerned and drop the hole's cache."""
    result = check_sensitive(floor.content or "", CheckType.FLOOR, checker, settings)
    floor.is_sensitive = not result.passed
    floor.sensitive_detail = result.detail
    floor.mention = load_floor_mentions(session, floor.content or "")

    hole = session.get(Hole, floor.hole_id, with_for_update=True)
    if hole is None or hole.deleted_at is not None:
        raise not_found("record not found")

    floor.anonyname = find_or_generate_anonyname(session, floor.hole_id, floor.user_id, generator)
    hole.reply = (hole.reply or 0) + 1
    floor.ranking = hole.reply
    session.add(floor)
    session.flush()

    floor.set_defaults(viewer, generator)

    if not floor.sensitive():
        notifications: list[Notification] = []
        for notification in (
            floor.send_reply(session),
            floor.send_mention(session),
            floor.send_subscription(session),
        ):
            notifications = merge_notifications(notifications, notification)
        try:
            send_all(session, notifications, settings)
        except (RuntimeError, requests.RequestException):
            logger.exception("sending notifications failed")
    else:
        _send_sensitive_quietly(session, floor, settings)

    delete_cache(hole.cache_name())
    return floor


def preprocess_divisions(
    session: Session,
    divisions: Iterable[Division],
    viewer: Any,
    generator: Optional[NameGenerator] = None,
    hole_floor_size: int = DEFAULT_HOLE_FLOOR_SIZE,
) -> list[Division]:
    """Attach the pinned holes of each division in pinned order and cache the divisions."""
    divisions = list(divisions)
    for division in divisions:
        pinned = list(division.pinned or [])
        division.holes = []
        if not pinned:
            continue
        found = session.scalars(select(Hole).where(Hole.id.in_(pinned), Hole.deleted_at.is_(None))).all()
        division.holes = order_in_given_order(found, pinned)
        if division.holes:
            preprocess_holes(session, division.holes, viewer, generator, hole_floor_size)
    set_cache("divisions", [division.to_dict() for division in divisions], 0)
    return divisions