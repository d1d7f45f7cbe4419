"""Holes a user keeps in favourite groups."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .holes import holes_exist
from .users import FavoriteGroup, UserFavorite
from .utils import forbidden, not_found

GROUP_MISSING = "收藏夹不存在"
HOLE_MISSING = "帖子不存在"


def _group_filter(user_id: int, group_id: int) -> tuple:
    return (FavoriteGroup.user_id == user_id, FavoriteGroup.favorite_group_id == group_id)


def _set_count(session: Session, user_id: int, group_id: int, value) -> None:
    session.execute(
        update(FavoriteGroup)
        .where(*_group_filter(user_id, group_id))
        .values(count=value)
        .execution_options(synchronize_session=False)
    )


def _group_hole_ids(session: Session, user_id: int, group_id: int) -> list[int]:
    return list(
        session.scalars(
            select(UserFavorite.hole_id).where(
                UserFavorite.user_id == user_id, UserFavorite.favorite_group_id == group_id
            )
        )
    )


def is_favorite_group_exist(session: Session, user_id: int, group_id: int) -> bool:
    """Whether the user has a live favourite group with this id."""
    found = session.scalar(
        select(func.count())
        .select_from(FavoriteGroup)
        .where(*_group_filter(user_id, group_id), FavoriteGroup.deleted.is_(False))
    )
    return bool(found)


def modify_user_favorite(session: Session, user_id: int, hole_ids: Iterable[int], group_id: int) -> None:
    """Make the group hold exactly ``hole_ids``."""
    hole_ids = list(hole_ids)
    if not hole_ids:
        return
    if not is_favorite_group_exist(session, user_id, group_id):
        raise not_found(GROUP_MISSING)
    if not holes_exist(session, hole_ids):
        raise forbidden(HOLE_MISSING)

    old = set(_group_hole_ids(session, user_id, group_id))
    wanted = set(hole_ids)

    removing = old - wanted
    if removing:
        session.execute(
            delete(UserFavorite)
            .where(
                UserFavorite.user_id == user_id,
                UserFavorite.favorite_group_id == group_id,
                UserFavorite.hole_id.in_(removing),
            )
            .execution_options(synchronize_session=False)
        )

    now = datetime.now()
    session.add_all(
        UserFavorite(user_id=user_id, favorite_group_id=group_id, hole_id=hole_id, created_at=now)
        for hole_id in wanted - old
    )
    session.flush()
    _set_count(session, user_id, group_id, len(hole_ids))


def add_user_favorite(session: Session, user_id: int, hole_id: int, group_id: int) -> None:
    """Add a hole to a group; adding it again refreshes its time."""
    if not is_favorite_group_exist(session, user_id, group_id):
        raise not_found(GROUP_MISSING)
    if not holes_exist(session, [hole_id]):
        raise not_found(HOLE_MISSING)
    now = datetime.now()
    favorite = session.get(
        UserFavorite, {"user_id": user_id, "favorite_group_id": group_id, "hole_id": hole_id}
    )
    if favorite is None:
        session.add(UserFavorite(user_id=user_id, favorite_group_id=group_id, hole_id=hole_id, created_at=now))
    else:
        favorite.created_at = now
    session.flush()
    _set_count(session, user_id, group_id, FavoriteGroup.count + 1)


def user_get_favorite_data(session: Session, user_id: int) -> list[int]:
    """Ids of all holes the user keeps in any group, each once."""
    return list(
        session.scalars(select(UserFavorite.hole_id).where(UserFavorite.user_id == user_id).distinct())
    )


def user_get_favorite_data_by_group(session: Session, user_id: int, group_id: int) -> list[int]:
    """Ids of the holes in one group."""
    if not is_favorite_group_exist(session, user_id, group_id):
        raise not_found(GROUP_MISSING)
    return _group_hole_ids(session, user_id, group_id)


def delete_user_favorite(session: Session, user_id: int, hole_id: int, group_id: int) -> None:
    """Remove a hole from a group."""
    if not is_favorite_group_exist(session, user_id, group_id):
        raise not_found(GROUP_MISSING)
    if not holes_exist(session, [hole_id]):
        raise not_found(HOLE_MISSING)
    session.execute(
        delete(UserFavorite)
        .where(
            UserFavorite.user_id == user_id,
            UserFavorite.favorite_group_id == group_id,
            UserFavorite.hole_id == hole_id,
        )
        .execution_options(synchronize_session=False)
    )
    _set_count(session, user_id, group_id, FavoriteGroup.count - 1)


def move_user_favorite(
    session: Session, user_id: int, hole_ids: Iterable[int], from_group_id: int, to_group_id: int
) -> None:
    """Move those of ``hole_ids`` that are really in the source group to the target group."""
    hole_ids = list(hole_ids)
    if from_group_id == to_group_id or not hole_ids:
        return
    if not is_favorite_group_exist(session, user_id, from_group_id) or not is_favorite_group_exist(
        session, user_id, to_group_id
    ):
        raise not_found(GROUP_MISSING)
    if not holes_exist(session, hole_ids):
        raise forbidden(HOLE_MISSING)

    present = set(_group_hole_ids(session, user_id, from_group_id))
    moving = [hole_id for hole_id in hole_ids if hole_id in present]
    if moving:
        session.flush()
        session.execute(
            update(UserFavorite)
            .where(
                UserFavorite.user_id == user_id,
                UserFavorite.favorite_group_id == from_group_id,
                UserFavorite.hole_id.in_(moving),
            )
            .values(favorite_group_id=to_group_id)
            .execution_options(synchronize_session=False)
        )
        session.expire_all()
    _set_count(session, user_id, from_group_id, FavoriteGroup.count - len(moving))
    _set_count(session, user_id, to_group_id, FavoriteGroup.count + len(moving))