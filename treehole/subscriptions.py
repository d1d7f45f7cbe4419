"""Holes a user follows."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from .db import Base


class UserSubscription(Base):
    __tablename__ = "user_subscription"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    hole_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)


def user_get_subscription_data(session: Session, user_id: int) -> list[int]:
    """Return the ids of the holes the user follows, oldest subscription first."""
    return list(
        session.scalars(
            select(UserSubscription.hole_id)
            .where(UserSubscription.user_id == user_id)
            .order_by(UserSubscription.created_at)
        )
    )


def add_user_subscription(session: Session, user_id: int, hole_id: int) -> UserSubscription:
    """Follow a hole; following it again refreshes the subscription time."""
    now = datetime.now()
    subscription = session.get(UserSubscription, {"user_id": user_id, "hole_id": hole_id})
    if subscription is None:
        subscription = UserSubscription(user_id=user_id, hole_id=hole_id, created_at=now)
        session.add(subscription)
    else:
        subscription.created_at = now
    session.flush()
    return subscription