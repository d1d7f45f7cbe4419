"""Per-hole anonymous names of users."""

from sqlalchemy import Integer, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from .db import Base
from .names import NameGenerator


class AnonynameMapping(Base):
    __tablename__ = "anonyname_mapping"

    hole_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    anonyname: Mapped[str] = mapped_column(String(32), default="")


def new_anonyname(session: Session, hole_id: int, user_id: int, generator: NameGenerator) -> str:
    """Give the user a fresh random name in the hole."""
    name = generator.new_rand_name()
    session.add(AnonynameMapping(hole_id=hole_id, user_id=user_id, anonyname=name))
    session.flush()
    return name


def find_or_generate_anonyname(session: Session, hole_id: int, user_id: int, generator: NameGenerator) -> str:
    """Return the user's name in the hole, creating an unused one if needed."""
    existing = session.scalars(
        select(AnonynameMapping.anonyname).where(
            AnonynameMapping.hole_id == hole_id, AnonynameMapping.user_id == user_id
        )
    ).first()
    if existing is not None:
        return existing

    used = session.scalars(
        select(AnonynameMapping.anonyname)
        .where(AnonynameMapping.hole_id == hole_id)
        .order_by(AnonynameMapping.anonyname)
        .with_for_update()
    ).all()
    name = generator.generate_name(used)
    session.add(AnonynameMapping(hole_id=hole_id, user_id=user_id, anonyname=name))
    session.flush()
    return name