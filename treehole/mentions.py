"""References from one floor to holes (#n) and floors (##n)."""

import re

from sqlalchemy import Integer
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base
from .utils import reg_text_to_int_list

_HOLE_RE = re.compile(r"[^#]#(\d+)")
_FLOOR_RE = re.compile(r"##(\d+)")


class FloorMention(Base):
    __tablename__ = "floor_mention"

    floor_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    mention_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)


def parse_mention_ids(content: str) -> tuple[list[int], list[int]]:
    """Return the hole ids and floor ids mentioned in ``content``."""
    padded = " " + content
    hole_ids = reg_text_to_int_list(_HOLE_RE.finditer(padded))
    floor_ids = reg_text_to_int_list(_FLOOR_RE.finditer(padded))
    return hole_ids, floor_ids