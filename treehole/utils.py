"""Shared helpers: settings, HTTP-style errors, list utilities and logging."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Hashable, Iterable, Sequence, TypeVar

logger = logging.getLogger("treehole")

T = TypeVar("T", bound=Hashable)

ERR_CODE_NOT_ANSWERED_QUESTIONS = 403001


@dataclass
class Settings:
    """Runtime configuration of the service."""

    mode: str = "dev"
    hole_floor_size: int = 10
    open_fuzz_name: bool = False
    notification_url: str = ""
    auth_url: str = ""
    elasticsearch_url: str = ""
    redis_url: str = ""
    db_url: str = ""
    valid_image_url: list[str] = field(default_factory=list)
    url_hostname_whitelist: list[str] = field(default_factory=list)
    admin_only_tag_ids: list[int] = field(default_factory=list)
    notifiable_admin_ids: list[int] = field(default_factory=list)
    qq_bot_url: str | None = None
    qq_bot_user_id: int | None = None
    qq_bot_group_id: int | None = None
    user_all_show_hidden: bool = False
    external_image_host: str = ""
    proxy_url: str | None = None


class HttpError(Exception):
    """An error that carries an HTTP status code and a user-facing message."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message


def forbidden(message: str) -> HttpError:
    return HttpError(403, message)


def not_found(message: str) -> HttpError:
    return HttpError(404, message)


def bad_request(message: str) -> HttpError:
    return HttpError(400, message)


def internal_server_error(message: str) -> HttpError:
    return HttpError(500, message)


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    OPERATOR = "operator"


def strip_content(content: str, max_size: int) -> str:
    """Cut ``content`` to at most ``max_size`` characters."""
    return content[:max_size]


def intersect(x: Iterable[T], y: Iterable[T]) -> list[T]:
    """Elements of ``x`` that also occur in ``y``, in the order of ``x``."""
    present = set(y)
    return [item for item in x if item in present]


def difference(a: Iterable[T], b: Iterable[T]) -> list[T]:
    """Elements of ``a`` that are not in ``b``, in the order of ``a``."""
    excluded = set(b)
    return [item for item in a if item not in excluded]


def reg_text_to_int_list(matches: Iterable[re.Match[str] | Sequence[str]]) -> list[int]:
    """Convert the first capture group of each match to an integer."""
    return [int(match[1]) for match in matches]


def order_in_given_order(models: Iterable[Any], order: Iterable[int]) -> list[Any]:
    """Return the models whose ``id`` appears in ``order``, arranged in that order."""
    by_id: dict[int, Any] = {}
    for model in models:
        by_id.setdefault(model.id, model)
    return [by_id[model_id] for model_id in order if model_id in by_id]


def models_to_ids(models: Iterable[Any]) -> list[int]:
    return [model.id for model in models]


def my_log(model: str, action: str, object_id: int, user_id: int, role: Role | str, *args: str) -> None:
    """Log an action performed on a model by a user."""
    logger.info(
        "".join(args),
        extra={
            "model": model,
            "user_id": user_id,
            "object_id": object_id,
            "action": action,
            "role": role.value if isinstance(role, Role) else str(role),
        },
    )


def request_log(msg: str, type_name: str, id: int, ans: bool) -> None:
    """Log the outcome of an outgoing check request."""
    logger.info(msg, extra={"type_name": type_name, "data_id": id, "check_answer": ans})