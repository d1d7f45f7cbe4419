"""Content checks: markdown images, external links and an injected checker."""

from __future__ import annotations

import base64
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable
from urllib.parse import urlsplit

import requests

from .utils import Settings


class CheckType(str, Enum):
    HOLE = "Hole"
    FLOOR = "Floor"
    TAG = "Tag"
    IMAGE = "Image"


@dataclass
class SensitiveResult:
    passed: bool
    labels: list[int] = field(default_factory=list)
    detail: str = ""


Checker = Callable[[str, CheckType, int], SensitiveResult]


class UrlParsingError(ValueError):
    def __init__(self, message: str = "error parsing url") -> None:
        super().__init__(message)


class InvalidImageHostError(ValueError):
    def __init__(self, message: str = "不允许使用外部图片链接") -> None:
        super().__init__(message)


class ImageLinkTextOnlyError(ValueError):
    def __init__(self, message: str = "image link only contains text") -> None:
        super().__init__(message)


_IMAGE_RE = re.compile(r'!\[(.*?)]\(([^" )]*?)\s*(".*?")?\)')
_HOLE_RE = re.compile(r"[^#]#(\d+)")
_FLOOR_RE = re.compile(r"##(\d+)")

_URL_CHARS = r"[A-Za-z0-9\-._~:/?#@!$&*+,;=%]"
_URL_RE = re.compile(
    rf"[A-Za-z][A-Za-z0-9+.\-]*://{_URL_CHARS}+"
    r"|(?<![A-Za-z0-9.\-@_])(?:[A-Za-z0-9](?:[A-Za-z0-9\-]*[A-Za-z0-9])?\.)+[A-Za-z]{2,}"
    rf"(?::\d{{1,5}})?(?:/{_URL_CHARS}*)?"
)
_TRAILING_PUNCTUATION = ".,;:!?"


def check_valid_url(url: str, valid_hosts: Iterable[str]) -> None:
    """Raise unless ``url`` is an absolute link to one of ``valid_hosts``."""
    try:
        parts = urlsplit(url)
        hostname = parts.hostname or ""
    except ValueError as exc:
        raise UrlParsingError() from exc
    if not parts.scheme and not parts.netloc:
        raise ImageLinkTextOnlyError()
    if hostname not in set(valid_hosts):
        raise InvalidImageHostError()


def find_images_in_markdown(content: str, valid_hosts: Iterable[str]) -> tuple[list[str], str]:
    """Return the valid image links of ``content`` and the text with images replaced.

    Raises InvalidImageHostError if an image points at a host that is not allowed.
    """
    hosts = list(valid_hosts)
    image_urls: list[str] = []

    def replace(match: re.Match[str]) -> str:
        alt_text = match.group(1)
        image_url = match.group(2) or ""
        if image_url:
            try:
                check_valid_url(image_url, hosts)
            except (ImageLinkTextOnlyError, UrlParsingError):
                pass  # not a real link: keep it as text
            else:
                image_urls.append(image_url)
                image_url = ""
        title = (match.group(3) or "").strip('"')
        return " ".join(part for part in (alt_text, image_url, title) if part)

    clear_content = _IMAGE_RE.sub(replace, content)
    return image_urls, clear_content


def contains_unsafe_url(content: str, whitelist: Iterable[str]) -> tuple[bool, str]:
    """Report the first link whose host does not end with a whitelisted suffix."""
    allowed = list(whitelist)
    for match in _URL_RE.finditer(content):
        matched = match.group(0).rstrip(_TRAILING_PUNCTUATION)
        if "://" not in matched:
            matched = "http://" + matched
        try:
            host = urlsplit(matched).netloc.rpartition("@")[2]
        except ValueError:
            return True, matched
        if not any(host.endswith(suffix) for suffix in allowed):
            return True, host
    return False, ""


def remove_id_repr(content: str) -> str:
    """Strip hole (#n) and floor (##n) references from ``content``."""
    content = _HOLE_RE.sub("", " " + content)
    content = _FLOOR_RE.sub("", content)
    return content.strip()


def _fetch_image_base64(url: str) -> str:
    response = requests.get(url, headers={"X-Consumer-Username": "0"}, timeout=10)
    if response.status_code != 200:
        raise requests.HTTPError(
            f"Request failed with status code: {response.status_code}", response=response
        )
    return base64.b64encode(response.content).decode("ascii")


def check_sensitive(
    content: str,
    type_name: CheckType | str,
    checker: Checker,
    settings: Settings,
) -> SensitiveResult:
    """Check images, links and text of ``content``; ``checker`` judges each piece."""
    images, clear_content = find_images_in_markdown(content, settings.valid_image_url)
    for image in images:
        result = checker(_fetch_image_base64(image), CheckType.IMAGE, time.time_ns())
        if not result.passed:
            return result

    contained, reason = contains_unsafe_url(clear_content, settings.url_hostname_whitelist)
    if contained:
        return SensitiveResult(passed=False, detail="不允许使用外部链接" + reason)

    text = remove_id_repr(clear_content).strip()
    if not text:
        return SensitiveResult(passed=True)

    try:
        check_type = CheckType(type_name)
    except ValueError as exc:
        raise ValueError("invalid type for sensitive check") from exc
    return checker(text, check_type, time.time_ns())