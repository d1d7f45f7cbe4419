from dataclasses import dataclass
from datetime import timedelta
from unittest import mock

from treehole.cache import Cache, delete_cache, get_cache, set_cache


@dataclass
class Point:
    x: int
    y: int


def test_round_trip():
    cache = Cache()
    cache.set("k", {"a": [1, 2]}, 0)
    assert cache.get("k") == {"a": [1, 2]}


def test_missing_key_is_none():
    assert Cache().get("absent") is None


def test_delete_removes_entry_and_tolerates_missing():
    cache = Cache()
    cache.set("k", 1, 0)
    cache.delete("k")
    cache.delete("k")
    assert cache.get("k") is None


def test_dataclass_serialised():
    cache = Cache()
    cache.set("p", Point(1, 2), 0)
    assert cache.get("p") == {"x": 1, "y": 2}


def test_entry_expires():
    cache = Cache()
    with mock.patch("treehole.cache.time.monotonic", return_value=100.0):
        cache.set("k", "v", timedelta(seconds=10))
        assert cache.get("k") == "v"
    with mock.patch("treehole.cache.time.monotonic", return_value=111.0):
        assert cache.get("k") is None


def test_zero_expiration_never_expires():
    cache = Cache()
    with mock.patch("treehole.cache.time.monotonic", return_value=0.0):
        cache.set("k", "v", 0)
    with mock.patch("treehole.cache.time.monotonic", return_value=1e12):
        assert cache.get("k") == "v"


def test_module_level_functions():
    set_cache("module-key", [3, 4], 0)
    assert get_cache("module-key") == [3, 4]
    delete_cache("module-key")
    assert get_cache("module-key") is None