import logging
import re
from types import SimpleNamespace

import pytest

from treehole.utils import (
    HttpError,
    Role,
    Settings,
    bad_request,
    difference,
    forbidden,
    internal_server_error,
    intersect,
    models_to_ids,
    my_log,
    not_found,
    order_in_given_order,
    reg_text_to_int_list,
    request_log,
    strip_content,
)

TEXT = "愿中国青年都摆脱冷气，只是向上走，不必听自暴自弃者流的话。能做事的做事，能发声的发声。有一分热，发一分光。就令萤火一般，也可以在黑暗里发一点光，不必等候炬火。"


def test_strip_content_cuts_by_characters():
    assert strip_content(TEXT, 10) == "愿中国青年都摆脱冷气"


def test_strip_content_keeps_short_text():
    assert strip_content(TEXT, 100) == TEXT


def test_intersect_keeps_order_of_first():
    assert intersect([3, 1, 2, 5], [5, 2, 9]) == [2, 5]


def test_difference():
    assert difference([1, 2, 3, 4], [2, 4]) == [1, 3]
    assert difference([], [1]) == []


def test_reg_text_to_int_list():
    matches = re.finditer(r"##(\d+)", "see ##12 and ##7")
    assert reg_text_to_int_list(matches) == [12, 7]


def test_reg_text_to_int_list_rejects_non_numbers():
    with pytest.raises(ValueError):
        reg_text_to_int_list([["x", "abc"]])


def test_order_in_given_order_skips_missing():
    models = [SimpleNamespace(id=i) for i in (1, 2, 3, 4)]
    result = order_in_given_order(models, [4, 9, 2])
    assert [m.id for m in result] == [4, 2]


def test_models_to_ids():
    models = [SimpleNamespace(id=i) for i in (5, 3)]
    assert models_to_ids(models) == [5, 3]


@pytest.mark.parametrize(
    "factory, code",
    [(forbidden, 403), (not_found, 404), (bad_request, 400), (internal_server_error, 500)],
)
def test_error_factories(factory, code):
    error = factory("message")
    assert isinstance(error, HttpError)
    assert error.code == code
    assert str(error) == "message"


def test_my_log_records_fields(caplog):
    caplog.set_level(logging.INFO, logger="treehole")
    my_log("hole", "modify", 3, 1, Role.ADMIN, "a", "b")
    record = caplog.records[-1]
    assert record.getMessage() == "ab"
    assert record.model == "hole"
    assert record.role == "admin"
    assert record.object_id == 3


def test_request_log_records_fields(caplog):
    caplog.set_level(logging.INFO, logger="treehole")
    request_log("done", "Floor", 42, True)
    record = caplog.records[-1]
    assert record.getMessage() == "done"
    assert record.type_name == "Floor"
    assert record.check_answer is True


def test_settings_defaults_are_independent():
    first, second = Settings(), Settings()
    first.valid_image_url.append("example.com")
    assert second.valid_image_url == []