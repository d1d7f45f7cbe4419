import re

import pytest

from treehole.names import CHARSET, RANDOM_CODE_LENGTH, NameGenerator, generate_random_code

NAMES = [f"name{i:02d}" for i in range(16)]


def test_empty_name_list_rejected():
    with pytest.raises(ValueError):
        NameGenerator([])


def test_generate_random_code_shape():
    code = generate_random_code()
    assert len(code) == RANDOM_CODE_LENGTH
    assert set(code) <= set(CHARSET)


def test_new_rand_name_from_list():
    generator = NameGenerator(NAMES)
    for _ in range(20):
        assert generator.new_rand_name() in NAMES


def test_names_are_sorted():
    generator = NameGenerator(reversed(NAMES))
    assert list(generator.names) == sorted(NAMES)


def test_generate_name_few_taken():
    generator = NameGenerator(NAMES)
    taken = [NAMES[0]]
    for _ in range(30):
        name = generator.generate_name(taken)
        assert name in NAMES
        assert name not in taken


def test_generate_name_many_taken():
    generator = NameGenerator(NAMES)
    taken = NAMES[:12]
    for _ in range(30):
        name = generator.generate_name(taken)
        assert name in NAMES[12:]


def test_generate_name_all_taken_adds_suffix():
    generator = NameGenerator(NAMES)
    for _ in range(10):
        name = generator.generate_name(NAMES)
        base, _, suffix = name.rpartition("_")
        assert base in NAMES
        assert len(suffix) == RANDOM_CODE_LENGTH
        assert re.fullmatch(r"[0-9A-Za-z]+", suffix)


def test_fuzz_name_disabled_returns_name():
    generator = NameGenerator(NAMES)
    assert generator.fuzz_name("name01") == "name01"


def test_fuzz_name_uses_mapping():
    generator = NameGenerator(NAMES, {"name01": "fuzzy"})
    assert generator.fuzz_name("name01") == "fuzzy"
    assert generator.fuzz_name("name02") == "name02"