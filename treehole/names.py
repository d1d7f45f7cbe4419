"""Anonymous name generation for holes."""

from __future__ import annotations

import random
from typing import Iterable, Mapping

CHARSET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
RANDOM_CODE_LENGTH = 6


def generate_random_code() -> str:
    """Return a random alphanumeric code."""
    return "".join(random.choice(CHARSET) for _ in range(RANDOM_CODE_LENGTH))


class NameGenerator:
    """Picks anonymous names from a fixed list, avoiding names already in use."""

    def __init__(self, names: Iterable[str], fuzz_mapping: Mapping[str, str] | None = None) -> None:
        self._names = sorted(names)
        if not self._names:
            raise ValueError("name list must not be empty")
        self._fuzz = dict(fuzz_mapping) if fuzz_mapping is not None else None

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._names)

    def new_rand_name(self) -> str:
        return random.choice(self._names)

    def generate_name(self, compare_list: Iterable[str]) -> str:
        """Return a name that does not occur in ``compare_list``."""
        compare = list(compare_list)
        taken = set(compare)
        length = len(self._names)

        if len(compare) < length >> 3:
            while True:
                name = self.new_rand_name()
                if name not in taken:
                    return name

        if len(compare) < length:
            free = [name for name in self._names if name not in taken]
            if free:
                return random.choice(free)

        while True:
            name = f"{self.new_rand_name()}_{generate_random_code()}"
            if name not in taken:
                return name

    def fuzz_name(self, name: str) -> str:
        """Map a name to its fuzzed form when fuzzing is enabled."""
        if self._fuzz is None:
            return name
        return self._fuzz.get(name, name)