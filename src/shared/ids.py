"""
Identifier generators. Injected into every component that mints ids.
"""

import itertools
import uuid
from typing import Callable

IdGenerator = Callable[[], str]


def uuid4_generator() -> str:
    """Random UUID4 string."""
    return str(uuid.uuid4())


class SequentialIdGenerator:
    """Deterministic ids: <prefix>-1, <prefix>-2, ..."""

    def __init__(self, prefix: str = "id"):
        self.prefix = prefix
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self.prefix}-{next(self._counter)}"
