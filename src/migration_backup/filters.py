"""Exclusion patterns for users, organizations and repositories.

Each pattern is a case-insensitive regular expression that has to match the
whole candidate (``b.*`` excludes ``baltpeter`` but not ``albaltpeter``).
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def matches(patterns: Iterable[str], candidate: str) -> bool:
    return any(_compile(pattern).fullmatch(candidate) for pattern in patterns)
