"""Small helpers shared by services."""

import copy
import re
from typing import Any


def deep_merge(*sources: dict[str, Any]) -> dict[str, Any]:
    """Merge dicts recursively, later sources winning.

    Nested dicts are merged, any other value (lists included) is replaced.
    Sources are left untouched.
    """
    merged: dict[str, Any] = {}
    for source in sources:
        for key, value in (source or {}).items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = deep_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
    return merged


def normalize_filename(name: str) -> str:
    """Lowercase a name and replace characters unsafe in filenames."""
    return re.sub(r"[/ .]", "-", name.lower())
