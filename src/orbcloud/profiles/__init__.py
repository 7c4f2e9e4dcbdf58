from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources


def available_profiles() -> list[str]:
    return sorted(
        entry.name[: -len(".json")]
        for entry in resources.files(__name__).iterdir()
        if entry.name.endswith(".json")
    )


@lru_cache(maxsize=None)
def load_profile_data(name: str) -> dict:
    entry = resources.files(__name__).joinpath(f"{name}.json")
    if not entry.is_file():
        raise KeyError(f"Unknown profile {name!r}; available: {', '.join(available_profiles())}")
    return json.loads(entry.read_text(encoding="utf-8"))
