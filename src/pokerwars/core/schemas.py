"""Schema loading for agent replies."""

import json
from functools import lru_cache
from pathlib import Path

SCHEMA_DIR = Path(__file__).resolve().parent.parent / "schemas"


def load_schema(path: Path) -> dict:
    """Load a JSON Schema file and return it as a dict."""
    with open(path) as f:
        return json.load(f)


@lru_cache(maxsize=None)
def decision_schema() -> dict:
    return load_schema(SCHEMA_DIR / "decision.json")


@lru_cache(maxsize=None)
def tool_call_schema() -> dict:
    return load_schema(SCHEMA_DIR / "tool_call.json")
