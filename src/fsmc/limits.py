"""
Capacity limits and tick rate for a flight computer build.

The defaults match the stock flight computer. A build with smaller pools ships
a JSON file with the fields it overrides, e.g. ``{"max_states": 32}``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from functools import lru_cache

from fsmc.types import MAX_INDEX_POOL_SIZE

DEFAULT_MAX_STATES = 255
DEFAULT_MAX_CHECKS = 255
DEFAULT_MAX_COMMANDS = 255
DEFAULT_MAX_CHECKS_PER_STATE = 16
DEFAULT_MAX_COMMANDS_PER_STATE = 16
DEFAULT_MAX_COMMAND_OBJECT_LENGTH = 32
DEFAULT_TICKS_PER_SECOND = 1000

# limits that size a one-byte pool or length prefix
_POOL_LIMITS = (
    "max_states",
    "max_checks",
    "max_commands",
    "max_checks_per_state",
    "max_commands_per_state",
    "max_command_object_length",
)


@dataclass(frozen=True)
class CompileLimits:
    max_states: int = DEFAULT_MAX_STATES
    max_checks: int = DEFAULT_MAX_CHECKS
    max_commands: int = DEFAULT_MAX_COMMANDS
    max_checks_per_state: int = DEFAULT_MAX_CHECKS_PER_STATE
    max_commands_per_state: int = DEFAULT_MAX_COMMANDS_PER_STATE
    max_command_object_length: int = DEFAULT_MAX_COMMAND_OBJECT_LENGTH
    ticks_per_second: int = DEFAULT_TICKS_PER_SECOND

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{f.name} must be an integer, got {value!r}")
            if value < 1:
                raise ValueError(f"{f.name} must be at least 1, got {value}")
            if f.name in _POOL_LIMITS and value > MAX_INDEX_POOL_SIZE:
                raise ValueError(
                    f"{f.name} must be at most {MAX_INDEX_POOL_SIZE}, got {value}"
                )


DEFAULT_LIMITS = CompileLimits()


@lru_cache(maxsize=4)
def load_limits(path: str) -> CompileLimits:
    """Load limits from a JSON object, keeping the default for every field it
    does not name."""
    with open(path, "r") as f:
        overrides = json.load(f)

    if not isinstance(overrides, dict):
        raise ValueError(f"Limits file {path} must contain a JSON object")

    known = {f.name for f in fields(CompileLimits)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown limits in {path}: {', '.join(unknown)}")

    return replace(DEFAULT_LIMITS, **overrides)
