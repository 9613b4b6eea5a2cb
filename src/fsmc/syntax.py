"""
Decoding flight program text into plain TOML tables.

The decoder is the standard TOML reader (``tomli`` before Python 3.11). What
it accepts is full TOML 1.0; everything returned from here is dicts, lists
and scalars.
"""

from __future__ import annotations

import importlib
import re
import sys
from typing import Any, cast

import fsmc.error
from fsmc.error import ConfigSyntaxError, KeyPath, Location

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    tomllib = cast(Any, importlib.import_module("tomli"))


# TOML integers are signed 64 bit
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# the decoder appends the position to its message
_POSITION_RE = re.compile(r"\s*\(at line (\d+), column (\d+)\)$")
_END_OF_DOCUMENT_RE = re.compile(r"\s*\(at end of document\)$")


def toml_error_to_compile_error(err: ValueError) -> ConfigSyntaxError:
    text = str(err)
    match = _POSITION_RE.search(text)
    if match is not None:
        return ConfigSyntaxError(
            f"Invalid TOML: {text[: match.start()]}",
            Location(int(match.group(1)), int(match.group(2))),
        )
    text = _END_OF_DOCUMENT_RE.sub("", text)
    if fsmc.error.input_lines:
        # point just past the last line
        last = len(fsmc.error.input_lines)
        end = Location(last, len(fsmc.error.input_lines[-1]) + 1)
        return ConfigSyntaxError(f"Invalid TOML: {text} at end of document", end)
    return ConfigSyntaxError(f"Invalid TOML: {text}")


def find_out_of_range_integer(doc: dict) -> ConfigSyntaxError | None:
    """The first integer, in document order, that does not fit in 64 bits.
    Walks with an explicit stack so deep documents cannot exhaust recursion."""
    stack: list[tuple[KeyPath, Any]] = [(KeyPath(), doc)]
    while stack:
        path, value = stack.pop()
        if isinstance(value, dict):
            stack.extend(reversed([(path.key(k), v) for k, v in value.items()]))
        elif isinstance(value, list):
            stack.extend(reversed([(path.index(i), v) for i, v in enumerate(value)]))
        elif isinstance(value, bool):
            continue
        elif isinstance(value, int) and not INT64_MIN <= value <= INT64_MAX:
            return ConfigSyntaxError(
                "Invalid TOML: integer does not fit in 64 bits", path
            )
    return None


def parse_toml(text: str) -> dict | ConfigSyntaxError:
    fsmc.error.input_lines = text.splitlines()
    try:
        doc = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        return toml_error_to_compile_error(e)
    except ValueError as e:
        # int() refuses literals longer than the interpreter's digit limit
        return ConfigSyntaxError(f"Invalid TOML: {e}")
    except RecursionError:
        return ConfigSyntaxError("Invalid TOML: arrays or tables are nested too deeply")

    out_of_range = find_out_of_range_integer(doc)
    if out_of_range is not None:
        return out_of_range
    return doc
