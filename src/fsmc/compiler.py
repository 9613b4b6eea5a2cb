from __future__ import annotations

import fsmc.error
from fsmc.encoding.image import encode
from fsmc.encoding.records import LoweredConfig
from fsmc.error import CompileError
from fsmc.limits import DEFAULT_LIMITS, CompileLimits
from fsmc.lowering import pack
from fsmc.resolver import NameResolver
from fsmc.upper import RawConfig, parse


def text_to_raw(text: str) -> RawConfig | CompileError:
    return parse(text)


def raw_to_lowered(
    raw: RawConfig, limits: CompileLimits | None = None
) -> LoweredConfig | CompileError:
    limits = limits or DEFAULT_LIMITS

    # names must all be known before any reference to them is lowered
    resolver = NameResolver.build(raw.states, limits)
    if isinstance(resolver, CompileError):
        return resolver

    return pack(raw, resolver, limits)


def text_to_lowered(
    text: str, limits: CompileLimits | None = None, file_name: str = "<input>"
) -> LoweredConfig | CompileError:
    # errors render against the most recent input
    fsmc.error.file_name = file_name
    raw = text_to_raw(text)
    if isinstance(raw, CompileError):
        return raw
    return raw_to_lowered(raw, limits)


def compile_config(
    text: str, limits: CompileLimits | None = None, file_name: str = "<input>"
) -> bytes | CompileError:
    """Compile a flight program into a config image, or return the first
    error found. Never returns a partial image.

    ``file_name`` names the input in rendered errors."""
    lowered = text_to_lowered(text, limits, file_name)
    if isinstance(lowered, CompileError):
        return lowered
    return encode(lowered)
