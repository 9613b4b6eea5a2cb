from __future__ import annotations
import struct
import zlib
from dataclasses import astuple, dataclass
from importlib.metadata import PackageNotFoundError, version

from fsmc.encoding.records import (
    Abort,
    Between,
    CheckData,
    DecodeContext,
    FlagCondition,
    GreaterThan,
    LessThan,
    LoweredCheck,
    LoweredCommand,
    LoweredConfig,
    LoweredState,
    Transition,
)


def _get_version_tuple() -> tuple[int, int, int]:
    try:
        import re
        v = version("fsmc")
        # Handle versions like "0.1.0a3.dev103+g244fdeadc"
        # Extract just the major.minor.patch part
        match = re.match(r"(\d+)\.(\d+)\.(\d+)", v)
        if match:
            return (int(match.group(1)), int(match.group(2)), int(match.group(3)))
        return (0, 0, 0)
    except PackageNotFoundError:
        return (0, 0, 0)


MAJOR_VERSION, MINOR_VERSION, PATCH_VERSION = _get_version_tuple()
# bump whenever the body layout changes; flashed decoders check it
SCHEMA_VERSION = 1

HEADER_FORMAT = "!BBBBBBBI"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)


@dataclass
class Header:
    majorVersion: int
    minorVersion: int
    patchVersion: int
    schemaVersion: int
    stateCount: int
    checkCount: int
    commandCount: int
    bodySize: int


FOOTER_FORMAT = "!I"
FOOTER_SIZE = struct.calcsize(FOOTER_FORMAT)


@dataclass
class Footer:
    crc: int


def encode(config: LoweredConfig) -> bytes:
    """Serialize a lowered config into a config image. The config must
    already be valid; nothing is checked here."""
    body = config.serialize()

    header = Header(
        MAJOR_VERSION,
        MINOR_VERSION,
        PATCH_VERSION,
        SCHEMA_VERSION,
        len(config.states),
        len(config.checks),
        len(config.commands),
        len(body),
    )
    output_bytes = struct.pack(HEADER_FORMAT, *astuple(header)) + body

    crc = zlib.crc32(output_bytes) % (1 << 32)
    footer = Footer(crc)
    output_bytes += struct.pack(FOOTER_FORMAT, *astuple(footer))

    return output_bytes


def decode_header(data: bytes) -> Header:
    if len(data) < HEADER_SIZE + FOOTER_SIZE:
        raise RuntimeError(
            f"Config image too short ({len(data)} bytes, need at least {HEADER_SIZE + FOOTER_SIZE})"
        )
    return Header(*struct.unpack_from(HEADER_FORMAT, data))


def decode(data: bytes) -> LoweredConfig:
    header = decode_header(data)

    if header.schemaVersion != SCHEMA_VERSION:
        raise RuntimeError(
            f"Schema version wrong (expected {SCHEMA_VERSION} found {header.schemaVersion})"
        )

    if len(data) != HEADER_SIZE + header.bodySize + FOOTER_SIZE:
        raise RuntimeError(
            f"Config image is {len(data)} bytes, header says {HEADER_SIZE + header.bodySize + FOOTER_SIZE}"
        )

    footer = Footer(*struct.unpack_from(FOOTER_FORMAT, data, len(data) - FOOTER_SIZE))
    crc = zlib.crc32(data[: len(data) - FOOTER_SIZE]) % (1 << 32)
    if crc != footer.crc:
        raise RuntimeError(f"CRC mismatch (expected {footer.crc:#010x} found {crc:#010x})")

    ctx = DecodeContext(header.stateCount, header.checkCount, header.commandCount)
    body = data[HEADER_SIZE : HEADER_SIZE + header.bodySize]
    try:
        config, offset = LoweredConfig.deserialize(body, 0, ctx)
    except (struct.error, ValueError) as e:
        raise RuntimeError(f"Unable to deserialize config image: {e}") from e

    if offset != len(body):
        raise RuntimeError(f"{len(body) - offset} extra bytes at end of config image")

    if (len(config.states), len(config.checks), len(config.commands)) != (
        header.stateCount,
        header.checkCount,
        header.commandCount,
    ):
        raise RuntimeError("Pool sizes in the body do not match the header")

    return config


def _check_data_to_str(data: CheckData) -> str:
    metric = type(data).__name__
    cond = data.condition
    if isinstance(cond, FlagCondition):
        return f"{metric} {'set' if cond.expected else 'unset'}"
    if isinstance(cond, GreaterThan):
        return f"{metric} > {cond.value}"
    if isinstance(cond, LessThan):
        return f"{metric} < {cond.value}"
    assert isinstance(cond, Between), cond
    return f"{metric} in [{cond.lower}, {cond.upper}]"


def _check_to_str(check: LoweredCheck) -> str:
    out = _check_data_to_str(check.data)
    if isinstance(check.outcome, Transition):
        out += f" -> transition {check.outcome.state.value}"
    elif isinstance(check.outcome, Abort):
        out += f" -> abort {check.outcome.state.value}"
    return out


def _command_to_str(command: LoweredCommand) -> str:
    return f'"{command.object}" = {command.value} after {command.delay}s'


def _state_to_str(idx: int, state: LoweredState, config: LoweredConfig) -> str:
    out = f"state {idx}"
    if idx == config.default_state.value:
        out += " (default)"
    out += "\n"
    if state.timeout is not None:
        out += f"  timeout {state.timeout.ticks} ticks -> {state.timeout.target.value}\n"
    for check_idx in state.checks:
        out += f"  check {check_idx.value}: {_check_to_str(config.checks[check_idx.value])}\n"
    for command_idx in state.commands:
        out += f"  command {command_idx.value}: {_command_to_str(config.commands[command_idx.value])}\n"
    return out


def disassemble(config: LoweredConfig) -> str:
    """Human readable listing of a lowered config, one block per state."""
    return "".join(
        _state_to_str(idx, state, config) for idx, state in enumerate(config.states)
    )
