"""
Tests for the config image: encoding, decoding, integrity checks and the
disassembler.
"""

import struct
import zlib

import pytest

from fsmc.encoding.image import (
    FOOTER_SIZE,
    HEADER_FORMAT,
    HEADER_SIZE,
    SCHEMA_VERSION,
    decode,
    decode_header,
    disassemble,
    encode,
)
from fsmc.encoding.records import (
    Abort,
    Altitude,
    ApogeeFlag,
    Between,
    DecodeContext,
    FlagCondition,
    GreaterThan,
    LessThan,
    LoweredCheck,
    LoweredCommand,
    LoweredConfig,
    LoweredState,
    LoweredTimeout,
    Pyro2Continuity,
    Transition,
)
from fsmc.test_helpers import compile_text, lower_text
from fsmc.types import CheckIndex, CommandIndex, StateIndex


FLIGHT_PROGRAM = """
default_state = "Pad"

[[states]]
name = "Pad"
checks = [
    { name = "Liftoff", check = "altitude", greater_than = 30, transition = "Ascent" },
    { name = "Pyro2", check = "pyro2", flag = "unset", abort = "Safe" },
]

[[states]]
name = "Ascent"
timeout = { seconds = 25, state = "Descent" }
checks = [{ name = "Apogee", check = "apogee", flag = "set", transition = "Descent" }]

[[states]]
name = "Descent"
checks = [{ name = "Main", check = "altitude", lower_bound = 0, upper_bound = 450 }]
commands = [
    { object = "Drogue", value = 1, delay = 0 },
    { object = "Main", value = 1, delay = 2.5 },
]

[[states]]
name = "Safe"
checks = []
"""


def sample_config() -> LoweredConfig:
    return LoweredConfig(
        StateIndex(1),
        (
            LoweredState((CheckIndex(0), CheckIndex(2))),
            LoweredState(
                (CheckIndex(1),),
                (CommandIndex(0),),
                LoweredTimeout(1500, StateIndex(0)),
            ),
        ),
        (
            LoweredCheck(Altitude(GreaterThan(100.0))),
            LoweredCheck(Altitude(LessThan(-2.5)), Abort(StateIndex(0))),
            LoweredCheck(Pyro2Continuity(FlagCondition(False)), Transition(StateIndex(1))),
        ),
        (LoweredCommand("Pyro1", 1.0, 0.5),),
    )


class TestRoundTrip:
    def test_sample(self):
        config = sample_config()
        assert decode(encode(config)) == config

    def test_compiled_program(self):
        lowered = lower_text(FLIGHT_PROGRAM)
        assert decode(encode(lowered)) == lowered

    def test_minimal(self):
        config = LoweredConfig(StateIndex(0), (LoweredState(),))
        assert decode(encode(config)) == config

    def test_between_and_apogee(self):
        config = LoweredConfig(
            StateIndex(0),
            (LoweredState((CheckIndex(0), CheckIndex(1))),),
            (
                LoweredCheck(Altitude(Between(-1.5, 1e6))),
                LoweredCheck(ApogeeFlag(FlagCondition(True)), Transition(StateIndex(0))),
            ),
        )
        assert decode(encode(config)) == config

    def test_unicode_command_object(self):
        config = LoweredConfig(
            StateIndex(0),
            (LoweredState((), (CommandIndex(0),)),),
            (),
            (LoweredCommand("Zündung", -3.0, 0.0),),
        )
        assert decode(encode(config)) == config


def test_deterministic():
    assert compile_text(FLIGHT_PROGRAM) == compile_text(FLIGHT_PROGRAM)


def test_header():
    image = compile_text(FLIGHT_PROGRAM)
    header = decode_header(image)
    assert header.schemaVersion == SCHEMA_VERSION
    assert header.stateCount == 4
    assert header.checkCount == 4
    assert header.commandCount == 2
    assert len(image) == HEADER_SIZE + header.bodySize + FOOTER_SIZE


def test_crc_covers_header_and_body():
    image = compile_text(FLIGHT_PROGRAM)
    crc = struct.unpack("!I", image[-FOOTER_SIZE:])[0]
    assert crc == zlib.crc32(image[:-FOOTER_SIZE])


class TestDecodeErrors:
    def test_too_short(self):
        with pytest.raises(RuntimeError, match="too short"):
            decode(b"\x00" * 4)

    def test_truncated(self):
        image = encode(sample_config())
        with pytest.raises(RuntimeError):
            decode(image[:-1])

    def test_trailing_garbage(self):
        image = encode(sample_config())
        with pytest.raises(RuntimeError):
            decode(image + b"\x00")

    def test_corrupted_body(self):
        image = bytearray(encode(sample_config()))
        image[HEADER_SIZE + 2] ^= 0xFF
        with pytest.raises(RuntimeError, match="CRC mismatch"):
            decode(bytes(image))

    def test_wrong_schema(self):
        image = bytearray(encode(sample_config()))
        image[3] = SCHEMA_VERSION + 1
        with pytest.raises(RuntimeError, match="Schema version"):
            decode(bytes(image))

    def _reseal(self, header_fields, body: bytes) -> bytes:
        data = struct.pack(HEADER_FORMAT, *header_fields) + body
        return data + struct.pack("!I", zlib.crc32(data))

    def test_index_out_of_pool(self):
        # default state 5 in a one state image
        body = LoweredConfig(StateIndex(0), (LoweredState(),)).serialize()
        body = b"\x05" + body[1:]
        image = self._reseal((0, 0, 0, SCHEMA_VERSION, 1, 0, 0, len(body)), body)
        with pytest.raises(RuntimeError, match="Unable to deserialize"):
            decode(image)

    def test_unknown_tag(self):
        config = LoweredConfig(
            StateIndex(0),
            (LoweredState((CheckIndex(0),)),),
            (LoweredCheck(Altitude(GreaterThan(1.0))),),
        )
        body = bytearray(config.serialize())
        # the only check is followed by the empty commands length byte
        tag_offset = len(body) - len(config.checks[0].serialize()) - 1
        assert body[tag_offset] == Altitude.tag
        body[tag_offset] = 0x7F
        image = self._reseal(
            (0, 0, 0, SCHEMA_VERSION, 1, 1, 0, len(body)), bytes(body)
        )
        with pytest.raises(RuntimeError, match="Unknown CheckData tag"):
            decode(image)

    def test_header_counts_disagree(self):
        body = LoweredConfig(StateIndex(0), (LoweredState(), LoweredState())).serialize()
        image = self._reseal((0, 0, 0, SCHEMA_VERSION, 3, 0, 0, len(body)), body)
        with pytest.raises(RuntimeError, match="do not match"):
            decode(image)


def test_decode_context_pool_lengths():
    ctx = DecodeContext(3, 2, 1)
    assert ctx.pool_len(StateIndex) == 3
    assert ctx.pool_len(CheckIndex) == 2
    assert ctx.pool_len(CommandIndex) == 1


def test_disassemble():
    listing = disassemble(lower_text(FLIGHT_PROGRAM))
    assert listing == (
        "state 0 (default)\n"
        "  check 0: Altitude > 30.0 -> transition 1\n"
        "  check 1: Pyro2Continuity unset -> abort 3\n"
        "state 1\n"
        "  timeout 25000 ticks -> 2\n"
        "  check 2: ApogeeFlag set -> transition 2\n"
        "state 2\n"
        "  check 3: Altitude in [0.0, 450.0]\n"
        '  command 0: "Drogue" = 1.0 after 0.0s\n'
        '  command 1: "Main" = 1.0 after 2.5s\n'
        "state 3\n"
    )
