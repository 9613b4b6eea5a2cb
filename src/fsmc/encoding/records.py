from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar

from fsmc.types import (
    BOOL,
    F32,
    U8,
    U32,
    CheckIndex,
    CommandIndex,
    PoolIndex,
    StateIndex,
    WireType,
    WireValue,
    string_type,
)


# ─────────────────────────────────────────────────────────────────────────────
# Field codecs
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Seq:
    """A bounded sequence: one length byte, then each element."""

    elem: Any


@dataclass(frozen=True)
class Opt:
    """An optional value: one presence byte, then the value if present."""

    inner: Any


TAG_TYPE = U8
LENGTH_TYPE = U8
PRESENCE_TYPE = BOOL
INDEX_TYPE = U8

# wide enough for any object name the limits allow
COMMAND_OBJECT_TYPE = string_type(255)


@dataclass
class DecodeContext:
    """Pool sizes read from the image header, used to bounds-check every
    index handle as it is decoded."""

    state_count: int
    check_count: int
    command_count: int

    def pool_len(self, index_type: type[PoolIndex]) -> int:
        if index_type is StateIndex:
            return self.state_count
        if index_type is CheckIndex:
            return self.check_count
        assert index_type is CommandIndex, index_type
        return self.command_count


def serialize_field(codec, value) -> bytes:
    if isinstance(codec, WireType):
        return WireValue(codec, value).serialize()
    if isinstance(codec, Seq):
        output = WireValue(LENGTH_TYPE, len(value)).serialize()
        for elem in value:
            output += serialize_field(codec.elem, elem)
        return output
    if isinstance(codec, Opt):
        if value is None:
            return WireValue(PRESENCE_TYPE, False).serialize()
        return WireValue(PRESENCE_TYPE, True).serialize() + serialize_field(
            codec.inner, value
        )
    if isinstance(codec, type) and issubclass(codec, PoolIndex):
        return WireValue(INDEX_TYPE, value.value).serialize()
    if isinstance(codec, type) and issubclass(codec, Record):
        assert isinstance(value, codec), (value, codec)
        return value.serialize()
    assert False, f"Unknown field codec {codec}"


def deserialize_field(codec, data: bytes, offset: int, ctx: DecodeContext) -> tuple[Any, int]:
    if isinstance(codec, WireType):
        val, offset = WireValue.deserialize(codec, data, offset)
        return val.val, offset
    if isinstance(codec, Seq):
        length, offset = WireValue.deserialize(LENGTH_TYPE, data, offset)
        elems = []
        for _ in range(length.val):
            elem, offset = deserialize_field(codec.elem, data, offset, ctx)
            elems.append(elem)
        return tuple(elems), offset
    if isinstance(codec, Opt):
        present, offset = WireValue.deserialize(PRESENCE_TYPE, data, offset)
        if not present.val:
            return None, offset
        return deserialize_field(codec.inner, data, offset, ctx)
    if isinstance(codec, type) and issubclass(codec, PoolIndex):
        raw, offset = WireValue.deserialize(INDEX_TYPE, data, offset)
        return codec.checked(raw.val, ctx.pool_len(codec)), offset
    if isinstance(codec, type) and issubclass(codec, Record):
        return codec.deserialize(data, offset, ctx)
    assert False, f"Unknown field codec {codec}"


# ─────────────────────────────────────────────────────────────────────────────
# Record base classes
# ─────────────────────────────────────────────────────────────────────────────


class Record:
    """A fixed-schema structure of the config image. Fields are written in
    declaration order using the codec named in ``_FIELD_TYPES``."""

    _FIELD_TYPES: ClassVar[dict[str, Any]] = {}

    def serialize(self) -> bytes:
        return self.serialize_fields()

    def serialize_fields(self) -> bytes:
        output = bytes()
        for f in fields(self):
            codec = self._FIELD_TYPES.get(f.name)
            assert codec is not None, (
                f"No codec for field {f.name} in {type(self).__name__}"
            )
            output += serialize_field(codec, getattr(self, f.name))
        return output

    @classmethod
    def deserialize_fields(cls, data: bytes, offset: int, ctx: DecodeContext) -> tuple[list, int]:
        values = []
        for f in fields(cls):
            val, offset = deserialize_field(cls._FIELD_TYPES[f.name], data, offset, ctx)
            values.append(val)
        return values, offset

    @classmethod
    def deserialize(cls, data: bytes, offset: int, ctx: DecodeContext) -> tuple[Record, int]:
        values, offset = cls.deserialize_fields(data, offset, ctx)
        return cls(*values), offset


class TaggedRecord(Record):
    """One variant of a tagged union. The union's base class is the codec;
    each concrete variant sets its own ``tag``, written as one byte before
    the variant's fields."""

    tag: ClassVar[int] = -1

    def serialize(self) -> bytes:
        return WireValue(TAG_TYPE, self.tag).serialize() + self.serialize_fields()

    @classmethod
    def deserialize(cls, data: bytes, offset: int, ctx: DecodeContext) -> tuple[Record, int]:
        tag, offset = WireValue.deserialize(TAG_TYPE, data, offset)
        variants = [c for c in cls.__subclasses__() if c.tag == tag.val]
        if len(variants) != 1:
            raise ValueError(f"Unknown {cls.__name__} tag {tag.val}")
        variant = variants[0]
        values, offset = variant.deserialize_fields(data, offset, ctx)
        return variant(*values), offset


# ─────────────────────────────────────────────────────────────────────────────
# Conditions
# ─────────────────────────────────────────────────────────────────────────────


class FloatCondition(TaggedRecord):
    pass


@dataclass
class GreaterThan(FloatCondition):
    tag: ClassVar[int] = 0
    value: float
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"value": F32}


@dataclass
class LessThan(FloatCondition):
    tag: ClassVar[int] = 1
    value: float
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"value": F32}


@dataclass
class Between(FloatCondition):
    tag: ClassVar[int] = 2
    lower: float
    upper: float
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"lower": F32, "upper": F32}


@dataclass
class FlagCondition(Record):
    """Trips when the flag is set (``expected=True``) or unset."""

    expected: bool
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"expected": BOOL}


# ─────────────────────────────────────────────────────────────────────────────
# Check data, one variant per metric
# ─────────────────────────────────────────────────────────────────────────────


class CheckData(TaggedRecord):
    pass


@dataclass
class Altitude(CheckData):
    tag: ClassVar[int] = 0
    condition: FloatCondition
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"condition": FloatCondition}


@dataclass
class ApogeeFlag(CheckData):
    tag: ClassVar[int] = 1
    condition: FlagCondition
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"condition": FlagCondition}


@dataclass
class Pyro1Continuity(CheckData):
    tag: ClassVar[int] = 2
    condition: FlagCondition
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"condition": FlagCondition}


@dataclass
class Pyro2Continuity(CheckData):
    tag: ClassVar[int] = 3
    condition: FlagCondition
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"condition": FlagCondition}


@dataclass
class Pyro3Continuity(CheckData):
    tag: ClassVar[int] = 4
    condition: FlagCondition
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"condition": FlagCondition}


# ─────────────────────────────────────────────────────────────────────────────
# Outcomes
# ─────────────────────────────────────────────────────────────────────────────


class StateTransition(TaggedRecord):
    pass


@dataclass
class Transition(StateTransition):
    tag: ClassVar[int] = 0
    state: StateIndex
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"state": StateIndex}


@dataclass
class Abort(StateTransition):
    tag: ClassVar[int] = 1
    state: StateIndex
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"state": StateIndex}


# ─────────────────────────────────────────────────────────────────────────────
# Lowered configuration
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class LoweredCheck(Record):
    data: CheckData
    outcome: StateTransition | None = None
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {
        "data": CheckData,
        "outcome": Opt(StateTransition),
    }


@dataclass
class LoweredCommand(Record):
    object: str
    value: float
    delay: float
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {
        "object": COMMAND_OBJECT_TYPE,
        "value": F32,
        "delay": F32,
    }


@dataclass
class LoweredTimeout(Record):
    ticks: int
    target: StateIndex
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {"ticks": U32, "target": StateIndex}


@dataclass
class LoweredState(Record):
    checks: tuple[CheckIndex, ...] = ()
    commands: tuple[CommandIndex, ...] = ()
    timeout: LoweredTimeout | None = None
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {
        "checks": Seq(CheckIndex),
        "commands": Seq(CommandIndex),
        "timeout": Opt(LoweredTimeout),
    }


@dataclass
class LoweredConfig(Record):
    default_state: StateIndex
    states: tuple[LoweredState, ...]
    checks: tuple[LoweredCheck, ...] = ()
    commands: tuple[LoweredCommand, ...] = ()
    _FIELD_TYPES: ClassVar[dict[str, Any]] = {
        "default_state": StateIndex,
        "states": Seq(LoweredState),
        "checks": Seq(LoweredCheck),
        "commands": Seq(LoweredCommand),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Fix __repr__ for all union variants
# ─────────────────────────────────────────────────────────────────────────────


def _variant_repr(self):
    values = ", ".join(repr(getattr(self, f.name)) for f in fields(self))
    return f"{type(self).__name__}({values})"


for base in (FloatCondition, CheckData, StateTransition):
    for cls in base.__subclasses__():
        cls.__repr__ = _variant_repr
