from __future__ import annotations

import math
import struct
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar

from fsmc.error import CapacityExceeded


# every pool index and bounded length is serialized as one byte
MAX_INDEX_POOL_SIZE = 255

F32_MAX = struct.unpack(">f", b"\x7f\x7f\xff\xff")[0]


class TypeKind(str, Enum):
    U8 = "U8"
    U32 = "U32"
    F32 = "F32"
    BOOL = "bool"
    STRING = "string"


# struct format for each primitive kind
_PRIMITIVE_FORMATS: dict[TypeKind, str] = {
    TypeKind.U8: ">B",
    TypeKind.U32: ">I",
    TypeKind.F32: ">f",
    TypeKind.BOOL: ">B",
}

# Size in bytes for each primitive kind
_PRIMITIVE_SIZES: dict[TypeKind, int] = {
    TypeKind.U8: 1,
    TypeKind.U32: 4,
    TypeKind.F32: 4,
    TypeKind.BOOL: 1,
}

# Inclusive integer ranges
_INTEGER_RANGES: dict[TypeKind, tuple[int, int]] = {
    TypeKind.U8: (0, 255),
    TypeKind.U32: (0, 2**32 - 1),
}

WIRE_TRUE_VALUE = 0x01
WIRE_FALSE_VALUE = 0x00


class WireType:
    """A primitive field type of the config image. Singletons for the fixed
    width kinds, constructed instances for length-limited strings."""

    __slots__ = ("kind", "name", "max_length")

    def __init__(self, kind: TypeKind, name: str, *, max_length: int | None = None):
        self.kind = kind
        self.name = name
        self.max_length = max_length

    def __eq__(self, other):
        if not isinstance(other, WireType):
            return NotImplemented
        return self.kind == other.kind and self.name == other.name

    def __hash__(self):
        return hash((self.kind, self.name))

    def __repr__(self):
        if self.kind == TypeKind.STRING:
            return f"WireType(String[{self.max_length}])"
        return f"WireType({self.name})"

    def validate_value(self, val) -> None:
        """Raise ValueError if *val* is out of range for this integer type."""
        lo, hi = _INTEGER_RANGES[self.kind]
        if not (lo <= val <= hi):
            raise ValueError(f"Value {val} out of range [{lo}, {hi}] for {self.name}")


U8 = WireType(TypeKind.U8, "U8")
U32 = WireType(TypeKind.U32, "U32")
F32 = WireType(TypeKind.F32, "F32")
BOOL = WireType(TypeKind.BOOL, "bool")


def string_type(max_length: int) -> WireType:
    assert 0 < max_length <= MAX_INDEX_POOL_SIZE, max_length
    return WireType(TypeKind.STRING, f"String_{max_length}", max_length=max_length)


class WireValue:
    """A concrete value with an associated wire type."""

    __slots__ = ("type", "val")

    def __init__(self, type: WireType, val: Any):
        self.type = type
        self.val = val

    def __repr__(self):
        return f"WireValue({self.type.name}, {self.val!r})"

    def __eq__(self, other):
        if not isinstance(other, WireValue):
            return NotImplemented
        return self.type == other.type and self.val == other.val

    def __hash__(self):
        return hash((self.type, self.val))

    def serialize(self) -> bytes:
        """Serialize this value to bytes (big-endian)."""
        kind = self.type.kind

        if kind in _PRIMITIVE_FORMATS:
            val = self.val
            if kind == TypeKind.BOOL:
                val = WIRE_TRUE_VALUE if val else WIRE_FALSE_VALUE
            return struct.pack(_PRIMITIVE_FORMATS[kind], val)

        if kind == TypeKind.STRING:
            encoded = self.val.encode("utf-8")
            if len(encoded) > self.type.max_length:
                raise ValueError(
                    f"String too long: {len(encoded)} > {self.type.max_length}"
                )
            return struct.pack(">B", len(encoded)) + encoded

        assert False, f"Cannot serialize {self.type}"

    @staticmethod
    def deserialize(typ: WireType, data: bytes, offset: int = 0) -> tuple[WireValue, int]:
        """Deserialize a value of *typ* from *data* at *offset*.
        Returns ``(value, new_offset)``."""
        kind = typ.kind

        if kind in _PRIMITIVE_FORMATS:
            fmt = _PRIMITIVE_FORMATS[kind]
            size = _PRIMITIVE_SIZES[kind]
            raw = struct.unpack_from(fmt, data, offset)[0]
            if kind == TypeKind.BOOL:
                if raw not in (WIRE_TRUE_VALUE, WIRE_FALSE_VALUE):
                    raise ValueError(f"Invalid bool byte {raw:#04x}")
                raw = raw == WIRE_TRUE_VALUE
            return WireValue(typ, raw), offset + size

        if kind == TypeKind.STRING:
            str_len = struct.unpack_from(">B", data, offset)[0]
            offset += 1
            if str_len > typ.max_length:
                raise ValueError(f"String too long: {str_len} > {typ.max_length}")
            if offset + str_len > len(data):
                raise ValueError("String runs past the end of the data")
            s = data[offset : offset + str_len].decode("utf-8")
            return WireValue(typ, s), offset + str_len

        assert False, f"Cannot deserialize {typ}"


def to_f32(val: float) -> float | None:
    """Round *val* to the nearest single precision float, or None if it is
    not finite or does not fit."""
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        return None
    val = float(val)
    if not math.isfinite(val) or abs(val) > F32_MAX:
        return None
    return struct.unpack(">f", struct.pack(">f", val))[0]


class Metric(str, Enum):
    """The environmental measurement a check observes."""

    ALTITUDE = "altitude"
    APOGEE = "apogee"
    PYRO1_CONTINUITY = "pyro1_continuity"
    PYRO2_CONTINUITY = "pyro2_continuity"
    PYRO3_CONTINUITY = "pyro3_continuity"


# short names accepted in the `check` key of a flight program
METRIC_NAMES: dict[str, Metric] = {
    **{metric.value: metric for metric in Metric},
    "pyro1": Metric.PYRO1_CONTINUITY,
    "pyro2": Metric.PYRO2_CONTINUITY,
    "pyro3": Metric.PYRO3_CONTINUITY,
}


class Flag(str, Enum):
    SET = "set"
    UNSET = "unset"


# ─────────────────────────────────────────────────────────────────────────────
# Pool indices
# ─────────────────────────────────────────────────────────────────────────────


class PoolIndex:
    """A one-byte handle into a bounded pool. Only build these through
    ``checked`` so that a handle never points past its pool."""

    __slots__ = ("value",)
    pool_name: ClassVar[str] = "pool"

    def __init__(self, value: int):
        self.value = value

    @classmethod
    def checked(cls, value: int, pool_len: int):
        if not 0 <= value < pool_len:
            raise ValueError(
                f"{cls.__name__} {value} out of range for {cls.pool_name} pool of {pool_len}"
            )
        U8.validate_value(value)
        return cls(value)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.value == other.value

    def __hash__(self):
        return hash((type(self).__name__, self.value))

    def __repr__(self):
        return f"{type(self).__name__}({self.value})"

    def __index__(self):
        return self.value


class StateIndex(PoolIndex):
    __slots__ = ()
    pool_name = "states"


class CheckIndex(PoolIndex):
    __slots__ = ()
    pool_name = "checks"


class CommandIndex(PoolIndex):
    __slots__ = ()
    pool_name = "commands"


T = TypeVar("T")


class BoundedPool(Generic[T]):
    """Append-only container with a fixed capacity. Pushing past the capacity
    yields a CapacityExceeded error instead of growing or truncating."""

    def __init__(self, kind: str, capacity: int, index_type: type[PoolIndex] | None = None):
        assert 0 < capacity <= MAX_INDEX_POOL_SIZE, capacity
        self.kind = kind
        self.capacity = capacity
        self.index_type = index_type
        self._items: list[T] = []

    def push(self, item: T, node=None) -> PoolIndex | int | CapacityExceeded:
        """Append *item*. Returns its index handle (or its position when the
        pool has no index type), or an error if the pool is full."""
        if len(self._items) >= self.capacity:
            return CapacityExceeded(self.kind, self.capacity, node)
        self._items.append(item)
        position = len(self._items) - 1
        if self.index_type is None:
            return position
        return self.index_type.checked(position, len(self._items))

    def __len__(self):
        return len(self._items)

    def freeze(self) -> tuple[T, ...]:
        return tuple(self._items)
