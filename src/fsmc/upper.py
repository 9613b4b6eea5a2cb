"""
The Upper IR: a flight program exactly as written, with states referenced by
name.

Conversion from TOML only checks the shape of the document (known keys,
required keys, value types). Nothing here knows whether a referenced state
exists, whether a check has a sensible condition, or whether a timeout is
positive; that is the job of the lowering passes.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fsmc.error import CompileError, ConfigSyntaxError, KeyPath, SyntaxErrorDuringTransform
from fsmc.syntax import parse_toml
from fsmc.types import METRIC_NAMES, Flag, Metric


@dataclass
class RawNode:
    # where the table this node was built from sits in the document
    path: KeyPath = field(default=KeyPath(), repr=False, compare=False, kw_only=True)

    def loc(self, key: str | None = None) -> KeyPath:
        """The path of *key* in this node's table, or of the table itself."""
        if key is not None:
            return self.path.key(key)
        return self.path


@dataclass
class RawTimeout(RawNode):
    seconds: float
    state: str


@dataclass
class RawCommand(RawNode):
    object: str
    value: float
    delay: float


@dataclass
class RawCheck(RawNode):
    name: str
    metric: Metric
    greater_than: float | None = None
    less_than: float | None = None
    lower_bound: float | None = None
    upper_bound: float | None = None
    flag: Flag | None = None
    transition: str | None = None
    abort: str | None = None


@dataclass
class RawState(RawNode):
    name: str
    timeout: RawTimeout | None = None
    checks: list[RawCheck] = field(default_factory=list)
    commands: list[RawCommand] = field(default_factory=list)


@dataclass
class RawConfig(RawNode):
    default_state: str | None
    states: list[RawState]


# ─────────────────────────────────────────────────────────────────────────────
# Schema
# ─────────────────────────────────────────────────────────────────────────────


def _describe(value) -> str:
    if isinstance(value, bool):
        return "a boolean"
    if isinstance(value, int):
        return "an integer"
    if isinstance(value, float):
        return "a float"
    if isinstance(value, str):
        return "a string"
    if isinstance(value, dict):
        return "a table"
    if isinstance(value, list):
        return "an array"
    return f"a {type(value).__name__}"


def _check_keys(
    table: dict, path: KeyPath, what: str, required: tuple[str, ...], optional: tuple[str, ...]
):
    for key in table:
        if key not in required and key not in optional:
            raise SyntaxErrorDuringTransform(f"Unknown field '{key}' in {what}", path.key(key))
    for key in required:
        if key not in table:
            raise SyntaxErrorDuringTransform(f"Missing field '{key}' in {what}", path)


def _get_str(table: dict, path: KeyPath, key: str, what: str) -> str | None:
    value = table.get(key)
    if value is not None and not isinstance(value, str):
        raise SyntaxErrorDuringTransform(
            f"Field '{key}' of {what} must be a string, not {_describe(value)}",
            path.key(key),
        )
    return value


def _get_float(table: dict, path: KeyPath, key: str, what: str) -> float | None:
    value = table.get(key)
    if value is None:
        return None
    # TOML integers are accepted wherever a float is expected
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SyntaxErrorDuringTransform(
            f"Field '{key}' of {what} must be a number, not {_describe(value)}",
            path.key(key),
        )
    return float(value)


def _get_table(table: dict, path: KeyPath, key: str, what: str) -> dict | None:
    value = table.get(key)
    if value is not None and not isinstance(value, dict):
        raise SyntaxErrorDuringTransform(
            f"Field '{key}' of {what} must be a table, not {_describe(value)}",
            path.key(key),
        )
    return value


def _get_tables(table: dict, path: KeyPath, key: str, what: str) -> list[tuple[KeyPath, dict]]:
    value = table.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise SyntaxErrorDuringTransform(
            f"Field '{key}' of {what} must be an array of tables", path.key(key)
        )
    return [(path.key(key).index(i), v) for i, v in enumerate(value)]


def to_raw_timeout(table: dict, path: KeyPath, state_name: str) -> RawTimeout:
    what = f"the timeout of state '{state_name}'"
    _check_keys(table, path, what, ("seconds", "state"), ())
    return RawTimeout(
        _get_float(table, path, "seconds", what),
        _get_str(table, path, "state", what),
        path=path,
    )


def to_raw_command(table: dict, path: KeyPath, state_name: str) -> RawCommand:
    what = f"a command of state '{state_name}'"
    _check_keys(table, path, what, ("object", "value", "delay"), ())
    return RawCommand(
        _get_str(table, path, "object", what),
        _get_float(table, path, "value", what),
        _get_float(table, path, "delay", what),
        path=path,
    )


def to_raw_check(table: dict, path: KeyPath, state_name: str) -> RawCheck:
    what = f"a check of state '{state_name}'"
    _check_keys(
        table,
        path,
        what,
        ("name", "check"),
        (
            "greater_than",
            "less_than",
            "lower_bound",
            "upper_bound",
            "flag",
            "transition",
            "abort",
        ),
    )
    name = _get_str(table, path, "name", what)
    what = f"check '{name}'"

    metric_name = _get_str(table, path, "check", what)
    metric = METRIC_NAMES.get(metric_name)
    if metric is None:
        raise SyntaxErrorDuringTransform(
            f"Unknown metric '{metric_name}' in {what} (expected one of: "
            + ", ".join(m.value for m in Metric)
            + ")",
            path.key("check"),
        )

    flag = None
    flag_name = _get_str(table, path, "flag", what)
    if flag_name is not None:
        if flag_name not in (Flag.SET.value, Flag.UNSET.value):
            raise SyntaxErrorDuringTransform(
                f"Field 'flag' of {what} must be \"set\" or \"unset\", not '{flag_name}'",
                path.key("flag"),
            )
        flag = Flag(flag_name)

    return RawCheck(
        name,
        metric,
        greater_than=_get_float(table, path, "greater_than", what),
        less_than=_get_float(table, path, "less_than", what),
        lower_bound=_get_float(table, path, "lower_bound", what),
        upper_bound=_get_float(table, path, "upper_bound", what),
        flag=flag,
        transition=_get_str(table, path, "transition", what),
        abort=_get_str(table, path, "abort", what),
        path=path,
    )


def to_raw_state(table: dict, path: KeyPath) -> RawState:
    _check_keys(table, path, "a state", ("name", "checks"), ("timeout", "commands"))
    name = _get_str(table, path, "name", "a state")
    what = f"state '{name}'"

    timeout_table = _get_table(table, path, "timeout", what)
    timeout = None
    if timeout_table is not None:
        timeout = to_raw_timeout(timeout_table, path.key("timeout"), name)

    return RawState(
        name,
        timeout,
        [to_raw_check(t, p, name) for p, t in _get_tables(table, path, "checks", what)],
        [to_raw_command(t, p, name) for p, t in _get_tables(table, path, "commands", what)],
        path=path,
    )


def to_raw_config(table: dict) -> RawConfig:
    what = "the flight program"
    root = KeyPath()
    _check_keys(table, root, what, ("states",), ("default_state",))
    return RawConfig(
        _get_str(table, root, "default_state", what),
        [to_raw_state(t, p) for p, t in _get_tables(table, root, "states", what)],
        path=root,
    )


def parse(text: str) -> RawConfig | CompileError:
    """Parse a flight program into the Upper IR."""
    table = parse_toml(text)
    if isinstance(table, CompileError):
        return table
    try:
        return to_raw_config(table)
    except SyntaxErrorDuringTransform as e:
        return ConfigSyntaxError(e.msg, e.node)
