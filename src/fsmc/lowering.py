"""
Lowering: turns the name-referencing Upper IR into the index-referencing,
capacity-bounded LoweredConfig.

Every function here returns either its product or a CompileError, and the
first error ends the compile. Nothing is lowered partially.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Union

from fsmc.encoding.records import (
    Abort,
    Altitude,
    ApogeeFlag,
    Between,
    CheckData,
    FlagCondition,
    GreaterThan,
    LessThan,
    LoweredCheck,
    LoweredCommand,
    LoweredConfig,
    LoweredState,
    LoweredTimeout,
    Pyro1Continuity,
    Pyro2Continuity,
    Pyro3Continuity,
    StateTransition,
    Transition,
)
from fsmc.error import (
    CapacityExceeded,
    CheckConditionError,
    CheckTypeMismatch,
    CompileError,
    ConflictingOutcome,
    InvalidTimeout,
    InvalidValue,
)
from fsmc.limits import CompileLimits
from fsmc.resolver import NameResolver
from fsmc.types import (
    U32,
    BoundedPool,
    CheckIndex,
    CommandIndex,
    Flag,
    Metric,
    to_f32,
)
from fsmc.upper import RawCheck, RawCommand, RawConfig, RawState, RawTimeout


# ─────────────────────────────────────────────────────────────────────────────
# Condition shapes
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class GreaterThanShape:
    value: float
    name = "greater_than"


@dataclass
class LessThanShape:
    value: float
    name = "less_than"


@dataclass
class BetweenShape:
    lower: float
    upper: float
    name = "lower_bound/upper_bound"


@dataclass
class FlagShape:
    flag: Flag
    name = "flag"


RawCondition = Union[GreaterThanShape, LessThanShape, BetweenShape, FlagShape]


def condition_of(raw: RawCheck) -> RawCondition | CompileError:
    """Collapse the optional condition fields of a check into exactly one
    condition shape."""
    present = [
        raw.greater_than is not None,
        raw.less_than is not None,
        # a half-specified range still counts as one (broken) condition
        raw.lower_bound is not None or raw.upper_bound is not None,
        raw.flag is not None,
    ]
    count = sum(present)
    if count == 0:
        return CheckConditionError(CheckConditionError.NO_CONDITION, raw.name, node=raw.loc())
    if count > 1:
        return CheckConditionError(
            CheckConditionError.TOO_MANY_CONDITIONS, raw.name, count, node=raw.loc()
        )

    if raw.greater_than is not None:
        value = _threshold(raw, "greater_than", raw.greater_than)
        if isinstance(value, CompileError):
            return value
        return GreaterThanShape(value)

    if raw.less_than is not None:
        value = _threshold(raw, "less_than", raw.less_than)
        if isinstance(value, CompileError):
            return value
        return LessThanShape(value)

    if raw.flag is not None:
        return FlagShape(raw.flag)

    if raw.lower_bound is None or raw.upper_bound is None:
        missing = "lower_bound" if raw.lower_bound is None else "upper_bound"
        present_key = "upper_bound" if missing == "lower_bound" else "lower_bound"
        return CheckConditionError(
            CheckConditionError.MISMATCHED_BOUNDS, raw.name, node=raw.loc(present_key)
        )
    lower = _threshold(raw, "lower_bound", raw.lower_bound)
    if isinstance(lower, CompileError):
        return lower
    upper = _threshold(raw, "upper_bound", raw.upper_bound)
    if isinstance(upper, CompileError):
        return upper
    if lower > upper:
        return CheckConditionError(
            CheckConditionError.INVERTED_BOUNDS, raw.name, node=raw.loc("lower_bound")
        )
    return BetweenShape(lower, upper)


def _threshold(raw: RawCheck, key: str, value: float) -> float | CompileError:
    lowered = to_f32(value)
    if lowered is None:
        return InvalidValue(
            f"{key} of check '{raw.name}'",
            value,
            "must be a finite single precision float",
            raw.loc(key),
        )
    return lowered


# ─────────────────────────────────────────────────────────────────────────────
# Metric / condition compatibility
# ─────────────────────────────────────────────────────────────────────────────


def _float_condition(shape: RawCondition) -> GreaterThan | LessThan | Between:
    if isinstance(shape, GreaterThanShape):
        return GreaterThan(shape.value)
    if isinstance(shape, LessThanShape):
        return LessThan(shape.value)
    assert isinstance(shape, BetweenShape), shape
    return Between(shape.lower, shape.upper)


def _flag_condition(shape: RawCondition) -> FlagCondition:
    assert isinstance(shape, FlagShape), shape
    return FlagCondition(shape.flag == Flag.SET)


_FLOAT_SHAPES = (GreaterThanShape, LessThanShape, BetweenShape)
_FLAG_SHAPES = (FlagShape,)

# metric -> (allowed condition shapes, lowered check data variant, condition lowering)
METRIC_CONDITIONS: dict[
    Metric,
    tuple[tuple[type, ...], type[CheckData], Callable[[RawCondition], object]],
] = {
    Metric.ALTITUDE: (_FLOAT_SHAPES, Altitude, _float_condition),
    Metric.APOGEE: (_FLAG_SHAPES, ApogeeFlag, _flag_condition),
    Metric.PYRO1_CONTINUITY: (_FLAG_SHAPES, Pyro1Continuity, _flag_condition),
    Metric.PYRO2_CONTINUITY: (_FLAG_SHAPES, Pyro2Continuity, _flag_condition),
    Metric.PYRO3_CONTINUITY: (_FLAG_SHAPES, Pyro3Continuity, _flag_condition),
}

assert set(METRIC_CONDITIONS) == set(Metric), "every metric needs a condition table entry"


def lower_check_data(raw: RawCheck, shape: RawCondition) -> CheckData | CompileError:
    allowed, variant, lower_condition = METRIC_CONDITIONS[raw.metric]
    if not isinstance(shape, allowed):
        return CheckTypeMismatch(raw.name, raw.metric.value, shape.name, raw.loc("check"))
    return variant(lower_condition(shape))


# ─────────────────────────────────────────────────────────────────────────────
# Checks, timeouts, commands
# ─────────────────────────────────────────────────────────────────────────────


def lower_outcome(raw: RawCheck, resolver: NameResolver) -> StateTransition | None | CompileError:
    if raw.transition is not None and raw.abort is not None:
        return ConflictingOutcome(raw.name, raw.loc("abort"))
    if raw.transition is not None:
        target = resolver.resolve(raw.transition, raw.loc("transition"))
        if isinstance(target, CompileError):
            return target
        return Transition(target)
    if raw.abort is not None:
        target = resolver.resolve(raw.abort, raw.loc("abort"))
        if isinstance(target, CompileError):
            return target
        return Abort(target)
    # passive check, only observed
    return None


def lower_check(raw: RawCheck, resolver: NameResolver) -> LoweredCheck | CompileError:
    shape = condition_of(raw)
    if isinstance(shape, CompileError):
        return shape

    data = lower_check_data(raw, shape)
    if isinstance(data, CompileError):
        return data

    outcome = lower_outcome(raw, resolver)
    if isinstance(outcome, CompileError):
        return outcome

    return LoweredCheck(data, outcome)


def lower_timeout(
    raw: RawTimeout, resolver: NameResolver, limits: CompileLimits
) -> LoweredTimeout | CompileError:
    if not math.isfinite(raw.seconds) or raw.seconds <= 0:
        return InvalidTimeout(raw.seconds, "must be a positive number of seconds", raw.loc("seconds"))

    scaled = raw.seconds * limits.ticks_per_second
    if not math.isfinite(scaled):
        return InvalidTimeout(raw.seconds, "too long to count in ticks", raw.loc("seconds"))
    ticks = round(scaled)
    if ticks < 1:
        return InvalidTimeout(
            raw.seconds,
            f"shorter than one tick (1/{limits.ticks_per_second} s)",
            raw.loc("seconds"),
        )
    try:
        U32.validate_value(ticks)
    except ValueError:
        return InvalidTimeout(raw.seconds, "too long to count in ticks", raw.loc("seconds"))

    target = resolver.resolve(raw.state, raw.loc("state"))
    if isinstance(target, CompileError):
        return target
    return LoweredTimeout(ticks, target)


def lower_command(raw: RawCommand, limits: CompileLimits) -> LoweredCommand | CompileError:
    if len(raw.object) == 0:
        return InvalidValue("command object", raw.object, "must not be empty", raw.loc("object"))
    if len(raw.object.encode("utf-8")) > limits.max_command_object_length:
        return CapacityExceeded(
            "bytes in command object name", limits.max_command_object_length, raw.loc("object")
        )

    value = to_f32(raw.value)
    if value is None:
        return InvalidValue(
            f"value of command '{raw.object}'",
            raw.value,
            "must be a finite single precision float",
            raw.loc("value"),
        )
    delay = to_f32(raw.delay)
    if delay is None or delay < 0:
        return InvalidValue(
            f"delay of command '{raw.object}'",
            raw.delay,
            "must be a finite, non-negative number of seconds",
            raw.loc("delay"),
        )
    return LoweredCommand(raw.object, value, delay)


# ─────────────────────────────────────────────────────────────────────────────
# Packing
# ─────────────────────────────────────────────────────────────────────────────


def pack_state(
    raw: RawState,
    resolver: NameResolver,
    limits: CompileLimits,
    checks: BoundedPool[LoweredCheck],
    commands: BoundedPool[LoweredCommand],
) -> LoweredState | CompileError:
    state_checks: BoundedPool[CheckIndex] = BoundedPool(
        f"checks in state '{raw.name}'", limits.max_checks_per_state
    )
    for raw_check in raw.checks:
        check = lower_check(raw_check, resolver)
        if isinstance(check, CompileError):
            return check
        idx = checks.push(check, raw_check.loc())
        if isinstance(idx, CompileError):
            return idx
        pushed = state_checks.push(idx, raw_check.loc())
        if isinstance(pushed, CompileError):
            return pushed

    state_commands: BoundedPool[CommandIndex] = BoundedPool(
        f"commands in state '{raw.name}'", limits.max_commands_per_state
    )
    for raw_command in raw.commands:
        command = lower_command(raw_command, limits)
        if isinstance(command, CompileError):
            return command
        idx = commands.push(command, raw_command.loc())
        if isinstance(idx, CompileError):
            return idx
        pushed = state_commands.push(idx, raw_command.loc())
        if isinstance(pushed, CompileError):
            return pushed

    timeout = None
    if raw.timeout is not None:
        timeout = lower_timeout(raw.timeout, resolver, limits)
        if isinstance(timeout, CompileError):
            return timeout

    return LoweredState(state_checks.freeze(), state_commands.freeze(), timeout)


def pack(raw: RawConfig, resolver: NameResolver, limits: CompileLimits) -> LoweredConfig | CompileError:
    if raw.default_state is not None:
        default_state = resolver.resolve(raw.default_state, raw.loc("default_state"))
        if isinstance(default_state, CompileError):
            return default_state
    else:
        # no default named: the first declared state
        default_state = resolver.resolve(raw.states[0].name)

    checks: BoundedPool[LoweredCheck] = BoundedPool("checks", limits.max_checks, CheckIndex)
    commands: BoundedPool[LoweredCommand] = BoundedPool(
        "commands", limits.max_commands, CommandIndex
    )
    states: list[LoweredState] = []
    for raw_state in raw.states:
        state = pack_state(raw_state, resolver, limits, checks, commands)
        if isinstance(state, CompileError):
            return state
        states.append(state)

    return LoweredConfig(default_state, tuple(states), checks.freeze(), commands.freeze())
