from __future__ import annotations
from dataclasses import dataclass
import sys
import traceback
from typing import Any


# ANSI color codes (only used if outputting to a terminal)
class Colors:
    RED = "\033[31m"
    GREEN = "\033[32m"
    CYAN = "\033[36m"
    BOLD = "\033[1m"
    RESET = "\033[0m"

    @classmethod
    def enabled(cls) -> bool:
        return sys.stderr.isatty()

    @classmethod
    def stdout_enabled(cls) -> bool:
        return sys.stdout.isatty()

    @classmethod
    def red(cls, s: str) -> str:
        return f"{cls.RED}{s}{cls.RESET}" if cls.enabled() else s

    @classmethod
    def green(cls, s: str) -> str:
        return f"{cls.GREEN}{s}{cls.RESET}" if cls.stdout_enabled() else s

    @classmethod
    def cyan(cls, s: str) -> str:
        return f"{cls.CYAN}{s}{cls.RESET}" if cls.enabled() else s

    @classmethod
    def bold(cls, s: str) -> str:
        return f"{cls.BOLD}{s}{cls.RESET}" if cls.stdout_enabled() else s


# assigned in text_to_lowered
file_name = None
# assigned in compiler_main
debug = False
# assigned in parse_toml
input_lines = None


# the number of lines to show around a compiler error
COMPILER_ERROR_CONTEXT_LINE_COUNT = 1


@dataclass
class Location:
    """A source position reported by the TOML decoder."""

    line: int
    column: int
    end_line: int | None = None
    end_column: int | None = None


@dataclass(frozen=True)
class KeyPath:
    """Where a value sits in the flight program, e.g. ``states[1].checks[0].flag``."""

    parts: tuple = ()

    def key(self, name: str) -> KeyPath:
        return KeyPath(self.parts + (name,))

    def index(self, idx: int) -> KeyPath:
        return KeyPath(self.parts + (idx,))

    def __str__(self):
        out = ""
        for part in self.parts:
            if isinstance(part, int):
                out += f"[{part}]"
            elif out:
                out += f".{part}"
            else:
                out = part
        return out or "<root>"


class SyntaxErrorDuringTransform(Exception):
    """Raised while turning the decoded document into raw config nodes."""
    def __init__(self, msg: str, node=None):
        self.msg = msg
        self.node = node
        super().__init__(msg)


@dataclass
class CompileError:
    msg: str
    node: Any = None

    def __post_init__(self):
        self.stack_trace = "\n".join(traceback.format_stack(limit=8)[:-1])

    @property
    def line(self) -> int | None:
        return self.node.line if isinstance(self.node, Location) else None

    @property
    def column(self) -> int | None:
        return self.node.column if isinstance(self.node, Location) else None

    def __repr__(self):

        stack_trace_optional = f"{self.stack_trace}\n" if debug else ""
        file_name_str = file_name if file_name is not None else "<unknown file>"

        if isinstance(self.node, KeyPath):
            location = f"{file_name_str} at {self.node}:"
            return f"{stack_trace_optional}{Colors.cyan(location)} {Colors.bold(Colors.red(self.msg))}"

        meta = self.node
        if not isinstance(meta, Location):
            return f"{stack_trace_optional}{Colors.cyan(file_name_str)}: {Colors.bold(Colors.red(self.msg))}"

        if input_lines is None:
            location = f"{file_name_str}:{meta.line}"
            return f"{stack_trace_optional}{Colors.cyan(location)} {Colors.bold(Colors.red(self.msg))}"

        source_start_line = meta.line - 1 - COMPILER_ERROR_CONTEXT_LINE_COUNT
        source_start_line = max(0, source_start_line)
        source_end_line = meta.line - 1 + COMPILER_ERROR_CONTEXT_LINE_COUNT
        source_end_line = min(len(input_lines) - 1, source_end_line)

        # this is the list of all the src lines we will display
        source_to_display: list[str] = input_lines[
            source_start_line : source_end_line + 1
        ]

        # reserve this much space for the line numbers
        line_number_space = 6 if source_end_line < 998 else 10

        source_to_display = [
            (
                ("> " if source_start_line + line_idx == meta.line - 1 else "")
                + str(source_start_line + line_idx + 1)
            ).rjust(line_number_space)
            + " | "
            + line
            for line_idx, line in enumerate(source_to_display)
        ]

        node_start_line_in_ctx = meta.line - 1 - source_start_line
        # the decoder only reports where the problem starts
        end_column = meta.end_column if meta.end_column is not None else meta.column + 1
        caret_str = "^" * max(1, end_column - meta.column)
        error_highlight = " " * (meta.column - 1 + line_number_space + 3) + Colors.red(caret_str)
        source_to_display.insert(node_start_line_in_ctx + 1, error_highlight)
        location = f"{file_name_str}:{meta.line}"
        result = f"{stack_trace_optional}{Colors.cyan(location)} {Colors.bold(Colors.red(self.msg))}\n"
        result += "\n".join(source_to_display)

        return result


class ConfigSyntaxError(CompileError):
    """The text is not TOML, or does not match the flight program schema."""


class StateCountError(CompileError):
    NO_STATES = "NoStates"
    TOO_MANY_STATES = "TooManyStates"

    def __init__(self, kind: str, count: int, limit: int, node=None):
        if kind == StateCountError.NO_STATES:
            msg = "Flight program declares no states"
        else:
            msg = f"Flight program declares {count} states, at most {limit} are allowed"
        super().__init__(msg, node)
        self.kind = kind
        self.count = count
        self.limit = limit


class StateNotFound(CompileError):
    def __init__(self, name: str, node=None):
        super().__init__(f"Unknown state '{name}'", node)
        self.name = name


class DuplicateStateName(CompileError):
    def __init__(self, name: str, node=None):
        super().__init__(f"State '{name}' is declared more than once", node)
        self.name = name


class CheckConditionError(CompileError):
    NO_CONDITION = "NoCondition"
    TOO_MANY_CONDITIONS = "TooManyConditions"
    MISMATCHED_BOUNDS = "MismatchedBounds"
    INVERTED_BOUNDS = "InvertedBounds"

    def __init__(self, kind: str, check_name: str, count: int = 0, node=None):
        if kind == CheckConditionError.NO_CONDITION:
            msg = f"Check '{check_name}' has no condition (expected one of greater_than, less_than, lower_bound/upper_bound, flag)"
        elif kind == CheckConditionError.TOO_MANY_CONDITIONS:
            msg = f"Check '{check_name}' has {count} conditions, exactly one is allowed"
        elif kind == CheckConditionError.MISMATCHED_BOUNDS:
            msg = f"Check '{check_name}' must set both lower_bound and upper_bound, or neither"
        else:
            msg = f"Check '{check_name}' has a lower_bound greater than its upper_bound"
        super().__init__(msg, node)
        self.kind = kind
        self.check_name = check_name
        self.count = count


class CheckTypeMismatch(CompileError):
    def __init__(self, check_name: str, metric: str, shape: str, node=None):
        super().__init__(
            f"Check '{check_name}' cannot use a {shape} condition on {metric}", node
        )
        self.check_name = check_name
        self.metric = metric
        self.shape = shape


class ConflictingOutcome(CompileError):
    def __init__(self, check_name: str, node=None):
        super().__init__(
            f"Check '{check_name}' sets both transition and abort", node
        )
        self.check_name = check_name


class CapacityExceeded(CompileError):
    def __init__(self, kind: str, limit: int, node=None):
        super().__init__(f"Too many {kind} (at most {limit} are allowed)", node)
        self.kind = kind
        self.limit = limit


class InvalidTimeout(CompileError):
    def __init__(self, seconds: float, reason: str, node=None):
        super().__init__(f"Invalid timeout of {seconds} seconds: {reason}", node)
        self.seconds = seconds


class InvalidValue(CompileError):
    def __init__(self, field: str, value: Any, reason: str, node=None):
        super().__init__(f"Invalid value {value!r} for {field}: {reason}", node)
        self.field = field
        self.value = value

