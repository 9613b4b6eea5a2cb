"""
Tests for building the Upper IR from flight program text (fsmc.upper).
"""

import pytest

from fsmc.error import ConfigSyntaxError
from fsmc.types import Flag, Metric
from fsmc.upper import (
    RawCheck,
    RawCommand,
    RawConfig,
    RawState,
    RawTimeout,
    parse,
)


def parse_ok(text: str) -> RawConfig:
    result = parse(text)
    assert isinstance(result, RawConfig), repr(result)
    return result


def parse_fail(text: str) -> ConfigSyntaxError:
    result = parse(text)
    assert isinstance(result, ConfigSyntaxError), result
    return result


def test_single_empty_state():
    expected = RawConfig(
        "PowerOn",
        [RawState("PowerOn", None, [])],
    )
    config = """default_state = "PowerOn"

[[states]]
name = "PowerOn"
checks = []
"""
    assert parse_ok(config) == expected


def test_single_check():
    expected = RawConfig(
        "PowerOn",
        [
            RawState(
                "PowerOn",
                None,
                [RawCheck("Takeoff", Metric.ALTITUDE, greater_than=100.0)],
            )
        ],
    )
    config = """default_state = "PowerOn"

[[states]]
name = "PowerOn"

[[states.checks]]
name = "Takeoff"
check = "altitude"
greater_than = 100.0
"""
    assert parse_ok(config) == expected


def test_full_program():
    config = parse_ok(
        """
[[states]]
name = "Pad"
timeout = { seconds = 600, state = "Safe" }
commands = [
    { object = "Pyro1Arm", value = 1, delay = 0.5 },
]

[[states.checks]]
name = "Launch"
check = "altitude"
lower_bound = 10
upper_bound = 20.5
transition = "Ascent"

[[states.checks]]
name = "Pyro"
check = "pyro2"
flag = "unset"
abort = "Safe"

[[states]]
name = "Ascent"
checks = [{ name = "Apogee", check = "apogee", flag = "set", transition = "Safe" }]

[[states]]
name = "Safe"
checks = []
[states.timeout]
seconds = 1.5
state = "Pad"
"""
    )
    assert config.default_state is None
    assert [s.name for s in config.states] == ["Pad", "Ascent", "Safe"]

    pad = config.states[0]
    assert pad.timeout == RawTimeout(600.0, "Safe")
    assert pad.commands == [RawCommand("Pyro1Arm", 1.0, 0.5)]
    assert pad.checks == [
        RawCheck(
            "Launch",
            Metric.ALTITUDE,
            lower_bound=10.0,
            upper_bound=20.5,
            transition="Ascent",
        ),
        RawCheck("Pyro", Metric.PYRO2_CONTINUITY, flag=Flag.UNSET, abort="Safe"),
    ]
    assert config.states[1].checks == [
        RawCheck("Apogee", Metric.APOGEE, flag=Flag.SET, transition="Safe")
    ]
    assert config.states[2].timeout == RawTimeout(1.5, "Pad")


def test_integer_thresholds_become_floats():
    config = parse_ok(
        """
[[states]]
name = "A"
checks = [{ name = "c", check = "altitude", greater_than = 100 }]
"""
    )
    value = config.states[0].checks[0].greater_than
    assert value == 100.0 and isinstance(value, float)


def test_semantic_problems_are_not_checked():
    # unknown targets, missing conditions and bad timeouts are all lowering errors
    config = parse_ok(
        """
default_state = "Nowhere"

[[states]]
name = "A"
timeout = { seconds = -1, state = "Nowhere" }
checks = [{ name = "c", check = "altitude", transition = "Nowhere" }]

[[states]]
name = "A"
checks = []
"""
    )
    assert len(config.states) == 2


def test_paths_are_recorded():
    config = parse_ok(
        """
[[states]]
name = "A"

[[states.checks]]
name = "c"
check = "altitude"
greater_than = 1.0
"""
    )
    check = config.states[0].checks[0]
    assert str(check.loc()) == "states[0].checks[0]"
    assert str(check.loc("greater_than")) == "states[0].checks[0].greater_than"
    assert str(config.loc("default_state")) == "default_state"


class TestSchemaErrors:
    def test_missing_states(self):
        err = parse_fail('default_state = "A"\n')
        assert "Missing field 'states'" in err.msg

    def test_missing_checks(self):
        err = parse_fail('[[states]]\nname = "A"\n')
        assert "Missing field 'checks'" in err.msg
        assert str(err.node) == "states[0]"

    def test_missing_state_name(self):
        err = parse_fail("[[states]]\nchecks = []\n")
        assert "Missing field 'name'" in err.msg

    def test_unknown_root_field(self):
        err = parse_fail('statess = []\n')
        assert "Unknown field 'statess'" in err.msg

    def test_unknown_check_field(self):
        err = parse_fail(
            """
[[states]]
name = "A"

[[states.checks]]
name = "c"
check = "altitude"
greater_then = 1.0
"""
        )
        assert "Unknown field 'greater_then'" in err.msg
        assert str(err.node) == "states[0].checks[0].greater_then"

    def test_wrong_value_type(self):
        err = parse_fail(
            """
[[states]]
name = "A"
checks = [{ name = "c", check = "altitude", greater_than = "high" }]
"""
        )
        assert "must be a number, not a string" in err.msg

    def test_boolean_is_not_a_number(self):
        err = parse_fail(
            """
[[states]]
name = "A"
checks = [{ name = "c", check = "altitude", greater_than = true }]
"""
        )
        assert "not a boolean" in err.msg

    def test_name_must_be_string(self):
        err = parse_fail("[[states]]\nname = 3\nchecks = []\n")
        assert "must be a string, not an integer" in err.msg

    def test_states_must_be_tables(self):
        err = parse_fail("states = [1, 2]\n")
        assert "array of tables" in err.msg

    def test_unknown_metric(self):
        err = parse_fail(
            """
[[states]]
name = "A"
checks = [{ name = "c", check = "velocity", greater_than = 1.0 }]
"""
        )
        assert "Unknown metric 'velocity'" in err.msg

    @pytest.mark.parametrize("alias,metric", [
        ("pyro1", Metric.PYRO1_CONTINUITY),
        ("pyro2", Metric.PYRO2_CONTINUITY),
        ("pyro3", Metric.PYRO3_CONTINUITY),
    ])
    def test_metric_aliases(self, alias, metric):
        config = parse_ok(
            f"""
[[states]]
name = "A"
checks = [{{ name = "c", check = "{alias}", flag = "set" }}]
"""
        )
        assert config.states[0].checks[0].metric == metric

    def test_bad_flag(self):
        err = parse_fail(
            """
[[states]]
name = "A"
checks = [{ name = "c", check = "apogee", flag = "on" }]
"""
        )
        assert "must be \"set\" or \"unset\"" in err.msg

    def test_timeout_missing_state(self):
        err = parse_fail(
            """
[[states]]
name = "A"
checks = []
timeout = { seconds = 1 }
"""
        )
        assert "Missing field 'state' in the timeout of state 'A'" in err.msg

    def test_command_missing_delay(self):
        err = parse_fail(
            """
[[states]]
name = "A"
checks = []
commands = [{ object = "Pyro1", value = 1.0 }]
"""
        )
        assert "Missing field 'delay'" in err.msg

    def test_syntax_error_passes_through(self):
        err = parse_fail("[[states]\n")
        assert isinstance(err, ConfigSyntaxError)
