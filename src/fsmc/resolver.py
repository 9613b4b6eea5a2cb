from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from fsmc.error import CompileError, DuplicateStateName, StateCountError, StateNotFound
from fsmc.limits import CompileLimits
from fsmc.types import StateIndex
from fsmc.upper import RawState


class NameResolver:
    """Maps every declared state name to its index in declaration order.

    Built once per compile, before anything is lowered, and never changed
    afterwards: lowering can only refer to states that exist.
    """

    def __init__(self, indices: Mapping[str, StateIndex]):
        self._indices = MappingProxyType(dict(indices))

    @staticmethod
    def build(states: list[RawState], limits: CompileLimits) -> NameResolver | CompileError:
        if len(states) == 0:
            return StateCountError(StateCountError.NO_STATES, 0, limits.max_states)
        if len(states) > limits.max_states:
            return StateCountError(
                StateCountError.TOO_MANY_STATES,
                len(states),
                limits.max_states,
                states[limits.max_states].loc("name"),
            )

        indices: dict[str, StateIndex] = {}
        for idx, state in enumerate(states):
            if state.name in indices:
                return DuplicateStateName(state.name, state.loc("name"))
            indices[state.name] = StateIndex.checked(idx, len(states))
        return NameResolver(indices)

    def resolve(self, name: str, node=None) -> StateIndex | StateNotFound:
        idx = self._indices.get(name)
        if idx is None:
            return StateNotFound(name, node)
        return idx

    @property
    def names(self) -> Mapping[str, StateIndex]:
        return self._indices

    def __len__(self):
        return len(self._indices)
