"""
Transition Table
================

Compiles a flat, ordered list of transition declarations into a lookup
keyed by ``"state.event"``. Several transitions may share a key; they are
kept in declaration order, which is the only priority rule the engine
uses when more than one candidate could fire.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from ..errors import ConfigError


# Guards receive {**context, "payload": payload}
Guard = Callable[[dict], Union[bool, Awaitable[bool]]]

# Actions receive the live context and the payload
Action = Callable[[dict, Any], Optional[Awaitable[None]]]

# Enter/exit hooks receive the live context
Hook = Callable[[dict], Optional[Awaitable[None]]]


@dataclass
class StateDefinition:
    """A named state with optional enter/exit hooks"""
    name: str
    on_enter: Optional[Hook] = None
    on_exit: Optional[Hook] = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    """A directed edge from_state --event--> to_state"""
    from_state: str
    event: str
    to_state: str
    guards: tuple = ()
    actions: tuple = ()

    @property
    def key(self) -> str:
        return transition_key(self.from_state, self.event)


@dataclass
class MachineConfig:
    """Everything needed to construct a StateMachine"""
    id: str
    initial: str
    context: dict = field(default_factory=dict)
    states: dict = field(default_factory=dict)
    transitions: list = field(default_factory=list)

    def validate(self) -> None:
        """Check that every referenced state is declared"""
        if self.initial not in self.states:
            raise ConfigError(
                f"Machine '{self.id}': initial state '{self.initial}' is not declared"
            )
        for transition in self.transitions:
            for endpoint in (transition.from_state, transition.to_state):
                if endpoint not in self.states:
                    raise ConfigError(
                        f"Machine '{self.id}': transition {transition.key} -> "
                        f"{transition.to_state} references unknown state '{endpoint}'"
                    )


def transition_key(state: str, event: str) -> str:
    return f"{state}.{event}"


class TransitionTable:
    """
    Ordered candidate lookup.

    ``candidates(state, event)`` returns every transition declared for the
    pair, first-declared first. Callers pick the first whose guards pass.
    """

    def __init__(self, transitions: Iterable[Transition] = ()):
        self._table: dict[str, list[Transition]] = {}
        self._events: dict[str, list[str]] = {}
        for transition in transitions:
            self.add(transition)

    @classmethod
    def build(cls, transitions: Iterable[Transition]) -> "TransitionTable":
        return cls(transitions)

    def add(self, transition: Transition) -> None:
        """Append a transition behind any already declared for its key"""
        self._table.setdefault(transition.key, []).append(transition)
        events = self._events.setdefault(transition.from_state, [])
        if transition.event not in events:
            events.append(transition.event)

    def candidates(self, state: str, event: str) -> tuple:
        return tuple(self._table.get(transition_key(state, event), ()))

    def events_for(self, state: str) -> list[str]:
        """Events declared from a state, in first-declaration order"""
        return list(self._events.get(state, ()))

    def __contains__(self, key: str) -> bool:
        return key in self._table

    def __len__(self) -> int:
        return sum(len(candidates) for candidates in self._table.values())
