"""
Declarative Machines
====================

A second front-end over the same state-table idea, configured as a nested
mapping instead of a flat transition list::

    {
        "id": "content",
        "initial": "draft",
        "context": {"title": ""},
        "states": {
            "draft": {"on": {"SUBMIT": {"target": "review", "guards": ["has_title"]}}},
            "review": {"on": {"APPROVE": "approved", "REJECT": "draft"}},
            "approved": {"entry": ["stamp_approval"]},
        },
    }

Differences from StateMachine are deliberate:
- exactly one target per (state, event)
- unknown events raise InvalidTransitionError, failing guards raise
  GuardRejectedError (no silent no-op)
- guards and actions are referenced by name and resolved through a
  CapabilityRegistry at transition time
- everything is synchronous; guards and actions are called as
  ``fn(context, payload)``
"""

import copy
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..errors import ConfigError, GuardRejectedError, InvalidTransitionError, UnknownCapabilityError
from ..state.persistence import HistoryEntry
from .machine import DEFAULT_HISTORY_LIMIT, Subscriber
from .transitions import Transition, transition_key

logger = logging.getLogger(__name__)


class CapabilityKind(str, Enum):
    GUARD = "guard"
    ACTION = "action"


@dataclass(frozen=True)
class Capability:
    """A registered guard or action handle"""
    kind: CapabilityKind
    name: str
    fn: Callable


class CapabilityRegistry:
    """Maps (kind, name) to callables. Re-registering a name overwrites it."""

    def __init__(self):
        self._entries: dict[tuple[CapabilityKind, str], Capability] = {}

    def register(self, kind: CapabilityKind, name: str, fn: Callable) -> None:
        self._entries[(kind, name)] = Capability(kind=kind, name=name, fn=fn)

    def register_guard(self, name: str, fn: Callable) -> None:
        self.register(CapabilityKind.GUARD, name, fn)

    def register_action(self, name: str, fn: Callable) -> None:
        self.register(CapabilityKind.ACTION, name, fn)

    def get(self, kind: CapabilityKind, name: str) -> Capability:
        try:
            return self._entries[(kind, name)]
        except KeyError:
            raise UnknownCapabilityError(kind.value, name) from None

    def has(self, kind: CapabilityKind, name: str) -> bool:
        return (kind, name) in self._entries

    def names(self, kind: CapabilityKind) -> list[str]:
        return [name for (entry_kind, name) in self._entries if entry_kind == kind]


def parse_states(definition: dict) -> dict[str, dict]:
    """Normalize a nested ``states`` mapping, checking required keys"""
    for required in ("id", "initial", "states"):
        if required not in definition:
            raise ConfigError(f"Machine definition is missing '{required}'")

    states = definition["states"] or {}
    if definition["initial"] not in states:
        raise ConfigError(
            f"Machine '{definition['id']}': initial state '{definition['initial']}' is not declared"
        )
    return {name: (spec or {}) for name, spec in states.items()}


def parse_transitions(states: dict[str, dict]) -> list[Transition]:
    """
    Flatten ``on`` maps into Transition records.

    Guards and actions stay as names here; callers resolve them.
    """
    transitions = []
    for state_name, spec in states.items():
        for event, target in (spec.get("on") or {}).items():
            if isinstance(target, str):
                target = {"target": target}
            if not isinstance(target, dict) or "target" not in target:
                raise ConfigError(f"Transition {transition_key(state_name, event)} has no target")
            if target["target"] not in states:
                raise ConfigError(
                    f"Transition {transition_key(state_name, event)} targets "
                    f"unknown state '{target['target']}'"
                )
            transitions.append(Transition(
                from_state=state_name,
                event=event,
                to_state=target["target"],
                guards=tuple(target.get("guards") or ()),
                actions=tuple(target.get("actions") or ()),
            ))
    return transitions


class DeclarativeMachine:
    """Synchronous machine over a nested definition with named capabilities"""

    def __init__(
        self,
        definition: dict,
        registry: Optional[CapabilityRegistry] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self.states = parse_states(definition)
        self.id = definition["id"]
        self.initial = definition["initial"]
        self._initial_context = definition.get("context") or {}
        self.registry = registry if registry is not None else CapabilityRegistry()

        # Single target per key: a duplicate key is impossible in a mapping
        self._transitions = {t.key: t for t in parse_transitions(self.states)}

        self._current_state = self.initial
        self._context = copy.deepcopy(self._initial_context)
        self._history: deque[HistoryEntry] = deque(maxlen=history_limit)
        self._subscribers: list[Subscriber] = []

    def register_guard(self, name: str, fn: Callable[[dict, Any], bool]) -> None:
        self.registry.register_guard(name, fn)

    def register_action(self, name: str, fn: Callable[[dict, Any], None]) -> None:
        self.registry.register_action(name, fn)

    @property
    def current_state(self) -> str:
        return self._current_state

    def get_state(self) -> str:
        return self._current_state

    def get_context(self) -> dict:
        return dict(self._context)

    def get_history(self) -> list[HistoryEntry]:
        return list(self._history)

    def _lookup(self, event: str) -> Transition:
        transition = self._transitions.get(transition_key(self._current_state, event))
        if transition is None:
            raise InvalidTransitionError(self._current_state, event)
        return transition

    def _failing_guard(self, transition: Transition, payload: Any) -> Optional[str]:
        for name in transition.guards:
            guard = self.registry.get(CapabilityKind.GUARD, name)
            if not guard.fn(self._context, payload):
                return name
        return None

    def can_transition(self, event: str, payload: Any = None) -> bool:
        transition = self._transitions.get(transition_key(self._current_state, event))
        if transition is None:
            return False
        try:
            return self._failing_guard(transition, payload) is None
        except Exception as e:
            logger.warning("Machine %s: guard failed during dry run of %s: %s", self.id, event, e)
            return False

    def send(self, event: str, payload: Any = None) -> str:
        """Apply an event and return the new state; raises on refusal"""
        transition = self._lookup(event)

        rejected_by = self._failing_guard(transition, payload)
        if rejected_by is not None:
            raise GuardRejectedError(self._current_state, event, rejected_by)

        from_state = self._current_state

        self._run_actions(self.states[from_state].get("exit") or (), payload)
        self._run_actions(transition.actions, payload)

        self._history.append(HistoryEntry(
            from_state=from_state,
            to_state=transition.to_state,
            event=event,
            metadata=payload,
        ))
        self._current_state = transition.to_state

        self._run_actions(self.states[self._current_state].get("entry") or (), payload)

        logger.debug("Machine %s: %s --%s--> %s", self.id, from_state, event, self._current_state)

        for callback in list(self._subscribers):
            callback(self._current_state, self._context)

        return self._current_state

    def _run_actions(self, names, payload: Any) -> None:
        for name in names:
            self.registry.get(CapabilityKind.ACTION, name).fn(self._context, payload)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe
