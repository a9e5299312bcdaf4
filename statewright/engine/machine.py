"""
State Machine Engine
====================

Drives a single workflow instance through guarded, asynchronous
transitions.

Key features:
- Ordered candidate transitions (first eligible transition wins)
- Sync or async guards, actions and enter/exit hooks
- Bounded history (most recent 100 entries by default)
- Subscriber notification after every committed transition
- Durable snapshot after every committed transition, resumed on construction
- Rollback of the state label to any state present in history

Context contract: the instance owns ``context``. Every hook, action and
subscriber receives the live dict and may mutate it, but must not keep a
reference beyond its own call. Guards receive a merged copy
``{**context, "payload": payload}``. ``get_context()`` returns a shallow copy.

Concurrency: with ``serialize=True`` (the default) every ``send`` runs
under a per-instance ``asyncio.Lock``, so overlapping sends commit one at
a time in arrival order. ``serialize=False`` lets overlapping sends
interleave at every await: both may commit against a stale state read and
history/persistence writes may be reordered. ``rollback`` and ``reset``
are synchronous and may land between the awaits of an in-flight send.
"""

import asyncio
import copy
import inspect
import logging
from collections import deque
from typing import Any, Callable, Optional

from ..errors import RollbackTargetNotFoundError
from ..state.persistence import ROLLBACK_EVENT, HistoryEntry, Snapshot, SnapshotStore
from ..state.storage import MemoryStorage, Storage
from .transitions import MachineConfig, Transition, TransitionTable

logger = logging.getLogger(__name__)


DEFAULT_HISTORY_LIMIT = 100

Subscriber = Callable[[str, dict], None]


def _undeclared_states(snapshot: Snapshot, config: MachineConfig) -> set[str]:
    # History feeds rollback targets, so it must be checked as well
    named = {snapshot.current_state}
    for entry in snapshot.history:
        named.update((entry.from_state, entry.to_state))
    return named - set(config.states)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class StateMachine:
    """
    Generic finite state machine for one logical instance.

    Use ``await StateMachine.create(config, ...)`` to construct and enter
    the initial state in one step. The plain constructor restores or
    initializes state but defers the initial ``on_enter`` hook to
    ``start()``, because hooks may be coroutines.
    """

    def __init__(
        self,
        config: MachineConfig,
        persistence_key: Optional[str] = None,
        store: Optional[SnapshotStore | Storage] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        serialize: bool = True,
    ):
        config.validate()

        self.config = config
        self.persistence_key = persistence_key
        self.history_limit = history_limit
        self.serialize = serialize

        if store is None:
            store = MemoryStorage()
        self.store = store if isinstance(store, SnapshotStore) else SnapshotStore(store)

        self.table = TransitionTable.build(config.transitions)

        self._subscribers: list[Subscriber] = []
        self._lock: Optional[asyncio.Lock] = None
        self._started = False

        snapshot = self.store.load(persistence_key) if persistence_key else None

        unknown = _undeclared_states(snapshot, config) if snapshot is not None else set()

        if snapshot is not None and not unknown:
            # Resume is a pure restore: no on_enter for the restored state
            self._current_state = snapshot.current_state
            self._context = snapshot.context
            self._history: deque[HistoryEntry] = deque(snapshot.history, maxlen=history_limit)
            self.restored = True
            self._started = True
            logger.debug("Machine %s restored in state %s", config.id, self._current_state)
        else:
            if snapshot is not None:
                logger.warning(
                    "Machine %s: snapshot %s names unknown states %s, starting fresh",
                    config.id,
                    persistence_key,
                    ", ".join(sorted(unknown)),
                )
            self._current_state = config.initial
            self._context = copy.deepcopy(config.context)
            self._history = deque(maxlen=history_limit)
            self.restored = False

    @classmethod
    async def create(
        cls,
        config: MachineConfig,
        persistence_key: Optional[str] = None,
        store: Optional[SnapshotStore | Storage] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        serialize: bool = True,
    ) -> "StateMachine":
        machine = cls(
            config,
            persistence_key=persistence_key,
            store=store,
            history_limit=history_limit,
            serialize=serialize,
        )
        await machine.start()
        return machine

    async def start(self) -> None:
        """Run the initial state's on_enter once for a fresh instance"""
        if self._started:
            return
        self._started = True
        await self._run_hook(self._current_state, "on_enter")

    # =========================================================================
    # Read Access
    # =========================================================================

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def current_state(self) -> str:
        return self._current_state

    def get_state(self) -> str:
        return self._current_state

    def get_context(self) -> dict:
        """Shallow copy of the live context"""
        return dict(self._context)

    def get_history(self) -> list[HistoryEntry]:
        return list(self._history)

    def available_events(self) -> list[str]:
        """Events declared from the current state (guards not evaluated)"""
        return self.table.events_for(self._current_state)

    def snapshot(self) -> Snapshot:
        return Snapshot(
            current_state=self._current_state,
            context=self._context,
            history=list(self._history),
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so the lock binds to the loop that first sends
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def send(self, event: str, payload: Any = None) -> bool:
        """
        Fire an event. Returns True when a transition was committed.

        Unmatched events and all-guards-failed are no-ops logged as
        warnings. Exceptions from guards, hooks or actions propagate; the
        state is then left unchanged but earlier side effects stand.
        """
        if not self.serialize:
            return await self._send(event, payload)

        async with self._get_lock():
            return await self._send(event, payload)

    async def _send(self, event: str, payload: Any) -> bool:
        from_state = self._current_state
        candidates = self.table.candidates(from_state, event)

        if not candidates:
            logger.warning(
                "Machine %s: no transition for event %s in state %s",
                self.id, event, from_state,
            )
            return False

        selected = await self._select(candidates, payload)

        if selected is None:
            logger.warning(
                "Machine %s: guards rejected event %s in state %s",
                self.id, event, from_state,
            )
            return False

        await self._execute(selected, payload)
        return True

    async def can_transition(self, event: str, payload: Any = None) -> bool:
        """Dry run of guard evaluation. Never raises, never mutates."""
        candidates = self.table.candidates(self._current_state, event)
        if not candidates:
            return False
        try:
            return await self._select(candidates, payload) is not None
        except Exception as e:
            logger.warning("Machine %s: guard failed during dry run of %s: %s", self.id, event, e)
            return False

    async def _select(self, candidates: tuple, payload: Any) -> Optional[Transition]:
        for transition in candidates:
            if await self._guards_pass(transition, payload):
                return transition
        return None

    async def _guards_pass(self, transition: Transition, payload: Any) -> bool:
        for guard in transition.guards:
            # Each guard sees a fresh merged view
            guard_input = {**self._context, "payload": payload}
            if not await _resolve(guard(guard_input)):
                return False
        return True

    async def _execute(self, transition: Transition, payload: Any) -> None:
        from_state = self._current_state

        await self._run_hook(from_state, "on_exit")

        for action in transition.actions:
            await _resolve(action(self._context, payload))

        self._history.append(HistoryEntry(
            from_state=from_state,
            to_state=transition.to_state,
            event=transition.event,
            metadata=payload,
        ))
        self._current_state = transition.to_state

        await self._run_hook(self._current_state, "on_enter")

        logger.debug(
            "Machine %s: %s --%s--> %s",
            self.id, from_state, transition.event, self._current_state,
        )

        self._notify()
        self._persist()

    async def _run_hook(self, state: str, hook_name: str) -> None:
        definition = self.config.states.get(state)
        hook = getattr(definition, hook_name, None) if definition is not None else None
        if hook is not None:
            await _resolve(hook(self._context))

    # =========================================================================
    # Rollback / Reset
    # =========================================================================

    def rollback(self, target_state: str) -> None:
        """
        Move the state label back to a state found in history.

        Guards, actions and hooks are skipped and the context is left as is.
        The appended ROLLBACK entry records the true predecessor state.
        """
        if not any(entry.to_state == target_state for entry in reversed(self._history)):
            raise RollbackTargetNotFoundError(target_state)

        from_state = self._current_state
        self._history.append(HistoryEntry(
            from_state=from_state,
            to_state=target_state,
            event=ROLLBACK_EVENT,
        ))
        self._current_state = target_state

        logger.info("Machine %s rolled back from %s to %s", self.id, from_state, target_state)

        self._notify()
        self._persist()

    def reset(self) -> None:
        """Back to the initial state with a fresh context and empty history"""
        self._current_state = self.config.initial
        self._context = copy.deepcopy(self.config.context)
        self._history.clear()

        logger.info("Machine %s reset to %s", self.id, self._current_state)

        self._notify()
        self._persist()

    # =========================================================================
    # Subscribers / Persistence
    # =========================================================================

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it"""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        # Iterate over a copy so callbacks may unsubscribe themselves
        for callback in list(self._subscribers):
            callback(self._current_state, self._context)

    def _persist(self) -> None:
        if self.persistence_key:
            self.store.save(self.persistence_key, self.snapshot())
