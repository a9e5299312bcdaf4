"""
statewright - Finite State Machines for Workflow Objects
========================================================

A workflow engine for objects that move through named states
(draft → review → approved → published → archived) with:
- Guarded, asynchronous transitions tried in declaration order
- Bounded transition history and rollback
- Subscriber notification after every commit
- Durable snapshots (file, SQLite or Redis) resumed on construction
- A synchronous declarative variant with named guards and actions
"""

from .engine import (
    CapabilityRegistry,
    DeclarativeMachine,
    MachineConfig,
    StateDefinition,
    StateMachine,
    Transition,
    TransitionTable,
)
from .errors import (
    ConfigError,
    GuardRejectedError,
    InvalidTransitionError,
    RollbackTargetNotFoundError,
    StatewrightError,
    UnknownCapabilityError,
)
from .state import HistoryEntry, Snapshot, SnapshotStore

__version__ = "0.1.0"

__all__ = [
    "CapabilityRegistry",
    "ConfigError",
    "DeclarativeMachine",
    "GuardRejectedError",
    "HistoryEntry",
    "InvalidTransitionError",
    "MachineConfig",
    "RollbackTargetNotFoundError",
    "Snapshot",
    "SnapshotStore",
    "StateDefinition",
    "StateMachine",
    "StatewrightError",
    "Transition",
    "TransitionTable",
    "UnknownCapabilityError",
]
