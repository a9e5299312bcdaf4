"""
Engine Module
=============

Two front-ends over one state-table idea:
1. StateMachine: flat transition list, async, warn-and-no-op
2. DeclarativeMachine: nested ``on`` maps, sync, raise-on-refusal
"""

from .declarative import CapabilityKind, CapabilityRegistry, DeclarativeMachine
from .machine import StateMachine
from .transitions import MachineConfig, StateDefinition, Transition, TransitionTable

__all__ = [
    "CapabilityKind",
    "CapabilityRegistry",
    "DeclarativeMachine",
    "MachineConfig",
    "StateDefinition",
    "StateMachine",
    "Transition",
    "TransitionTable",
]
