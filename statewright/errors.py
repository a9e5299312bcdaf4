"""
Exception Hierarchy
===================

Only a few conditions are raised by the engine itself:
- unknown rollback targets (core engine)
- unknown events / rejected guards (declarative machines)
- bad configuration

No-op sends and persistence failures are logged, never raised.
"""

from typing import Optional


class StatewrightError(Exception):
    """Base class for all statewright errors"""


class ConfigError(StatewrightError, ValueError):
    """Machine or workflow configuration is invalid"""


class RollbackTargetNotFoundError(StatewrightError, LookupError):
    """Raised by rollback() when the target never appears in history"""

    def __init__(self, target: str):
        super().__init__(f"No history entry transitions to '{target}'")
        self.target = target


class InvalidTransitionError(StatewrightError):
    """No transition is declared for (state, event)"""

    def __init__(self, state: str, event: str, message: Optional[str] = None):
        super().__init__(message or f"Invalid transition: '{event}' from state '{state}'")
        self.state = state
        self.event = event


class GuardRejectedError(InvalidTransitionError):
    """A named guard returned a falsy value"""

    def __init__(self, state: str, event: str, guard: str):
        super().__init__(
            state,
            event,
            f"Guard '{guard}' rejected '{event}' from state '{state}'",
        )
        self.guard = guard


class UnknownCapabilityError(StatewrightError, KeyError):
    """A guard or action name was never registered"""

    def __init__(self, kind: str, name: str):
        super().__init__(f"Unknown {kind}: '{name}'")
        self.kind = kind
        self.name = name

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]
