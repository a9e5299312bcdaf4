"""
Configuration
=============

Loads ``statewright.yaml`` and compiles the workflows it declares into
engine configs.

Example::

    paths:
      state_dir: ./state
    storage:
      backend: file          # memory | file | sqlite | redis
      redis_url: redis://localhost:6379/0
    engine:
      history_limit: 100
      serialize_transitions: true
    capabilities:            # modules defining register_capabilities(registry)
      - myapp.capabilities
    workflows:
      content:
        initial: draft
        context: {title: ""}
        states:
          draft:
            on:
              SUBMIT: {target: review, guards: [has_title]}
          review:
            on: {APPROVE: approved, REJECT: draft}
          approved: {}
"""

import importlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import yaml

from .engine.declarative import CapabilityKind, CapabilityRegistry, parse_states, parse_transitions
from .engine.machine import DEFAULT_HISTORY_LIMIT
from .engine.transitions import MachineConfig, StateDefinition, Transition
from .errors import ConfigError, UnknownCapabilityError


DEFAULT_CONFIG_PATH = Path("statewright.yaml")

RESERVED_CONTEXT_KEY = "payload"


def load_config(path: Optional[str | Path] = None) -> dict:
    """Load configuration from YAML; a missing file yields {}"""
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        return {}
    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")
    return data


@dataclass
class EngineSettings:
    history_limit: int = DEFAULT_HISTORY_LIMIT
    serialize_transitions: bool = True

    @classmethod
    def from_config(cls, config: dict) -> "EngineSettings":
        engine_config = config.get("engine", {}) or {}
        raw_limit = engine_config.get("history_limit", DEFAULT_HISTORY_LIMIT)
        try:
            history_limit = int(raw_limit)
        except (TypeError, ValueError):
            raise ConfigError(f"engine.history_limit must be an integer, got {raw_limit!r}") from None
        if history_limit < 1:
            raise ConfigError("engine.history_limit must be at least 1")
        return cls(
            history_limit=history_limit,
            serialize_transitions=bool(engine_config.get("serialize_transitions", True)),
        )


def _adapt_guard(fn: Callable[[dict, Any], bool]) -> Callable[[dict], Any]:
    # Named guards take (context, payload); the engine passes one merged dict.
    # RESERVED_CONTEXT_KEY is therefore rejected in workflow contexts.
    def guard(merged: dict) -> Any:
        context = {k: v for k, v in merged.items() if k != RESERVED_CONTEXT_KEY}
        return fn(context, merged.get(RESERVED_CONTEXT_KEY))
    return guard


def _adapt_hook(fns: list[Callable[[dict, Any], Any]]) -> Optional[Callable[[dict], None]]:
    if not fns:
        return None

    def hook(context: dict) -> None:
        for fn in fns:
            fn(context, None)
    return hook


def build_machine_config(
    name: str,
    definition: dict,
    registry: Optional[CapabilityRegistry] = None,
) -> MachineConfig:
    """
    Compile a declarative definition into a MachineConfig.

    Named guards/actions are resolved immediately, so a missing name is a
    ConfigError at load time rather than a failure mid-transition.
    """
    registry = registry if registry is not None else CapabilityRegistry()
    definition = {"id": name, **(definition or {})}
    states = parse_states(definition)

    def resolve(kind: CapabilityKind, names) -> list[Callable]:
        try:
            return [registry.get(kind, n).fn for n in names]
        except UnknownCapabilityError as e:
            raise ConfigError(f"Workflow '{name}': {e}") from None

    state_defs = {
        state_name: StateDefinition(
            name=state_name,
            on_enter=_adapt_hook(resolve(CapabilityKind.ACTION, spec.get("entry") or ())),
            on_exit=_adapt_hook(resolve(CapabilityKind.ACTION, spec.get("exit") or ())),
            metadata=dict(spec.get("meta") or {}),
        )
        for state_name, spec in states.items()
    }

    transitions = [
        Transition(
            from_state=t.from_state,
            event=t.event,
            to_state=t.to_state,
            guards=tuple(_adapt_guard(fn) for fn in resolve(CapabilityKind.GUARD, t.guards)),
            actions=tuple(resolve(CapabilityKind.ACTION, t.actions)),
        )
        for t in parse_transitions(states)
    ]

    context = dict(definition.get("context") or {})
    if RESERVED_CONTEXT_KEY in context:
        raise ConfigError(
            f"Workflow '{name}': context key '{RESERVED_CONTEXT_KEY}' is reserved for event payloads"
        )

    machine_config = MachineConfig(
        id=name,
        initial=definition["initial"],
        context=context,
        states=state_defs,
        transitions=transitions,
    )
    machine_config.validate()
    return machine_config


def load_capabilities(
    modules: Iterable[str],
    registry: Optional[CapabilityRegistry] = None,
) -> CapabilityRegistry:
    """
    Import each module and let it fill the registry.

    A capabilities module defines ``register_capabilities(registry)``::

        def register_capabilities(registry):
            registry.register_guard("has_title", lambda ctx, payload: bool(ctx["title"]))
    """
    registry = registry if registry is not None else CapabilityRegistry()
    for module_name in modules:
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise ConfigError(f"Cannot import capabilities module '{module_name}': {e}") from None

        register = getattr(module, "register_capabilities", None)
        if not callable(register):
            raise ConfigError(f"Module '{module_name}' does not define register_capabilities(registry)")
        register(registry)
    return registry


def load_workflows(
    config: dict,
    registry: Optional[CapabilityRegistry] = None,
) -> dict[str, MachineConfig]:
    """Compile every workflow under ``workflows:``"""
    workflows = config.get("workflows", {}) or {}
    if not isinstance(workflows, dict):
        raise ConfigError("'workflows' must be a mapping of name to definition")
    return {
        name: build_machine_config(name, definition, registry)
        for name, definition in workflows.items()
    }
