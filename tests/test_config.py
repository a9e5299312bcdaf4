"""Tests for YAML config loading and workflow compilation."""
import pytest

from statewright.config import (
    EngineSettings,
    build_machine_config,
    load_capabilities,
    load_config,
    load_workflows,
)
from statewright.engine.declarative import CapabilityKind, CapabilityRegistry
from statewright.engine.machine import StateMachine
from statewright.errors import ConfigError


CONFIG_YAML = """
paths:
  state_dir: ./state
engine:
  history_limit: 25
  serialize_transitions: false
workflows:
  content:
    initial: draft
    context:
      title: ""
    states:
      draft:
        on:
          SUBMIT: {target: review, guards: [has_title], actions: [stamp]}
        exit: [left_draft]
      review:
        on: {APPROVE: approved, REJECT: draft}
        entry: [entered_review]
        meta: {label: In review}
      approved: {}
"""


@pytest.fixture
def registry():
    registry = CapabilityRegistry()
    registry.register_guard("has_title", lambda ctx, payload: len(ctx["title"]) >= 5)
    registry.register_action("stamp", lambda ctx, payload: ctx.update(submitted_by=payload["by"]))
    registry.register_action("left_draft", lambda ctx, payload: ctx.setdefault("trail", []).append("left"))
    registry.register_action("entered_review", lambda ctx, payload: ctx.setdefault("trail", []).append("entered"))
    return registry


class TestLoadConfig:
    """Test cases for load_config."""

    def test_missing_file(self, tmp_path):
        assert load_config(tmp_path / "nope.yaml") == {}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "statewright.yaml"
        path.write_text("")
        assert load_config(path) == {}

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "statewright.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_yaml_roundtrip(self, tmp_path):
        path = tmp_path / "statewright.yaml"
        path.write_text(CONFIG_YAML)
        config = load_config(path)
        assert config["paths"]["state_dir"] == "./state"
        assert set(config["workflows"]) == {"content"}


class TestEngineSettings:
    """Test cases for EngineSettings."""

    def test_defaults(self):
        settings = EngineSettings.from_config({})
        assert settings.history_limit == 100
        assert settings.serialize_transitions is True

    def test_from_config(self, tmp_path):
        path = tmp_path / "statewright.yaml"
        path.write_text(CONFIG_YAML)
        settings = EngineSettings.from_config(load_config(path))
        assert settings.history_limit == 25
        assert settings.serialize_transitions is False

    def test_non_numeric_history_limit(self):
        with pytest.raises(ConfigError, match="must be an integer"):
            EngineSettings.from_config({"engine": {"history_limit": "lots"}})

    def test_invalid_history_limit(self):
        with pytest.raises(ConfigError):
            EngineSettings.from_config({"engine": {"history_limit": 0}})


class TestBuildMachineConfig:
    """Test cases for compiling declarative workflows into engine configs."""

    def _workflows(self, tmp_path, registry):
        path = tmp_path / "statewright.yaml"
        path.write_text(CONFIG_YAML)
        return load_workflows(load_config(path), registry)

    def test_compiled_shape(self, tmp_path, registry):
        config = self._workflows(tmp_path, registry)["content"]

        assert config.id == "content"
        assert config.initial == "draft"
        assert set(config.states) == {"draft", "review", "approved"}
        assert config.states["review"].metadata == {"label": "In review"}
        assert [(t.from_state, t.event, t.to_state) for t in config.transitions] == [
            ("draft", "SUBMIT", "review"),
            ("review", "APPROVE", "approved"),
            ("review", "REJECT", "draft"),
        ]

    @pytest.mark.asyncio
    async def test_compiled_workflow_runs(self, tmp_path, registry):
        """Named guards, actions and entry/exit lists drive the core engine."""
        config = self._workflows(tmp_path, registry)["content"]
        machine = await StateMachine.create(config)

        assert await machine.send("SUBMIT", {"by": "ana"}) is False

        machine._context["title"] = "Harvest box"
        assert await machine.send("SUBMIT", {"by": "ana"}) is True

        context = machine.get_context()
        assert machine.get_state() == "review"
        assert context["submitted_by"] == "ana"
        assert context["trail"] == ["left", "entered"]

    def test_unknown_guard_name(self, tmp_path):
        with pytest.raises(ConfigError, match="Unknown guard: 'has_title'"):
            self._workflows(tmp_path, CapabilityRegistry())

    def test_plain_workflow_needs_no_registry(self):
        config = build_machine_config("simple", {
            "initial": "open",
            "states": {"open": {"on": {"CLOSE": "closed"}}, "closed": {}},
        })
        assert config.transitions[0].guards == ()

    def test_workflows_must_be_mapping(self):
        with pytest.raises(ConfigError):
            load_workflows({"workflows": ["content"]})

    def test_payload_context_key_is_reserved(self):
        """Named guards receive the payload under that key, so workflows may not declare it."""
        with pytest.raises(ConfigError, match="'payload' is reserved"):
            build_machine_config("orders", {
                "initial": "open",
                "context": {"payload": {"sku": "A1"}},
                "states": {"open": {}},
            })


class TestLoadCapabilities:
    """Test cases for importing capability modules."""

    def test_module_registers_into_registry(self, tmp_path, monkeypatch):
        (tmp_path / "shop_capabilities.py").write_text(
            "def register_capabilities(registry):\n"
            "    registry.register_guard('has_title', lambda ctx, payload: len(ctx['title']) >= 5)\n"
        )
        monkeypatch.syspath_prepend(str(tmp_path))

        registry = load_capabilities(["shop_capabilities"])

        assert registry.names(CapabilityKind.GUARD) == ["has_title"]

    def test_missing_module(self):
        with pytest.raises(ConfigError, match="Cannot import capabilities module"):
            load_capabilities(["statewright_no_such_module"])

    def test_module_without_hook(self, tmp_path, monkeypatch):
        (tmp_path / "empty_capabilities.py").write_text("VALUE = 1\n")
        monkeypatch.syspath_prepend(str(tmp_path))

        with pytest.raises(ConfigError, match="does not define register_capabilities"):
            load_capabilities(["empty_capabilities"])
