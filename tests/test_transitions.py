"""Tests for TransitionTable and MachineConfig."""
import pytest

from statewright.engine.transitions import (
    MachineConfig,
    StateDefinition,
    Transition,
    TransitionTable,
    transition_key,
)
from statewright.errors import ConfigError


class TestTransitionTable:
    """Test cases for building the (state, event) lookup."""

    def test_key_format(self):
        """Keys join state and event with a dot."""
        assert transition_key("draft", "SUBMIT") == "draft.SUBMIT"
        assert Transition("draft", "SUBMIT", "review").key == "draft.SUBMIT"

    def test_candidates_preserve_declaration_order(self):
        """Transitions sharing a key come back first-declared first."""
        # Arrange
        first = Transition("review", "DECIDE", "approved")
        other = Transition("draft", "SUBMIT", "review")
        second = Transition("review", "DECIDE", "draft")
        third = Transition("review", "DECIDE", "archived")

        # Act
        table = TransitionTable.build([first, other, second, third])

        # Assert
        assert table.candidates("review", "DECIDE") == (first, second, third)
        assert table.candidates("draft", "SUBMIT") == (other,)
        assert len(table) == 4

    def test_unknown_pair_has_no_candidates(self):
        """Lookup of an undeclared pair yields an empty tuple."""
        table = TransitionTable([Transition("draft", "SUBMIT", "review")])
        assert table.candidates("draft", "PUBLISH") == ()
        assert table.candidates("missing", "SUBMIT") == ()

    def test_contains(self):
        table = TransitionTable([Transition("draft", "SUBMIT", "review")])
        assert "draft.SUBMIT" in table
        assert "review.SUBMIT" not in table

    def test_events_for_state(self):
        """Events are listed once each, in first-declaration order."""
        table = TransitionTable([
            Transition("review", "REJECT", "draft"),
            Transition("review", "APPROVE", "approved"),
            Transition("review", "REJECT", "archived"),
        ])
        assert table.events_for("review") == ["REJECT", "APPROVE"]
        assert table.events_for("draft") == []


class TestMachineConfig:
    """Test cases for MachineConfig.validate."""

    def _states(self, *names):
        return {name: StateDefinition(name) for name in names}

    def test_valid_config(self):
        config = MachineConfig(
            id="m",
            initial="a",
            states=self._states("a", "b"),
            transitions=[Transition("a", "GO", "b")],
        )
        config.validate()

    def test_unknown_initial_state(self):
        config = MachineConfig(id="m", initial="zzz", states=self._states("a"))
        with pytest.raises(ConfigError, match="initial state"):
            config.validate()

    def test_transition_to_unknown_state(self):
        config = MachineConfig(
            id="m",
            initial="a",
            states=self._states("a"),
            transitions=[Transition("a", "GO", "nowhere")],
        )
        with pytest.raises(ConfigError, match="nowhere"):
            config.validate()
