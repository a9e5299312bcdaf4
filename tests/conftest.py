"""Shared fixtures for statewright tests."""
import pytest

from statewright.engine.transitions import MachineConfig, StateDefinition, Transition
from statewright.state.persistence import SnapshotStore
from statewright.state.storage import MemoryStorage


CONTENT_STATES = ["draft", "review", "approved", "published", "archived"]


def make_config(transitions, states=CONTENT_STATES, initial="draft", context=None, hooks=None):
    """Build a MachineConfig; ``hooks`` maps state name to (on_enter, on_exit)."""
    hooks = hooks or {}
    return MachineConfig(
        id="content",
        initial=initial,
        context=context if context is not None else {"title": ""},
        states={
            name: StateDefinition(name, *hooks.get(name, (None, None)))
            for name in states
        },
        transitions=transitions,
    )


@pytest.fixture
def content_transitions():
    """Linear content workflow: draft → review → approved → published → archived."""
    return [
        Transition("draft", "SUBMIT", "review", guards=(lambda ctx: len(ctx["title"]) >= 5,)),
        Transition("review", "APPROVE", "approved"),
        Transition("review", "REJECT", "draft"),
        Transition("approved", "PUBLISH", "published"),
        Transition("published", "ARCHIVE", "archived"),
    ]


@pytest.fixture
def content_config(content_transitions):
    return make_config(content_transitions)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return SnapshotStore(storage)


class FakeRedis:
    """In-memory stand-in for the subset of redis.Redis used by RedisStorage."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        value = self.data.get(key)
        return value.encode("utf-8") if value is not None else None

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)

    def scan_iter(self, match=None):
        prefix = match.rstrip("*") if match else ""
        for key in list(self.data):
            if key.startswith(prefix):
                yield key.encode("utf-8")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def config_factory():
    return make_config
