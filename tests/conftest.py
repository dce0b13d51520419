"""
Shared pytest fixtures for the character-versions test suite.

Provides:
    - sample_card: a V2 character card handle with a lorebook
    - sample_lorebook: a lorebook with three entries
    - store: a SnapshotStore over MemoryStorage with a stepping clock
    - controller: a VersionController wired to that store
    - FailingStorage / FailingWriter: failure-injection doubles
"""

import itertools
import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure charversions/ is importable regardless of where pytest is invoked
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from charversions.config import Settings  # noqa: E402
from charversions.snapshot_store import SnapshotStore  # noqa: E402
from charversions.storage import MemoryStorage  # noqa: E402
from charversions.version_controller import VersionController  # noqa: E402


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FailingStorage(MemoryStorage):
    """MemoryStorage that raises on writes to names listed in ``fail_on``."""

    def __init__(self, fail_on=()):
        super().__init__()
        self.fail_on = set(fail_on)
        self.fail_all_writes = False

    def write(self, name, data):
        if self.fail_all_writes or name in self.fail_on:
            raise OSError(f"disk full while writing {name}")
        super().write(name, data)


class FailingWriter:
    """DocumentWriter that always raises."""

    def __init__(self):
        self.calls = 0

    def apply_updates(self, doc, updates):
        self.calls += 1
        raise PermissionError("document is read-only")


def step_clock(start=1_700_000_000_000, step=1000):
    """Return a clock that advances *step* ms on every call."""
    counter = itertools.count(start, step)
    return lambda: next(counter)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_lorebook():
    """Return a lorebook with three entries and some settings."""
    return {
        "name": "Ashen Vale",
        "scan_depth": 4,
        "token_budget": 512,
        "recursive_scanning": False,
        "entries": [
            {
                "id": 0,
                "keys": ["Ashen Vale", "vale"],
                "content": "A valley of grey ash where nothing grows.",
                "enabled": True,
                "insertion_order": 100,
                "comment": "Ashen Vale",
            },
            {
                "id": 1,
                "keys": ["Mira"],
                "content": "Mira is the ferrywoman of the black river.",
                "enabled": True,
                "insertion_order": 100,
                "comment": "Mira",
            },
            {
                "id": 2,
                "keys": ["Old Tower"],
                "content": "The tower leans east and hums at night.",
                "enabled": False,
                "insertion_order": 50,
                "comment": "Old Tower",
            },
        ],
    }


@pytest.fixture
def sample_card(sample_lorebook):
    """Return a V2 card handle as a host would hand it over."""
    return {
        "avatar": "seraphine.png",
        "name": "Seraphine",
        "spec": "chara_card_v2",
        "data": {
            "name": "Seraphine",
            "description": "A wandering healer.\nShe carries a lantern of green fire.",
            "personality": "Gentle, stubborn",
            "scenario": "",
            "first_mes": "*She looks up from the fire.* Lost, traveller?",
            "mes_example": "",
            "creator": "ink",
            "tags": ["Fantasy", "Healer", "rpg"],
            "alternate_greetings": ["Hello there.", "You look tired."],
            "depth_prompt": {"prompt": "Stay in character.", "depth": 4, "role": "system"},
            "extensions": {"talkativeness": "0.5"},
            "character_book": sample_lorebook,
        },
    }


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def store(memory_storage):
    """Return a SnapshotStore over fresh in-memory storage."""
    return SnapshotStore(memory_storage, max_auto_backups=10, clock=step_clock())


@pytest.fixture
def controller(store):
    """Return a VersionController over the ``store`` fixture."""
    return VersionController(store, settings=Settings(), clock=step_clock())
