"""Shared pytest fixtures: force mock AI per test and build sample state."""

import pytest

from adventure_mas.config import settings
from adventure_mas.models import Quest, SessionState, TeamMember


@pytest.fixture(autouse=True)
def force_mock_mode():
    original_mode = settings.ai_mode
    original_lookup = settings.species_lookup
    settings.ai_mode = "mock"
    settings.species_lookup = False
    yield
    settings.ai_mode = original_mode
    settings.species_lookup = original_lookup


def make_team() -> list[TeamMember]:
    return [
        TeamMember(id=25, name="Pikachu", types=["electric"], current_health=100, max_health=100),
        TeamMember(id=7, name="Squirtle", types=["water"], current_health=90, max_health=90),
        TeamMember(id=4, name="Charmander", types=["fire"], current_health=80, max_health=80),
    ]


def make_state(team: list[TeamMember] | None = None, **overrides) -> SessionState:
    values = {
        "session_id": "adv_test",
        "quest": Quest(title="The Lost Expedition", target_steps=8),
        "seed": 842720,
        "team": team if team is not None else make_team(),
    }
    values.update(overrides)
    return SessionState(**values)


@pytest.fixture
def team() -> list[TeamMember]:
    return make_team()


@pytest.fixture
def state() -> SessionState:
    return make_state()
