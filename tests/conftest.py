"""
Shared pytest fixtures for the darts tournament tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from oche.models import Match
from oche.services import Services
from oche.storage import MemoryStore


@pytest.fixture
def store():
    """Empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def services(store):
    """Services wired to the in-memory store."""
    return Services(store)


@pytest.fixture
def make_tournament(services):
    """Factory creating a draft tournament with registered entrants.

    ``seeds`` is an optional list with one seed (or None) per entrant.
    """
    def _make(count=8, seeds=None, best_of_legs=3, starting_score=501):
        tournament = services.tournaments.create_tournament(
            'Test Open', best_of_legs=best_of_legs, starting_score=starting_score)
        registrations = []
        for i in range(count):
            entrant = services.tournaments.create_entrant(f'Player {i + 1}')
            seed = seeds[i] if seeds else None
            registrations.append(
                services.tournaments.register_entrant(tournament.id, entrant.id, seed=seed))
        return tournament, registrations
    return _make


@pytest.fixture
def eight_player_bracket(services, make_tournament):
    """Built 8-entrant bracket, seeds 1-8, best of 3 legs from 40."""
    tournament, registrations = make_tournament(8, seeds=list(range(1, 9)), starting_score=40)
    bracket = services.brackets.build(tournament.id)
    return tournament, registrations, bracket


@pytest.fixture
def start_first_match(services, make_tournament):
    """Factory: build a 4-entrant bracket and start its first match.

    Returns (match, leg) with the match in progress and leg 1 open.
    """
    def _start(starting_score=501, best_of_legs=3):
        tournament, _ = make_tournament(4, seeds=[1, 2, 3, 4], best_of_legs=best_of_legs,
                                        starting_score=starting_score)
        bracket = services.brackets.build(tournament.id)
        match = bracket.match_at(2, 1)
        services.scoring.assign_match(match.id, 'scorer-1')
        leg = services.scoring.start_match(match.id)
        return services.store.require(Match, match.id), leg
    return _start


@pytest.fixture
def play_match(services, store):
    """Play a whole match with starting score 40: the chosen side checks out on D20 every leg.

    ``winner`` is 'player1' or 'player2'. Returns the DartResult of the last dart.
    """
    def _play(match_id, winner='player1'):
        scoring = services.scoring
        scoring.assign_match(match_id, 'scorer-1')
        leg = scoring.start_match(match_id)
        while True:
            match = store.require(Match, match_id)
            winner_id = match.player1_id if winner == 'player1' else match.player2_id
            turn = scoring.start_turn(leg.id)
            if turn.player_id != winner_id:
                for position in (1, 2, 3):
                    scoring.record_dart(turn.id, position, 1, 0)
                turn = scoring.start_turn(leg.id)
            result = scoring.record_dart(turn.id, 1, 2, 20)
            if result.match_completed:
                return result
            leg = result.next_leg
    return _play
