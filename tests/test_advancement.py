"""
Tests for moving winners through the bracket.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from oche.errors import PropagationFailure
from oche.models import Match, MatchStatus, Tournament, TournamentStatus
from oche.services import Services
from oche.storage import MemoryStore


class FlakyStore(MemoryStore):
    """Memory store whose writes of match slots fail a set number of times.

    Slot writes into the matches listed in ``broken`` always fail.
    """

    def __init__(self, failures=0, broken=()):
        super().__init__()
        self.failures = failures
        self.broken = set(broken)

    def update(self, kind, record_id, **fields):
        if kind is Match and ('player1_id' in fields or 'player2_id' in fields):
            if record_id in self.broken:
                raise OSError('disk unavailable')
            if self.failures:
                self.failures -= 1
                raise OSError('disk unavailable')
        return super().update(kind, record_id, **fields)


@pytest.fixture
def flaky_services():
    return Services(FlakyStore())


def _build(services, count=8):
    tournament = services.tournaments.create_tournament('Flaky Open', best_of_legs=3)
    for i in range(count):
        entrant = services.tournaments.create_entrant(f'Player {i + 1}')
        services.tournaments.register_entrant(tournament.id, entrant.id, seed=i + 1)
    return tournament, services.brackets.build(tournament.id)


def _win(services, match, slot='player1'):
    winner_id = match.player1_id if slot == 'player1' else match.player2_id
    return services.scoring.complete_match(match.id, winner_id, *((2, 0) if slot == 'player1' else (0, 2)))


class TestAdvance:
    """Tests for a single advancement."""

    def test_winner_fills_downstream_slot(self, services, eight_player_bracket):
        _, _, bracket = eight_player_bracket
        first = bracket.match_at(3, 1)
        downstream = services.advancement.advance(first.id, first.player1_id)
        assert downstream.id == bracket.match_at(2, 1).id
        assert downstream.player1_id == first.player1_id
        assert downstream.player2_id is None

    def test_even_position_fills_player2(self, services, eight_player_bracket):
        _, _, bracket = eight_player_bracket
        second = bracket.match_at(3, 2)
        downstream = services.advancement.advance(second.id, second.player2_id)
        assert downstream.player2_id == second.player2_id
        assert downstream.player1_id is None

    def test_siblings_fill_both_slots(self, services, eight_player_bracket):
        _, _, bracket = eight_player_bracket
        first, second = bracket.match_at(3, 1), bracket.match_at(3, 2)
        _win(services, first)
        _win(services, second, 'player2')
        semifinal = services.store.require(Match, bracket.match_at(2, 1).id)
        assert semifinal.player1_id == first.player1_id
        assert semifinal.player2_id == second.player2_id
        assert semifinal.has_both_players

    def test_advance_is_idempotent(self, services, eight_player_bracket):
        _, _, bracket = eight_player_bracket
        first = bracket.match_at(3, 1)
        once = services.advancement.advance(first.id, first.player1_id)
        twice = services.advancement.advance(first.id, first.player1_id)
        assert once == twice

    def test_pending_slot_can_be_corrected(self, services, eight_player_bracket):
        _, _, bracket = eight_player_bracket
        first = bracket.match_at(3, 1)
        services.advancement.advance(first.id, first.player1_id)
        downstream = services.advancement.advance(first.id, first.player2_id)
        assert downstream.player1_id == first.player2_id

    def test_started_downstream_not_overwritten(self, services, eight_player_bracket):
        _, _, bracket = eight_player_bracket
        first, second = bracket.match_at(3, 1), bracket.match_at(3, 2)
        _win(services, first)
        _win(services, second)
        semifinal = bracket.match_at(2, 1)
        services.scoring.assign_match(semifinal.id, 'scorer-1')
        services.scoring.start_match(semifinal.id)
        with pytest.raises(PropagationFailure):
            services.advancement.advance(first.id, first.player2_id)
        assert services.store.require(Match, semifinal.id).player1_id == first.player1_id

    def test_unknown_match(self, services):
        with pytest.raises(PropagationFailure):
            services.advancement.advance('missing', 'someone')

    def test_broken_edge(self, services, store, eight_player_bracket):
        _, _, bracket = eight_player_bracket
        first = bracket.match_at(3, 1)
        store.update(Match, bracket.match_at(2, 1).id, player1_from_match_id='elsewhere')
        with pytest.raises(PropagationFailure):
            services.advancement.advance(first.id, first.player1_id)

    def test_advance_emits_change(self, services, eight_player_bracket):
        _, _, bracket = eight_player_bracket
        first = bracket.match_at(3, 1)
        events = []
        services.notifier.subscribe(events.append)
        services.advancement.advance(first.id, first.player1_id)
        assert [(e.entity, e.entity_id) for e in events] == [('match', bracket.match_at(2, 1).id)]


class TestFinal:
    """Tests for the final completing the tournament."""

    def test_final_completes_tournament(self, services, make_tournament):
        tournament, _ = make_tournament(4)
        bracket = services.brackets.build(tournament.id)
        _win(services, bracket.match_at(2, 1))
        _win(services, bracket.match_at(2, 2))
        final = services.store.require(Match, bracket.final.id)
        completion = _win(services, final, 'player2')
        assert completion.advanced is True

        stored = services.store.require(Tournament, tournament.id)
        assert stored.status == TournamentStatus.COMPLETED
        assert stored.winner_id == final.player2_id
        assert stored.completed_at is not None

    def test_final_advance_is_idempotent(self, services, make_tournament):
        tournament, _ = make_tournament(4)
        bracket = services.brackets.build(tournament.id)
        _win(services, bracket.match_at(2, 1))
        _win(services, bracket.match_at(2, 2))
        final = services.store.require(Match, bracket.final.id)
        _win(services, final)
        completed_at = services.store.require(Tournament, tournament.id).completed_at
        assert services.advancement.advance(final.id, final.player1_id) is None
        assert services.store.require(Tournament, tournament.id).completed_at == completed_at


class TestRetryAndRepair:
    """Tests for failed advancements."""

    def test_retry_recovers(self, flaky_services):
        _, bracket = _build(flaky_services)
        flaky_services.store.failures = 2
        first = bracket.match_at(3, 1)
        completion = _win(flaky_services, first)
        assert completion.advanced is True
        assert flaky_services.advancement.pending == {}
        semifinal = flaky_services.store.require(Match, bracket.match_at(2, 1).id)
        assert semifinal.player1_id == first.player1_id

    def test_failure_keeps_match_completed(self, flaky_services):
        _, bracket = _build(flaky_services)
        flaky_services.store.failures = 3
        first = bracket.match_at(3, 1)
        completion = _win(flaky_services, first)
        assert completion.advanced is False
        assert completion.to_dict()['advancement_pending'] is True
        assert flaky_services.store.require(Match, first.id).status == MatchStatus.COMPLETED
        assert flaky_services.store.require(Match, bracket.match_at(2, 1).id).player1_id is None
        assert flaky_services.advancement.pending == {first.id: first.player1_id}

    def test_repair_pending(self, flaky_services):
        _, bracket = _build(flaky_services)
        flaky_services.store.failures = 3
        first = bracket.match_at(3, 1)
        _win(flaky_services, first)
        assert flaky_services.advancement.repair_pending() == []
        assert flaky_services.advancement.pending == {}
        semifinal = flaky_services.store.require(Match, bracket.match_at(2, 1).id)
        assert semifinal.player1_id == first.player1_id

    def test_repair_pending_still_failing(self, flaky_services):
        _, bracket = _build(flaky_services)
        flaky_services.store.failures = 4
        first = bracket.match_at(3, 1)
        _win(flaky_services, first)
        assert flaky_services.advancement.repair_pending() == [first.id]

    def test_repair_tournament(self, flaky_services):
        tournament, bracket = _build(flaky_services)
        flaky_services.store.failures = 6
        _win(flaky_services, bracket.match_at(3, 1))
        _win(flaky_services, bracket.match_at(3, 4))
        _win(flaky_services, bracket.match_at(3, 2))
        assert flaky_services.store.failures == 0
        assert flaky_services.advancement.repair_tournament(tournament.id) == 2
        assert flaky_services.advancement.pending == {}
        assert flaky_services.advancement.repair_tournament(tournament.id) == 0
        assert flaky_services.store.require(Match, bracket.match_at(2, 2).id).player2_id \
            == bracket.match_at(3, 4).player1_id

    def test_repair_tournament_continues_past_failure(self, flaky_services):
        tournament, bracket = _build(flaky_services)
        store = flaky_services.store
        stuck, repairable = bracket.match_at(3, 1), bracket.match_at(3, 4)
        store.broken = {bracket.match_at(2, 1).id}
        _win(flaky_services, stuck)
        store.failures = 3
        _win(flaky_services, repairable)
        assert set(flaky_services.advancement.pending) == {stuck.id, repairable.id}

        assert flaky_services.advancement.repair_tournament(tournament.id) == 1
        assert flaky_services.advancement.pending == {stuck.id: stuck.player1_id}
        assert store.require(Match, bracket.match_at(2, 2).id).player2_id == repairable.player1_id
        assert store.require(Match, bracket.match_at(2, 1).id).player1_id is None

        store.broken = set()
        assert flaky_services.advancement.repair_pending() == []
        assert store.require(Match, bracket.match_at(2, 1).id).player1_id == stuck.player1_id
