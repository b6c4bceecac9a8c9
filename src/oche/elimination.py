"""
Single elimination bracket generation.

A bracket is built once per tournament: every match of every round is
created up front, with the first round filled from the seeded entrants and
later rounds left empty until winners advance into them. Each match except
the final carries a fixed edge to the match its winner feeds.
"""
import logging
import math
from typing import Dict, List, Optional, Tuple

from .errors import StateError, ValidationError
from .models import Match, Registration, Slot, Tournament, TournamentStatus
from .storage import new_id

logger = logging.getLogger(__name__)

SUPPORTED_BRACKET_SIZES = (4, 8, 16, 32, 64)


def get_round_name(round_number: int) -> str:
    """Get the name of a round. Round 1 is the final."""
    if round_number == 1:
        return "Final"
    elif round_number == 2:
        return "Semifinal"
    elif round_number == 3:
        return "Quarterfinal"
    else:
        return f"Round of {2 ** round_number}"


def is_valid_knockout_count(count: int) -> bool:
    return count in SUPPORTED_BRACKET_SIZES


def get_next_valid_count(count: int) -> int:
    """Smallest supported bracket size that fits ``count`` entrants."""
    for size in SUPPORTED_BRACKET_SIZES:
        if size >= count:
            return size
    return SUPPORTED_BRACKET_SIZES[-1]


def calculate_total_rounds(bracket_size: int) -> int:
    return int(math.log2(bracket_size))


def generate_bracket_order(bracket_size: int) -> List[int]:
    """
    Generate the standard tournament bracket order as 0-based seed indices.
    Adjacent pairs are the first round matchups, and if all higher seeds win
    they meet as late as possible.

    For 8 entrants: [0, 7, 3, 4, 1, 6, 2, 5]
    This gives matchups: 1v8, 4v5, 2v7, 3v6
    """
    if bracket_size < 2 or bracket_size & (bracket_size - 1):
        raise ValidationError(f"Bracket size must be a power of two, got {bracket_size}")
    if bracket_size == 2:
        return [0, 1]

    half_order = generate_bracket_order(bracket_size // 2)

    # Pair each position of the smaller bracket with its complement
    result = []
    for position in half_order:
        result.extend([position, bracket_size - 1 - position])
    return result


def order_registrations(registrations: List[Registration]) -> List[Registration]:
    """
    Order registrations strongest first.

    Seeded entrants come first by seed; unseeded entrants follow by
    registration time, then registration id. Seeds must be positive and
    unique, gaps between seed numbers are allowed.
    """
    seen = set()
    for registration in registrations:
        seed = registration.seed
        if seed is None:
            continue
        if isinstance(seed, bool) or not isinstance(seed, int) or seed < 1:
            raise ValidationError(f"Seed must be a positive integer, got {seed!r}")
        if seed in seen:
            raise ValidationError(f"Duplicate seed: {seed}")
        seen.add(seed)

    seeded = sorted((r for r in registrations if r.seed is not None), key=lambda r: r.seed)
    unseeded = sorted((r for r in registrations if r.seed is None),
                      key=lambda r: (r.registered_at or '', r.id or ''))
    return seeded + unseeded


def plan_bracket(tournament: Tournament, registrations: List[Registration]) -> Dict[int, List[Match]]:
    """
    Create every match of the bracket and wire them together.

    Returns dict of round number -> matches ordered by position. Nothing is
    stored here.
    """
    count = len(registrations)
    if not is_valid_knockout_count(count):
        raise ValidationError(
            f"Invalid entrant count: {count}. Must be one of {', '.join(map(str, SUPPORTED_BRACKET_SIZES))}."
        )

    ordered = order_registrations(registrations)
    total_rounds = calculate_total_rounds(count)
    bracket_order = generate_bracket_order(count)

    def new_match(round_number, position, player1_id=None, player2_id=None):
        return Match(
            id=new_id(),
            tournament_id=tournament.id,
            round=round_number,
            position=position,
            player1_id=player1_id,
            player2_id=player2_id,
            best_of_legs=tournament.best_of_legs,
            starting_score=tournament.starting_score,
        )

    rounds = {}

    # First round with actual seeded entrants
    first_round = []
    for i in range(0, len(bracket_order), 2):
        player1 = ordered[bracket_order[i]]
        player2 = ordered[bracket_order[i + 1]]
        first_round.append(new_match(total_rounds, i // 2 + 1, player1.id, player2.id))
    rounds[total_rounds] = first_round

    # Later rounds start empty and wait for winners
    matches_in_previous_round = len(first_round)
    for round_number in range(total_rounds - 1, 0, -1):
        num_matches = math.ceil(matches_in_previous_round / 2)
        rounds[round_number] = [new_match(round_number, pos) for pos in range(1, num_matches + 1)]
        matches_in_previous_round = num_matches

    # Odd positions fill player1 of the next match, even positions player2
    for round_number in range(total_rounds, 1, -1):
        next_round = rounds[round_number - 1]
        for match in rounds[round_number]:
            target = next_round[math.ceil(match.position / 2) - 1]
            slot = Slot.PLAYER1 if match.position % 2 == 1 else Slot.PLAYER2
            match.feeds_into_match_id = target.id
            match.feeds_into_slot = slot
            setattr(target, slot.source_field, match.id)

    return rounds


class BracketTree:
    """Read model of a built bracket."""

    def __init__(self, tournament_id: str, rounds: Dict[int, List[Match]]):
        self.tournament_id = tournament_id
        self.rounds = rounds
        self.total_rounds = max(rounds) if rounds else 0

    @property
    def matches(self) -> List[Match]:
        return [m for round_number in sorted(self.rounds, reverse=True) for m in self.rounds[round_number]]

    @property
    def final(self) -> Optional[Match]:
        final_round = self.rounds.get(1)
        return final_round[0] if final_round else None

    @property
    def champion(self):
        final = self.final
        return final.winner_id if final else None

    def match_at(self, round_number: int, position: int) -> Match:
        return self.rounds[round_number][position - 1]

    def feed_edges(self) -> List[Tuple[str, str, Slot]]:
        """(match id, downstream match id, slot) for every non-final match."""
        return [(m.id, m.feeds_into_match_id, m.feeds_into_slot)
                for m in self.matches if m.feeds_into_match_id is not None]

    def round_name(self, round_number: int) -> str:
        return get_round_name(round_number)

    def to_dict(self) -> dict:
        return {
            'tournament_id': self.tournament_id,
            'total_rounds': self.total_rounds,
            'champion': self.champion,
            'rounds': {
                round_number: {
                    'name': self.round_name(round_number),
                    'matches': [m.to_dict() for m in matches],
                }
                for round_number, matches in self.rounds.items()
            },
        }


def get_bracket(store, tournament_id: str) -> BracketTree:
    """Load the bracket of a tournament from the store."""
    store.require(Tournament, tournament_id)
    rounds = {}
    for match in store.find(Match, tournament_id=tournament_id):
        rounds.setdefault(match.round, []).append(match)
    for matches in rounds.values():
        matches.sort(key=lambda m: m.position)
    return BracketTree(tournament_id, rounds)


class BracketBuilder:
    def __init__(self, store, notifier=None):
        self.store = store
        self.notifier = notifier

    def build(self, tournament_id: str) -> BracketTree:
        """
        Build and store the full bracket for a draft tournament.

        The matches and their wiring are written in one batch, and the
        tournament moves to in progress. Building twice raises StateError.
        """
        with self.store.batch():
            tournament = self.store.require(Tournament, tournament_id)
            if tournament.status != TournamentStatus.DRAFT or \
                    self.store.find_one(Match, tournament_id=tournament_id):
                raise StateError(f"Bracket for tournament {tournament_id} has already been built")

            registrations = self.store.find(Registration, tournament_id=tournament_id)
            rounds = plan_bracket(tournament, registrations)
            matches = [m for round_number in sorted(rounds, reverse=True) for m in rounds[round_number]]
            self.store.insert_many(matches)
            self.store.update(Tournament, tournament_id, status=TournamentStatus.IN_PROGRESS)

        logger.info("Built %d-entrant bracket for tournament %s: %d matches in %d rounds",
                    len(registrations), tournament_id, len(matches), len(rounds))
        if self.notifier:
            self.notifier.emit('tournament', tournament_id, tournament_id)
            for match in matches:
                self.notifier.emit('match', match.id, tournament_id)

        return get_bracket(self.store, tournament_id)
