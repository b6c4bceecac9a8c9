"""
Records for tournaments, brackets and dart-by-dart scoring.

Each record knows how to turn itself into a plain dict (for YAML storage and
JSON responses) and back. Lifecycle states are enums so that a status can
only ever hold one of the known values.
"""
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class TournamentStatus(Enum):
    DRAFT = 'draft'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


class MatchStatus(Enum):
    PENDING = 'pending'
    ASSIGNED = 'assigned'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


class LegStatus(Enum):
    ACTIVE = 'active'
    COMPLETED = 'completed'


class TurnStatus(Enum):
    OPEN = 'open'
    CLOSED = 'closed'


class Slot(Enum):
    """Which side of a downstream match a feeding match fills."""
    PLAYER1 = 'player1'
    PLAYER2 = 'player2'

    @property
    def player_field(self) -> str:
        return f'{self.value}_id'

    @property
    def source_field(self) -> str:
        return f'{self.value}_from_match_id'


class Record:
    """Base for stored records.

    Subclasses list their attribute names in ``fields`` (constructor
    keywords must match), any enum-typed attributes in ``enum_fields`` and
    the default sort order of stored lookups in ``ordering``.
    """
    fields = ('id',)
    enum_fields = {}
    ordering = ('id',)

    def to_dict(self) -> dict:
        data = {}
        for name in self.fields:
            value = getattr(self, name)
            if isinstance(value, Enum):
                value = value.value
            data[name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict):
        values = {name: data[name] for name in cls.fields if name in data}
        for name, enum_cls in cls.enum_fields.items():
            if values.get(name) is not None:
                values[name] = enum_cls(values[name])
        return cls(**values)

    def copy(self):
        return self.from_dict(self.to_dict())

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None

    def __repr__(self):
        shown = ', '.join(f'{name}={getattr(self, name)!r}' for name in self.fields[:4])
        return f'{type(self).__name__}({shown})'


class Entrant(Record):
    fields = ('id', 'name')
    ordering = ('name', 'id')

    def __init__(self, name, id=None):
        self.id = id
        self.name = name


class Tournament(Record):
    fields = ('id', 'name', 'best_of_legs', 'starting_score', 'status',
              'winner_id', 'created_by', 'created_at', 'completed_at')
    enum_fields = {'status': TournamentStatus}
    ordering = ('created_at', 'id')

    def __init__(self, name, best_of_legs=5, starting_score=501,
                 status=TournamentStatus.DRAFT, winner_id=None, created_by=None,
                 created_at=None, completed_at=None, id=None):
        self.id = id
        self.name = name
        self.best_of_legs = best_of_legs
        self.starting_score = starting_score
        self.status = status
        self.winner_id = winner_id
        self.created_by = created_by
        self.created_at = created_at
        self.completed_at = completed_at


class Registration(Record):
    """An entrant's place in one tournament. Lower seed is stronger."""
    fields = ('id', 'tournament_id', 'entrant_id', 'seed', 'registered_at')
    ordering = ('registered_at', 'id')

    def __init__(self, tournament_id, entrant_id, seed=None, registered_at=None, id=None):
        self.id = id
        self.tournament_id = tournament_id
        self.entrant_id = entrant_id
        self.seed = seed
        self.registered_at = registered_at


class Match(Record):
    """A node of the bracket tree.

    Round 1 is the final; the first round has the highest number.
    ``feeds_into_match_id``/``feeds_into_slot`` is the edge to the downstream
    match and is fixed when the bracket is built. The downstream match keeps
    the reciprocal ``player1_from_match_id``/``player2_from_match_id``.
    """
    fields = ('id', 'tournament_id', 'round', 'position',
              'player1_id', 'player2_id',
              'player1_from_match_id', 'player2_from_match_id',
              'feeds_into_match_id', 'feeds_into_slot',
              'winner_id', 'player1_legs_won', 'player2_legs_won',
              'status', 'best_of_legs', 'starting_score',
              'assigned_to', 'assigned_at', 'started_at', 'completed_at')
    enum_fields = {'status': MatchStatus, 'feeds_into_slot': Slot}
    ordering = ('tournament_id', '-round', 'position')

    def __init__(self, tournament_id, round, position, player1_id=None, player2_id=None,
                 player1_from_match_id=None, player2_from_match_id=None,
                 feeds_into_match_id=None, feeds_into_slot=None, winner_id=None,
                 player1_legs_won=0, player2_legs_won=0, status=MatchStatus.PENDING,
                 best_of_legs=5, starting_score=501, assigned_to=None, assigned_at=None,
                 started_at=None, completed_at=None, id=None):
        self.id = id
        self.tournament_id = tournament_id
        self.round = round
        self.position = position
        self.player1_id = player1_id
        self.player2_id = player2_id
        self.player1_from_match_id = player1_from_match_id
        self.player2_from_match_id = player2_from_match_id
        self.feeds_into_match_id = feeds_into_match_id
        self.feeds_into_slot = feeds_into_slot
        self.winner_id = winner_id
        self.player1_legs_won = player1_legs_won
        self.player2_legs_won = player2_legs_won
        self.status = status
        self.best_of_legs = best_of_legs
        self.starting_score = starting_score
        self.assigned_to = assigned_to
        self.assigned_at = assigned_at
        self.started_at = started_at
        self.completed_at = completed_at

    @property
    def is_final(self) -> bool:
        return self.feeds_into_match_id is None

    @property
    def legs_to_win(self) -> int:
        return math.ceil(self.best_of_legs / 2)

    @property
    def has_both_players(self) -> bool:
        return self.player1_id is not None and self.player2_id is not None

    def slot_of(self, player_id) -> Optional[Slot]:
        if player_id is None:
            return None
        if player_id == self.player1_id:
            return Slot.PLAYER1
        if player_id == self.player2_id:
            return Slot.PLAYER2
        return None

    def source_for(self, slot: Slot):
        return getattr(self, slot.source_field)


class Leg(Record):
    fields = ('id', 'match_id', 'leg_number', 'player1_id', 'player2_id',
              'player1_starting_score', 'player2_starting_score',
              'player1_final_score', 'player2_final_score',
              'winner_id', 'total_darts_thrown', 'checkout_dart',
              'started_at', 'completed_at')
    ordering = ('match_id', 'leg_number')

    def __init__(self, match_id, leg_number, player1_id, player2_id,
                 player1_starting_score=501, player2_starting_score=501,
                 player1_final_score=None, player2_final_score=None, winner_id=None,
                 total_darts_thrown=0, checkout_dart=None, started_at=None,
                 completed_at=None, id=None):
        self.id = id
        self.match_id = match_id
        self.leg_number = leg_number
        self.player1_id = player1_id
        self.player2_id = player2_id
        self.player1_starting_score = player1_starting_score
        self.player2_starting_score = player2_starting_score
        self.player1_final_score = player1_final_score
        self.player2_final_score = player2_final_score
        self.winner_id = winner_id
        self.total_darts_thrown = total_darts_thrown
        self.checkout_dart = checkout_dart
        self.started_at = started_at
        self.completed_at = completed_at

    @property
    def status(self) -> LegStatus:
        # A leg closed without a winner was abandoned by a manual match result
        if self.winner_id is None and self.completed_at is None:
            return LegStatus.ACTIVE
        return LegStatus.COMPLETED

    def starting_score_for(self, player_id) -> int:
        if player_id == self.player1_id:
            return self.player1_starting_score
        if player_id == self.player2_id:
            return self.player2_starting_score
        raise ValueError(f'{player_id} is not playing leg {self.id}')

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['status'] = self.status.value
        return data


class Turn(Record):
    fields = ('id', 'leg_id', 'player_id', 'turn_number', 'score_before', 'score_after',
              'turn_total', 'is_checkout_attempt', 'is_successful_checkout', 'is_bust',
              'status')
    enum_fields = {'status': TurnStatus}
    ordering = ('leg_id', 'turn_number')

    def __init__(self, leg_id, player_id, turn_number, score_before, score_after=None,
                 turn_total=0, is_checkout_attempt=False, is_successful_checkout=False,
                 is_bust=False, status=TurnStatus.OPEN, id=None):
        self.id = id
        self.leg_id = leg_id
        self.player_id = player_id
        self.turn_number = turn_number
        self.score_before = score_before
        self.score_after = score_before if score_after is None else score_after
        self.turn_total = turn_total
        self.is_checkout_attempt = is_checkout_attempt
        self.is_successful_checkout = is_successful_checkout
        self.is_bust = is_bust
        self.status = status


class Dart(Record):
    fields = ('id', 'turn_id', 'position', 'multiplier', 'target', 'value',
              'is_bust', 'is_checkout')
    ordering = ('turn_id', 'position')

    def __init__(self, turn_id, position, multiplier, target, value,
                 is_bust=False, is_checkout=False, id=None):
        self.id = id
        self.turn_id = turn_id
        self.position = position
        self.multiplier = multiplier
        self.target = target
        self.value = value
        self.is_bust = is_bust
        self.is_checkout = is_checkout
