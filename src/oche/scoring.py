"""
Live scoring of a match, dart by dart.

A turn takes up to three darts and closes early on a bust or a checkout.
A checkout wins the leg, and the match is won by the first player to take
more than half of the best-of legs. Completing a match commits the result
first and then pushes the winner into the next round through the
advancement engine.
"""
import logging
from typing import List, Optional

from .dart_rules import DARTS_PER_TURN, evaluate_dart, is_checkable, validate_dart
from .errors import StateError, ValidationError
from .models import (Dart, Leg, LegStatus, Match, MatchStatus, Slot, Turn, TurnStatus,
                     utc_now)

logger = logging.getLogger(__name__)


class DartResult:
    """What happened when one dart was recorded."""

    def __init__(self, dart, turn, leg, match, next_leg=None, advanced=None):
        self.dart = dart
        self.turn = turn
        self.leg = leg
        self.match = match
        self.next_leg = next_leg
        # None unless the match was completed by this dart
        self.advanced = advanced

    @property
    def is_bust(self) -> bool:
        return self.dart.is_bust

    @property
    def is_checkout(self) -> bool:
        return self.dart.is_checkout

    @property
    def turn_closed(self) -> bool:
        return self.turn.status == TurnStatus.CLOSED

    @property
    def leg_completed(self) -> bool:
        return self.leg.status == LegStatus.COMPLETED

    @property
    def match_completed(self) -> bool:
        return self.match.status == MatchStatus.COMPLETED

    @property
    def advancement_pending(self) -> bool:
        return self.advanced is False

    def to_dict(self) -> dict:
        return {
            'dart': self.dart.to_dict(),
            'turn': self.turn.to_dict(),
            'leg': self.leg.to_dict(),
            'match': self.match.to_dict(),
            'next_leg': self.next_leg.to_dict() if self.next_leg else None,
            'is_bust': self.is_bust,
            'is_checkout': self.is_checkout,
            'turn_closed': self.turn_closed,
            'leg_completed': self.leg_completed,
            'match_completed': self.match_completed,
            'advancement_pending': self.advancement_pending,
        }


class MatchCompletion:
    def __init__(self, match, advanced):
        self.match = match
        self.advanced = advanced

    def to_dict(self) -> dict:
        return {'match': self.match.to_dict(), 'advancement_pending': self.advanced is False}


def next_thrower(leg: Leg, turns: List[Turn]):
    """Player to throw next: players alternate, player1 opens odd legs."""
    if not turns:
        return leg.player1_id if leg.leg_number % 2 == 1 else leg.player2_id
    last = turns[-1].player_id
    return leg.player2_id if last == leg.player1_id else leg.player1_id


def remaining_score(leg: Leg, player_id, turns: List[Turn]) -> int:
    """Score a player has left in a leg, counting closed turns only."""
    closed = [t for t in turns if t.player_id == player_id and t.status == TurnStatus.CLOSED]
    if closed:
        return closed[-1].score_after
    return leg.starting_score_for(player_id)


class ScoringEngine:
    def __init__(self, store, advancement, notifier=None):
        self.store = store
        self.advancement = advancement
        self.notifier = notifier

    def _emit_all(self, changes, tournament_id):
        if not self.notifier:
            return
        for entity, entity_id in changes:
            self.notifier.emit(entity, entity_id, tournament_id)

    # Match lifecycle

    def assign_match(self, match_id: str, scorer_id: str) -> Match:
        """Give a match to a scorer (pending or assigned -> assigned)."""
        if not scorer_id:
            raise ValidationError("Scorer id is required")
        with self.store.batch():
            match = self.store.require(Match, match_id)
            if match.status not in (MatchStatus.PENDING, MatchStatus.ASSIGNED):
                raise StateError(f"Match {match_id} is {match.status.value} and cannot be assigned")
            if not match.has_both_players:
                raise StateError(f"Match {match_id} is still waiting for its players")
            match = self.store.update(Match, match_id, assigned_to=scorer_id,
                                      status=MatchStatus.ASSIGNED, assigned_at=utc_now())
        logger.info("Match %s assigned to %s", match_id, scorer_id)
        self._emit_all([('match', match_id)], match.tournament_id)
        return match

    def unassign_match(self, match_id: str) -> Match:
        with self.store.batch():
            match = self.store.require(Match, match_id)
            if match.status != MatchStatus.ASSIGNED:
                raise StateError(f"Match {match_id} is {match.status.value}, only assigned matches can be unassigned")
            match = self.store.update(Match, match_id, assigned_to=None,
                                      status=MatchStatus.PENDING, assigned_at=None)
        logger.info("Match %s unassigned", match_id)
        self._emit_all([('match', match_id)], match.tournament_id)
        return match

    def start_match(self, match_id: str) -> Leg:
        """Start an assigned match and open its first leg."""
        with self.store.batch():
            match = self.store.require(Match, match_id)
            if match.status != MatchStatus.ASSIGNED:
                raise StateError(f"Match {match_id} is {match.status.value}, only assigned matches can start")
            match = self.store.update(Match, match_id, status=MatchStatus.IN_PROGRESS, started_at=utc_now())
            leg = self._open_leg(match, 1)
        logger.info("Match %s started", match_id)
        self._emit_all([('match', match_id), ('leg', leg.id)], match.tournament_id)
        return leg

    def start_leg(self, match_id: str) -> Leg:
        """Open the next leg of an in-progress match."""
        with self.store.batch():
            match = self.store.require(Match, match_id)
            if match.status != MatchStatus.IN_PROGRESS:
                raise StateError(f"Match {match_id} is {match.status.value}, not in progress")
            legs = self.store.find(Leg, match_id=match_id)
            if any(leg.status == LegStatus.ACTIVE for leg in legs):
                raise StateError(f"Match {match_id} already has an active leg")
            leg = self._open_leg(match, len(legs) + 1)
        self._emit_all([('leg', leg.id)], match.tournament_id)
        return leg

    def _require_in_progress(self, match_id: str) -> Match:
        match = self.store.require(Match, match_id)
        if match.status != MatchStatus.IN_PROGRESS:
            raise StateError(f"Match {match_id} is {match.status.value}, not in progress")
        return match

    def _open_leg(self, match: Match, leg_number: int) -> Leg:
        leg = self.store.insert(Leg(
            match_id=match.id,
            leg_number=leg_number,
            player1_id=match.player1_id,
            player2_id=match.player2_id,
            player1_starting_score=match.starting_score,
            player2_starting_score=match.starting_score,
            started_at=utc_now(),
        ))
        logger.debug("Opened leg %d of match %s", leg_number, match.id)
        return leg

    def start_turn(self, leg_id: str, player_id: Optional[str] = None) -> Turn:
        """
        Open a turn in an active leg. Without ``player_id`` the next thrower
        in rotation is used. The turn starts from that player's last score.
        """
        with self.store.batch():
            leg = self.store.require(Leg, leg_id)
            if leg.status != LegStatus.ACTIVE:
                raise StateError(f"Leg {leg_id} is already completed")
            turns = self.store.find(Turn, leg_id=leg_id)
            if any(t.status == TurnStatus.OPEN for t in turns):
                raise StateError(f"Leg {leg_id} already has an open turn")
            match = self._require_in_progress(leg.match_id)
            if player_id is None:
                player_id = next_thrower(leg, turns)
            elif player_id not in (leg.player1_id, leg.player2_id):
                raise ValidationError(f"{player_id} is not playing leg {leg_id}")
            turn = self.store.insert(Turn(
                leg_id=leg_id,
                player_id=player_id,
                turn_number=len(turns) + 1,
                score_before=remaining_score(leg, player_id, turns),
            ))
        self._emit_all([('turn', turn.id)], match.tournament_id)
        return turn

    # Darts

    def record_dart(self, turn_id: str, position: int, multiplier: int, target: int) -> DartResult:
        """
        Record one dart of an open turn.

        ``position`` must be the next dart of the turn (1-3). The dart is
        scored against the turn's starting score minus the darts already
        thrown. A bust or checkout closes the turn at once; a checkout also
        wins the leg and may win the match.
        """
        validate_dart(multiplier, target)
        if isinstance(position, bool) or not isinstance(position, int) or not 1 <= position <= DARTS_PER_TURN:
            raise ValidationError(f"Dart position must be 1-{DARTS_PER_TURN}, got {position!r}")

        next_leg = None
        with self.store.batch():
            turn = self.store.require(Turn, turn_id)
            if turn.status != TurnStatus.OPEN:
                raise StateError(f"Turn {turn_id} is closed")
            leg = self.store.require(Leg, turn.leg_id)
            if leg.status != LegStatus.ACTIVE:
                raise StateError(f"Leg {leg.id} is already completed")
            match = self._require_in_progress(leg.match_id)

            darts = self.store.find(Dart, turn_id=turn_id)
            if position != len(darts) + 1:
                raise ValidationError(f"Expected dart {len(darts) + 1} of turn {turn_id}, got {position}")

            current_score = turn.score_before - sum(d.value for d in darts)
            outcome = evaluate_dart(current_score, multiplier, target)
            dart = self.store.insert(Dart(
                turn_id=turn_id,
                position=position,
                multiplier=multiplier,
                target=target,
                value=outcome.value,
                is_bust=outcome.is_bust,
                is_checkout=outcome.is_checkout,
            ))
            changes = [('dart', dart.id)]

            if outcome.is_bust or outcome.is_checkout or position == DARTS_PER_TURN:
                turn = self._close_turn(turn, darts + [dart], outcome)
                changes.append(('turn', turn.id))

            if outcome.is_checkout:
                leg = self._complete_leg(leg, turn, dart)
                changes.append(('leg', leg.id))
                match, next_leg = self._record_leg_win(match, leg)
                changes.append(('match', match.id))
                if next_leg:
                    changes.append(('leg', next_leg.id))

        self._emit_all(changes, match.tournament_id)

        advanced = None
        if match.status == MatchStatus.COMPLETED:
            advanced = self._advance(match)
        return DartResult(dart, turn, leg, match, next_leg, advanced)

    def undo_last_dart(self, turn_id: str) -> Dart:
        """Remove the most recent dart of an open turn."""
        with self.store.batch():
            turn = self.store.require(Turn, turn_id)
            if turn.status != TurnStatus.OPEN:
                raise StateError(f"Turn {turn_id} is closed; only darts of the open turn can be undone")
            darts = self.store.find(Dart, turn_id=turn_id)
            if not darts:
                raise StateError(f"Turn {turn_id} has no dart to undo")
            removed = self.store.delete(Dart, darts[-1].id)
            leg = self.store.require(Leg, turn.leg_id)
            match = self.store.require(Match, leg.match_id)
        logger.info("Undid dart %d of turn %s", removed.position, turn_id)
        self._emit_all([('dart', removed.id), ('turn', turn_id)], match.tournament_id)
        return removed

    def _close_turn(self, turn: Turn, darts: List[Dart], last) -> Turn:
        if last.is_bust:
            score_after, turn_total = turn.score_before, 0
        elif last.is_checkout:
            score_after, turn_total = 0, turn.score_before
        else:
            turn_total = sum(d.value for d in darts)
            score_after = turn.score_before - turn_total
        # The last dart was thrown at the lowest score of the visit.
        attempted = is_checkable(last.score_before)
        return self.store.update(
            Turn, turn.id,
            score_after=score_after,
            turn_total=turn_total,
            is_bust=last.is_bust,
            is_checkout_attempt=attempted,
            is_successful_checkout=last.is_checkout,
            status=TurnStatus.CLOSED,
        )

    # Legs and match results

    def _complete_leg(self, leg: Leg, turn: Turn, dart: Dart) -> Leg:
        turns = self.store.find(Turn, leg_id=leg.id)
        total_darts = sum(len(self.store.find(Dart, turn_id=t.id)) for t in turns)
        final_scores = {
            player_id: 0 if player_id == turn.player_id else remaining_score(leg, player_id, turns)
            for player_id in (leg.player1_id, leg.player2_id)
        }
        leg = self.store.update(
            Leg, leg.id,
            winner_id=turn.player_id,
            player1_final_score=final_scores[leg.player1_id],
            player2_final_score=final_scores[leg.player2_id],
            total_darts_thrown=total_darts,
            checkout_dart=dart.position,
            completed_at=utc_now(),
        )
        logger.info("Leg %d of match %s won by %s in %d darts",
                    leg.leg_number, leg.match_id, leg.winner_id, total_darts)
        return leg

    def _record_leg_win(self, match: Match, leg: Leg):
        slot = match.slot_of(leg.winner_id)
        player1_legs = match.player1_legs_won + (1 if slot == Slot.PLAYER1 else 0)
        player2_legs = match.player2_legs_won + (1 if slot == Slot.PLAYER2 else 0)
        if max(player1_legs, player2_legs) >= match.legs_to_win:
            return self._finish_match(match, leg.winner_id, player1_legs, player2_legs), None
        match = self.store.update(Match, match.id, player1_legs_won=player1_legs,
                                  player2_legs_won=player2_legs)
        return match, self._open_leg(match, leg.leg_number + 1)

    def _finish_match(self, match: Match, winner_id, player1_legs: int, player2_legs: int) -> Match:
        if match.status == MatchStatus.COMPLETED:
            raise StateError(f"Match {match.id} is already completed")
        match = self.store.update(
            Match, match.id,
            winner_id=winner_id,
            player1_legs_won=player1_legs,
            player2_legs_won=player2_legs,
            status=MatchStatus.COMPLETED,
            completed_at=utc_now(),
        )
        logger.info("Match %s won by %s (%d-%d)", match.id, winner_id, player1_legs, player2_legs)
        return match

    def _advance(self, match: Match) -> bool:
        advanced = self.advancement.advance_with_retry(match.id, match.winner_id)
        if not advanced:
            logger.error("Match %s is completed but its winner is waiting for repair", match.id)
        return advanced

    def complete_match(self, match_id: str, winner_id: str,
                       player1_legs_won: Optional[int] = None,
                       player2_legs_won: Optional[int] = None) -> MatchCompletion:
        """
        Record a match result outside of dart scoring (e.g. a result entered
        by an organiser) and advance the winner. Leg tallies default to the
        ones already stored.
        """
        with self.store.batch():
            match = self.store.require(Match, match_id)
            if match.status == MatchStatus.COMPLETED:
                raise StateError(f"Match {match_id} is already completed")
            if not match.has_both_players:
                raise StateError(f"Match {match_id} is still waiting for its players")
            slot = match.slot_of(winner_id)
            if slot is None:
                raise ValidationError(f"{winner_id} is not playing match {match_id}")
            player1_legs = match.player1_legs_won if player1_legs_won is None else player1_legs_won
            player2_legs = match.player2_legs_won if player2_legs_won is None else player2_legs_won
            winner_legs, loser_legs = (player1_legs, player2_legs) if slot == Slot.PLAYER1 \
                else (player2_legs, player1_legs)
            if loser_legs < 0 or winner_legs <= loser_legs or winner_legs > match.legs_to_win:
                raise ValidationError(
                    f"Invalid legs for best of {match.best_of_legs}: {player1_legs}-{player2_legs}")
            changes = self._abandon_play(match)
            match = self._finish_match(match, winner_id, player1_legs, player2_legs)
        self._emit_all(changes + [('match', match.id)], match.tournament_id)
        return MatchCompletion(match, self._advance(match))

    def _abandon_play(self, match: Match):
        """Close the active leg and its open turn without a winner."""
        changes = []
        for leg in self.store.find(Leg, match_id=match.id):
            if leg.status != LegStatus.ACTIVE:
                continue
            for turn in self.store.find(Turn, leg_id=leg.id, status=TurnStatus.OPEN):
                self.store.update(Turn, turn.id, score_after=turn.score_before, turn_total=0,
                                  status=TurnStatus.CLOSED)
                changes.append(('turn', turn.id))
            self.store.update(Leg, leg.id, completed_at=utc_now())
            changes.append(('leg', leg.id))
            logger.info("Leg %d of match %s abandoned for a manual result", leg.leg_number, match.id)
        return changes

    # Read side

    def matches_for_scorer(self, scorer_id: str) -> List[Match]:
        return self.store.find(Match, order_by=('assigned_at',), assigned_to=scorer_id,
                               status__in=[MatchStatus.ASSIGNED, MatchStatus.IN_PROGRESS])

    def get_scoring_state(self, match_id: str) -> dict:
        """Match with its legs, turns and darts, plus each player's remaining score."""
        match = self.store.require(Match, match_id)
        legs = []
        current_leg = current_turn = None
        remaining = None
        for leg in self.store.find(Leg, match_id=match_id):
            turns = self.store.find(Turn, leg_id=leg.id)
            leg_data = leg.to_dict()
            leg_data['turns'] = []
            for turn in turns:
                turn_data = turn.to_dict()
                turn_data['darts'] = [d.to_dict() for d in self.store.find(Dart, turn_id=turn.id)]
                leg_data['turns'].append(turn_data)
                if turn.status == TurnStatus.OPEN:
                    current_turn = turn
            legs.append(leg_data)
            if leg.status == LegStatus.ACTIVE:
                current_leg = leg
                remaining = {
                    'player1': remaining_score(leg, leg.player1_id, turns),
                    'player2': remaining_score(leg, leg.player2_id, turns),
                }
        return {
            'match': match.to_dict(),
            'legs': legs,
            'current_leg_id': current_leg.id if current_leg else None,
            'current_turn_id': current_turn.id if current_turn else None,
            'remaining': remaining,
        }
