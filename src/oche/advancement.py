"""
Moving match winners into the next round.

``advance`` follows the feed edge fixed at build time, so calling it again
for the same match writes the same value into the same slot. A failure
never undoes the completed match: the call is retried and, if it keeps
failing, queued until ``repair_pending`` or ``repair_tournament`` runs.
"""
import logging
import threading
from typing import Dict, List, Optional

from .errors import NotFoundError, PropagationFailure
from .models import Match, MatchStatus, Tournament, TournamentStatus, utc_now

logger = logging.getLogger(__name__)


class AdvancementEngine:
    def __init__(self, store, notifier=None, max_attempts: int = 3):
        self.store = store
        self.notifier = notifier
        self.max_attempts = max(1, max_attempts)
        self._pending: Dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def pending(self) -> Dict[str, str]:
        """Match id -> winner id of advancements waiting for repair."""
        with self._lock:
            return dict(self._pending)

    def advance(self, match_id: str, winner_id: str) -> Optional[Match]:
        """
        Put ``winner_id`` into the slot of the downstream match fed by
        ``match_id``. Returns the downstream match, or None when the match
        was the final (the tournament is then marked completed).

        Raises PropagationFailure when the downstream match cannot be found
        or written.
        """
        try:
            match = self.store.get(Match, match_id)
            if match is None:
                raise PropagationFailure(match_id, "completed match not found")

            if match.feeds_into_match_id is None:
                self._complete_tournament(match, winner_id)
                return None

            slot = match.feeds_into_slot
            if slot is None:
                raise PropagationFailure(match_id, "feed edge has no slot")

            downstream = self.store.get(Match, match.feeds_into_match_id)
            if downstream is None:
                raise PropagationFailure(match_id, f"downstream match {match.feeds_into_match_id} not found")
            if downstream.source_for(slot) != match.id:
                raise PropagationFailure(
                    match_id, f"match {downstream.id} does not list it as its {slot.value} source")

            current = getattr(downstream, slot.player_field)
            if current == winner_id:
                return downstream
            if current is not None and downstream.status in (MatchStatus.IN_PROGRESS, MatchStatus.COMPLETED):
                raise PropagationFailure(
                    match_id, f"match {downstream.id} already started with {current} in {slot.value}")

            # Field-level write: the sibling slot is left untouched.
            updated = self.store.update(Match, downstream.id, **{slot.player_field: winner_id})
        except NotFoundError as e:
            raise PropagationFailure(match_id, str(e)) from e
        except OSError as e:
            raise PropagationFailure(match_id, f"storage error: {e}") from e

        logger.info("Advanced %s from match %s into %s of match %s",
                    winner_id, match_id, slot.value, updated.id)
        if self.notifier:
            self.notifier.emit('match', updated.id, updated.tournament_id)
        return updated

    def _complete_tournament(self, final: Match, winner_id: str):
        tournament = self.store.get(Tournament, final.tournament_id)
        if tournament is None:
            raise PropagationFailure(final.id, f"tournament {final.tournament_id} not found")
        if tournament.status == TournamentStatus.COMPLETED and tournament.winner_id == winner_id:
            return
        self.store.update(Tournament, tournament.id, status=TournamentStatus.COMPLETED,
                          winner_id=winner_id, completed_at=utc_now())
        logger.info("Tournament %s won by %s", tournament.id, winner_id)
        if self.notifier:
            self.notifier.emit('tournament', tournament.id, tournament.id)

    def advance_with_retry(self, match_id: str, winner_id: str) -> bool:
        """
        Try ``advance`` up to ``max_attempts`` times. On final failure the
        advancement is queued for repair and False is returned.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.advance(match_id, winner_id)
            except PropagationFailure as e:
                logger.warning("Advancement attempt %d/%d failed: %s", attempt, self.max_attempts, e)
                continue
            with self._lock:
                self._pending.pop(match_id, None)
            return True

        with self._lock:
            self._pending[match_id] = winner_id
        logger.error("Winner %s of match %s was NOT advanced; queued for repair", winner_id, match_id)
        return False

    def repair_pending(self) -> List[str]:
        """Retry every queued advancement. Returns the match ids still pending."""
        for match_id, winner_id in self.pending.items():
            try:
                self.advance(match_id, winner_id)
            except PropagationFailure as e:
                logger.error("Repair of match %s failed: %s", match_id, e)
                continue
            with self._lock:
                self._pending.pop(match_id, None)
        return list(self.pending)

    def repair_tournament(self, tournament_id: str) -> int:
        """
        Re-run advancement for every completed match of a tournament whose
        winner is missing downstream. Returns the number of matches fixed;
        matches that still fail are queued for ``repair_pending``.
        """
        matches = {m.id: m for m in self.store.find(Match, tournament_id=tournament_id)}
        tournament = self.store.require(Tournament, tournament_id)
        repaired = 0
        for match in matches.values():
            if match.status != MatchStatus.COMPLETED or match.winner_id is None:
                continue
            if match.feeds_into_match_id is None:
                if tournament.status == TournamentStatus.COMPLETED:
                    continue
            else:
                downstream = matches.get(match.feeds_into_match_id)
                if downstream is not None and \
                        getattr(downstream, match.feeds_into_slot.player_field) == match.winner_id:
                    continue
            try:
                self.advance(match.id, match.winner_id)
            except PropagationFailure as e:
                logger.error("Repair of match %s failed: %s", match.id, e)
                with self._lock:
                    self._pending[match.id] = match.winner_id
                continue
            with self._lock:
                self._pending.pop(match.id, None)
            repaired += 1
        if repaired:
            logger.info("Repaired %d advancement(s) in tournament %s", repaired, tournament_id)
        return repaired
