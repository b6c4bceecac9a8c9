"""
Tournament, roster and registration management.
"""
import logging
from typing import Dict, List, Optional

from .elimination import SUPPORTED_BRACKET_SIZES
from .errors import StateError, ValidationError
from .models import Entrant, Registration, Tournament, TournamentStatus, utc_now
from .settings import get_default_settings

logger = logging.getLogger(__name__)


def _validate_seed(seed):
    if seed is None:
        return
    if isinstance(seed, bool) or not isinstance(seed, int) or seed < 1:
        raise ValidationError(f"Seed must be a positive integer, got {seed!r}")


class TournamentService:
    def __init__(self, store, notifier=None, settings: Optional[dict] = None):
        self.store = store
        self.notifier = notifier
        self.settings = settings or get_default_settings()

    def _emit(self, entity, entity_id, tournament_id=None):
        if self.notifier:
            self.notifier.emit(entity, entity_id, tournament_id)

    # Roster

    def create_entrant(self, name: str) -> Entrant:
        name = (name or '').strip()
        if not name:
            raise ValidationError("Entrant name is required")
        entrant = self.store.insert(Entrant(name=name))
        self._emit('entrant', entrant.id)
        return entrant

    def list_entrants(self) -> List[Entrant]:
        return self.store.find(Entrant)

    def available_entrants(self, tournament_id: str) -> List[Entrant]:
        """Roster members not yet registered in the tournament."""
        self.store.require(Tournament, tournament_id)
        registered = {r.entrant_id for r in self.store.find(Registration, tournament_id=tournament_id)}
        return [e for e in self.store.find(Entrant) if e.id not in registered]

    # Tournaments

    def create_tournament(self, name: str, best_of_legs: Optional[int] = None,
                          starting_score: Optional[int] = None, created_by=None) -> Tournament:
        name = (name or '').strip()
        if not name:
            raise ValidationError("Tournament name is required")
        best_of_legs = self.settings['best_of_legs'] if best_of_legs is None else best_of_legs
        starting_score = self.settings['starting_score'] if starting_score is None else starting_score
        if isinstance(best_of_legs, bool) or not isinstance(best_of_legs, int) \
                or best_of_legs < 1 or best_of_legs % 2 == 0:
            raise ValidationError(f"Best of legs must be a positive odd number, got {best_of_legs!r}")
        if isinstance(starting_score, bool) or not isinstance(starting_score, int) or starting_score < 2:
            raise ValidationError(f"Starting score must be at least 2, got {starting_score!r}")

        tournament = self.store.insert(Tournament(
            name=name,
            best_of_legs=best_of_legs,
            starting_score=starting_score,
            created_by=created_by,
            created_at=utc_now(),
        ))
        logger.info("Created tournament %s (%s)", tournament.id, name)
        self._emit('tournament', tournament.id, tournament.id)
        return tournament

    def get_tournament(self, tournament_id: str) -> Tournament:
        return self.store.require(Tournament, tournament_id)

    def list_tournaments(self, status: Optional[TournamentStatus] = None) -> List[Tournament]:
        if status is None:
            return self.store.find(Tournament)
        return self.store.find(Tournament, status=status)

    def _require_draft(self, tournament_id: str) -> Tournament:
        tournament = self.store.require(Tournament, tournament_id)
        if tournament.status != TournamentStatus.DRAFT:
            raise StateError(f"Tournament {tournament_id} has started; registrations are closed")
        return tournament

    # Registrations

    def list_registrations(self, tournament_id: str) -> List[Registration]:
        self.store.require(Tournament, tournament_id)
        return self.store.find(Registration, tournament_id=tournament_id)

    def register_entrant(self, tournament_id: str, entrant_id: str, seed: Optional[int] = None) -> Registration:
        _validate_seed(seed)
        with self.store.batch():
            self._require_draft(tournament_id)
            self.store.require(Entrant, entrant_id)
            registrations = self.store.find(Registration, tournament_id=tournament_id)
            if any(r.entrant_id == entrant_id for r in registrations):
                raise ValidationError(f"Entrant {entrant_id} is already registered")
            if seed is not None and any(r.seed == seed for r in registrations):
                raise ValidationError(f"Seed {seed} is already taken")
            if len(registrations) >= SUPPORTED_BRACKET_SIZES[-1]:
                raise ValidationError(f"A tournament takes at most {SUPPORTED_BRACKET_SIZES[-1]} entrants")
            registration = self.store.insert(Registration(
                tournament_id=tournament_id,
                entrant_id=entrant_id,
                seed=seed,
                registered_at=utc_now(),
            ))
        self._emit('registration', registration.id, tournament_id)
        return registration

    def unregister_entrant(self, tournament_id: str, entrant_id: str) -> Registration:
        with self.store.batch():
            self._require_draft(tournament_id)
            registration = self.store.find_one(Registration, tournament_id=tournament_id, entrant_id=entrant_id)
            if registration is None:
                raise ValidationError(f"Entrant {entrant_id} is not registered")
            self.store.delete(Registration, registration.id)
        self._emit('registration', registration.id, tournament_id)
        return registration

    def update_seeds(self, tournament_id: str, seeds: Dict[str, Optional[int]]) -> List[Registration]:
        """Set seeds by entrant id (None clears a seed). All or nothing."""
        for seed in seeds.values():
            _validate_seed(seed)
        with self.store.batch():
            self._require_draft(tournament_id)
            registrations = {r.entrant_id: r for r in self.store.find(Registration, tournament_id=tournament_id)}
            missing = [entrant_id for entrant_id in seeds if entrant_id not in registrations]
            if missing:
                raise ValidationError(f"Not registered: {', '.join(missing)}")

            final_seeds = {entrant_id: r.seed for entrant_id, r in registrations.items()}
            final_seeds.update(seeds)
            taken = [s for s in final_seeds.values() if s is not None]
            if len(taken) != len(set(taken)):
                raise ValidationError("Seeds must be unique within a tournament")

            for entrant_id, seed in seeds.items():
                self.store.update(Registration, registrations[entrant_id].id, seed=seed)
        self._emit('tournament', tournament_id, tournament_id)
        return self.store.find(Registration, tournament_id=tournament_id)
