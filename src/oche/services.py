"""
Wires the store, notifier and services together.
"""
from typing import Optional

from .advancement import AdvancementEngine
from .elimination import BracketBuilder
from .notifier import ChangeNotifier
from .scoring import ScoringEngine
from .settings import get_default_settings
from .tournaments import TournamentService


class Services:
    def __init__(self, store, settings: Optional[dict] = None, notifier: Optional[ChangeNotifier] = None):
        self.settings = settings or get_default_settings()
        self.store = store
        self.notifier = notifier or ChangeNotifier()
        self.tournaments = TournamentService(store, self.notifier, self.settings)
        self.brackets = BracketBuilder(store, self.notifier)
        self.advancement = AdvancementEngine(store, self.notifier,
                                             max_attempts=self.settings['advancement_retries'])
        self.scoring = ScoringEngine(store, self.advancement, self.notifier)
