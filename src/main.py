# Entry point for building a knockout bracket from a roster file

import argparse
import os
import sys

import yaml

from oche.elimination import get_bracket
from oche.errors import TournamentError
from oche.models import Entrant, Registration
from oche.services import Services
from oche.settings import SETTINGS_FILENAME, load_settings
from oche.storage import MemoryStore, YamlStore


def load_players(file_path):
    """Load players from YAML: a list of names or of {name, seed} mappings."""
    with open(file_path, mode='r', encoding='utf-8') as file:
        data = yaml.safe_load(file) or []
    if isinstance(data, dict):
        data = data.get('players', [])
    players = []
    for entry in data:
        if isinstance(entry, str):
            players.append({'name': entry, 'seed': None})
        else:
            players.append({'name': entry['name'], 'seed': entry.get('seed')})
    return players


def create_tournament(services, name, players, best_of_legs=None, starting_score=None):
    tournament = services.tournaments.create_tournament(
        name, best_of_legs=best_of_legs, starting_score=starting_score)
    for player in players:
        entrant = services.tournaments.create_entrant(player['name'])
        services.tournaments.register_entrant(tournament.id, entrant.id, seed=player['seed'])
    return tournament


def describe_slot(store, match, slot_number):
    registration_id = getattr(match, f'player{slot_number}_id')
    if registration_id is None:
        source_id = getattr(match, f'player{slot_number}_from_match_id')
        source = store.get(type(match), source_id)
        return f"Winner R{source.round}-M{source.position}"
    registration = store.get(Registration, registration_id)
    entrant = store.get(Entrant, registration.entrant_id)
    seed = f" ({registration.seed})" if registration.seed else ""
    return f"{entrant.name}{seed}"


def print_bracket(store, bracket):
    first_round = True
    for round_number in sorted(bracket.rounds, reverse=True):
        if not first_round:
            print()
        print(f"# {bracket.round_name(round_number)}")
        for match in bracket.rounds[round_number]:
            print(f"  M{match.position}: {describe_slot(store, match, 1)} vs {describe_slot(store, match, 2)}")
        first_round = False


def main(argv=None):
    parser = argparse.ArgumentParser(description='Build a knockout darts bracket from a roster file.')
    parser.add_argument('players', help='YAML file listing players (name and optional seed)')
    parser.add_argument('--name', default='Knockout', help='Tournament name')
    parser.add_argument('--best-of', type=int, default=None, help='Legs per match (odd number)')
    parser.add_argument('--starting-score', type=int, default=None, help='Starting score of each leg')
    parser.add_argument('--data-dir', default=None,
                        help='Store the tournament in this directory instead of memory')
    args = parser.parse_args(argv)

    players = load_players(args.players)
    if not players:
        print(f"No players loaded. Check {args.players}")
        return 1

    if args.data_dir:
        settings = load_settings(os.path.join(args.data_dir, SETTINGS_FILENAME))
        store = YamlStore(os.path.join(args.data_dir, 'oche.yaml'),
                          lock_timeout=settings['lock_timeout_seconds'])
    else:
        settings = load_settings()
        store = MemoryStore()
    services = Services(store, settings)

    try:
        tournament = create_tournament(services, args.name, players, args.best_of, args.starting_score)
        services.brackets.build(tournament.id)
    except TournamentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(f"Tournament: {tournament.name} ({tournament.id})")
    print_bracket(store, get_bracket(store, tournament.id))
    return 0


if __name__ == '__main__':
    sys.exit(main())
