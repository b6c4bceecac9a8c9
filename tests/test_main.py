"""
Tests for the command line entry point and settings loading.
"""
import pytest
import sys
import os

import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from main import load_players, main
from oche.settings import get_default_settings, load_settings, save_settings
from oche.storage import YamlStore
from oche.models import Tournament


def _write(path, data):
    path.write_text(yaml.dump(data, default_flow_style=False))
    return str(path)


class TestLoadPlayers:
    def test_list_of_names(self, tmp_path):
        path = _write(tmp_path / 'players.yaml', ['Ada', 'Bob'])
        assert load_players(path) == [{'name': 'Ada', 'seed': None}, {'name': 'Bob', 'seed': None}]

    def test_players_key_with_seeds(self, tmp_path):
        path = _write(tmp_path / 'players.yaml', {'players': [{'name': 'Ada', 'seed': 2}, 'Bob']})
        assert load_players(path) == [{'name': 'Ada', 'seed': 2}, {'name': 'Bob', 'seed': None}]

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'players.yaml'
        path.write_text('')
        assert load_players(str(path)) == []


class TestMain:
    def test_prints_bracket(self, tmp_path, capsys):
        players = [{'name': f'Player {i}', 'seed': i} for i in range(1, 5)]
        path = _write(tmp_path / 'players.yaml', players)
        assert main([path, '--name', 'Pub Cup']) == 0
        out = capsys.readouterr().out
        assert 'Tournament: Pub Cup' in out
        assert '# Semifinal' in out
        assert '  M1: Player 1 (1) vs Player 4 (4)' in out
        assert '  M2: Player 2 (2) vs Player 3 (3)' in out
        assert '# Final' in out
        assert '  M1: Winner R2-M1 vs Winner R2-M2' in out

    def test_invalid_count(self, tmp_path, capsys):
        path = _write(tmp_path / 'players.yaml', ['Ada', 'Bob', 'Cy'])
        assert main([path]) == 2
        assert 'Invalid entrant count: 3' in capsys.readouterr().err

    def test_invalid_best_of(self, tmp_path, capsys):
        path = _write(tmp_path / 'players.yaml', ['Ada', 'Bob', 'Cy', 'Di'])
        assert main([path, '--best-of', '4']) == 2

    def test_no_players(self, tmp_path, capsys):
        path = _write(tmp_path / 'players.yaml', [])
        assert main([path]) == 1
        assert 'No players loaded' in capsys.readouterr().out

    def test_data_dir_persists(self, tmp_path):
        path = _write(tmp_path / 'players.yaml', ['Ada', 'Bob', 'Cy', 'Di'])
        data_dir = tmp_path / 'data'
        data_dir.mkdir()
        _write(data_dir / 'settings.yaml', {'best_of_legs': 7})
        assert main([path, '--data-dir', str(data_dir)]) == 0
        tournaments = YamlStore(str(data_dir / 'oche.yaml')).find(Tournament)
        assert len(tournaments) == 1
        assert tournaments[0].best_of_legs == 7


class TestSettings:
    def test_defaults_without_file(self, tmp_path):
        assert load_settings(str(tmp_path / 'missing.yaml')) == get_default_settings()
        assert load_settings() == get_default_settings()

    def test_file_overrides_known_keys(self, tmp_path):
        path = _write(tmp_path / 'settings.yaml', {'starting_score': 301, 'colour': 'green'})
        settings = load_settings(path)
        assert settings['starting_score'] == 301
        assert settings['best_of_legs'] == 5
        assert 'colour' not in settings

    def test_bad_yaml_falls_back(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text('starting_score: [301\n')
        assert load_settings(str(path)) == get_default_settings()

    def test_save_and_load(self, tmp_path):
        path = str(tmp_path / 'settings.yaml')
        settings = get_default_settings()
        settings['advancement_retries'] = 5
        save_settings(path, settings)
        assert load_settings(path)['advancement_retries'] == 5
