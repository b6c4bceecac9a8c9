"""
Settings for the tournament core, read from a YAML file over defaults.
"""
import os
import logging

import yaml

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = 'settings.yaml'


def get_default_settings() -> dict:
    """Return default settings used when no settings file exists."""
    return {
        'best_of_legs': 5,
        'starting_score': 501,
        'advancement_retries': 3,
        'lock_timeout_seconds': 10,
    }


def load_settings(path: str = None) -> dict:
    """Load settings from YAML, filling in defaults for missing keys."""
    settings = get_default_settings()
    if not path or not os.path.exists(path):
        return settings
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.warning(f'Failed to parse {path}: {e}')
        return settings
    if data:
        settings.update({key: value for key, value in data.items() if key in settings})
    return settings


def save_settings(path: str, settings: dict):
    """Save settings to YAML file."""
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(settings, f, default_flow_style=False)
