from __future__ import annotations

import os

APP_DIR_NAME = "novasearch"
DATABASE_FILENAME = "index.db"
INDEXER_CONFIG_FILENAME = "config.toml"
PANEL_CONFIG_FILENAME = "novasearch.yaml"


def _xdg_dir(env_var: str, *fallback: str) -> str:
    base = os.environ.get(env_var)
    if not base or not os.path.isabs(base):
        base = os.path.join(os.path.expanduser("~"), *fallback)
    return base


def get_data_dir() -> str:
    """~/.local/share/novasearch (honours XDG_DATA_HOME)."""
    return os.path.join(_xdg_dir("XDG_DATA_HOME", ".local", "share"), APP_DIR_NAME)


def get_config_dir() -> str:
    """~/.config/novasearch (honours XDG_CONFIG_HOME)."""
    return os.path.join(_xdg_dir("XDG_CONFIG_HOME", ".config"), APP_DIR_NAME)


def get_database_path() -> str:
    return os.path.join(get_data_dir(), DATABASE_FILENAME)


def get_indexer_config_path() -> str:
    # Written by the indexing daemon; the panel only reads its [ui] table.
    return os.path.join(get_config_dir(), INDEXER_CONFIG_FILENAME)


def get_panel_config_path() -> str:
    return os.path.join(get_config_dir(), PANEL_CONFIG_FILENAME)
