from __future__ import annotations

import logging
import os
import tomllib
from typing import Any, Dict, Optional

from . import paths
from .search import DEFAULT_MAX_RESULTS


DEFAULT_KEYBOARD_SHORTCUT = "<Super>space"

_MODIFIERS = {"super", "ctrl", "control", "alt", "shift"}


def _read_ui_table(config_path: Optional[str]) -> Dict[str, Any]:
    if config_path is None:
        config_path = paths.get_indexer_config_path()
    if not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "rb") as handle:
            data = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logging.warning("Failed to read config file %s: %s", config_path, exc)
        return {}
    ui = data.get("ui")
    return ui if isinstance(ui, dict) else {}


def read_keyboard_shortcut(config_path: Optional[str] = None) -> Optional[str]:
    """Return ``[ui] keyboard_shortcut`` as written, e.g. ``"Super+Space"``."""
    value = _read_ui_table(config_path).get("keyboard_shortcut")
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def read_max_results(config_path: Optional[str] = None) -> int:
    value = _read_ui_table(config_path).get("max_results")
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return DEFAULT_MAX_RESULTS


def convert_shortcut_format(shortcut: Optional[str]) -> Optional[str]:
    """Convert "Ctrl+Alt+F" into the keybinder form "<Ctrl><Alt>f".

    Modifiers keep their spelling inside angle brackets; the key is lower-cased.
    """
    if not shortcut:
        return None
    parts = [part.strip() for part in shortcut.split("+")]
    if not any(parts):
        return None
    out = []
    for part in parts:
        if part.lower() in _MODIFIERS:
            out.append(f"<{part}>")
        else:
            out.append(part.lower())
    return "".join(out)


def resolve_keyboard_shortcut(config_path: Optional[str] = None) -> str:
    converted = convert_shortcut_format(read_keyboard_shortcut(config_path))
    if converted:
        logging.info("Using configured keyboard shortcut: %s", converted)
        return converted
    logging.info("Using default keyboard shortcut: %s", DEFAULT_KEYBOARD_SHORTCUT)
    return DEFAULT_KEYBOARD_SHORTCUT
