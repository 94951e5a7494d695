"""Color output support for the pkengine CLI.

Colors are used for package states and messages:
  - Red: errors, packages being removed
  - Yellow: warnings
  - Green: success, installed packages and packages being installed
  - Blue: available packages, updates
"""

import os
import sys

# ANSI color codes
_CODES = {
    'reset': '\033[0m',
    'bold': '\033[1m',
    'dim': '\033[2m',
    'red': '\033[91m',
    'green': '\033[92m',
    'yellow': '\033[93m',
    'blue': '\033[94m',
}

# Package state (Info value) -> color
_STATE_COLORS = {
    'installed': 'green',
    'available': 'blue',
    'normal': 'blue',
    'installing': 'green',
    'removing': 'red',
    'updating': 'blue',
}

_colors_enabled = True


def init(nocolor: bool = False):
    """Enable colors unless disabled, NO_COLOR is set or stdout is not a tty."""
    global _colors_enabled
    _colors_enabled = not (nocolor or os.environ.get('NO_COLOR') or not sys.stdout.isatty())


def enabled() -> bool:
    return _colors_enabled


def _wrap(text: str, color: str) -> str:
    if not _colors_enabled or color not in _CODES:
        return text
    return f"{_CODES[color]}{text}{_CODES['reset']}"


def error(text: str) -> str:
    return _wrap(text, 'red')


def warning(text: str) -> str:
    return _wrap(text, 'yellow')


def success(text: str) -> str:
    return _wrap(text, 'green')


def dim(text: str) -> str:
    return _wrap(text, 'dim')


def bold(text: str) -> str:
    return _wrap(text, 'bold')


def state(name: str, text: str) -> str:
    """Color text according to a package state name ('installed', ...)."""
    return _wrap(text, _STATE_COLORS.get(name, ''))
