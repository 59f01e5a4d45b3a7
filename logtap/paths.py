"""
Where saved patterns and sessions live.

$LOGTAP_ROOT if set (relative values are taken from the home directory),
otherwise ~/.logtap.
"""

import os
from pathlib import Path

ROOT_ENV     = 'LOGTAP_ROOT'
DEFAULT_ROOT = '.logtap'


def app_root() -> Path:
    root = Path(os.environ.get(ROOT_ENV) or DEFAULT_ROOT).expanduser()
    if not root.is_absolute():
        root = Path.home() / root
    return root


def patterns_dir() -> Path:
    return app_root() / 'patterns'


def sessions_dir() -> Path:
    return app_root() / 'sessions'


def ensure_dirs() -> None:
    for d in (patterns_dir(), sessions_dir()):
        d.mkdir(parents=True, exist_ok=True)
