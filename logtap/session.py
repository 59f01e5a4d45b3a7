"""
Saved sessions: a named list of commands and/or file paths to open together.

    {"commands": ["tail -f /var/log/syslog", "app.log"], "stream_type": "Mixed"}
"""

import enum
import json
import os
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path

from .errors import InvalidSession, LogtapError
from .sources import SourceSpec


class SessionType(enum.Enum):
    COMMAND = 'command'
    FILE    = 'file'
    MIXED   = 'mixed'


@dataclass
class Session:
    commands:    list
    stream_type: SessionType = SessionType.COMMAND

    @classmethod
    def from_dict(cls, name: str, d: dict) -> 'Session':
        if not isinstance(d, dict):
            raise InvalidSession(name, 'definition must be a JSON object')
        commands = d.get('commands')
        if not isinstance(commands, list) or not all(isinstance(c, str) for c in commands):
            raise InvalidSession(name, 'commands must be a list of strings')
        try:
            stype = SessionType(str(d.get('stream_type', 'command')).strip().lower())
        except ValueError:
            raise InvalidSession(name, f'unknown stream_type {d.get("stream_type")!r}') from None
        return cls(list(commands), stype)

    def to_dict(self) -> dict:
        return {'commands': list(self.commands),
                'stream_type': self.stream_type.value.capitalize()}

    def to_specs(self) -> list:
        specs = []
        for entry in self.commands:
            if self.stream_type is SessionType.FILE:
                specs.append(SourceSpec.file(entry))
            elif self.stream_type is SessionType.COMMAND:
                specs.append(SourceSpec.command(shlex.split(entry)))
            elif os.path.exists(entry):
                specs.append(SourceSpec.file(entry))
            else:
                specs.append(SourceSpec.command(shlex.split(entry)))
        return specs


def load_session(path) -> Session:
    path = Path(path)
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        raise InvalidSession(path.stem, str(exc)) from exc
    return Session.from_dict(path.stem, data)


def list_sessions(directory) -> list:
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(fp.stem for fp in directory.glob('*.json'))


def find_session(directory, name: str) -> Session:
    path = Path(directory) / f'{name}.json'
    if not path.exists():
        raise InvalidSession(name, f'no such session in {directory}')
    return load_session(path)


def load_sessions(directory) -> dict:
    # name -> Session for every readable file; bad files are reported and skipped
    out = {}
    for name in list_sessions(directory):
        try:
            out[name] = load_session(Path(directory) / f'{name}.json')
        except LogtapError as e:
            print(f'[logtap warn] {name}.json: {e}', file=sys.stderr)
    return out


def save_session(directory, name: str, session: Session) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f'{name}.json'
    with open(path, 'w') as f:
        json.dump(session.to_dict(), f, indent=2)
    return path


def delete_session(directory, name: str) -> bool:
    try:
        (Path(directory) / f'{name}.json').unlink()
    except FileNotFoundError:
        return False
    return True
