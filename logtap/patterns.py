"""
Parser definitions.

A Pattern decomposes a line into ordered, named fields, either with the
capture groups of a regex or by splitting on a literal delimiter. Each field
is paired with an aggregation method. Definitions live as JSON files in the
patterns directory:

    {
      "pattern": " - ",
      "pattern_type": "Split",
      "example": "2005-03-19 15:10:26,773 - simple_example - CRITICAL - critical message",
      "order": ["Timestamp", "Method", "Level", "Message"],
      "aggregation_methods": {
        "Timestamp": {"DateTime": "%Y-%m-%d %H:%M:%S,%f"},
        "Method": "Count",
        "Level": "Count",
        "Message": "None"
      }
    }
"""

import enum
import json
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .aggregators import AggregationMethod
from .errors import FieldCountMismatch, InvalidPatternDefinition, LogtapError, NoMatch

REQUIRED_KEYS = ('pattern', 'pattern_type', 'example', 'order', 'aggregation_methods')


class PatternType(enum.Enum):
    REGEX = 'regex'
    SPLIT = 'split'

    @classmethod
    def parse(cls, value: str) -> 'PatternType':
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f'unknown pattern_type {value!r}') from None


@dataclass
class Pattern:
    name:         str
    pattern_type: PatternType
    expression:   str
    order:        list
    methods:      dict            # field name -> AggregationMethod
    example:      str = ''
    regex:        re.Pattern | None = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        self.order = list(self.order)
        if not self.order:
            raise InvalidPatternDefinition(self.name, 'order is empty')
        if len(set(self.order)) != len(self.order):
            raise InvalidPatternDefinition(self.name, 'duplicate field names in order')
        if set(self.order) != set(self.methods):
            missing = sorted(set(self.order) - set(self.methods))
            extra   = sorted(set(self.methods) - set(self.order))
            raise InvalidPatternDefinition(
                self.name,
                f'order / aggregation_methods mismatch (missing {missing}, extra {extra})')
        if self.pattern_type is PatternType.REGEX:
            try:
                self.regex = re.compile(self.expression)
            except re.error as exc:
                raise InvalidPatternDefinition(self.name, f'bad regex: {exc}') from exc
        elif not self.expression:
            raise InvalidPatternDefinition(self.name, 'empty split delimiter')

    # Construction

    @classmethod
    def from_dict(cls, name: str, d: dict) -> 'Pattern':
        if not isinstance(d, dict):
            raise InvalidPatternDefinition(name, 'definition must be a JSON object')
        for key in REQUIRED_KEYS:
            if key not in d:
                raise InvalidPatternDefinition(name, f'missing key {key!r}')
        try:
            ptype = PatternType.parse(d['pattern_type'])
        except ValueError as exc:
            raise InvalidPatternDefinition(name, str(exc)) from exc
        order = d['order']
        if not isinstance(order, list) or not all(isinstance(o, str) for o in order):
            raise InvalidPatternDefinition(name, 'order must be a list of names')
        raw_methods = d['aggregation_methods']
        if not isinstance(raw_methods, dict):
            raise InvalidPatternDefinition(name, 'aggregation_methods must be an object')
        methods = {}
        for fname, value in raw_methods.items():
            try:
                methods[fname] = AggregationMethod.parse(value)
            except ValueError as exc:
                raise InvalidPatternDefinition(name, f'{fname}: {exc}') from exc
        return cls(name, ptype, str(d['pattern']), order, methods, str(d['example']))

    def to_dict(self) -> dict:
        return {
            'pattern':      self.expression,
            'pattern_type': self.pattern_type.value.capitalize(),
            'example':      self.example,
            'order':        list(self.order),
            'aggregation_methods': {k: self.methods[k].to_json() for k in self.order},
        }

    # Parsing

    @property
    def field_count(self) -> int:
        return len(self.order)

    def parse(self, text: str) -> list:
        """
        Return the ordered field values of text.

        Raises NoMatch if the regex does not match, FieldCountMismatch if the
        number of groups / segments differs from the number of fields.
        """
        if self.pattern_type is PatternType.REGEX:
            m = self.regex.search(text)
            if m is None:
                raise NoMatch(text)
            # Optional groups that did not take part become empty strings
            values = [g if g is not None else '' for g in m.groups()]
        else:
            values = text.split(self.expression)
        if len(values) != len(self.order):
            raise FieldCountMismatch(len(values), len(self.order))
        return values

    def parse_fields(self, text: str) -> dict:
        return dict(zip(self.order, self.parse(text)))

    def example_fields(self) -> list:
        # Validate the pattern against its own example line.
        return self.parse(self.example)


def parse(line, pattern: Pattern) -> list:
    # Field values for a buffered Line (matched on its colour-stripped text).
    return pattern.parse(line.plain)


# Storage

def load_pattern(path) -> Pattern:
    path = Path(path)
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        raise InvalidPatternDefinition(path.stem, str(exc)) from exc
    return Pattern.from_dict(path.stem, data)


def load_patterns(directory) -> list:
    """
    Every valid pattern in directory, sorted by name. Files that fail to
    load are reported on stderr and skipped.
    """
    directory = Path(directory)
    patterns = []
    if not directory.is_dir():
        return patterns
    for fp in sorted(directory.glob('*.json')):
        try:
            patterns.append(load_pattern(fp))
        except LogtapError as e:
            print(f'[logtap warn] {fp.name}: {e}', file=sys.stderr)
    return patterns


def save_pattern(directory, pattern: Pattern) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f'{pattern.name}.json'
    with open(path, 'w') as f:
        json.dump(pattern.to_dict(), f, indent=2)
    return path


def delete_pattern(directory, name: str) -> bool:
    path = Path(directory) / f'{name}.json'
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
