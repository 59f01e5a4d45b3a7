"""
Live regex filter and highlighter.

One FilterState per Buffer. Matching always runs against the colour-stripped
text of a Line; highlighting wraps matched spans of the displayed text and
leaves every pre-existing colour code in place.
"""

import itertools
import re

from .ansi import match_spans, strip_highlight
from .errors import InvalidRegex

_generations = itertools.count(1)


class FilterState:

    def __init__(self, case_sensitive: bool = True):
        self.active         = False
        self.pattern: re.Pattern | None = None
        self.highlight      = False
        self.case_sensitive = case_sensitive
        # Bumped on every change that alters which lines match
        self.generation     = next(_generations)

    @property
    def expression(self) -> str:
        return self.pattern.pattern if self.pattern is not None else ''

    def set_pattern(self, expr: str) -> None:
        # An empty expression (or ':q') clears the filter.
        if not expr or expr == ':q':
            self.clear()
            return
        flags = 0 if self.case_sensitive else re.IGNORECASE
        try:
            compiled = re.compile(expr, flags)
        except re.error as exc:
            # Previous pattern, if any, stays active
            raise InvalidRegex(expr, str(exc)) from exc
        if self.active and self.pattern is not None and self.pattern.pattern == expr \
                and self.pattern.flags == compiled.flags:
            return
        self.pattern    = compiled
        self.active     = True
        self.generation = next(_generations)

    def clear(self) -> None:
        if not self.active and self.pattern is None:
            return
        self.pattern    = None
        self.active     = False
        self.generation = next(_generations)

    def toggle_highlight(self) -> bool:
        self.highlight = not self.highlight
        return self.highlight

    def matches(self, line) -> bool:
        if not self.active:
            return True
        return self.pattern.search(line.plain) is not None

    def spans(self, line) -> list:
        # Character spans (in plain text) to emphasise when displaying line.
        if not (self.active and self.highlight):
            return []
        return match_spans(self.pattern, line.plain)

    def highlighted(self, line) -> str:
        # Displayed form of a line: raw text, with highlight markers when enabled.
        spans = self.spans(line)
        if not spans:
            return line.raw
        return line.styled.render(spans)

    def strip_highlight(self, text: str) -> str:
        return strip_highlight(text)
