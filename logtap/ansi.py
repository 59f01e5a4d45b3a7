"""
Colour-code aware text model.

Source lines may already carry ANSI colour sequences. Matching is done on the
plain text; highlighting is a span operation on a StyledLine (plain text plus
the offsets at which each original code sat), serialised back to raw text only
when rendering. The original codes are never dropped, moved past one another
or followed by a reset, so formatting outside a matched span is untouched.
"""

import re

ANSI_COLOR_RE = re.compile(r'(?:\x9B|\x1B\[)[0-?]*[ -/]*[@-~]')

# Reverse video on/off. 27 only clears reverse, not colours or bold.
HIGHLIGHT_ON  = '\x1b[7m'
HIGHLIGHT_OFF = '\x1b[27m'


def strip_color(text: str) -> str:
    return ANSI_COLOR_RE.sub('', text)


def visible_length(text: str) -> int:
    return len(strip_color(text))


class StyledLine:
    """
    A raw line split into ``plain`` text and ``codes``, a list of
    ``(offset, sequence)`` pairs where offset indexes into ``plain``.
    ``StyledLine.parse(raw).render() == raw`` for every input.
    """
    __slots__ = ('plain', 'codes')

    def __init__(self, plain: str, codes: list):
        self.plain = plain
        self.codes = codes

    @classmethod
    def parse(cls, raw: str) -> 'StyledLine':
        parts = []
        codes = []
        pos   = 0
        size  = 0
        for m in ANSI_COLOR_RE.finditer(raw):
            chunk = raw[pos:m.start()]
            parts.append(chunk)
            size += len(chunk)
            codes.append((size, m.group(0)))
            pos = m.end()
        parts.append(raw[pos:])
        return cls(''.join(parts), codes)

    def render(self, spans=()) -> str:
        # At one offset: close a span, then original codes, then open a span.
        events = [(off, 1, code) for off, code in self.codes]
        for start, end in spans:
            if start < end:
                events.append((start, 2, HIGHLIGHT_ON))
                events.append((end,   0, HIGHLIGHT_OFF))
        # sort() is stable, so codes sharing an offset keep their order
        events.sort(key=lambda e: (e[0], e[1]))

        out = []
        pos = 0
        for off, _order, seq in events:
            if off > pos:
                out.append(self.plain[pos:off])
                pos = off
            out.append(seq)
        out.append(self.plain[pos:])
        return ''.join(out)

    def __repr__(self):
        return f'StyledLine({self.plain!r}, {self.codes!r})'


def match_spans(pattern: re.Pattern, plain: str) -> list:
    # Non-empty (start, end) spans of every match in plain text.
    return [m.span() for m in pattern.finditer(plain) if m.end() > m.start()]


def highlight(raw: str, pattern: re.Pattern) -> str:
    line = StyledLine.parse(raw)
    return line.render(match_spans(pattern, line.plain))


def strip_highlight(text: str) -> str:
    return text.replace(HIGHLIGHT_ON, '').replace(HIGHLIGHT_OFF, '')
