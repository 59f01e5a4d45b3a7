"""
Line storage and the derived visible view.

A Buffer holds every Line that arrived on one channel, in arrival order, and
never mutates or removes them. The visible view is a list of indices into
that sequence, recomputed from a FilterState: incrementally while the filter
is unchanged, with a full rescan when it changes. ``None`` stands for "all
lines" so clearing the filter costs nothing.
"""

import enum
from dataclasses import dataclass
from functools import cached_property

from .ansi import StyledLine, strip_color


class Channel(enum.Enum):
    PRIMARY   = 'stdout'
    SECONDARY = 'stderr'

    def other(self) -> 'Channel':
        return Channel.SECONDARY if self is Channel.PRIMARY else Channel.PRIMARY


class Stick(enum.Enum):
    HEAD = 'head'
    TAIL = 'tail'
    FREE = 'free'


@dataclass(frozen=True)
class Line:
    sequence:  int
    source_id: str
    channel:   Channel
    raw:       str

    @cached_property
    def plain(self) -> str:
        # Colour-stripped text, computed once
        return strip_color(self.raw)

    @cached_property
    def styled(self) -> StyledLine:
        return StyledLine.parse(self.raw)


class Buffer:
    # All mutations go through here.

    def __init__(self, channel: Channel = Channel.PRIMARY):
        self.channel   = channel
        self._lines:   list = []
        self._visible: list | None = None   # None: every line is visible
        self._scanned  = 0                  # lines already checked by the filter
        self._filter_generation = None
        self.cursor    = 0                  # position in the visible view
        self.stick_mode = Stick.TAIL

    # Size / access

    def __len__(self) -> int:
        return len(self._lines)

    def __getitem__(self, idx: int) -> Line:
        return self._lines[idx]

    @property
    def lines(self) -> list:
        return self._lines

    def visible_indices(self):
        if self._visible is None:
            return range(len(self._lines))
        return self._visible

    def visible_count(self) -> int:
        if self._visible is None:
            return len(self._lines)
        return len(self._visible)

    def visible_line(self, pos: int) -> Line:
        return self._lines[self.visible_indices()[pos]]

    # Mutation

    def append(self, lines) -> int:
        n = 0
        for line in lines:
            if self._lines and line.sequence <= self._lines[-1].sequence:
                raise ValueError(
                    f'append: sequence {line.sequence} not after {self._lines[-1].sequence}')
            self._lines.append(line)
            n += 1
        if n:
            self._follow()
        return n

    def recompute_visible(self, filter_state) -> list:
        """
        Bring the visible view up to date and return the indices that became
        visible during this call (empty after a full rescan that changed
        nothing new, the whole view after a filter change).
        """
        generation = filter_state.generation
        if not filter_state.active:
            if self._visible is not None:
                self._visible = None
                self._clamp_cursor()
            start = self._scanned
            self._scanned = len(self._lines)
            self._filter_generation = generation
            if start < len(self._lines):
                self._follow()
            return list(range(start, len(self._lines)))

        if generation != self._filter_generation:
            # Filter changed: full rescan
            self._visible = [i for i, line in enumerate(self._lines)
                             if filter_state.matches(line)]
            self._scanned = len(self._lines)
            self._filter_generation = generation
            self._clamp_cursor()
            self._follow()
            return list(self._visible)

        # Same filter: only look at lines appended since the last pass
        new = [i for i in range(self._scanned, len(self._lines))
               if filter_state.matches(self._lines[i])]
        self._scanned = len(self._lines)
        if new:
            self._visible.extend(new)
            self._follow()
        return new

    # Scroll

    def scroll(self, delta: int) -> None:
        self.stick_mode = Stick.FREE
        self.cursor     = self.cursor + delta
        self._clamp_cursor()

    def stick(self, mode: Stick) -> None:
        self.stick_mode = mode
        self._follow()

    def window(self, height: int) -> tuple:
        # (start, end) visible positions to render so the cursor row is shown.
        count = self.visible_count()
        if count == 0 or height <= 0:
            return 0, 0
        if self.stick_mode is Stick.HEAD:
            return 0, min(count, height)
        end   = min(count, self.cursor + 1)
        start = max(0, end - height)
        return start, end

    def _follow(self) -> None:
        if self.stick_mode is Stick.TAIL:
            self.cursor = max(0, self.visible_count() - 1)
        elif self.stick_mode is Stick.HEAD:
            self.cursor = 0

    def _clamp_cursor(self) -> None:
        self.cursor = max(0, min(self.cursor, self.visible_count() - 1))
