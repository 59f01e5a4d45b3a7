"""
StreamEngine: the single-threaded coordinator.

One tick = drain every live source into the Buffers, feed the poll scheduler,
bring each Buffer's visible view up to date and, when parsing is on, push the
newly visible lines of the rendered channel through the Pattern into the
aggregators. The UI calls tick() from a urwid alarm; tests call it directly.

All runtime commands (regex, highlight, parsing, aggregation limit, poll
override, field selection, channel swap) go through the methods here, so
Buffers, filter state and aggregator state are only ever touched from the
thread that runs tick().
"""

from .aggregators import DEFAULT_LIMIT, build_aggregator
from .buffer import Channel, Stick
from .errors import FieldCountMismatch, InvalidCommand, NoMatch
from .filter import FilterState
from .poll import PollScheduler
from .router import IngestionRouter

SUMMARY_INDENT = '    '


class ParseSession:
    """
    Parsed records and aggregator state for one Pattern over one channel.
    Built fresh whenever parsing starts or its input set is reset; nothing is
    carried over from a previous session.
    """

    def __init__(self, pattern, limit: int = DEFAULT_LIMIT):
        self.pattern = pattern
        self.aggregators = {name: build_aggregator(pattern.methods[name], limit)
                            for name in pattern.order}
        self.records: list = []    # (buffer index, [field values])
        self.skipped = 0
        self._summary: list | None = None

    def feed(self, index: int, line) -> bool:
        self._summary = None
        try:
            values = self.pattern.parse(line.plain)
        except (NoMatch, FieldCountMismatch):
            # Still shown in the raw stream
            self.skipped += 1
            return False
        for name, value in zip(self.pattern.order, values):
            self.aggregators[name].update(value)
        self.records.append((index, values))
        return True

    def set_limit(self, limit: int) -> None:
        for agg in self.aggregators.values():
            agg.set_limit(limit)
        self._summary = None

    def summary_lines(self) -> list:
        # Rebuilt only after new input or a limit change
        if self._summary is not None:
            return self._summary
        out = [f'{len(self.records):,} parsed, {self.skipped:,} skipped']
        for name in self.pattern.order:
            out.append(name)
            out.extend(SUMMARY_INDENT + s for s in self.aggregators[name].summary())
        self._summary = out
        return out


class _RowCursor:
    # Scroll state for the parsed views; same rules as Buffer's cursor.

    def __init__(self):
        self.pos  = 0
        self.mode = Stick.TAIL

    def follow(self, count: int) -> None:
        if self.mode is Stick.TAIL:
            self.pos = max(0, count - 1)
        elif self.mode is Stick.HEAD:
            self.pos = 0
        else:
            self.pos = max(0, min(self.pos, count - 1))

    def scroll(self, delta: int, count: int) -> None:
        self.mode = Stick.FREE
        self.pos  = max(0, min(self.pos + delta, count - 1))


class StreamEngine:

    def __init__(self, router: IngestionRouter | None = None,
                 scheduler: PollScheduler | None = None,
                 agg_limit: int = DEFAULT_LIMIT,
                 case_sensitive: bool = True):
        self.router    = router or IngestionRouter()
        self.scheduler = scheduler or PollScheduler()
        self.filters   = {ch: FilterState(case_sensitive) for ch in self.router.buffers}
        self.channel   = Channel.PRIMARY
        self.parser: ParseSession | None = None
        self.field_index = 0
        self.analytics   = False
        self.agg_limit   = agg_limit
        self.stopped     = False
        self._parse_generation = None
        self._rows = _RowCursor()

    # State

    @property
    def buffer(self):
        return self.router.buffers[self.channel]

    @property
    def filter(self) -> FilterState:
        return self.filters[self.channel]

    @property
    def parsing(self) -> bool:
        return self.parser is not None

    @property
    def mode(self) -> str:
        if self.parser is None:
            return 'raw'
        return 'analytics' if self.analytics else 'field'

    def open_sources(self, specs) -> list:
        # Start every spec; returns [(spec, error)] for the ones that failed.
        return self.router.open_all(specs)

    # Loop

    def tick(self) -> int:
        if self.stopped:
            return 0
        n = self.router.drain()
        self.scheduler.record(n)
        self.refresh()
        return n

    def refresh(self) -> None:
        for channel, buf in self.router.buffers.items():
            new = buf.recompute_visible(self.filters[channel])
            if channel is self.channel:
                self._feed_parser(new)
        self._rows.follow(self.row_count())

    def _feed_parser(self, new: list) -> None:
        if self.parser is None:
            return
        buf = self.buffer
        if self._parse_generation != self.filter.generation:
            # Input set changed: start over from the current visible view
            self.parser = ParseSession(self.parser.pattern, self.agg_limit)
            self._parse_generation = self.filter.generation
            new = buf.visible_indices()
        for idx in new:
            self.parser.feed(idx, buf[idx])

    def interval(self) -> float:
        return self.scheduler.interval()

    # Filter

    def set_regex(self, expr: str) -> None:
        # InvalidRegex propagates with the previous filter still in place
        self.filter.set_pattern(expr)
        self.refresh()

    def clear_regex(self) -> None:
        self.filter.clear()
        self.refresh()

    def toggle_highlight(self) -> bool:
        return self.filter.toggle_highlight()

    # Parsing

    def start_parsing(self, pattern) -> None:
        self.parser = ParseSession(pattern, self.agg_limit)
        self.field_index = 0
        self.analytics   = False
        # Forces a reset from the visible view on the next refresh
        self._parse_generation = None
        self._rows = _RowCursor()
        self.refresh()

    def stop_parsing(self) -> None:
        self.parser = None
        self.field_index = 0
        self.analytics   = False
        self._parse_generation = None
        self._rows = _RowCursor()

    def toggle_analytics(self) -> bool:
        if self.parser is None:
            return False
        self.analytics = not self.analytics
        self._rows = _RowCursor()
        self._rows.follow(self.row_count())
        return self.analytics

    def set_agg_limit(self, limit: int) -> None:
        if limit < 0:
            raise ValueError(f'aggregation limit must be >= 0, got {limit}')
        self.agg_limit = limit
        if self.parser is not None:
            self.parser.set_limit(limit)

    def select_field(self, index: int) -> str:
        if self.parser is None:
            raise InvalidCommand(f':field {index}', 'parsing is off')
        order = self.parser.pattern.order
        if not 0 <= index < len(order):
            raise InvalidCommand(f':field {index}', f'expected 0..{len(order) - 1}')
        self.field_index = index
        return order[index]

    def cycle_field(self, step: int) -> str | None:
        if self.parser is None:
            return None
        n = len(self.parser.pattern.order)
        return self.select_field((self.field_index + step) % n)

    # Channels / polling

    def swap_channel(self) -> Channel:
        self.channel = self.channel.other()
        if self.parser is not None:
            self._parse_generation = None
        self._rows = _RowCursor()
        self.refresh()
        return self.channel

    def set_poll_interval(self, seconds: float) -> None:
        self.scheduler.set_override(seconds)

    # Commands typed after ':'

    def execute(self, text: str) -> str:
        """
        Run one command line and return a short confirmation for the status
        bar. Raises InvalidCommand for anything unknown or malformed.
        """
        cmd = text.strip()
        if cmd.startswith(':'):
            cmd = cmd[1:]
        name, _, arg = cmd.partition(' ')
        arg = arg.strip()

        if name == 'q':
            if self.parser is not None:
                self.stop_parsing()
                return 'parser off'
            self.clear_regex()
            return 'filter cleared'
        if name == 'poll':
            if not arg:
                self.scheduler.clear_override()
                return f'poll: {self.scheduler.mode.value}'
            try:
                self.set_poll_interval(float(arg))
            except ValueError as exc:
                raise InvalidCommand(text, str(exc)) from exc
            return f'poll: every {float(arg):g}s'
        if name == 'agg':
            try:
                self.set_agg_limit(int(arg))
            except ValueError as exc:
                raise InvalidCommand(text, str(exc)) from exc
            return f'aggregation limit: {self.agg_limit}'
        if name == 'field':
            try:
                index = int(arg)
            except ValueError as exc:
                raise InvalidCommand(text, str(exc)) from exc
            return f'field: {self.select_field(index)}'
        if name == 'swap':
            return f'channel: {self.swap_channel().value}'
        raise InvalidCommand(text, 'unknown command')

    # Rendered rows

    def row_count(self) -> int:
        if self.parser is None:
            return self.buffer.visible_count()
        if self.analytics:
            return len(self.parser.summary_lines())
        return len(self.parser.records)

    def row_line(self, pos: int):
        # The buffered Line behind a raw row, None in the parsed views.
        if self.parser is not None:
            return None
        return self.buffer.visible_line(pos)

    def row_text(self, pos: int) -> str:
        """
        Displayed text of row pos: the raw line with highlight markers when
        highlighting is on, the selected field value, or an analytics line.
        """
        if self.parser is None:
            return self.filter.highlighted(self.buffer.visible_line(pos))
        if self.analytics:
            return self.parser.summary_lines()[pos]
        _idx, values = self.parser.records[pos]
        return values[self.field_index]

    def rows(self) -> list:
        return [self.row_text(i) for i in range(self.row_count())]

    def focus(self) -> int:
        if self.parser is None:
            return self.buffer.cursor
        return self._rows.pos

    def scroll(self, delta: int) -> None:
        if self.parser is None:
            self.buffer.scroll(delta)
        else:
            self._rows.scroll(delta, self.row_count())

    def stick(self, mode: Stick) -> None:
        if self.parser is None:
            self.buffer.stick(mode)
        else:
            self._rows.mode = mode
            self._rows.follow(self.row_count())

    def stick_mode(self) -> Stick:
        if self.parser is None:
            return self.buffer.stick_mode
        return self._rows.mode

    # Status

    def status_text(self) -> str:
        parts = [f'{sid}: {status}' for sid, status in self.router.statuses()]
        return '  '.join(parts)

    def shutdown(self) -> None:
        # Terminate every process and release every file before returning
        if self.stopped:
            return
        self.stopped = True
        self.router.close_all()
