"""
urwid front end.

Keys:
  /         regex filter (Enter applies, empty input clears)
  :         command  (:poll <s>, :agg <n>, :field <n>, :swap, :q)
  h         toggle match highlighting
  p         choose a parser pattern
  a         toggle analytics view while parsing
  [ / ]     previous / next parsed field
  s         swap stdout / stderr
  g / G     stick to top / bottom
  Up / Down  recall earlier input while typing after / or :
  arrows    scroll (PgUp / PgDn by a page)
  Esc       leave parser, else clear the filter
  q         quit
"""

from collections import deque

import urwid

from .buffer import Stick
from .errors import LogtapError

# Palette
PALETTE = [
    # chrome
    ('header',   'white,bold',        'dark blue'),
    ('h_dim',    'light blue',        'dark blue'),
    ('tail_on',  'light green,bold',  'dark blue'),
    ('tail_off', 'dark gray',         'dark blue'),
    ('footer',   'black',             'light gray'),
    ('fk',       'dark blue,bold',    'light gray'),
    ('ferr',     'light red,bold',    'light gray'),
    # input bar
    ('fl',       'dark cyan,bold',    'default'),
    ('fe',       'white',             'dark gray'),
    ('fe_f',     'white,bold',        'dark blue'),
    ('fc',       'light gray',        'default'),
    ('fc_f',     'black',             'light gray'),
    # selector overlay
    ('sel_box',  'white',             'dark blue'),
    ('st',       'light gray',        'dark gray'),
    # body
    ('ln',       'light gray',        'default'),
    ('hm',       'black',             'yellow'),
    ('sp_hdr',   'black,bold',        'dark cyan'),
    ('sp_body',  'light gray',        'default'),
]

# SGR colour numbers 30-37 / 90-97 (and 40-47 / 100-107) as urwid colour names
_SGR_COLORS = ['black', 'dark red', 'dark green', 'brown',
               'dark blue', 'dark magenta', 'dark cyan', 'light gray']
_SGR_BRIGHT = ['dark gray', 'light red', 'light green', 'yellow',
               'light blue', 'light magenta', 'light cyan', 'white']

_SCROLL_KEYS = {'up': -1, 'down': 1}

HISTORY_LIMIT = 100


def _extended_color(params: list):
    # 5;n (256 colours) or 2;r;g;b (true colour, reduced to urwid's #rgb)
    if not params:
        return None, params
    if params[0] == 5 and len(params) >= 2:
        return f'h{params[1] & 0xff}', params[2:]
    if params[0] == 2 and len(params) >= 4:
        r, g, b = (min(255, max(0, v)) // 16 for v in params[1:4])
        return f'#{r:x}{g:x}{b:x}', params[4:]
    return None, params[1:]


class _SgrState:
    __slots__ = ('fg', 'bg', 'bold', 'underline', 'reverse')

    def __init__(self):
        self.reset()

    def reset(self):
        self.fg        = None
        self.bg        = None
        self.bold      = False
        self.underline = False
        self.reverse   = False

    def apply(self, seq: str) -> None:
        if not seq.endswith('m'):
            return
        body = seq[2:-1] if seq.startswith('\x1b[') else seq[1:-1]
        try:
            params = [int(p) if p else 0 for p in body.split(';')]
        except ValueError:
            return
        while params:
            p, params = params[0], params[1:]
            if p == 0:
                self.reset()
            elif p == 1:
                self.bold = True
            elif p == 22:
                self.bold = False
            elif p == 4:
                self.underline = True
            elif p == 24:
                self.underline = False
            elif p == 7:
                self.reverse = True
            elif p == 27:
                self.reverse = False
            elif 30 <= p <= 37:
                self.fg = _SGR_COLORS[p - 30]
            elif 90 <= p <= 97:
                self.fg = _SGR_BRIGHT[p - 90]
            elif p == 39:
                self.fg = None
            elif 40 <= p <= 47:
                self.bg = _SGR_COLORS[p - 40]
            elif 100 <= p <= 107:
                self.bg = _SGR_BRIGHT[p - 100]
            elif p == 49:
                self.bg = None
            elif p in (38, 48):
                color, params = _extended_color(params)
                if p == 38:
                    self.fg = color
                else:
                    self.bg = color

    def attr(self):
        if self.fg is None and self.bg is None and not (
                self.bold or self.underline or self.reverse):
            return 'ln'
        fg = self.fg or 'default'
        bg = self.bg or 'default'
        extra = [s for s, on in (('bold', self.bold), ('underline', self.underline),
                                 ('standout', self.reverse)) if on]
        return urwid.AttrSpec(','.join([fg, *extra]), bg, colors=256)


def sgr_markup(styled) -> list:
    """
    urwid markup for a StyledLine: its plain text split at every colour code,
    each piece carrying the attribute the codes before it selected.
    """
    state = _SgrState()
    out   = []
    pos   = 0
    for off, seq in styled.codes:
        if off > pos:
            out.append((state.attr(), styled.plain[pos:off]))
            pos = off
        state.apply(seq)
    if pos < len(styled.plain):
        out.append((state.attr(), styled.plain[pos:]))
    return out or [('ln', '')]


def _hl_spans(tokens: list, spans, attr: str) -> list:
    # Overlay attr on the sorted, disjoint character ranges in spans, one pass.
    out  = []
    todo = deque(spans)
    pos  = 0
    for a, text in tokens:
        tend = pos + len(text)
        cut  = pos
        while todo and todo[0][0] < tend:
            start, end = todo[0]
            start = max(start, cut)
            if start > cut:
                out.append((a, text[cut - pos:start - pos]))
            stop = min(end, tend)
            out.append((attr, text[start - pos:stop - pos]))
            cut = stop
            if end > tend:
                # Span carries on into the next token
                break
            todo.popleft()
        out.append((a, text[cut - pos:]))
        pos = tend
    return [(a, t) for a, t in out if t]


def line_markup(line, spans) -> list:
    return _hl_spans(sgr_markup(line.styled), spans, 'hm')


class LazyListWalker(urwid.ListWalker):
    """
    ListWalker over the engine's rendered rows. Builds urwid.Text widgets only
    for the rows the ListBox is about to paint; a bounded cache keeps the
    recently built ones. Raw and field rows are append-only, so the cache
    survives ticks until the view itself changes.
    """
    CACHE_SIZE = 600

    def __init__(self, engine):
        self.engine = engine
        self._count = 0
        self._focus = 0
        self._key   = None
        self._cache: dict = {}
        self._cache_order: list = []

    def reset(self) -> None:
        eng = self.engine
        key = (eng.mode, eng.channel, eng.filter.generation,
               eng.filter.highlight, eng.field_index, id(eng.parser))
        if key != self._key or eng.mode == 'analytics':
            self._cache.clear()
            self._cache_order.clear()
            self._key = key
        self._count = eng.row_count()
        self._focus = max(0, min(eng.focus(), self._count - 1))
        self._modified()

    @property
    def current(self) -> int:
        return self._focus

    def set_focus(self, pos):
        if 0 <= pos < self._count:
            self._focus = pos
            self._modified()

    def _markup(self, pos):
        eng  = self.engine
        line = eng.row_line(pos)
        if line is not None:
            return line_markup(line, eng.filter.spans(line))
        text = eng.row_text(pos)
        if eng.mode == 'analytics' and not text.startswith(' '):
            return [('sp_hdr', text)]
        return [('sp_body', text)]

    def _build(self, pos):
        if pos in self._cache:
            return self._cache[pos]
        w = urwid.Text(self._markup(pos), wrap='clip')
        if len(self._cache) >= self.CACHE_SIZE:
            evict = self._cache_order.pop(0)
            self._cache.pop(evict, None)
        self._cache[pos] = w
        self._cache_order.append(pos)
        return w

    # ListWalker protocol
    def __len__(self):
        return self._count

    def get_focus(self):
        if not self._count:
            return None, None
        return self._build(self._focus), self._focus

    def get_next(self, pos):
        nxt = pos + 1
        if nxt >= self._count:
            return None, None
        return self._build(nxt), nxt

    def get_prev(self, pos):
        prv = pos - 1
        if prv < 0:
            return None, None
        return self._build(prv), prv


class EngineListBox(urwid.ListBox):
    # Scroll keys move the engine's cursor; the walker follows it.
    def __init__(self, body, scroll_cb):
        super().__init__(body)
        self._scroll_cb = scroll_cb

    def keypress(self, size, key):
        rows = size[1] if len(size) > 1 else 1
        if key in _SCROLL_KEYS:
            self._scroll_cb(_SCROLL_KEYS[key])
            return None
        if key == 'page up':
            self._scroll_cb(-max(1, rows - 1))
            return None
        if key == 'page down':
            self._scroll_cb(max(1, rows - 1))
            return None
        return key

    def mouse_event(self, size, event, button, col, row, focus):
        if event == 'mouse press' and button in (4, 5):
            self._scroll_cb(-3 if button == 4 else 3)
            return True
        return super().mouse_event(size, event, button, col, row, focus)


class PromptEdit(urwid.Edit):
    # Edit that lets Enter/Esc and history keys bubble up to unhandled_input.
    def keypress(self, size, key):
        if key in ('enter', 'esc', 'up', 'down'):
            return key
        return super().keypress(size, key)


class PromptHistory:
    """
    Lines submitted at one prompt, oldest first. Browsing starts just past the
    newest entry; back() walks towards older ones, forward() returns to the
    empty line.
    """

    def __init__(self, limit: int = HISTORY_LIMIT):
        self.entries = deque(maxlen=limit)
        self.pos     = 0

    def add(self, text: str) -> None:
        if text and (not self.entries or self.entries[-1] != text):
            self.entries.append(text)
        self.rewind()

    def rewind(self) -> None:
        self.pos = len(self.entries)

    def back(self) -> str | None:
        if not self.entries:
            return None
        self.pos = max(0, self.pos - 1)
        return self.entries[self.pos]

    def forward(self) -> str | None:
        if self.pos >= len(self.entries):
            return None
        self.pos += 1
        return self.entries[self.pos] if self.pos < len(self.entries) else ''


def make_selector_overlay(behind: urwid.Widget, patterns: list,
                          current, on_select) -> urwid.Overlay:
    items     = []
    focus_idx = 0
    for i, pat in enumerate(patterns):
        suffix = '  ◄ active' if current is not None and pat.name == current.name else ''
        btn    = urwid.Button(f' {pat.name} ({pat.pattern_type.value}, '
                              f'{len(pat.order)} fields){suffix} ')
        urwid.connect_signal(btn, 'click', lambda _b, p=pat: on_select(p))
        items.append(urwid.AttrMap(btn, 'fc', 'fc_f'))
        if suffix:
            focus_idx = i

    items += [
        urwid.Divider('─'),
        urwid.Text([
            ('h_dim', '  ↑↓ '), ('st', 'navigate  '),
            ('fk', 'Enter'), ('st', ' select  '),
            ('fk', 'Esc'),   ('st', ' cancel  '),
        ], align='center'),
    ]

    walker  = urwid.SimpleListWalker(items)
    listbox = urwid.ListBox(walker)
    listbox.focus_position = focus_idx

    box = urwid.AttrMap(
        urwid.LineBox(listbox, title=' ◉ logtap — Select Parser '),
        'sel_box',
    )

    height = min(len(patterns) + 5, 22)
    return urwid.Overlay(
        box, behind,
        'center', ('relative', 55),
        'middle', height,
    )


# Main Application
class LogtapApp:
    def __init__(self, engine, patterns: list, title: str = ''):
        self.engine   = engine
        self.patterns = patterns
        self.title    = title

        self._prompt  = None          # '/' or ':' while the input bar is focused
        self._status  = ''
        self._error   = False
        self._overlay = None
        self._alarm   = None
        self._loop_ref = None
        self.history  = {'/': PromptHistory(), ':': PromptHistory()}

        self._build_ui()
        self.sync_view()

    def _build_ui(self):
        self.w_title  = urwid.Text('', wrap='clip')
        self.w_prompt = urwid.Text(('fl', ' '))
        self.w_edit   = PromptEdit(caption='')
        self.w_input  = urwid.Columns([
            ('pack', self.w_prompt),
            urwid.AttrMap(self.w_edit, 'fe', 'fe_f'),
        ], dividechars=0, focus_column=1)

        self.w_header = urwid.Pile([
            urwid.AttrMap(self.w_title, 'header'),
            self.w_input,
        ])

        self.walker  = LazyListWalker(self.engine)
        self.listbox = EngineListBox(self.walker, self.scroll)

        self.w_footer = urwid.Text('', wrap='clip')
        self.frame = urwid.Frame(
            body       = self.listbox,
            header     = self.w_header,
            footer     = urwid.AttrMap(self.w_footer, 'footer'),
            focus_part = 'body',
        )

    # Refresh
    def _refresh_title(self):
        eng    = self.engine
        follow = eng.stick_mode() is Stick.TAIL
        parser = (f'  [{eng.parser.pattern.name}: '
                  f'{"analytics" if eng.analytics else eng.parser.pattern.order[eng.field_index]}]'
                  if eng.parser is not None else '')
        self.w_title.set_text([
            ('header', ' ◉  logtap  '),
            ('h_dim',  self.title),
            ('header', f'  <{eng.channel.value}>{parser}  '),
            ('tail_on', '● LIVE') if follow else ('tail_off', '○ ────'),
            ('h_dim',  f'  {eng.status_text()}'),
        ])

    def _refresh_footer(self):
        eng   = self.engine
        buf   = eng.buffer
        flt   = eng.filter
        regex = f'  /{flt.expression}/' if flt.active else ''
        hl    = ' hl' if flt.highlight else ''
        status = ([('ferr' if self._error else 'footer', f'  {self._status}')]
                  if self._status else [])
        self.w_footer.set_text([
            ('fk', '  q'),   ('footer', ':quit  '),
            ('fk', '/'),     ('footer', ':regex  '),
            ('fk', ':'),     ('footer', ':cmd  '),
            ('fk', 'h'),     ('footer', ':highlight  '),
            ('fk', 'p'),     ('footer', ':parse  '),
            ('fk', 'a'),     ('footer', ':analytics  '),
            ('fk', 's'),     ('footer', ':swap  '),
            ('fk', 'g'),     ('footer', '/'),
            ('fk', 'G'),     ('footer', ':top/btm  '),
            ('footer', f'  {buf.visible_count():,} / {len(buf):,} lines{regex}{hl}'),
            ('footer', f'  poll {eng.interval() * 1000:.0f}ms'),
            *status,
        ])

    def sync_view(self):
        self.walker.reset()
        if len(self.walker):
            self.listbox.focus_position = self.walker.current
        self._refresh_title()
        self._refresh_footer()

    def set_status(self, text: str, error: bool = False) -> None:
        self._status = text
        self._error  = error
        self._refresh_footer()

    # Loop
    def start(self, loop) -> None:
        self._loop_ref = loop
        self._alarm = loop.set_alarm_in(0, self._on_tick)

    def _on_tick(self, loop, _user_data):
        self._alarm = None
        if self.engine.stopped:
            return
        n = self.engine.tick()
        if n or self.engine.mode == 'analytics':
            self.sync_view()
        else:
            self._refresh_title()
        self._alarm = loop.set_alarm_in(self.engine.interval(), self._on_tick)

    def _nudge(self) -> None:
        # After a key press the next refresh is at most the input budget away
        loop = self._loop_ref
        if loop is None or self._alarm is None:
            return
        loop.remove_alarm(self._alarm)
        self._alarm = loop.set_alarm_in(self.engine.scheduler.wait_budget(), self._on_tick)

    # Actions
    def scroll(self, delta: int) -> None:
        self.engine.scroll(delta)
        self.sync_view()

    def go_top(self):
        self.engine.stick(Stick.HEAD)
        self.sync_view()

    def go_bottom(self):
        self.engine.stick(Stick.TAIL)
        self.sync_view()

    def begin_prompt(self, kind: str) -> None:
        self._prompt = kind
        self.history[kind].rewind()
        self.w_prompt.set_text(('fl', f' {kind}'))
        self.w_edit.set_edit_text(self.engine.filter.expression if kind == '/' else '')
        self.w_edit.set_edit_pos(len(self.w_edit.edit_text))
        self.frame.focus_position = 'header'
        self.w_header.focus_position = 1

    def end_prompt(self) -> None:
        self._prompt = None
        self.w_prompt.set_text(('fl', ' '))
        self.w_edit.set_edit_text('')
        self.frame.focus_position = 'body'

    def recall(self, step: int) -> None:
        hist = self.history[self._prompt]
        text = hist.back() if step < 0 else hist.forward()
        if text is not None:
            self.w_edit.set_edit_text(text)
            self.w_edit.set_edit_pos(len(text))

    def submit_prompt(self) -> None:
        kind = self._prompt
        text = self.w_edit.get_edit_text()
        self.history[kind].add(text)
        self.end_prompt()
        try:
            if kind == '/':
                self.engine.set_regex(text)
                self.set_status(f'filter: /{text}/' if text else 'filter cleared')
            else:
                self.set_status(self.engine.execute(text))
        except (LogtapError, ValueError) as exc:
            self.set_status(str(exc), error=True)
        self.sync_view()

    def toggle_highlight(self):
        on = self.engine.toggle_highlight()
        self.set_status(f'highlight {"on" if on else "off"}')
        self.sync_view()

    def toggle_analytics(self):
        if not self.engine.parsing:
            self.set_status('parser is off (p to choose one)', error=True)
            return
        self.engine.toggle_analytics()
        self.sync_view()

    def cycle_field(self, step: int):
        name = self.engine.cycle_field(step)
        if name is not None:
            self.set_status(f'field: {name}')
            self.sync_view()

    def swap_channel(self):
        channel = self.engine.swap_channel()
        self.set_status(f'channel: {channel.value}')
        self.sync_view()

    def escape(self):
        if self.engine.parsing:
            self.engine.stop_parsing()
            self.set_status('parser off')
        else:
            self.engine.clear_regex()
            self.set_status('')
        self.sync_view()

    def open_parser_selector(self):
        if not self.patterns:
            self.set_status('no parser patterns found', error=True)
            return
        self._overlay = make_selector_overlay(
            self.frame, self.patterns,
            self.engine.parser.pattern if self.engine.parsing else None,
            self._on_pattern_selected)
        self._loop_ref.widget = self._overlay

    def close_overlay(self):
        self._overlay = None
        self._loop_ref.widget = self.frame

    def _on_pattern_selected(self, pattern):
        self.close_overlay()
        try:
            pattern.example_fields()
        except LogtapError as exc:
            # The example is only advisory; parsing still starts
            self.set_status(f'{pattern.name}: {exc}', error=True)
        else:
            self.set_status(f'parsing with {pattern.name}')
        self.engine.start_parsing(pattern)
        self.sync_view()

    def quit(self):
        if self._alarm is not None and self._loop_ref is not None:
            self._loop_ref.remove_alarm(self._alarm)
            self._alarm = None
        self.engine.shutdown()
        raise urwid.ExitMainLoop()

    # Input handler
    def handle_input(self, key: str):
        self._nudge()
        if self._overlay is not None:
            if key == 'esc':
                self.close_overlay()
            return

        if self._prompt is not None:
            if key == 'enter':
                self.submit_prompt()
            elif key == 'esc':
                self.end_prompt()
            elif key in ('up', 'down'):
                self.recall(-1 if key == 'up' else 1)
            return

        if   key in ('q', 'Q'):
            self.quit()
        elif key in ('/', ':'):
            self.begin_prompt(key)
        elif key == 'esc':
            self.escape()
        elif key == 'h':
            self.toggle_highlight()
        elif key == 'p':
            self.open_parser_selector()
        elif key == 'a':
            self.toggle_analytics()
        elif key == '[':
            self.cycle_field(-1)
        elif key == ']':
            self.cycle_field(1)
        elif key == 's':
            self.swap_channel()
        elif key in ('g', 'home'):
            self.go_top()
        elif key in ('G', 'end'):
            self.go_bottom()


def run(engine, patterns: list, title: str = '') -> None:
    app  = LogtapApp(engine, patterns, title)
    loop = urwid.MainLoop(
        app.frame,
        palette         = PALETTE,
        unhandled_input = app.handle_input,
        handle_mouse    = True,
    )
    app.start(loop)
    try:
        loop.run()
    finally:
        engine.shutdown()
