import pytest

from logtap.ansi import HIGHLIGHT_ON
from logtap.buffer import Channel, Stick
from logtap.engine import StreamEngine
from logtap.errors import InvalidCommand, InvalidRegex
from logtap.patterns import Pattern
from logtap.poll import PollMode

LEVELS = Pattern.from_dict('levels', {
    'pattern': ' - ',
    'pattern_type': 'split',
    'example': 'svc - INFO - 12ms',
    'order': ['Service', 'Level', 'Took'],
    'aggregation_methods': {'Service': 'Count', 'Level': 'Count', 'Took': 'Mean'},
})


def _engine(scripted, *batches):
    eng = StreamEngine()
    src = scripted('feed', batches)
    eng.router.add(src)
    return eng, src


def test_tick_ingests_and_renders(scripted):
    eng, _src = _engine(scripted, ['one', 'two'])
    assert eng.tick() == 2
    assert eng.rows() == ['one', 'two']
    assert eng.focus() == 1


def test_regex_filters_rows(scripted):
    eng, src = _engine(scripted, ['GET /a', 'POST /b', 'GET /c'])
    eng.tick()
    eng.set_regex('^GET')
    assert eng.rows() == ['GET /a', 'GET /c']
    src.feed('GET /d', 'PUT /e')
    eng.tick()
    assert eng.rows() == ['GET /a', 'GET /c', 'GET /d']
    eng.clear_regex()
    assert len(eng.rows()) == 5


def test_invalid_regex_surfaces_and_keeps_filter(scripted):
    eng, _src = _engine(scripted, ['a', 'b'])
    eng.tick()
    eng.set_regex('a')
    with pytest.raises(InvalidRegex):
        eng.set_regex('(')
    assert eng.rows() == ['a']


def test_highlight_rows(scripted):
    eng, _src = _engine(scripted, ['disk full'])
    eng.tick()
    eng.set_regex('full')
    assert eng.toggle_highlight() is True
    assert HIGHLIGHT_ON in eng.row_text(0)
    eng.toggle_highlight()
    assert eng.row_text(0) == 'disk full'


def test_parsing_skips_mismatches_but_keeps_them_visible(scripted):
    eng, _src = _engine(scripted, ['api - INFO - 10ms', 'garbage', 'db - ERROR - 30ms'])
    eng.tick()
    eng.start_parsing(LEVELS)
    parser = eng.parser
    assert len(parser.records) == 2
    assert parser.skipped == 1
    assert parser.aggregators['Level'].summary() == ['INFO: 1 (50%)', 'ERROR: 1 (50%)']
    assert parser.aggregators['Took'].summary() == ['Mean: 20', 'Count: 2', 'Total: 40']
    assert eng.buffer.visible_count() == 3
    assert eng.rows() == ['api', 'db']


def test_parsing_is_incremental_without_double_counting(scripted):
    eng, src = _engine(scripted, ['a - INFO - 1'])
    eng.tick()
    eng.start_parsing(LEVELS)
    for _ in range(5):
        eng.tick()
    src.feed('b - INFO - 2')
    eng.tick()
    eng.tick()
    assert eng.parser.aggregators['Level'].counts['INFO'] == 2
    assert eng.parser.aggregators['Took'].count == 2


def test_parsing_only_covers_visible_lines(scripted):
    eng, src = _engine(scripted, ['a - INFO - 1', 'b - WARN - 2'])
    eng.tick()
    eng.set_regex('INFO')
    eng.start_parsing(LEVELS)
    assert eng.parser.aggregators['Level'].summary() == ['INFO: 1 (100%)']
    src.feed('c - WARN - 3', 'd - INFO - 4')
    eng.tick()
    assert eng.parser.aggregators['Level'].summary() == ['INFO: 2 (100%)']


def test_filter_change_reparses_visible_set(scripted):
    eng, _src = _engine(scripted, ['a - INFO - 1', 'b - WARN - 2', 'c - WARN - 3'])
    eng.tick()
    eng.start_parsing(LEVELS)
    assert eng.parser.aggregators['Level'].total == 3
    eng.set_regex('WARN')
    assert eng.parser.aggregators['Level'].summary() == ['WARN: 2 (100%)']


def test_stop_parsing_discards_state(scripted):
    eng, _src = _engine(scripted, ['a - INFO - 1'])
    eng.tick()
    eng.start_parsing(LEVELS)
    eng.stop_parsing()
    assert eng.parser is None
    assert eng.mode == 'raw'
    eng.start_parsing(LEVELS)
    assert eng.parser.aggregators['Level'].total == 1


def test_analytics_layout(scripted):
    eng, _src = _engine(scripted, ['a - INFO - 1', 'b - INFO - 3'])
    eng.tick()
    eng.start_parsing(LEVELS)
    assert eng.toggle_analytics() is True
    rows = eng.rows()
    assert rows[0] == '2 parsed, 0 skipped'
    assert rows[1:4] == ['Service', '    a: 1 (50%)', '    b: 1 (50%)']
    assert rows[4:6] == ['Level', '    INFO: 2 (100%)']
    assert rows[6:] == ['Took', '    Mean: 2', '    Count: 2', '    Total: 4']


def test_commands(scripted):
    eng, _src = _engine(scripted, ['a - INFO - 1', 'b - WARN - 2'])
    eng.tick()
    eng.start_parsing(LEVELS)

    eng.execute(':agg 1')
    assert eng.parser.aggregators['Level'].summary() == ['INFO: 1 (50%)']

    eng.execute(':field 1')
    assert eng.rows() == ['INFO', 'WARN']

    eng.execute(':poll 0.5')
    assert eng.interval() == 0.5
    assert eng.scheduler.mode is PollMode.SMART
    eng.execute(':poll')
    assert eng.scheduler.override is None

    assert eng.execute(':q') == 'parser off'
    assert eng.parser is None


@pytest.mark.parametrize('command', [':poll abc', ':poll -1', ':poll nan', ':poll inf',
                                     ':agg x', ':agg -2',
                                     ':field 9', ':field one', ':bogus', ''])
def test_bad_commands(scripted, command):
    eng, _src = _engine(scripted, ['a - INFO - 1'])
    eng.tick()
    eng.start_parsing(LEVELS)
    with pytest.raises(InvalidCommand):
        eng.execute(command)


def test_q_clears_regex_when_not_parsing(scripted):
    eng, _src = _engine(scripted, ['a', 'b'])
    eng.tick()
    eng.set_regex('a')
    eng.execute(':q')
    assert not eng.filter.active
    assert eng.rows() == ['a', 'b']


def test_swap_channel(scripted):
    eng, _src = _engine(scripted, [(Channel.PRIMARY, 'out'), (Channel.SECONDARY, 'err')])
    eng.tick()
    assert eng.rows() == ['out']
    assert eng.execute(':swap') == 'channel: stderr'
    assert eng.channel is Channel.SECONDARY
    assert eng.rows() == ['err']
    eng.swap_channel()
    assert eng.rows() == ['out']


def test_scroll_and_stick(scripted):
    eng, src = _engine(scripted, [str(i) for i in range(20)])
    eng.tick()
    eng.scroll(-5)
    assert eng.focus() == 14
    assert eng.stick_mode() is Stick.FREE
    src.feed('20')
    eng.tick()
    assert eng.focus() == 14
    eng.stick(Stick.TAIL)
    assert eng.focus() == 20
    eng.stick(Stick.HEAD)
    assert eng.focus() == 0


def test_source_exit_keeps_lines(scripted):
    eng = StreamEngine()
    src = scripted('short', [['x', 'y']], linger=False)
    eng.router.add(src)
    for _ in range(3):
        eng.tick()
    assert not src.alive
    assert eng.rows() == ['x', 'y']
    assert 'short: exited 0' in eng.status_text()


def test_shutdown_closes_sources(scripted):
    eng, src = _engine(scripted, ['a'])
    eng.tick()
    eng.shutdown()
    assert src.closed
    assert eng.tick() == 0
    eng.shutdown()


def test_analytics_summary_rebuilt_only_after_new_input(scripted):
    eng, src = _engine(scripted, ['a - INFO - 1'])
    eng.tick()
    eng.start_parsing(LEVELS)
    eng.toggle_analytics()
    first = eng.parser.summary_lines()
    eng.rows()
    assert eng.parser.summary_lines() is first
    src.feed('b - WARN - 2')
    eng.tick()
    assert eng.parser.summary_lines() is not first
    assert eng.rows()[0] == '2 parsed, 0 skipped'
