import pytest

from logtap.buffer import Buffer, Channel, Stick
from logtap.filter import FilterState


def test_append_keeps_arrival_order(make_lines):
    buf = Buffer()
    assert buf.append(make_lines(['a', 'b', 'c'])) == 3
    assert [l.raw for l in buf.lines] == ['a', 'b', 'c']
    assert [l.sequence for l in buf.lines] == [1, 2, 3]


def test_append_rejects_out_of_order_sequence(make_lines):
    buf = Buffer()
    buf.append(make_lines(['a', 'b'], start=5))
    with pytest.raises(ValueError):
        buf.append(make_lines(['c'], start=5))


def test_unfiltered_view_is_everything(make_lines):
    buf = Buffer()
    buf.append(make_lines(['a', 'b']))
    new = buf.recompute_visible(FilterState())
    assert new == [0, 1]
    assert list(buf.visible_indices()) == [0, 1]
    assert buf.visible_count() == 2


def test_recompute_is_idempotent(make_lines):
    buf = Buffer()
    buf.append(make_lines(['error 1', 'ok', 'error 2', 'ok']))
    fs = FilterState()
    fs.set_pattern('error')
    buf.recompute_visible(fs)
    first = list(buf.visible_indices())
    assert buf.recompute_visible(fs) == []
    assert list(buf.visible_indices()) == first == [0, 2]


def test_incremental_recompute_only_scans_new_lines(make_lines):
    buf = Buffer()
    fs  = FilterState()
    fs.set_pattern('error')
    buf.append(make_lines(['error a', 'ok']))
    assert buf.recompute_visible(fs) == [0]
    buf.append(make_lines(['ok', 'error b'], start=3))
    assert buf.recompute_visible(fs) == [3]
    assert list(buf.visible_indices()) == [0, 3]


def test_filter_change_triggers_full_rescan(make_lines):
    buf = Buffer()
    fs  = FilterState()
    buf.append(make_lines(['alpha', 'beta', 'gamma']))
    fs.set_pattern('a$')
    assert buf.recompute_visible(fs) == [0, 2]
    fs.set_pattern('^b')
    assert buf.recompute_visible(fs) == [1]
    assert list(buf.visible_indices()) == [1]


def test_visible_indices_strictly_increasing(make_lines):
    buf = Buffer()
    fs  = FilterState()
    fs.set_pattern('[02468]$')
    for start in range(1, 100, 10):
        buf.append(make_lines([f'line {n}' for n in range(start, start + 10)], start=start))
        buf.recompute_visible(fs)
    idx = list(buf.visible_indices())
    assert all(a < b for a, b in zip(idx, idx[1:]))
    assert len(idx) == 50


def test_clear_restores_all_lines(make_lines):
    buf = Buffer()
    fs  = FilterState()
    buf.append(make_lines(['a', 'b', 'c']))
    fs.set_pattern('b')
    buf.recompute_visible(fs)
    assert buf.visible_count() == 1
    fs.clear()
    buf.recompute_visible(fs)
    assert buf.visible_count() == 3
    assert [l.raw for l in buf.lines] == ['a', 'b', 'c']


def test_tail_follows_new_lines(make_lines):
    buf = Buffer()
    fs  = FilterState()
    buf.append(make_lines(['a', 'b']))
    buf.recompute_visible(fs)
    assert buf.stick_mode is Stick.TAIL
    assert buf.cursor == 1
    buf.append(make_lines(['c'], start=3))
    buf.recompute_visible(fs)
    assert buf.cursor == 2


def test_scroll_frees_cursor(make_lines):
    buf = Buffer()
    fs  = FilterState()
    buf.append(make_lines([str(i) for i in range(10)]))
    buf.recompute_visible(fs)
    buf.scroll(-3)
    assert buf.stick_mode is Stick.FREE
    assert buf.cursor == 6
    buf.append(make_lines(['x'], start=11))
    buf.recompute_visible(fs)
    assert buf.cursor == 6
    buf.scroll(-100)
    assert buf.cursor == 0
    buf.scroll(100)
    assert buf.cursor == 10


def test_stick_head_and_window(make_lines):
    buf = Buffer()
    fs  = FilterState()
    buf.append(make_lines([str(i) for i in range(10)]))
    buf.recompute_visible(fs)
    buf.stick(Stick.HEAD)
    assert buf.cursor == 0
    assert buf.window(4) == (0, 4)
    buf.stick(Stick.TAIL)
    assert buf.window(4) == (6, 10)
    assert Buffer().window(4) == (0, 0)


def test_channel_other():
    assert Channel.PRIMARY.other() is Channel.SECONDARY
    assert Channel.SECONDARY.other() is Channel.PRIMARY
