import sys

import pytest

from logtap.aggregators import (
    AggregationMethod,
    AggregatorKind,
    CountAggregator,
    MeanAggregator,
    ModeAggregator,
    NoneAggregator,
    SumAggregator,
    TimestampAggregator,
    build_aggregator,
    extract_number,
    format_number,
)


def test_extract_number_leading():
    assert extract_number('653.12 this is a test') == 653.12


def test_extract_number_first_only():
    assert extract_number('4.123 this is a test 123.4') == 4.123


def test_extract_number_malformed_token():
    assert extract_number('this is a 123.123. test') is None


def test_extract_number_misc():
    assert extract_number('no digits here') is None
    assert extract_number('') is None
    assert extract_number('took -12.5ms') == -12.5
    assert extract_number('1_f64') == 1.0
    assert extract_number('id=42, ok') == 42.0


def test_count_summary_ordering_and_percentages():
    agg = CountAggregator()
    for v in ['INFO', 'WARNING', 'ERROR', 'INFO', 'INFO']:
        agg.update(v)
    assert agg.summary() == ['INFO: 3 (60%)', 'WARNING: 1 (20%)', 'ERROR: 1 (20%)']


def test_count_limit_applies_to_summary_only():
    agg = CountAggregator(limit=1)
    for v in ['a', 'b', 'b']:
        agg.update(v)
    assert agg.summary() == ['b: 2 (67%)']
    agg.set_limit(5)
    assert agg.summary() == ['b: 2 (67%)', 'a: 1 (33%)']
    agg.set_limit(0)
    assert agg.summary() == []


def test_mode_is_frozen_at_one():
    agg = ModeAggregator()
    for v in ['x', 'y', 'y']:
        agg.update(v)
    agg.set_limit(10)
    assert agg.summary() == ['y: 2 (67%)']


def test_sum_skips_values_without_numbers():
    agg = SumAggregator()
    for v in ['1.5 ms', 'n/a', '2']:
        agg.update(v)
    assert agg.summary() == ['Total: 3.5']


def test_mean_counts_only_numeric_samples():
    agg = MeanAggregator()
    for v in ['10', '20', 'n/a']:
        agg.update(v)
    assert agg.count == 2
    assert agg.summary() == ['Mean: 15', 'Count: 2', 'Total: 30']


def test_mean_empty():
    assert MeanAggregator().summary() == ['Mean: 0', 'Count: 0', 'Total: 0']


def test_sum_saturates_instead_of_overflowing():
    agg = SumAggregator()
    agg.update('9' * 400)
    agg.update('9' * 400)
    assert agg.total == sys.float_info.max


def test_datetime_rate_per_second():
    agg = TimestampAggregator(AggregatorKind.DATETIME, '%Y-%m-%d %H:%M:%S')
    for v in ['2024-05-01 10:00:00', '2024-05-01 10:00:02', '2024-05-01 10:00:01']:
        agg.update(v)
    assert agg.rate() == (1.5, 'second')
    assert agg.summary() == [
        'Rate: 1.5 per second',
        'Count: 3',
        'Earliest: 2024-05-01 10:00:00',
        'Latest: 2024-05-01 10:00:02',
    ]


def test_date_normalises_time_of_day():
    agg = TimestampAggregator(AggregatorKind.DATE, '%Y-%m-%d')
    for v in ['2024-01-03', 'garbage', '2024-01-01']:
        agg.update(v)
    assert agg.count == 2
    assert agg.earliest.hour == 0 and agg.latest.hour == 0
    rate, unit = agg.rate()
    assert unit == 'week'
    assert rate == pytest.approx(7.0)
    assert agg.summary()[2:] == ['Earliest: 2024-01-01', 'Latest: 2024-01-03']


def test_time_normalises_date():
    agg = TimestampAggregator(AggregatorKind.TIME, '%H:%M:%S')
    agg.update('10:00:00')
    agg.update('09:00:00')
    assert agg.earliest.date() == agg.latest.date()
    assert agg.summary()[2:] == ['Earliest: 09:00:00', 'Latest: 10:00:00']


def test_timestamp_insufficient_data():
    agg = TimestampAggregator(AggregatorKind.DATE, '%Y-%m-%d')
    assert agg.summary() == ['Rate: insufficient data', 'Count: 0']
    agg.update('2024-01-01')
    agg.update('2024-01-01')
    assert agg.rate() is None
    assert agg.summary()[0] == 'Rate: insufficient data'


def test_none_is_disabled():
    agg = NoneAggregator()
    agg.update('anything')
    assert agg.summary() == ['Disabled']


def test_aggregation_method_parsing():
    assert AggregationMethod.parse('Count').kind is AggregatorKind.COUNT
    assert AggregationMethod.parse({'Date': '%Y'}) == AggregationMethod(AggregatorKind.DATE, '%Y')
    assert AggregationMethod.parse('DateTime:%H:%M') == AggregationMethod(AggregatorKind.DATETIME, '%H:%M')
    with pytest.raises(ValueError):
        AggregationMethod.parse('Median')
    with pytest.raises(ValueError):
        AggregationMethod.parse('Date')
    with pytest.raises(ValueError):
        AggregationMethod.parse(3)


def test_build_aggregator_dispatch():
    assert isinstance(build_aggregator(AggregationMethod(AggregatorKind.COUNT), 3), CountAggregator)
    assert build_aggregator(AggregationMethod(AggregatorKind.COUNT), 3).limit == 3
    assert isinstance(build_aggregator(AggregationMethod(AggregatorKind.MODE)), ModeAggregator)
    assert isinstance(build_aggregator(AggregationMethod(AggregatorKind.MEAN)), MeanAggregator)
    assert isinstance(build_aggregator(AggregationMethod(AggregatorKind.NONE)), NoneAggregator)
    ts = build_aggregator(AggregationMethod(AggregatorKind.TIME, '%H'))
    assert isinstance(ts, TimestampAggregator) and ts.kind is AggregatorKind.TIME


def test_format_number():
    assert format_number(3.0) == '3'
    assert format_number(0.125) == '0.125'
    assert format_number(2 / 3) == '0.6667'
