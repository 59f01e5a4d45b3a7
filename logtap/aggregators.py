"""
Streaming aggregators, one per parsed field.

The set of kinds is closed: Count, Mode, Sum, Mean, Date, Time, DateTime and
None. build_aggregator() maps an AggregationMethod to its class. update() is
the only mutator and is O(1); summary() renders the current state as a list
of text lines.
"""

import enum
import math
import sys
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, time

DEFAULT_LIMIT = 5


class AggregatorKind(enum.Enum):
    COUNT    = 'Count'
    MODE     = 'Mode'
    SUM      = 'Sum'
    MEAN     = 'Mean'
    DATE     = 'Date'
    TIME     = 'Time'
    DATETIME = 'DateTime'
    NONE     = 'None'


_TIMESTAMP_KINDS = frozenset({AggregatorKind.DATE, AggregatorKind.TIME,
                              AggregatorKind.DATETIME})


@dataclass(frozen=True)
class AggregationMethod:
    kind:   AggregatorKind
    format: str = ''     # strptime format for Date / Time / DateTime

    def __post_init__(self):
        if self.kind in _TIMESTAMP_KINDS and not self.format:
            raise ValueError(f'{self.kind.value} aggregation needs a format')

    @classmethod
    def parse(cls, value) -> 'AggregationMethod':
        """
        Accepts ``"Count"``, ``"Date:%Y-%m-%d"`` or ``{"Date": "%Y-%m-%d"}``.
        Raises ValueError for anything else.
        """
        if isinstance(value, dict):
            if len(value) != 1:
                raise ValueError(f'expected a single-key mapping, got {value!r}')
            (name, fmt), = value.items()
        elif isinstance(value, str):
            name, _, fmt = value.partition(':')
        else:
            raise ValueError(f'unsupported aggregation method {value!r}')
        try:
            kind = AggregatorKind(name.strip())
        except ValueError:
            raise ValueError(f'unknown aggregation method {name!r}') from None
        if kind not in _TIMESTAMP_KINDS:
            fmt = ''
        return cls(kind, fmt)

    def to_json(self):
        if self.kind in _TIMESTAMP_KINDS:
            return {self.kind.value: self.format}
        return self.kind.value


def extract_number(text: str) -> float | None:
    """
    Return the first number in text, or None.

    A number is a maximal run of digits containing at most one decimal point,
    optionally preceded by a single sign. A second decimal point inside the
    run makes the value invalid: ``"123.123."`` yields None.
    """
    n = len(text)
    i = 0
    while i < n:
        if text[i].isdigit():
            break
        i += 1
    else:
        return None

    start = i
    if start > 0 and text[start - 1] in '+-':
        start -= 1
    seen_point = False
    while i < n:
        ch = text[i]
        if ch.isdigit():
            i += 1
        elif ch == '.':
            if seen_point:
                return None
            seen_point = True
            i += 1
        else:
            break
    try:
        return float(text[start:i])
    except ValueError:
        return None


def format_number(value: float) -> str:
    if math.isfinite(value) and value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return f'{value:.4f}'.rstrip('0').rstrip('.')


def _saturating_add(total: float, value: float) -> float:
    result = total + value
    if math.isinf(result):
        return math.copysign(sys.float_info.max, result)
    return result


class Aggregator:
    kind = AggregatorKind.NONE

    def update(self, value: str) -> None:
        raise NotImplementedError

    def summary(self) -> list:
        raise NotImplementedError

    def set_limit(self, limit: int) -> None:
        # Only frequency tables have a limit
        pass


class NoneAggregator(Aggregator):
    kind = AggregatorKind.NONE

    def update(self, value: str) -> None:
        pass

    def summary(self) -> list:
        return ['Disabled']


class CountAggregator(Aggregator):
    """
    Frequency table keyed by the literal field value. summary() lists the
    top ``limit`` values by descending count; equal counts keep first-seen
    order (Counter preserves insertion order and most_common is stable).
    """
    kind = AggregatorKind.COUNT

    def __init__(self, limit: int = DEFAULT_LIMIT):
        self.counts = Counter()
        self.total  = 0
        self.limit  = limit

    def update(self, value: str) -> None:
        self.counts[value] += 1
        self.total += 1

    def set_limit(self, limit: int) -> None:
        self.limit = max(0, limit)

    def top(self) -> list:
        if self.limit <= 0:
            return []
        return self.counts.most_common(self.limit)

    def summary(self) -> list:
        out = []
        for value, count in self.top():
            pct = count / self.total * 100 if self.total else 0.0
            out.append(f'{value}: {count:,} ({pct:.0f}%)')
        return out


class ModeAggregator(CountAggregator):
    kind = AggregatorKind.MODE

    def __init__(self, limit: int = 1):
        super().__init__(1)

    def set_limit(self, limit: int) -> None:
        # Mode always reports a single value
        pass


class SumAggregator(Aggregator):
    kind = AggregatorKind.SUM

    def __init__(self):
        self.total = 0.0

    def update(self, value: str) -> None:
        number = extract_number(value)
        if number is not None:
            self.total = _saturating_add(self.total, number)

    def summary(self) -> list:
        return [f'Total: {format_number(self.total)}']


class MeanAggregator(Aggregator):
    kind = AggregatorKind.MEAN

    def __init__(self):
        self.count = 0
        self.total = 0.0

    def update(self, value: str) -> None:
        number = extract_number(value)
        if number is None:
            # Not a sample
            return
        self.count += 1
        self.total = _saturating_add(self.total, number)

    def mean(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total / self.count

    def summary(self) -> list:
        return [
            f'Mean: {format_number(self.mean())}',
            f'Count: {self.count:,}',
            f'Total: {format_number(self.total)}',
        ]


# (unit, seconds) from coarsest to finest
_RATE_UNITS = (
    ('week',   7 * 86400),
    ('day',    86400),
    ('hour',   3600),
    ('minute', 60),
    ('second', 1),
)


class TimestampAggregator(Aggregator):
    """
    Earliest / latest timestamp and arrival rate for a field parsed with a
    strptime format. Date values are pinned to midnight and Time values to
    date.min so only the relevant component drives comparisons and the rate.
    Values that do not parse are dropped.
    """

    def __init__(self, kind: AggregatorKind, fmt: str):
        if kind not in _TIMESTAMP_KINDS:
            raise ValueError(f'{kind.value} is not a timestamp aggregation')
        self.kind     = kind
        self.format   = fmt
        self.earliest: datetime | None = None
        self.latest:   datetime | None = None
        self.count    = 0

    def _parse(self, value: str) -> datetime | None:
        try:
            parsed = datetime.strptime(value.strip(), self.format)
        except ValueError:
            return None
        if self.kind is AggregatorKind.DATE:
            return datetime.combine(parsed.date(), time.min)
        if self.kind is AggregatorKind.TIME:
            return datetime.combine(date.min, parsed.time())
        return parsed

    def update(self, value: str) -> None:
        ts = self._parse(value)
        if ts is None:
            return
        if self.earliest is None or ts < self.earliest:
            self.earliest = ts
        if self.latest is None or ts > self.latest:
            self.latest = ts
        self.count += 1

    def rate(self) -> tuple | None:
        """
        Samples per unit as ``(rate, unit)``, or None until two distinct
        timestamps exist. The unit is the finest one whose whole-unit span is
        still smaller than the sample count.
        """
        if self.count < 2 or self.earliest is None or self.latest == self.earliest:
            return None
        span = (self.latest - self.earliest).total_seconds()
        unit, seconds = _RATE_UNITS[0]
        for name, secs in _RATE_UNITS[1:]:
            if span // secs < self.count:
                unit, seconds = name, secs
        return self.count * seconds / span, unit

    def _fmt(self, ts: datetime) -> str:
        if self.kind is AggregatorKind.DATE:
            return ts.date().isoformat()
        if self.kind is AggregatorKind.TIME:
            return ts.time().isoformat()
        return ts.isoformat(sep=' ')

    def summary(self) -> list:
        rate = self.rate()
        if rate is None:
            out = ['Rate: insufficient data']
        else:
            value, unit = rate
            out = [f'Rate: {format_number(value)} per {unit}']
        out.append(f'Count: {self.count:,}')
        if self.earliest is not None:
            out.append(f'Earliest: {self._fmt(self.earliest)}')
            out.append(f'Latest: {self._fmt(self.latest)}')
        return out


def build_aggregator(method: AggregationMethod, limit: int = DEFAULT_LIMIT) -> Aggregator:
    kind = method.kind
    if kind is AggregatorKind.COUNT:
        return CountAggregator(limit)
    if kind is AggregatorKind.MODE:
        return ModeAggregator()
    if kind is AggregatorKind.SUM:
        return SumAggregator()
    if kind is AggregatorKind.MEAN:
        return MeanAggregator()
    if kind in _TIMESTAMP_KINDS:
        return TimestampAggregator(kind, method.format)
    return NoneAggregator()
