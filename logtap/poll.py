"""
Poll scheduling.

Decides how long the coordinating loop waits before the next ingest + render
pass. Smart mode follows the recent arrival rate (more lines per tick means a
shorter wait), Mindless mode always waits the same fixed interval. An explicit
override replaces the computed interval without changing the mode.
"""

import enum
import math
from collections import deque
from dataclasses import dataclass

# Fast enough for smooth typing
FASTEST = 0.001
# Ten passes per second when nothing is arriving
SLOWEST = 0.1
# Mindless mode default
FIXED   = 0.05
# Keyboard input is never gated behind more than this
INPUT_BUDGET = 0.02


class PollMode(enum.Enum):
    SMART    = 'smart'
    MINDLESS = 'mindless'


@dataclass
class PollConfig:
    min_interval: float = FASTEST
    max_interval: float = SLOWEST
    fixed_interval: float = FIXED
    window: int = 10
    input_budget: float = INPUT_BUDGET

    def __post_init__(self):
        bounds = (self.min_interval, self.max_interval, self.fixed_interval, self.input_budget)
        if not all(math.isfinite(b) for b in bounds):
            raise ValueError(f'poll intervals must be finite, got {bounds}')
        if self.min_interval <= 0 or self.max_interval < self.min_interval:
            raise ValueError(
                f'poll bounds must satisfy 0 < min <= max, got '
                f'{self.min_interval} / {self.max_interval}')
        if self.fixed_interval <= 0 or self.input_budget <= 0:
            raise ValueError(f'fixed interval and input budget must be positive, got '
                             f'{self.fixed_interval} / {self.input_budget}')
        if self.window < 1:
            raise ValueError(f'window must be at least 1, got {self.window}')


class MeanTrack:
    # Running mean over the last max_size samples.

    def __init__(self, max_size: int):
        self.samples = deque(maxlen=max_size)
        self.total   = 0

    def update(self, item: int) -> None:
        if len(self.samples) == self.samples.maxlen:
            self.total -= self.samples[0]
        self.samples.append(item)
        self.total += item

    def mean(self) -> float:
        if not self.samples:
            return 0.0
        return self.total / len(self.samples)


class PollScheduler:

    def __init__(self, mode: PollMode = PollMode.SMART, config: PollConfig | None = None):
        self.mode     = mode
        self.config   = config or PollConfig()
        self.tracker  = MeanTrack(self.config.window)
        self.override: float | None = None

    def record(self, lines_ingested: int) -> None:
        self.tracker.update(max(0, lines_ingested))

    def rate(self) -> float:
        # Mean lines per tick over the sliding window
        return self.tracker.mean()

    def interval_for_rate(self, rate: float) -> float:
        cfg = self.config
        # Inverse in the rate; 0 lines/tick gives the slowest interval
        raw = cfg.max_interval / (1.0 + max(0.0, rate))
        return max(cfg.min_interval, min(cfg.max_interval, raw))

    def interval(self) -> float:
        if self.override is not None:
            return self.override
        if self.mode is PollMode.MINDLESS:
            return self.config.fixed_interval
        return self.interval_for_rate(self.rate())

    def set_override(self, seconds: float) -> None:
        if not math.isfinite(seconds) or seconds <= 0:
            raise ValueError(f'poll interval must be a positive number of seconds, got {seconds}')
        self.override = seconds

    def clear_override(self) -> None:
        self.override = None

    def wait_budget(self) -> float:
        # How long the loop may block before checking for input again.
        return min(self.interval(), self.config.input_budget)
