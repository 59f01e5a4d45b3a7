import sys
import time

import pytest

from logtap.buffer import Channel, Line
from logtap.sources import SourceKind, SourceSpec


def _wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def python_spec():
    # SourceSpec running a short python snippet with the test interpreter
    def make(code: str) -> SourceSpec:
        return SourceSpec.command([sys.executable, '-c', code])
    return make


@pytest.fixture
def make_lines():
    def make(texts, start=1, source_id='src', channel=Channel.PRIMARY):
        return [Line(start + i, source_id, channel, t) for i, t in enumerate(texts)]
    return make


class ScriptedSource:
    """
    Stand-in for a Source: each poll() returns the next scripted batch of
    (channel, text) pairs; once the script runs out the source reports eof.
    """

    def __init__(self, source_id, batches, linger=False):
        self.id      = source_id
        self.kind    = SourceKind.COMMAND
        self.status  = 'running'
        self.batches = list(batches)
        self.linger  = linger
        self.polls   = 0
        self.closed  = False

    @property
    def alive(self):
        return self.status == 'running'

    def feed(self, *texts, channel=Channel.PRIMARY):
        self.batches.append([(channel, t) for t in texts])

    def poll(self):
        self.polls += 1
        if self.batches:
            return self.batches.pop(0)
        if not self.linger:
            self.status = 'exited 0'
        return []

    def close(self):
        self.closed = True
        if self.status == 'running':
            self.status = 'closed'


@pytest.fixture
def scripted():
    def make(source_id='fake', batches=(), linger=True):
        return ScriptedSource(source_id, [
            [(Channel.PRIMARY, t) if isinstance(t, str) else t for t in batch]
            for batch in batches
        ], linger=linger)
    return make
