"""
Ingestion router: owns the Sources and moves their lines into the Buffers.

drain() is called once per poll tick by the coordinating loop. Every line gets
the next global sequence number, so the order across all sources is the order
in which lines reached the router (not the order they were written at the
origin).
"""

import itertools

from .buffer import Buffer, Channel, Line
from .errors import NotFound, SpawnError
from .sources import Source, SourceSpec, open_source


class IngestionRouter:

    def __init__(self, buffers: dict | None = None):
        self.buffers = buffers or {Channel.PRIMARY: Buffer(Channel.PRIMARY),
                                   Channel.SECONDARY: Buffer(Channel.SECONDARY)}
        self.sources: list = []
        self.failures: list = []     # (spec, error) for sources that never started
        self._seq = itertools.count(1)

    # Sources

    def open(self, spec: SourceSpec) -> Source:
        # Raises SpawnError / NotFound; the router is left unchanged on failure.
        source = open_source(spec, self._unique_id(spec.name))
        self.sources.append(source)
        return source

    def open_all(self, specs) -> list:
        """
        Open every spec. Failures are collected (and returned) instead of
        aborting, so the remaining sources still start.
        """
        failed = []
        for spec in specs:
            try:
                self.open(spec)
            except (SpawnError, NotFound) as exc:
                failed.append((spec, exc))
        self.failures.extend(failed)
        return failed

    def add(self, source: Source) -> None:
        self.sources.append(source)

    def _unique_id(self, name: str) -> str:
        taken = {s.id for s in self.sources}
        if name not in taken:
            return name
        for n in itertools.count(2):
            candidate = f'{name} ({n})'
            if candidate not in taken:
                return candidate

    @property
    def live_sources(self) -> list:
        return [s for s in self.sources if s.alive]

    # Ingestion

    def drain(self) -> int:
        # Poll every live source once; return the number of lines appended.
        total = 0
        for source in self.sources:
            if not source.alive:
                continue
            pending = {Channel.PRIMARY: [], Channel.SECONDARY: []}
            for channel, text in source.poll():
                pending[channel].append(
                    Line(next(self._seq), source.id, channel, text))
            for channel, lines in pending.items():
                if lines:
                    total += self.buffers[channel].append(lines)
        return total

    def close_all(self) -> None:
        for source in self.sources:
            source.close()

    def statuses(self) -> list:
        return [(s.id, s.status) for s in self.sources]
