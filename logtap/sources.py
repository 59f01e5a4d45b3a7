"""
Live text sources.

A Source wraps one subprocess or one file. Each of its output channels is
fed by its own daemon thread through a queue.SimpleQueue (one producer, one
consumer); the coordinating loop drains them with poll(), which never blocks.

Queue message tuples:
  ('line',  stamp, str)   -- one line of output
  ('error', stamp, str)   -- read failure; the channel is closed after this
  ('eof',   stamp, None)  -- channel closed
"""

import enum
import heapq
import os
import queue as _queue
import signal
import subprocess
import threading
import time
from dataclasses import dataclass

from .buffer import Channel
from .errors import NotFound, SpawnError

FILE_CHUNK     = 64 * 1024
FILE_INTERVAL  = 0.05    # seconds between size checks once a file is drained
TERMINATE_WAIT = 2.0


class SourceKind(enum.Enum):
    COMMAND = 'command'
    FILE    = 'file'


@dataclass(frozen=True)
class SourceSpec:
    kind:   SourceKind
    target: tuple   # argv for commands, (path,) for files

    @classmethod
    def command(cls, argv) -> 'SourceSpec':
        return cls(SourceKind.COMMAND, tuple(argv))

    @classmethod
    def file(cls, path) -> 'SourceSpec':
        return cls(SourceKind.FILE, (os.fspath(path),))

    @property
    def name(self) -> str:
        if self.kind is SourceKind.FILE:
            return os.path.basename(self.target[0]) or self.target[0]
        return ' '.join(self.target)


class Source:
    """
    Base class: owns the per-channel queues and the reader threads.
    Subclasses start threads that call _put().
    """

    def __init__(self, source_id: str, kind: SourceKind):
        self.id       = source_id
        self.kind     = kind
        self.status   = 'running'
        self.error: str | None = None
        self._queues  = {Channel.PRIMARY: _queue.SimpleQueue(),
                         Channel.SECONDARY: _queue.SimpleQueue()}
        self._open    = set()
        self._stop    = threading.Event()
        self._threads: list = []
        self._closed  = False

    # Worker side

    def _start_reader(self, target, channel: Channel, *args) -> None:
        self._open.add(channel)
        t = threading.Thread(target=target, args=(channel, *args), daemon=True,
                             name=f'source-{self.id}-{channel.value}')
        self._threads.append(t)
        t.start()

    def _put(self, channel: Channel, kind: str, payload) -> None:
        self._queues[channel].put((kind, time.monotonic_ns(), payload))

    # Coordinator side

    def poll(self) -> list:
        """
        Return ``[(channel, text), ...]`` for every line available right now,
        in arrival order across both channels. Never blocks.
        """
        batches = []
        for channel, q in self._queues.items():
            batch = []
            while True:
                try:
                    kind, stamp, payload = q.get_nowait()
                except _queue.Empty:
                    break
                if kind == 'line':
                    batch.append((stamp, channel, payload))
                elif kind == 'error':
                    self.error = payload
                    self._open.discard(channel)
                elif kind == 'eof':
                    self._open.discard(channel)
            batches.append(batch)
        if not self._open and self.status == 'running':
            self._on_channels_closed()
        # Each batch is already ordered by stamp
        return [(channel, text) for _stamp, channel, text
                in heapq.merge(*batches, key=lambda item: item[0])]

    @property
    def alive(self) -> bool:
        return self.status == 'running'

    def _on_channels_closed(self) -> None:
        self.status = f'error: {self.error}' if self.error else 'eof'

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        self._release()
        for t in self._threads:
            t.join(timeout=TERMINATE_WAIT)
        if self.status == 'running':
            self.status = 'closed'

    def _release(self) -> None:
        raise NotImplementedError


class CommandSource(Source):

    def __init__(self, source_id: str, argv, cwd: str | None = None):
        super().__init__(source_id, SourceKind.COMMAND)
        self.argv = list(argv)
        if not self.argv:
            raise SpawnError(source_id, 'empty command')
        try:
            self.process = subprocess.Popen(
                self.argv,
                stdin  = subprocess.DEVNULL,
                stdout = subprocess.PIPE,
                stderr = subprocess.PIPE,
                cwd    = cwd,
                # Own process group, so teardown reaches children that inherit the pipes
                start_new_session = True,
            )
        except (OSError, ValueError) as exc:
            raise SpawnError(source_id, str(exc)) from exc
        self._start_reader(self._read_pipe, Channel.PRIMARY,   self.process.stdout)
        self._start_reader(self._read_pipe, Channel.SECONDARY, self.process.stderr)

    def _read_pipe(self, channel: Channel, pipe) -> None:
        try:
            for raw in iter(pipe.readline, b''):
                self._put(channel, 'line',
                          raw.decode('utf-8', errors='replace').rstrip('\r\n'))
        except (OSError, ValueError) as exc:
            # Pipe closed under us during teardown is expected
            if not self._stop.is_set():
                self._put(channel, 'error', str(exc))
        self._put(channel, 'eof', None)

    def _on_channels_closed(self) -> None:
        # Pipes are closed; stay live until the exit code is available
        code = self.process.poll()
        if code is not None:
            self.status = f'exited {code}'

    def _signal_group(self, sig) -> None:
        try:
            os.killpg(self.process.pid, sig)
        except ProcessLookupError:
            # Whole group already gone
            pass

    def _release(self) -> None:
        proc = self.process
        self._signal_group(signal.SIGTERM)
        try:
            proc.wait(timeout=TERMINATE_WAIT)
        except subprocess.TimeoutExpired:
            self._signal_group(signal.SIGKILL)
            proc.wait()
        for t in self._threads:
            t.join(timeout=TERMINATE_WAIT)
        if any(t.is_alive() for t in self._threads):
            self._signal_group(signal.SIGKILL)
            for t in self._threads:
                t.join(timeout=TERMINATE_WAIT)
        for t, pipe in zip(self._threads, (proc.stdout, proc.stderr)):
            # close() blocks while a reader is still inside readline()
            if pipe is not None and not t.is_alive():
                pipe.close()


class FileSource(Source):
    """
    Follow a file from its first byte. New bytes appended later become new
    lines. A partial last line is held back while bytes keep arriving and is
    emitted once the file has been quiet for one interval; the newline that
    completes it later does not produce a second line. If the file shrinks
    (truncation, rotation in place) reading restarts at offset 0.
    """

    def __init__(self, source_id: str, path: str, interval: float = FILE_INTERVAL):
        super().__init__(source_id, SourceKind.FILE)
        # Resolved against the working directory at creation time
        self.path     = os.path.abspath(path)
        self.interval = interval
        try:
            self._fh = open(self.path, 'rb')
        except FileNotFoundError as exc:
            raise NotFound(path) from exc
        except OSError as exc:
            raise SpawnError(source_id, str(exc)) from exc
        self._start_reader(self._follow, Channel.PRIMARY)

    def _follow(self, channel: Channel) -> None:
        fh      = self._fh
        partial = b''
        quiet   = False    # partial survived one idle interval
        flushed = False    # partial was emitted before its newline arrived
        try:
            while not self._stop.is_set():
                chunk = fh.read(FILE_CHUNK)
                if chunk:
                    if flushed:
                        chunk = _drop_newline(chunk)
                    flushed = quiet = False
                    parts   = (partial + chunk).split(b'\n')
                    partial = parts.pop()
                    for raw in parts:
                        self._emit(channel, raw)
                    continue
                try:
                    size = os.stat(self.path).st_size
                except FileNotFoundError:
                    size = None
                if size is not None and size < fh.tell():
                    fh.seek(0)
                    partial = b''
                    flushed = quiet = False
                    continue
                if partial and quiet:
                    self._emit(channel, partial)
                    partial = b''
                    flushed = True
                quiet = bool(partial)
                self._stop.wait(self.interval)
        except (OSError, ValueError) as exc:
            if not self._stop.is_set():
                self._put(channel, 'error', str(exc))
        finally:
            fh.close()
        self._put(channel, 'eof', None)

    def _emit(self, channel: Channel, raw: bytes) -> None:
        self._put(channel, 'line', raw.decode('utf-8', errors='replace').rstrip('\r'))

    def _release(self) -> None:
        # The follower thread closes the handle once it sees the stop flag
        pass


def _drop_newline(chunk: bytes) -> bytes:
    # Strip the line ending that completes an already emitted partial line
    for nl in (b'\r\n', b'\n'):
        if chunk.startswith(nl):
            return chunk[len(nl):]
    return chunk


def open_source(spec: SourceSpec, source_id: str | None = None) -> Source:
    sid = source_id or spec.name
    if spec.kind is SourceKind.COMMAND:
        return CommandSource(sid, spec.target)
    return FileSource(sid, spec.target[0])
