"""
logtap — tail, filter, parse and aggregate live output in the terminal
Requires: urwid  →  pip install urwid

Usage:    logtap -e 'python app.py' -e 'tail -f /var/log/syslog'
          logtap -f app.log -f worker.log
          logtap -s mysession

Parser patterns live in $LOGTAP_ROOT/patterns/*.json and sessions in
$LOGTAP_ROOT/sessions/*.json ($LOGTAP_ROOT defaults to ~/.logtap).
"""

import argparse
import shlex
import shutil
import sys

from . import __version__
from .app import run
from .engine import StreamEngine
from .errors import InvalidSession
from .paths import app_root, ensure_dirs, patterns_dir, sessions_dir
from .patterns import load_patterns
from .poll import FASTEST, FIXED, SLOWEST, PollConfig, PollMode, PollScheduler
from .session import find_session
from .sources import SourceSpec


def command_spec(text: str) -> SourceSpec:
    argv = shlex.split(text)
    if not argv:
        raise ValueError('empty command')
    # An unknown executable is left as typed; starting it fails for that source only
    exe = shutil.which(argv[0])
    if exe is not None:
        argv[0] = exe
    return SourceSpec.command(argv)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog='logtap',
        description='logtap — live log tailer, filter and aggregator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__)
    ap.add_argument('-e', '--exec', dest='commands', metavar='CMD', action='append',
                    default=[], help='Command to run and follow (repeatable)')
    ap.add_argument('-f', '--file', dest='files', metavar='PATH', action='append',
                    default=[], help='File to follow (repeatable)')
    ap.add_argument('-s', '--session', metavar='NAME',
                    help='Open the sources of a saved session')
    ap.add_argument('-m', '--mindless', action='store_true',
                    help='Poll at a fixed interval instead of following the input rate')
    ap.add_argument('--poll-min', type=float, default=FASTEST, metavar='SECONDS',
                    help=f'Shortest poll interval (default {FASTEST})')
    ap.add_argument('--poll-max', type=float, default=SLOWEST, metavar='SECONDS',
                    help=f'Longest poll interval (default {SLOWEST})')
    ap.add_argument('--poll-fixed', type=float, default=FIXED, metavar='SECONDS',
                    help=f'Interval used with --mindless (default {FIXED})')
    ap.add_argument('--paths', action='store_true',
                    help='Create the configuration directories if needed, print them and exit')
    ap.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return ap


def collect_specs(args) -> list:
    """
    Source specs from the command line, in order: session entries, then
    commands, then files. Raises ValueError / InvalidSession on bad input.
    """
    specs = []
    if args.session:
        specs.extend(find_session(sessions_dir(), args.session).to_specs())
    specs.extend(command_spec(c) for c in args.commands)
    specs.extend(SourceSpec.file(f) for f in args.files)
    return specs


def main(argv=None):
    ap   = build_parser()
    args = ap.parse_args(argv)

    if args.paths:
        ensure_dirs()
        print(f'root:     {app_root()}')
        print(f'patterns: {patterns_dir()}')
        print(f'sessions: {sessions_dir()}')
        return 0

    try:
        specs = collect_specs(args)
        config = PollConfig(min_interval=args.poll_min, max_interval=args.poll_max,
                            fixed_interval=args.poll_fixed)
    except (ValueError, InvalidSession) as exc:
        sys.exit(f'Error: {exc}')
    if not specs:
        ap.error('nothing to follow: give -e CMD, -f PATH or -s SESSION')

    patterns = load_patterns(patterns_dir())

    mode   = PollMode.MINDLESS if args.mindless else PollMode.SMART
    engine = StreamEngine(scheduler=PollScheduler(mode, config))
    failed = engine.open_sources(specs)
    for spec, exc in failed:
        print(f'[logtap warn] {spec.name}: {exc}', file=sys.stderr)
    if len(failed) == len(specs):
        sys.exit('Error: no source could be started.')

    title = ', '.join(s.id for s in engine.router.sources)
    run(engine, patterns, title=title)
    return 0

