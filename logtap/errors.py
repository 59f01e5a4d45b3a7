"""
Error taxonomy for logtap.

Construction-time problems (a source that cannot start, a regex the operator
is trying to apply, a broken pattern file) are raised to the caller.
Per-line problems (NoMatch, FieldCountMismatch) are raised by the parser and
caught by the engine, which skips the line for aggregation only.
"""


class LogtapError(Exception):
    pass


class SpawnError(LogtapError):
    # A command source could not be started.
    def __init__(self, source_id: str, reason: str):
        self.source_id = source_id
        self.reason    = reason
        super().__init__(f'Cannot start {source_id!r}: {reason}')


class NotFound(LogtapError):
    # A file source path does not exist.
    def __init__(self, path: str):
        self.path = path
        super().__init__(f'File not found: {path!r}')


class InvalidRegex(LogtapError):
    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason     = reason
        super().__init__(f'{reason}: {expression}')


class NoMatch(LogtapError):
    def __init__(self, line: str):
        self.line = line
        super().__init__(f'Pattern does not match: {line[:80]!r}')


class FieldCountMismatch(LogtapError):
    def __init__(self, found: int, expected: int):
        self.found    = found
        self.expected = expected
        super().__init__(f'Invalid example: {found} matches for {expected} methods')


class InvalidPatternDefinition(LogtapError):
    def __init__(self, name: str, reason: str):
        self.name   = name
        self.reason = reason
        super().__init__(f'Invalid pattern {name!r}: {reason}')


class InvalidCommand(LogtapError):
    def __init__(self, command: str, reason: str = ''):
        self.command = command
        self.reason  = reason
        msg = f'Invalid command: {command}'
        super().__init__(f'{msg} ({reason})' if reason else msg)


class InvalidSession(LogtapError):
    def __init__(self, name: str, reason: str):
        self.name   = name
        self.reason = reason
        super().__init__(f'Invalid session {name!r}: {reason}')
