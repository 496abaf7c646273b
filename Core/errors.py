"""Exceptions raised by the shell core.

Everything except InvariantError is recovered per command: the session
reports it and keeps running.
"""


class ShellError(Exception):
    """Base class for recoverable shell errors."""


class ParseError(ShellError):
    """Malformed pipeline, bad quoting or a bound exceeded."""


class UnsafeCommandError(ParseError):
    """Command line matched the deny-list."""


class IoError(ShellError):
    """A redirection file could not be opened or created."""


class ProcessError(ShellError):
    """Spawning a process failed."""


class ExecError(ShellError):
    """The program could not be executed."""

    exit_code = 127


class CommandTimeoutError(ShellError, TimeoutError):
    """A command ran past its time budget and was killed."""

    def __init__(self, message, output=""):
        super().__init__(message)
        self.output = output


class SignalDeliveryError(ShellError):
    """kill() failed, usually because the process is already gone."""


class JobControlError(ShellError):
    """fg/jobs misuse or a full job table."""


class MultiWatchError(ShellError):
    """multiWatch could not start."""


class InvariantError(Exception):
    """Internal state is inconsistent. Not recoverable."""
