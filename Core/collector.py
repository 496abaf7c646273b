"""
Output collection for a running foreground command.

drain() never blocks on the capture pipe: every iteration checks for
Interrupt/Suspend, reads what is available, polls the children and then
sleeps for a short interval so the caller's event loop stays responsive.
"""

import logging
import os
import signal
import time
from dataclasses import dataclass

from config import OUTPUT_LIMIT, POLL_INTERVAL, READ_CHUNK
from Core.errors import CommandTimeoutError, JobControlError
from Core.executor import check_process, kill_all
from Core.signals import CancelEvent

log = logging.getLogger(__name__)

# Processes get this long to exit after an interrupt before SIGKILL
INTERRUPT_GRACE = 0.5


class OutputBuffer:
    """Bounded byte accumulator. Bytes past the limit are dropped."""

    def __init__(self, limit=OUTPUT_LIMIT):
        self.limit = limit
        self.data = bytearray()
        self.truncated = False

    def feed(self, chunk):
        if self.truncated:
            return
        room = self.limit - len(self.data)
        if len(chunk) > room:
            self.data.extend(chunk[:room])
            self.truncated = True
            log.warning("output truncated at %d bytes", self.limit)
        else:
            self.data.extend(chunk)

    def text(self):
        return self.data.decode(errors="replace")


def read_available(fd, buffer, chunk=READ_CHUNK):
    """
    Read whatever is ready on a non-blocking fd into buffer.
    Returns: True on EOF
    """
    while True:
        try:
            data = os.read(fd, chunk)
        except BlockingIOError:
            return False
        except OSError as e:
            log.warning("read from fd %d failed: %s", fd, e)
            return True
        if not data:
            return True
        buffer.feed(data)


@dataclass
class CapturedResult:
    output: str = ""
    returncode: int = 0
    truncated: bool = False
    interrupted: bool = False
    job: object = None

    @property
    def exit_code(self):
        if self.returncode < 0:
            return 128 - self.returncode
        return self.returncode

    def message(self):
        """
        Text to show for this result: the output if there is any, otherwise
        a note about a failing exit code or a fatal signal.
        """
        if self.job is not None:
            prefix = self.output.rstrip("\n") + "\n" if self.output else ""
            return f"{prefix}[{self.job.job_id}]+ Stopped\t{self.job.command}"
        text = self.output
        if self.truncated:
            text = text.rstrip("\n") + "\n[Warning: output truncated]"
        if text:
            return text.rstrip("\n")
        if self.returncode > 0:
            return f"Process exited with code {self.returncode}"
        if self.returncode < 0:
            return f"Process terminated by signal {_signal_name(-self.returncode)}"
        return ""


def _signal_name(signum):
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


def _finish_interrupt(launch, grace, poll_interval):
    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        if all(check_process(p) is not None for p in launch.procs):
            return
        time.sleep(poll_interval)
    kill_all(launch.procs)


def drain(launch, jobs, cancel, timeout, limit=OUTPUT_LIMIT, chunk=READ_CHUNK,
          poll_interval=POLL_INTERVAL, on_notice=None):
    """
    Collect the output of the foreground launch until its processes exit.

    Interrupt sends SIGINT and stops collecting. Suspend stops the processes
    and turns them into a job; the capture pipe stays open on the job so fg
    can keep reading it. Running past timeout kills everything and raises
    CommandTimeoutError.
    Returns: CapturedResult
    """
    buffer = OutputBuffer(limit)
    result = CapturedResult()
    deadline = time.monotonic() + timeout
    eof = False

    try:
        while True:
            event = cancel.poll()
            if event is CancelEvent.INTERRUPT:
                jobs.interrupt()
                if not eof:
                    read_available(launch.fd, buffer, chunk)
                _finish_interrupt(launch, INTERRUPT_GRACE, poll_interval)
                result.interrupted = True
                break
            if event is CancelEvent.SUSPEND:
                try:
                    result.job = jobs.suspend()
                except JobControlError as e:
                    if on_notice:
                        on_notice(str(e))
                else:
                    # The job owns the descriptor now
                    result.output = buffer.text()
                    result.truncated = buffer.truncated
                    result.returncode = -signal.SIGTSTP
                    return result

            if not eof:
                eof = read_available(launch.fd, buffer, chunk)

            states = [check_process(p) for p in launch.procs]
            if all(s is not None for s in states):
                break

            if time.monotonic() >= deadline:
                kill_all(launch.procs)
                read_available(launch.fd, buffer, chunk)
                raise CommandTimeoutError(
                    f"command timed out after {timeout:g}s and was killed: {launch.text}",
                    output=buffer.text()
                )

            time.sleep(poll_interval)

        if not eof:
            read_available(launch.fd, buffer, chunk)
        # Reap anything left so no zombies remain
        for p in launch.procs:
            check_process(p, flags=0)
    finally:
        jobs.clear_foreground(launch)
        if result.job is None:
            launch.close_fd()

    result.output = buffer.text()
    result.truncated = buffer.truncated
    result.returncode = launch.procs[-1].returncode
    return result
