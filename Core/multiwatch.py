"""
multiWatch: run several commands side by side and stream their output.

Each command writes into its own temp file in the working directory; the
supervisor polls those files and reaps the children until all of them are
done, the user interrupts, or nothing has happened for a while after the
last one finished.
"""

import logging
import os
import select
import signal
import subprocess
import time
from dataclasses import dataclass

from config import READ_CHUNK, WATCH_GRACE, WATCH_IDLE_TIMEOUT, WATCH_POLL_MS
from Core.errors import ExecError, MultiWatchError, ParseError, ProcessError
from Core.executor import check_process
from Core.parser import parse_quoted_args
from Core.signals import CancelEvent

log = logging.getLogger(__name__)

TEMP_PREFIX = ".temp.multiwatch"


@dataclass
class WatchedProcess:
    index: int
    command: str
    path: str
    proc: subprocess.Popen = None
    fd: int = None
    active: bool = True
    pending: bytes = b""

    @property
    def pid(self):
        return self.proc.pid if self.proc else None

    @property
    def label(self):
        return f"[{self.index}] {self.command}"


def parse_watch_args(line):
    """
    'multiWatch "cmd1" "cmd2"' -> ['cmd1', 'cmd2']
    Returns: list of command strings
    """
    name, _, rest = line.strip().partition(" ")
    if name != "multiWatch":
        raise ParseError("not a multiWatch command")
    commands = parse_quoted_args(rest.strip())
    if not commands:
        raise ParseError('usage: multiWatch "cmd1" "cmd2" ...')
    return commands


def temp_path(index, cwd=None):
    name = f"{TEMP_PREFIX}.{os.getpid()}.{index}.{time.time_ns()}.txt"
    return os.path.join(cwd or os.getcwd(), name)


def _watch_argv(command):
    # Pipelines need a real shell, everything else is exec'd directly
    if "|" in command:
        return ["/bin/sh", "-c", command]
    return command.split()


class MultiWatch:
    """Supervises one multiWatch invocation. Use run() once."""

    def __init__(self, commands, emit, cancel, poll_ms=WATCH_POLL_MS,
                 idle_timeout=WATCH_IDLE_TIMEOUT, grace=WATCH_GRACE,
                 read_chunk=READ_CHUNK):
        self.commands = commands
        self.emit = emit
        self.cancel = cancel
        self.poll_ms = poll_ms
        self.idle_timeout = idle_timeout
        self.grace = grace
        self.read_chunk = read_chunk
        self.watched = []
        self.cancelled = False
        self._cleaned = False

    # ---------- start ----------
    def _start_one(self, index, command):
        wp = WatchedProcess(index=index, command=command, path=temp_path(index))
        self.watched.append(wp)

        out_fd = os.open(wp.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        try:
            wp.proc = subprocess.Popen(
                _watch_argv(command),
                stdin=subprocess.DEVNULL,
                stdout=out_fd,
                stderr=subprocess.STDOUT,
                close_fds=True,
                start_new_session=True
            )
        except FileNotFoundError:
            raise ExecError(f"command not found: {command}") from None
        except PermissionError:
            raise ExecError(f"permission denied: {command}") from None
        except OSError as e:
            raise ProcessError(f"failed to start '{command}': {e}") from e
        finally:
            os.close(out_fd)

        wp.fd = os.open(wp.path, os.O_RDONLY | os.O_NONBLOCK)
        log.debug("multiWatch started pid %d: %s", wp.pid, command)

    def start(self):
        for index, command in enumerate(self.commands, 1):
            self._start_one(index, command)

    # ---------- output ----------
    def _emit_lines(self, wp, data, final=False):
        text = (wp.pending + data).decode(errors="replace")
        lines = text.split("\n")
        if final:
            wp.pending = b""
            if lines and lines[-1] == "":
                lines.pop()
        else:
            wp.pending = lines.pop().encode()
        for line in lines:
            self.emit(f"{wp.label}: {line}")

    def _read(self, wp):
        """
        Returns: number of bytes consumed from wp's file
        """
        if wp.fd is None:
            return 0
        total = 0
        while True:
            try:
                data = os.read(wp.fd, self.read_chunk)
            except BlockingIOError:
                break
            if not data:
                break
            total += len(data)
            self._emit_lines(wp, data)
        return total

    def _close_fd(self, wp):
        if wp.fd is not None:
            os.close(wp.fd)
            wp.fd = None

    def _finish(self, wp):
        """Flush what is left in the temp file and report the exit"""
        self._read(wp)
        self._emit_lines(wp, b"", final=True)
        self._close_fd(wp)
        wp.active = False

        code = wp.proc.returncode
        if code < 0:
            self.emit(f"{wp.label} terminated by signal {signal.Signals(-code).name}")
        else:
            self.emit(f"{wp.label} exited with code {code}")

    def _wait_for_data(self):
        fds = [wp.fd for wp in self.watched if wp.fd is not None]
        if not fds:
            time.sleep(self.poll_ms / 1000)
            return
        poller = select.poll()
        for fd in fds:
            poller.register(fd, select.POLLIN)
        started = time.monotonic()
        poller.poll(self.poll_ms)
        # Regular files always poll readable, keep the loop from spinning
        remaining = self.poll_ms / 1000 - (time.monotonic() - started)
        if remaining > 0:
            time.sleep(remaining)

    # ---------- monitor ----------
    def monitor(self):
        """
        Poll output and reap children until every command is done or the
        watch is cancelled. Once all processes have exited, output still
        arriving (from a detached grandchild, say) is only followed for
        idle_timeout seconds.
        """
        exited_at = None
        while True:
            if self.cancel.poll() is CancelEvent.INTERRUPT:
                self.cancelled = True
                self.emit("multiWatch: interrupted")
                return

            got_data = False
            for wp in self.watched:
                if not wp.active:
                    continue
                fresh = self._read(wp)
                got_data = got_data or bool(fresh)
                if not fresh and check_process(wp.proc) is not None:
                    self._finish(wp)

            if not any(wp.active for wp in self.watched):
                return

            if all(wp.proc.returncode is not None for wp in self.watched):
                exited_at = exited_at or time.monotonic()
                if time.monotonic() - exited_at >= self.idle_timeout:
                    log.warning("multiWatch: output still arriving %gs after all commands exited",
                                self.idle_timeout)
                    return

            if not got_data:
                self._wait_for_data()

    # ---------- cleanup ----------
    def _signal_group(self, wp, sig):
        if wp.proc is None or wp.proc.returncode is not None:
            return
        try:
            os.killpg(wp.proc.pid, sig)
        except (ProcessLookupError, PermissionError) as e:
            log.warning("cannot signal process group %d: %s", wp.proc.pid, e)

    def shutdown(self):
        """SIGTERM every process group, then SIGKILL whatever outlives the grace period"""
        live = [wp for wp in self.watched if wp.proc and wp.proc.returncode is None]
        for wp in live:
            self._signal_group(wp, signal.SIGTERM)

        deadline = time.monotonic() + self.grace
        while time.monotonic() < deadline:
            if all(check_process(wp.proc) is not None for wp in live):
                break
            time.sleep(0.05)

        for wp in live:
            if check_process(wp.proc) is None:
                self._signal_group(wp, signal.SIGKILL)
                check_process(wp.proc, flags=0)

    def cleanup(self):
        """Stop children, close descriptors and delete temp files. Safe to call twice."""
        if self._cleaned:
            return
        self._cleaned = True
        self.shutdown()
        for wp in self.watched:
            self._close_fd(wp)
            wp.active = False
            try:
                os.unlink(wp.path)
            except FileNotFoundError:
                pass
            except OSError as e:
                log.warning("could not remove %s: %s", wp.path, e)

    def run(self):
        """
        Start all commands and monitor them; always cleans up.
        Returns: 0 if every command exited 0, else 1
        """
        try:
            self.start()
            self.emit(f"multiWatch: watching {len(self.watched)} commands (Ctrl+C to stop)")
            self.monitor()
        finally:
            self.cleanup()

        if self.cancelled:
            return 130
        self.emit("multiWatch: all commands finished")
        ok = all(wp.proc.returncode == 0 for wp in self.watched)
        return 0 if ok else 1


def run_multiwatch(session, line):
    """Entry point used by the builtin dispatcher"""
    commands = parse_watch_args(line)
    if session.multiwatch_active:
        raise MultiWatchError("multiWatch is already running")
    session.multiwatch_active = True
    try:
        watch = MultiWatch(
            commands,
            emit=session.emit,
            cancel=session.cancel,
            poll_ms=session.config.watch_poll_ms,
            idle_timeout=session.config.watch_idle_timeout,
            grace=session.config.watch_grace,
            read_chunk=session.config.read_chunk
        )
        return watch.run()
    finally:
        session.multiwatch_active = False
