import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field

from config import SHELL_NAME
from Core.errors import ExecError, IoError, ProcessError

log = logging.getLogger(__name__)

# check_process() result for a child that was stopped, not terminated
STOPPED = "stopped"
# returncode for a child whose exit status was collected by someone else
UNKNOWN_STATUS = 255


@dataclass
class FailedStage:
    """A pipeline stage whose program could not be executed. Counts as already reaped."""

    argv: list
    returncode: int = ExecError.exit_code
    pid = None


@dataclass
class Launch:
    """Processes started for one command line plus the read end of their capture pipe."""

    text: str
    procs: list = field(default_factory=list)
    fd: int = None

    @property
    def pids(self):
        return [p.pid for p in self.procs if p.pid is not None]

    @property
    def pid(self):
        # Signals go to the tail of a pipeline, like a shell
        pids = self.pids
        return pids[-1] if pids else None

    @property
    def is_pipeline(self):
        return len(self.procs) > 1

    def close_fd(self):
        if self.fd is not None:
            try:
                os.close(self.fd)
            except OSError:
                pass
            self.fd = None


def _reset_child_signals():
    """Runs in the child between fork and exec"""
    signal.signal(signal.SIGINT, signal.SIG_DFL)
    signal.signal(signal.SIGTSTP, signal.SIG_DFL)


def _detach_child():
    # Own process group: Ctrl+C at the prompt does not reach background jobs
    _reset_child_signals()
    os.setpgrp()


def _spawn(argv, stdin, stdout, stderr, background=False):
    try:
        return subprocess.Popen(
            argv,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            close_fds=True,
            preexec_fn=_detach_child if background else _reset_child_signals
        )
    except FileNotFoundError:
        raise ExecError(f"command not found: {argv[0]}") from None
    except PermissionError:
        raise ExecError(f"permission denied: {argv[0]}") from None
    except OSError as e:
        raise ProcessError(f"failed to start '{argv[0]}': {e}") from e


def _open_redirections(cmd):
    """
    Open '<' / '>' / '>>' targets in the parent.
    Returns: (stdin_file, stdout_file), either may be None
    """
    stdin_f = stdout_f = None
    if cmd.input_file:
        try:
            stdin_f = open(os.path.expanduser(cmd.input_file), "rb")
        except OSError as e:
            raise IoError(f"cannot open input file '{cmd.input_file}': {e.strerror}") from e
    if cmd.output_file:
        mode = "ab" if cmd.append else "wb"
        try:
            stdout_f = open(os.path.expanduser(cmd.output_file), mode)
        except OSError as e:
            if stdin_f:
                stdin_f.close()
            raise IoError(f"cannot create output file '{cmd.output_file}': {e.strerror}") from e
    return stdin_f, stdout_f


def _close_quietly(*fds):
    for fd in fds:
        if fd is None:
            continue
        try:
            os.close(fd)
        except OSError:
            pass


def kill_all(procs, sig=signal.SIGKILL):
    """Signal every process that is still running and reap it."""
    for p in procs:
        if p.returncode is None:
            try:
                p.send_signal(sig)
            except ProcessLookupError:
                pass
    for p in procs:
        if p.returncode is None:
            check_process(p, flags=0)


def launch_command(cmd, text=None, background=False):
    """
    Start a single command with stdout+stderr on a fresh capture pipe.
    A background command gets no capture pipe: it writes to the shell's own
    terminal and reads from /dev/null.
    Returns: Launch whose fd is the non-blocking read end (None in background)
    """
    stdin_f, stdout_f = _open_redirections(cmd)
    if background:
        read_fd = write_fd = None
        stdin = stdin_f or subprocess.DEVNULL
        stdout, stderr = stdout_f, None
    else:
        read_fd, write_fd = os.pipe()
        stdin = stdin_f
        stdout, stderr = stdout_f or write_fd, write_fd
    try:
        proc = _spawn(cmd.argv, stdin=stdin, stdout=stdout, stderr=stderr,
                      background=background)
    except Exception:
        _close_quietly(read_fd)
        raise
    finally:
        _close_quietly(write_fd)
        for f in (stdin_f, stdout_f):
            if f:
                f.close()

    if read_fd is not None:
        os.set_blocking(read_fd, False)
    log.debug("launched pid %d: %s", proc.pid, cmd.text)
    return Launch(text=text or cmd.text, procs=[proc], fd=read_fd)


def _report_exec_failure(fd, err):
    """Write the diagnostic of a stage that could not be executed where its output would go"""
    try:
        os.write(2 if fd is None else fd, f"{SHELL_NAME}: {err}\n".encode())
    except OSError as e:
        log.warning("cannot report exec failure: %s", e)


def launch_pipeline(pipeline, background=False):
    """
    Start every stage of a pipeline.
    Stage i reads the previous connecting pipe and writes to the next one,
    the last stage writes to the capture pipe. The parent keeps only the
    capture read end. A stage whose program cannot be executed exits 127
    with a diagnostic and the other stages keep running.
    Returns: Launch
    """
    procs = []
    capture_r = capture_w = None
    if not background:
        capture_r, capture_w = os.pipe()
    first_stdin = subprocess.DEVNULL if background else None
    prev_r = next_r = out_w = None

    try:
        last_index = len(pipeline.commands) - 1
        for i, cmd in enumerate(pipeline.commands):
            if i == last_index:
                next_r, out_w = None, capture_w
            else:
                next_r, out_w = os.pipe()

            try:
                proc = _spawn(cmd.argv, stdin=prev_r if i else first_stdin,
                              stdout=out_w, stderr=out_w, background=background)
            except ExecError as e:
                log.debug("stage %d not executed: %s", i + 1, e)
                _report_exec_failure(out_w, e)
                proc = FailedStage(cmd.argv)
            procs.append(proc)

            # Ends the parent no longer needs
            _close_quietly(prev_r)
            if out_w != capture_w:
                _close_quietly(out_w)
            prev_r, out_w = next_r, None
    except Exception:
        # Fork failure: nothing of the line may keep running
        kill_all(procs)
        if out_w == capture_w:
            out_w = None
        _close_quietly(prev_r, next_r, out_w, capture_r)
        raise
    finally:
        _close_quietly(capture_w)

    if capture_r is not None:
        os.set_blocking(capture_r, False)
    log.debug("launched pipeline %s: %s", [p.pid for p in procs], pipeline.text)
    return Launch(text=pipeline.text, procs=procs, fd=capture_r)


def launch(pipeline):
    if pipeline.is_single:
        return launch_command(pipeline.commands[0], text=pipeline.text,
                              background=pipeline.background)
    return launch_pipeline(pipeline, background=pipeline.background)


def check_process(proc, flags=os.WNOHANG):
    """
    waitpid() on one child and keep proc.returncode in sync.
    Returns: None while running, STOPPED if it got stopped (needs WUNTRACED),
    otherwise the return code (negative signal number if killed).
    """
    if proc.returncode is not None:
        return proc.returncode
    try:
        pid, status = os.waitpid(proc.pid, flags)
    except ChildProcessError:
        log.warning("pid %d was reaped elsewhere, exit status unknown", proc.pid)
        proc.returncode = UNKNOWN_STATUS
        return proc.returncode
    if pid == 0:
        return None
    if os.WIFSTOPPED(status):
        return STOPPED
    if os.WIFCONTINUED(status):
        return None
    proc.returncode = os.waitstatus_to_exitcode(status)
    log.debug("reaped pid %d, returncode %d", proc.pid, proc.returncode)
    return proc.returncode
