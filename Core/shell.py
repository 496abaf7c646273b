import logging
import os

from config import SHELL_NAME, ShellConfig
from Core.builtin import execute_builtin
from Core.collector import drain
from Core.completer import complete
from Core.errors import CommandTimeoutError, InvariantError, ShellError, UnsafeCommandError
from Core.executor import launch
from Core.history import History
from Core.job_control import JobController
from Core.parser import is_safe_command, parse
from Core.signals import CancelSource

log = logging.getLogger(__name__)


class Session:
    """
    One shell session: history, job table, foreground slot and the
    cancellation source. Output goes through the emit callback; the host
    decides how to display it.
    """

    def __init__(self, emit=print, config=None, cancel=None):
        self.emit = emit
        self.config = config or ShellConfig()
        self.cancel = cancel or CancelSource()
        self.history = History(self.config.history_capacity)
        self.jobs = JobController(
            max_jobs=self.config.max_jobs,
            poll_interval=self.config.poll_interval,
            output_limit=self.config.output_limit,
            read_chunk=self.config.read_chunk
        )
        self.multiwatch_active = False
        self.last_status = 0

    # ---------- host interface ----------
    def add_history(self, line):
        return self.history.append(line.strip())

    def search_history(self, term, show_all=False):
        """
        Returns: best match (str or None), or the ranked list when show_all
        """
        if show_all:
            return self.history.search_all(term, self.config.search_limit)
        return self.history.reverse_search(term)

    def complete(self, word, at_end=True):
        return complete(word, at_end=at_end)

    def execute(self, line):
        """
        Run one submitted line: builtins first, everything else is parsed
        and launched. Errors are reported through emit.
        Returns: exit status
        """
        line = line.strip()
        if not line:
            return self.last_status
        self.add_history(line)
        # Stale Ctrl+C/Ctrl+Z pressed at the prompt must not hit the new command
        self.cancel.clear()

        try:
            if not is_safe_command(line):
                raise UnsafeCommandError(f"blocked potentially unsafe command: {line}")
            executed, code = execute_builtin(self, line)
            if not executed:
                code = self._run(line)
        except InvariantError:
            raise
        except CommandTimeoutError as e:
            if e.output:
                self.emit(e.output.rstrip("\n"))
            self.emit(f"{SHELL_NAME}: {e}")
            code = 124
        except ShellError as e:
            self.emit(f"{SHELL_NAME}: {e}")
            code = getattr(e, "exit_code", 1)

        self.last_status = code
        return code

    # ---------- external commands ----------
    def _run(self, line):
        cfg = self.config
        pipeline = parse(line, max_stages=cfg.max_stages, max_args=cfg.max_args,
                         max_length=cfg.max_command_length)
        if not pipeline.commands:
            return 0

        if pipeline.background:
            self.jobs.check_capacity()
            job = self.jobs.add_background(launch(pipeline))
            self.emit(f"[{job.job_id}] {job.pid}")
            return 0

        started = launch(pipeline)

        self.jobs.set_foreground(started)
        timeout = cfg.pipeline_timeout if started.is_pipeline else cfg.single_timeout
        result = drain(
            started, self.jobs, self.cancel, timeout,
            limit=cfg.output_limit,
            chunk=cfg.read_chunk,
            poll_interval=cfg.poll_interval,
            on_notice=lambda text: self.emit(f"{SHELL_NAME}: {text}")
        )
        message = result.message()
        if message:
            self.emit(message)
        return result.exit_code

    # ---------- lifecycle ----------
    def prompt(self):
        user = os.getenv("USER") or os.getenv("USERNAME") or "user"
        base = os.path.basename(os.getcwd()) or "/"
        return f"{user}@{SHELL_NAME}:{base}$ "

    def close(self):
        self.jobs.close()

    def dump_state(self):
        """Diagnostic snapshot printed before a fatal exit"""
        return "\n".join([
            f"cwd: {os.getcwd()}",
            f"last status: {self.last_status}",
            f"multiWatch active: {self.multiwatch_active}",
            f"history entries: {len(self.history)}",
            self.jobs.dump_state(),
        ])
