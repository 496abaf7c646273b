import logging
import os
import signal
import time
from dataclasses import dataclass
from enum import Enum
from itertools import count

import psutil

from config import MAX_JOBS, OUTPUT_LIMIT, POLL_INTERVAL, READ_CHUNK
from Core.collector import CapturedResult, OutputBuffer, read_available
from Core.errors import InvariantError, JobControlError, SignalDeliveryError
from Core.executor import STOPPED, check_process, kill_all
from Core.signals import CancelEvent

log = logging.getLogger(__name__)

# How long session shutdown waits for SIGTERM before SIGKILL
TERMINATE_GRACE = 1.0


class JobStatus(Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"


@dataclass
class Job:
    """A suspended or background command line."""

    job_id: int
    launch: object
    status: JobStatus = JobStatus.STOPPED

    @property
    def pid(self):
        return self.launch.pid

    @property
    def command(self):
        return self.launch.text

    def finished(self):
        """Non-blocking reap of every process in the job"""
        return all(check_process(p) is not None for p in self.launch.procs)

    def __str__(self):
        return f"[{self.job_id}] {self.status.value:<8} {self.command}"


def send_signal(pid, sig):
    """
    kill() that never raises: failures are logged as warnings.
    Returns: True if the signal was delivered
    """
    try:
        os.kill(pid, sig)
        return True
    except (ProcessLookupError, PermissionError) as e:
        err = SignalDeliveryError(
            f"cannot send {signal.Signals(sig).name} to pid {pid}: {e.strerror}")
        log.warning("%s", err)
        return False


def process_state(pid):
    """Live OS state of a pid as reported by psutil, e.g. 'sleeping' or 'stopped'"""
    if pid is None:
        return "terminated"
    try:
        return psutil.Process(pid).status()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return "terminated"


class JobController:
    """
    Owns the foreground slot and the job table.

    Only one launch can hold the foreground slot at a time. A launch becomes
    a job when it is suspended or started in the background; job ids only
    ever increase.
    """

    def __init__(self, max_jobs=MAX_JOBS, poll_interval=POLL_INTERVAL,
                 output_limit=OUTPUT_LIMIT, read_chunk=READ_CHUNK):
        self.max_jobs = max_jobs
        self.poll_interval = poll_interval
        self.output_limit = output_limit
        self.read_chunk = read_chunk
        self.jobs = {}
        self.foreground = None
        self._ids = count(1)

    # ---------- foreground slot ----------
    def set_foreground(self, launch):
        if self.foreground is not None:
            raise InvariantError("foreground slot is already occupied")
        self.foreground = launch

    def clear_foreground(self, launch=None):
        if launch is None or self.foreground is launch:
            self.foreground = None

    def interrupt(self):
        """SIGINT the foreground processes and release the slot"""
        launch = self.foreground
        if launch is None:
            return None
        for pid in launch.pids:
            send_signal(pid, signal.SIGINT)
        self.foreground = None
        return launch

    def suspend(self):
        """
        SIGSTOP the foreground processes and file them as a Stopped job.
        SIGSTOP rather than SIGTSTP so a child ignoring SIGTSTP still stops.
        """
        launch = self.foreground
        if launch is None:
            return None
        self.check_capacity()
        for pid in launch.pids:
            send_signal(pid, signal.SIGSTOP)
        job = self._add(launch, JobStatus.STOPPED)
        self.foreground = None
        return job

    # ---------- job table ----------
    def check_capacity(self):
        if len(self.jobs) >= self.max_jobs:
            raise JobControlError(f"job table full ({self.max_jobs} jobs)")

    def _add(self, launch, status):
        job = Job(job_id=next(self._ids), launch=launch, status=status)
        self.jobs[job.job_id] = job
        log.debug("job %d %s: %s", job.job_id, status.value, job.command)
        return job

    def add_background(self, launch):
        self.check_capacity()
        return self._add(launch, JobStatus.RUNNING)

    def get(self, job_id=None):
        """
        Look up a job, defaulting to the most recently created one.
        Raises JobControlError if there is no such job.
        """
        if not self.jobs:
            raise JobControlError("fg: no current job")
        if job_id is None:
            return self.jobs[max(self.jobs)]
        job = self.jobs.get(job_id)
        if job is None:
            raise JobControlError(f"fg: {job_id}: no such job")
        return job

    def remove(self, job):
        job.launch.close_fd()
        self.jobs.pop(job.job_id, None)

    def reap(self):
        """Drop jobs whose processes have all exited"""
        for job in list(self.jobs.values()):
            if job.finished():
                log.debug("job %d finished: %s", job.job_id, job.command)
                self.remove(job)

    def list_jobs(self):
        self.reap()
        return list(self.jobs.values())

    # ---------- fg ----------
    def fg(self, job_id=None, cancel=None):
        """
        Continue a job in the foreground and wait until it exits, is killed
        or is stopped again. A job that stops again stays in the table.
        Returns: (job, CapturedResult)
        """
        job = self.get(job_id)
        self.set_foreground(job.launch)
        if job.status is JobStatus.STOPPED:
            for pid in job.launch.pids:
                send_signal(pid, signal.SIGCONT)
            job.status = JobStatus.RUNNING
        log.debug("job %d continued in foreground", job.job_id)

        try:
            result = self._wait(job, cancel)
        finally:
            self.clear_foreground(job.launch)

        if result.job is None:
            self.remove(job)
        return job, result

    def _wait(self, job, cancel):
        launch = job.launch
        # Stop detection needs a real process, a stage that failed to exec has none
        started = [p for p in launch.procs if p.pid is not None]
        tail = started[-1] if started else launch.procs[-1]
        buffer = OutputBuffer(self.output_limit)
        result = CapturedResult()

        while True:
            event = cancel.poll() if cancel else None
            if event is CancelEvent.INTERRUPT:
                for pid in launch.pids:
                    send_signal(pid, signal.SIGINT)
            elif event is CancelEvent.SUSPEND:
                for pid in launch.pids:
                    send_signal(pid, signal.SIGSTOP)

            if launch.fd is not None and read_available(launch.fd, buffer, self.read_chunk):
                launch.close_fd()

            if check_process(tail, os.WNOHANG | os.WUNTRACED) == STOPPED:
                job.status = JobStatus.STOPPED
                result.job = job
                result.returncode = -signal.SIGTSTP
                break
            if all(check_process(p) is not None for p in launch.procs):
                if launch.fd is not None:
                    read_available(launch.fd, buffer, self.read_chunk)
                result.returncode = launch.procs[-1].returncode
                break

            time.sleep(self.poll_interval)

        result.output = buffer.text()
        result.truncated = buffer.truncated
        return result

    # ---------- shutdown ----------
    def close(self):
        """Terminate every remaining job"""
        for job in self.jobs.values():
            for pid in job.launch.pids:
                send_signal(pid, signal.SIGTERM)
                send_signal(pid, signal.SIGCONT)

        deadline = time.monotonic() + TERMINATE_GRACE
        while self.jobs and time.monotonic() < deadline:
            self.reap()
            time.sleep(self.poll_interval)

        for job in list(self.jobs.values()):
            kill_all(job.launch.procs)
            self.remove(job)

    def dump_state(self):
        lines = [f"foreground: {self.foreground.pids if self.foreground else None}"]
        lines += [f"{job} pids={job.launch.pids}" for job in self.jobs.values()]
        return "\n".join(lines)
