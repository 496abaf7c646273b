import os

import psutil

from Core.errors import JobControlError
from Core.job_control import process_state
from Core.multiwatch import run_multiwatch

HELP_TEXT = """watchshell help:
 Built-in commands:
  cd [dir]                 : change directory (default: .)
  history                  : show command history
  jobs                     : list stopped and background jobs
  fg [job_id]              : continue a job in the foreground
  multiWatch "c1" "c2" ... : run commands in parallel and watch their output
  pmon                     : CPU/memory of processes started by this shell
  help                     : print this help

Features:
  Pipes using | (up to 16 stages)
  Redirection using < > >> (single commands only)
  Background with trailing &
  Ctrl+C interrupts, Ctrl+Z suspends the foreground command
  ?term searches history, Tab completes file names"""


def builtin_help(session, args):
    session.emit(HELP_TEXT)
    return 0


def builtin_cd(session, args):
    """Change directory"""
    path = args[0] if args else "."
    try:
        os.chdir(os.path.expanduser(path))
        return 0
    except OSError as e:
        session.emit(f"cd: {path}: {e.strerror}")
        return 1


def builtin_history(session, args):
    listing = session.history.show()
    if listing:
        session.emit(listing)
    return 0


def builtin_jobs(session, args):
    """Reap finished jobs, then list the rest with their live OS state"""
    jobs = session.jobs.list_jobs()
    for job in jobs:
        session.emit(f"{job}  (pid {job.pid}, {process_state(job.pid)})")
    return 0


def builtin_fg(session, args):
    job_id = None
    if args:
        try:
            job_id = int(args[0].lstrip("%"))
        except ValueError:
            raise JobControlError(f"fg: {args[0]}: invalid job id") from None

    job, result = session.jobs.fg(job_id, cancel=session.cancel)
    session.emit(job.command)
    message = result.message()
    if message:
        session.emit(message)
    return result.exit_code


def builtin_pmon(session, args):
    """Process monitor for the foreground command and jobs"""
    tracked = []
    if session.jobs.foreground:
        tracked += [(pid, "fg") for pid in session.jobs.foreground.pids]
    for job in session.jobs.jobs.values():
        tracked += [(pid, f"%{job.job_id}") for pid in job.launch.pids]

    if not tracked:
        session.emit("No processes started by this shell are running.")
        return 0

    lines = [f"{'PID':<8} {'JOB':<5} {'STATUS':<10} {'CPU%':>6} {'MEM%':>6}  NAME", "-" * 55]
    for pid, owner in tracked:
        try:
            p = psutil.Process(pid)
            lines.append(
                f"{pid:<8} {owner:<5} {p.status():<10} {p.cpu_percent(interval=0):6.2f} "
                f"{p.memory_percent():6.2f}  {p.name()[:24]}"
            )
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            lines.append(f"{pid:<8} {owner:<5} {'terminated':<10}")
    session.emit("\n".join(lines))
    return 0


BUILTINS = {
    'cd': builtin_cd,
    'history': builtin_history,
    'jobs': builtin_jobs,
    'fg': builtin_fg,
    'pmon': builtin_pmon,
    'help': builtin_help,
}


def execute_builtin(session, line):
    """
    Execute built-in command if it matches.
    Returns (executed: bool, exit_code: int)
    """
    parts = line.split()
    if not parts:
        return False, 0

    cmd, args = parts[0], parts[1:]
    if cmd == 'multiWatch':
        return True, run_multiwatch(session, line)
    if cmd in BUILTINS:
        return True, BUILTINS[cmd](session, args)
    return False, 0
