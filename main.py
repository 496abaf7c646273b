#!/usr/bin/env python3
"""
watchshell - Python 3
Features:
 - Builtins: cd, history, jobs, fg, multiWatch, pmon, help
 - External commands and pipelines (a | b | c), output captured
 - I/O redirection: <, >, >> for single commands
 - Ctrl+C interrupts, Ctrl+Z suspends, fg resumes
 - History search with ?term, Tab completion of file names
"""

import argparse
import logging
import sys

try:
    import readline
except ImportError:
    readline = None

from config import SHELL_NAME
from Core.errors import InvariantError
from Core.shell import Session
from Core.signals import install_handlers, restore_handlers

EXIT_INTERNAL_ERROR = 70


def setup_logging(debug=False):
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"
                                           if debug else "Warning: %(message)s"))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.WARNING)


def init_readline(session):
    """Tab completion through the session; line editing stays with readline"""
    if readline is None or not sys.stdin.isatty():
        return

    def completer(text, state):
        result = session.complete(text, at_end=False)
        options = result.matches or ([result.text] if result.changed else [])
        return options[state] if state < len(options) else None

    readline.set_completer(completer)
    readline.set_completer_delims(" \t\n|<>")
    readline.parse_and_bind("tab: complete")
    readline.parse_and_bind("set show-all-if-ambiguous on")


def search(session, term):
    """?term: best match, or every candidate when several tie"""
    if session.history.has_tied_matches(term):
        for i, entry in enumerate(session.search_history(term, show_all=True), 1):
            session.emit(f"{i}\t{entry}")
        return
    best = session.search_history(term)
    session.emit(best if best else f"(no match for '{term}')")


def main_loop(session):
    """Main shell loop"""
    while True:
        try:
            line = input(session.prompt()).strip()
        except EOFError:
            print()
            break

        if not line:
            continue
        if line == "exit":
            break
        if line.startswith("?"):
            search(session, line[1:].strip())
            continue

        session.execute(line)


def main(argv=None):
    parser = argparse.ArgumentParser(prog=SHELL_NAME, description="Shell with job control and multiWatch")
    parser.add_argument("-c", dest="command", help="run one command line and exit")
    parser.add_argument("--debug", action="store_true", help="trace launches, reaps and job changes")
    args = parser.parse_args(argv)

    setup_logging(args.debug)
    session = Session(emit=print)
    install_handlers()
    try:
        if args.command is not None:
            return session.execute(args.command)
        init_readline(session)
        main_loop(session)
        return session.last_status
    except InvariantError as e:
        print(f"{SHELL_NAME}: internal error: {e}", file=sys.stderr)
        print(session.dump_state(), file=sys.stderr)
        return EXIT_INTERNAL_ERROR
    finally:
        session.close()
        restore_handlers()


if __name__ == "__main__":
    sys.exit(main())
