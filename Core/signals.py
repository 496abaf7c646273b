"""
Cancellation source for running commands.

The OS handlers below only record which signal arrived. Whatever has to
happen in response (kill, job table updates) is done by the polling loop
that calls CancelSource.poll().
"""

import signal
from collections import deque
from enum import Enum


class CancelEvent(Enum):
    INTERRUPT = "interrupt"
    SUSPEND = "suspend"


SIGNAL_EVENTS = {
    signal.SIGINT: CancelEvent.INTERRUPT,
    signal.SIGTSTP: CancelEvent.SUSPEND,
}

# Last signal number seen by the handler, 0 when nothing is pending
_pending_signal = 0


def _handle_signal(signum, frame):
    global _pending_signal
    _pending_signal = signum


def install_handlers():
    """Route Ctrl+C / Ctrl+Z into the pending flag instead of killing the shell"""
    for signum in SIGNAL_EVENTS:
        signal.signal(signum, _handle_signal)


def restore_handlers():
    for signum in SIGNAL_EVENTS:
        signal.signal(signum, signal.SIG_DFL)


def take_pending_signal():
    """Return and clear the pending signal number (0 if none)"""
    global _pending_signal
    signum, _pending_signal = _pending_signal, 0
    return signum


class CancelSource:
    """Delivers Interrupt/Suspend events to whoever is polling."""

    def __init__(self):
        self._events = deque()

    def post(self, event):
        self._events.append(event)

    def clear(self):
        self._events.clear()
        take_pending_signal()

    def poll(self):
        """
        Returns: the next CancelEvent, or None.
        Host-posted events come first, then a pending OS signal.
        """
        if self._events:
            return self._events.popleft()
        signum = take_pending_signal()
        if signum:
            return SIGNAL_EVENTS.get(signum)
        return None
