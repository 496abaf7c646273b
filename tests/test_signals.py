"""Tests for the flag-only signal handlers and the cancellation source."""

import signal

from Core import signals
from Core.signals import CancelEvent, CancelSource


class TestPendingFlag:
    """Handlers only record the signal."""

    def test_handler_sets_flag(self):
        signals._handle_signal(signal.SIGINT, None)
        assert signals.take_pending_signal() == signal.SIGINT
        assert signals.take_pending_signal() == 0

    def test_install_and_restore(self):
        try:
            signals.install_handlers()
            assert signal.getsignal(signal.SIGTSTP) is signals._handle_signal
            assert signal.getsignal(signal.SIGINT) is signals._handle_signal
        finally:
            signals.restore_handlers()
            signal.signal(signal.SIGINT, signal.default_int_handler)
        assert signal.getsignal(signal.SIGTSTP) == signal.SIG_DFL


class TestCancelSource:
    """Events reach the polling loop in order."""

    def test_empty(self):
        assert CancelSource().poll() is None

    def test_signal_becomes_event(self):
        cancel = CancelSource()
        signals._handle_signal(signal.SIGTSTP, None)
        assert cancel.poll() is CancelEvent.SUSPEND
        assert cancel.poll() is None

    def test_posted_events_come_first(self):
        cancel = CancelSource()
        signals._handle_signal(signal.SIGINT, None)
        cancel.post(CancelEvent.SUSPEND)
        assert cancel.poll() is CancelEvent.SUSPEND
        assert cancel.poll() is CancelEvent.INTERRUPT

    def test_clear_drops_everything(self):
        cancel = CancelSource()
        cancel.post(CancelEvent.INTERRUPT)
        signals._handle_signal(signal.SIGINT, None)
        cancel.clear()
        assert cancel.poll() is None
