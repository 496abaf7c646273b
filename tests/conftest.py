"""Shared fixtures: a session with recorded output in a scratch directory."""

import time

import pytest

from Core.shell import Session
from Core.signals import CancelSource


class Recorder:
    """Stands in for the host display: keeps every emitted text."""

    def __init__(self):
        self.lines = []

    def __call__(self, text):
        self.lines.append(text)

    @property
    def text(self):
        return "\n".join(self.lines)


class ScheduledCancel(CancelSource):
    """Delivers one event a fixed delay after the first poll."""

    def __init__(self, event, after=0.2):
        super().__init__()
        self.event = event
        self.after = after
        self._started = None
        self.fired = False

    def poll(self):
        if not self.fired:
            if self._started is None:
                self._started = time.monotonic()
            elif time.monotonic() - self._started >= self.after:
                self.fired = True
                return self.event
        return super().poll()

    def rearm(self, event=None, after=None):
        self.event = event or self.event
        self.after = self.after if after is None else after
        self._started = None
        self.fired = False


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def output():
    return Recorder()


@pytest.fixture
def session(workdir, output):
    s = Session(emit=output)
    yield s
    s.close()
