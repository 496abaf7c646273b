"""End-to-end tests through Session.execute()."""

import os
import subprocess
import time

import pytest

from config import ShellConfig
from conftest import Recorder, ScheduledCancel
from Core.errors import InvariantError
from Core.shell import Session
from Core.signals import CancelEvent


class TestExternalCommands:
    """Commands and pipelines that are not builtins."""

    def test_echo(self, session, output):
        assert session.execute("echo hello") == 0
        assert output.lines == ["hello"]

    def test_blank_line_does_nothing(self, session, output):
        session.execute("   ")
        assert output.lines == []
        assert len(session.history) == 0

    @pytest.mark.parametrize("line", [
        "echo hello world | tr a-z A-Z",
        "seq 1 20 | grep 1 | sort -r | head -3",
        "seq 1 5 | tac",
        "no-such-command-xyz | echo after",
        "seq 1 3 | no-such-command-xyz | echo done",
    ])
    def test_pipeline_matches_sh(self, session, output, line):
        """Multi-stage results match running the same line under sh."""
        expected = subprocess.run(["sh", "-c", line], capture_output=True, text=True).stdout
        session.execute(line)
        assert output.text == expected.rstrip("\n")

    def test_redirection_round_trip(self, session, output, workdir):
        session.execute("echo stored > data.txt")
        assert output.lines == []
        session.execute("cat < data.txt")
        assert output.lines == ["stored"]

    def test_exit_status_message(self, session, output):
        assert session.execute("false") == 1
        assert output.lines == ["Process exited with code 1"]

    def test_command_not_found(self, session, output):
        assert session.execute("no-such-command-xyz") == 127
        assert output.lines == ["watchshell: command not found: no-such-command-xyz"]

    def test_missing_input_file(self, session, output):
        assert session.execute("cat < nope.txt") == 1
        assert "cannot open input file 'nope.txt'" in output.text

    def test_unsafe_command_is_blocked(self, session, output):
        assert session.execute("sudo ls") == 1
        assert "blocked potentially unsafe command" in output.text

    def test_too_many_stages(self, session, output):
        session.execute(" | ".join(["cat"] * 17))
        assert "too many pipeline stages" in output.text

    def test_timeout_is_reported(self, workdir):
        out = Recorder()
        session = Session(emit=out, config=ShellConfig(single_timeout=0.3))
        assert session.execute("sleep 5") == 124
        assert "timed out" in out.text
        assert session.jobs.foreground is None

    def test_commands_are_recorded_in_history(self, session):
        session.execute("echo one")
        session.execute("echo one")
        session.execute("false")
        assert list(session.history) == ["echo one", "false"]


class TestBuiltins:
    """cd, history, jobs, fg, help."""

    def test_cd_changes_directory(self, session, workdir):
        (workdir / "sub").mkdir()
        assert session.execute("cd sub") == 0
        assert os.getcwd() == str(workdir / "sub")

    def test_cd_without_argument_stays(self, session, workdir):
        session.execute("cd")
        assert os.getcwd() == str(workdir)

    def test_cd_failure_reports_os_error(self, session, output):
        assert session.execute("cd /no/such/dir") == 1
        assert output.lines == ["cd: /no/such/dir: No such file or directory"]

    def test_history_lists_entries(self, session, output):
        session.execute("echo a")
        output.lines.clear()
        session.execute("history")
        assert output.lines == ["1\techo a\n2\thistory"]

    def test_help(self, session, output):
        session.execute("help")
        assert "multiWatch" in output.text

    def test_fg_with_no_jobs(self, session, output):
        assert session.execute("fg") == 1
        assert output.lines == ["watchshell: fg: no current job"]
        assert session.jobs.jobs == {}
        assert session.jobs.foreground is None

    def test_fg_invalid_id(self, session, output):
        session.execute("fg abc")
        assert "invalid job id" in output.text

    def test_pmon_without_processes(self, session, output):
        session.execute("pmon")
        assert "No processes" in output.text


class TestJobControlScenario:
    """Suspend, list, resume."""

    def test_suspend_jobs_fg(self, workdir):
        out = Recorder()
        cancel = ScheduledCancel(CancelEvent.SUSPEND, after=0.2)
        session = Session(emit=out, cancel=cancel)
        try:
            session.execute("sleep 1")
            assert out.lines[-1] == "[1]+ Stopped\tsleep 1"

            out.lines.clear()
            session.execute("jobs")
            assert out.lines[0].startswith("[1] Stopped  sleep 1")

            out.lines.clear()
            begin = time.monotonic()
            assert session.execute("fg 1") == 0
            assert time.monotonic() - begin >= 0.3
            assert out.lines == ["sleep 1"]

            out.lines.clear()
            session.execute("jobs")
            assert out.lines == []
        finally:
            session.close()

    def test_pmon_lists_stopped_job(self, workdir):
        out = Recorder()
        session = Session(emit=out, cancel=ScheduledCancel(CancelEvent.SUSPEND, after=0.1))
        try:
            session.execute("sleep 5")
            out.lines.clear()
            session.execute("pmon")
            assert "%1" in out.text
            assert "sleep" in out.text
        finally:
            session.close()

    def test_background_job(self, session, output):
        session.execute("sleep 0.1 &")
        assert output.lines[0].startswith("[1] ")
        time.sleep(0.3)
        output.lines.clear()
        session.execute("jobs")
        assert output.lines == []

    def test_chatty_background_job_finishes(self, session, output, capfd):
        """Background output goes straight to the terminal, so the job never stalls."""
        session.execute("seq 1 200000 &")
        deadline = time.monotonic() + 5
        while session.jobs.list_jobs() and time.monotonic() < deadline:
            time.sleep(0.05)
        assert session.jobs.jobs == {}
        assert capfd.readouterr().out.endswith("200000\n")

    def test_background_job_leaves_the_shell_process_group(self, session):
        """Ctrl+C at the prompt goes to the shell's group only."""
        session.execute("sleep 5 &")
        job = session.jobs.get()
        assert os.getpgid(job.pid) == job.pid != os.getpgrp()
        assert session.jobs.list_jobs() == [job]

    def test_close_terminates_remaining_jobs(self, workdir):
        session = Session(emit=Recorder())
        session.execute("sleep 30 &")
        job = session.jobs.get()
        session.close()
        assert session.jobs.jobs == {}
        assert job.launch.procs[0].returncode is not None


class TestHostInterface:
    """Search, completion and the fatal path."""

    def test_search_history(self, session):
        for line in ["ls -la", "pwd", "pwd -P"]:
            session.add_history(line)
        assert session.search_history("pwd") == "pwd -P"
        assert session.search_history("pwd", show_all=True) == ["pwd -P", "pwd"]

    def test_complete(self, session, workdir):
        (workdir / "report.txt").write_text("")
        assert session.complete("rep").text == "report.txt "

    def test_invariant_error_propagates(self, session):
        session.jobs.foreground = object()
        with pytest.raises(InvariantError):
            session.execute("echo hi")
        session.jobs.foreground = None

    def test_dump_state(self, session):
        state = session.dump_state()
        assert "foreground: None" in state
        assert "multiWatch active: False" in state
