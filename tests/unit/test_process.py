"""Unit tests for child process supervision and merged output."""

import sys

import pytest

from quire.contexts.rendering.cancellation import CancellationToken
from quire.contexts.rendering.console import Console, Verbosity
from quire.contexts.rendering.exceptions import CompileFailed, Interrupted, ProcessStartError
from quire.contexts.rendering.process import run_program

# Alternates between stdout and stderr, flushing and pausing after each write
INTERLEAVED = """
import sys, time
for i in range(6):
    stream = sys.stdout if i % 2 == 0 else sys.stderr
    stream.write(f"{'out' if i % 2 == 0 else 'err'} {i}\\n")
    stream.flush()
    time.sleep(0.1)
"""

FAILING = """
import sys
print("compiling", flush=True)
sys.stderr.write("! Undefined control sequence.\\n")
sys.stderr.flush()
raise SystemExit(3)
"""

CHATTY = """
import sys
for i in range(2000):
    sys.stdout.write("x" * 200 + "\\n")
    sys.stderr.write("y" * 200 + "\\n")
"""


def _run(console, script, tmp_path, token=None):
    return run_program(
        console,
        sys.executable,
        ["-c", script],
        tmp_path,
        "python",
        token or CancellationToken(),
    )


@pytest.mark.unit
class TestRunProgram:
    def test_merged_lines_follow_emission_order(self, tmp_path):
        transcript = _run(Console(Verbosity.QUIET), INTERLEAVED, tmp_path)

        assert transcript == [b"out 0\n", b"err 1\n", b"out 2\n", b"err 3\n", b"out 4\n", b"err 5\n"]

    def test_lines_stay_raw_bytes(self, tmp_path):
        script = "import sys; sys.stdout.buffer.write(b'caf\\xe9\\n')"

        assert _run(Console(Verbosity.QUIET), script, tmp_path) == [b"caf\xe9\n"]

    def test_runs_in_working_directory(self, tmp_path):
        script = "import os; print(os.getcwd())"

        transcript = _run(Console(Verbosity.QUIET), script, tmp_path)

        assert transcript[0].decode().strip() == str(tmp_path.resolve())

    def test_stdin_is_closed(self, tmp_path):
        script = "import sys; print(repr(sys.stdin.read()))"

        assert _run(Console(Verbosity.QUIET), script, tmp_path) == [b"''\n"]

    def test_failure_carries_status_and_transcript(self, tmp_path):
        with pytest.raises(CompileFailed) as excinfo:
            _run(Console(Verbosity.QUIET), FAILING, tmp_path)

        error = excinfo.value
        assert error.returncode == 3
        assert error.program == sys.executable
        assert b"! Undefined control sequence.\n" in error.transcript
        assert "Undefined control sequence" in error.transcript_text()
        assert "exit status 3" in str(error)

    def test_missing_program(self, tmp_path):
        with pytest.raises(ProcessStartError, match="Could not run program"):
            run_program(
                Console(Verbosity.QUIET),
                "xxx-surely-this-doesnt-exist",
                [],
                tmp_path,
                "xxx",
                CancellationToken(),
            )

    def test_interrupted_run_hands_back_child(self, tmp_path):
        token = CancellationToken()
        token.signal()

        with pytest.raises(Interrupted) as excinfo:
            _run(Console(Verbosity.QUIET), "print('hi')", tmp_path, token)

        child = excinfo.value.process
        assert child is not None
        assert child.wait(timeout=10) == 0

    def test_interrupted_child_can_still_flush_its_output(self, tmp_path):
        token = CancellationToken()
        token.signal()

        with pytest.raises(Interrupted) as excinfo:
            _run(Console(Verbosity.QUIET), CHATTY, tmp_path, token)

        # Far more than the pipe buffer and the line channel can hold
        assert excinfo.value.process.wait(timeout=20) == 0


@pytest.mark.unit
class TestRunProgramOutput:
    def test_quiet_prints_nothing(self, tmp_path, capsys):
        with pytest.raises(CompileFailed):
            _run(Console(Verbosity.QUIET), FAILING, tmp_path)

        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""

    def test_normal_shows_latest_line_with_label(self, tmp_path, capsys):
        _run(Console(Verbosity.NORMAL), "print('hello from child')", tmp_path)

        err = capsys.readouterr().err
        assert "python: hello from child" in err
        assert "Command" not in err

    def test_normal_failure_replays_command_and_transcript(self, tmp_path, capsys):
        with pytest.raises(CompileFailed):
            _run(Console(Verbosity.NORMAL), FAILING, tmp_path)

        err = capsys.readouterr().err
        replay = err[err.index("Command"):]
        assert sys.executable in replay
        assert "compiling\n" in replay
        assert "! Undefined control sequence.\n" in replay

    def test_verbose_echoes_command_and_passes_lines_through(self, tmp_path, capsys):
        _run(Console(Verbosity.VERBOSE), "print('hello from child')", tmp_path)

        err = capsys.readouterr().err
        assert err.index("Command") < err.index("hello from child")
        assert "\nhello from child\n" in err
        assert "python: " not in err
