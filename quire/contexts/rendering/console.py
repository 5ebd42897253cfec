"""
User-facing status output for rendering.

Status lines go to stderr as a right-aligned colored verb followed by a
message, e.g.

      Locating TeX tools...
                 XeTeX 3.141592653-2.6-0.999995 (TeX Live 2023)
       Running TeX...

Every status line is mirrored to the loguru log at DEBUG level.
"""

import sys
from enum import IntEnum
from pathlib import Path
from typing import IO, Optional, Sequence

import typer

from quire.contexts.rendering.exceptions import find_interrupted
from quire.contexts.rendering.logger import _log_debug

VERB_WIDTH = 12

# Cursor up one line, then erase it
REWIND_SEQUENCE = "\x1b[1A\x1b[2K"


class Verbosity(IntEnum):
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2

    @classmethod
    def from_flags(cls, quiet: bool = False, verbose: bool = False) -> "Verbosity":
        """Map --quiet/--verbose to a tier; both together cancel out to NORMAL."""
        if quiet and not verbose:
            return cls.QUIET
        if verbose and not quiet:
            return cls.VERBOSE
        return cls.NORMAL


class Console:
    """
    Verbosity-gated status printer.

    Attributes:
        verbosity: Output tier
        file: Stream to write to (stderr by default)
        color: Whether to emit ANSI colors
    """

    def __init__(
        self,
        verbosity: Verbosity = Verbosity.NORMAL,
        file: Optional[IO[str]] = None,
        color: Optional[bool] = None,
    ):
        self.verbosity = Verbosity(verbosity)
        self._file = file
        self.color = color

    @property
    def file(self) -> IO[str]:
        # Looked up lazily so pytest's capsys sees the output
        return self._file if self._file is not None else sys.stderr

    def is_terminal(self) -> bool:
        isatty = getattr(self.file, "isatty", None)
        return bool(isatty and isatty())

    def _echo(self, text: str, nl: bool = True) -> None:
        typer.echo(text, file=self.file, nl=nl, color=self.color)

    def _status_inner(self, kind: str, fg: str, status: str) -> None:
        _log_debug(f"{kind} {status}".rstrip())
        if self.verbosity == Verbosity.QUIET:
            return

        lines = str(status).splitlines() or [""]
        typer.secho(
            f"{kind:>{VERB_WIDTH}}", fg=fg, bold=True, file=self.file, nl=False, color=self.color
        )
        self._echo(f" {lines[0]}")
        for line in lines[1:]:
            self._indent_line(line)

    def _indent_line(self, line: str) -> None:
        self._echo(f"{'':>{VERB_WIDTH}} {line}")

    def status(self, verb: str, status: str) -> None:
        """Routine progress line."""
        self._status_inner(verb, typer.colors.BRIGHT_CYAN, status)

    def indent(self, status: str) -> None:
        """Continuation text aligned under the previous status message."""
        _log_debug(f"  {status}")
        if self.verbosity == Verbosity.QUIET:
            return
        for line in str(status).splitlines():
            self._indent_line(line)

    def success(self, verb: str) -> None:
        self._status_inner(verb, typer.colors.BRIGHT_GREEN, "")

    def warning(self, message: str) -> None:
        self._status_inner("Warning", typer.colors.BRIGHT_YELLOW, message)

    def error(self, error: BaseException) -> None:
        """
        Report an error with its full cause chain.

        An interruption anywhere in the chain is reported as a single short
        notice instead, since the chain carries no useful information then.
        """
        if find_interrupted(error) is not None:
            self._status_inner("Interrupted", typer.colors.BRIGHT_YELLOW, "")
            return

        self._status_inner("Error", typer.colors.BRIGHT_RED, str(error))
        if self.verbosity == Verbosity.QUIET:
            return

        source = error.__cause__
        while source is not None:
            for line in str(source).splitlines():
                typer.secho("  | ", fg=typer.colors.BRIGHT_RED, file=self.file, nl=False, color=self.color)
                self._echo(line)
            source = source.__cause__

    def rewind_line(self) -> None:
        """Erase the previous line. Does nothing unless writing to a terminal."""
        if self.verbosity == Verbosity.QUIET or not self.is_terminal():
            return
        self.file.write(REWIND_SEQUENCE)
        self.file.flush()

    def command_line(self, program: str, args: Sequence[str]) -> None:
        """Echo a command line as a "Command" status."""
        command = " ".join([str(program), *(str(arg) for arg in args)])
        if self.verbosity == Verbosity.QUIET:
            _log_debug(f"Command {command}")
            return
        self._status_inner("Command", typer.colors.BRIGHT_CYAN, command)

    def raw(self, line: bytes) -> None:
        """Write one raw subprocess output line, decoded for display."""
        self.file.write(line.decode("utf-8", errors="replace"))
        self.file.flush()

    def subprocess_output(self, ps_lines, status: str) -> None:
        """
        Stream lines of a running process until it closes its output.

        QUIET only drains the lines (they stay buffered in ps_lines). NORMAL
        keeps a single "<status>: <line>" line that is overwritten in place.
        VERBOSE passes every line through unchanged.

        Args:
            ps_lines: ProcessLines reader of the child
            status: Label shown in front of each line at NORMAL verbosity

        Raises:
            Interrupted: If cancellation is observed while reading
        """
        label = Path(status).stem or status

        if self.verbosity == Verbosity.QUIET:
            while ps_lines.read_line() is not None:
                pass
            return

        if self.verbosity == Verbosity.NORMAL:
            self._echo("")

        while True:
            line = ps_lines.read_line()
            if line is None:
                break
            if self.verbosity == Verbosity.NORMAL:
                self.rewind_line()
                self._echo(f"{label}: ", nl=False)
            self.raw(line if line.endswith(b"\n") else line + b"\n")

        if self.verbosity == Verbosity.NORMAL:
            self.rewind_line()
