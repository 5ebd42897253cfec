"""
Child process supervision.

Runs the TeX engine with both output streams piped and merged into a single
ordered sequence of lines. One short-lived reader thread per stream feeds a
bounded queue; the calling thread is the only consumer, so lines come out in
the order their newlines were read, whichever stream they were written to.
"""

import queue
import subprocess
import threading
from pathlib import Path
from typing import IO, List, Optional, Sequence

from quire.contexts.rendering.cancellation import (
    CLOSED,
    INTERRUPT,
    PENDING,
    CancellationToken,
    cancellable_wait,
    child_wait,
    wait_on_channel,
)
from quire.contexts.rendering.console import Console, Verbosity
from quire.contexts.rendering.exceptions import CompileFailed, Interrupted, ProcessStartError
from quire.contexts.rendering.logger import _log_debug, _log_warning

CHANNEL_CAPACITY = 64


class ProcessLines:
    """
    Merged line reader over a child's stdout and stderr.

    Lines are kept as raw bytes (TeX output is not guaranteed to be valid
    UTF-8) and every line read is retained for collected_lines().
    """

    def __init__(
        self,
        stdout: IO[bytes],
        stderr: IO[bytes],
        token: CancellationToken = INTERRUPT,
    ):
        self.token = token
        self._channel: "queue.Queue" = queue.Queue(maxsize=CHANNEL_CAPACITY)
        self._collected: List[bytes] = []
        self._open_streams = 0
        self._readers = []

        for name, stream in (("stdout", stdout), ("stderr", stderr)):
            reader = threading.Thread(
                target=self._pump, args=(stream,), name=f"quire-{name}-reader", daemon=True
            )
            self._readers.append(reader)
            self._open_streams += 1
            reader.start()

    def _pump(self, stream: IO[bytes]) -> None:
        # Once cancelled nobody consumes the channel any more; keep draining
        # the pipe so the child never blocks on a full pipe, and let the
        # thread end at EOF.
        try:
            for line in iter(stream.readline, b""):
                if not self.token.is_set():
                    self._send(line)
        finally:
            stream.close()
            self._send(CLOSED)

    def _send(self, item) -> None:
        def _put(timeout: float):
            try:
                self._channel.put(item, timeout=timeout)
            except queue.Full:
                return PENDING
            return True

        try:
            cancellable_wait(_put, self.token)
        except Interrupted:
            # The consumer is gone, drop the item
            pass

    def read_line(self) -> Optional[bytes]:
        """
        Next line from either stream, blocking until one is available.

        Returns:
            The raw line, or None once both streams are closed

        Raises:
            Interrupted: If the cancellation token is set while waiting
        """
        while self._open_streams > 0:
            item = wait_on_channel(self._channel, self.token)
            if item is CLOSED:
                self._open_streams -= 1
                continue
            self._collected.append(item)
            return item
        return None

    def collected_lines(self) -> List[bytes]:
        """All lines read so far, in order."""
        return list(self._collected)


def run_program(
    console: Console,
    program: str,
    args: Sequence[str],
    cwd: Path,
    status: str,
    token: CancellationToken = INTERRUPT,
) -> List[bytes]:
    """
    Run a program to completion, streaming its output through the console.

    Args:
        console: Status console; its verbosity decides how output is shown
        program: Program name or path
        args: Program arguments
        cwd: Working directory of the child
        status: Label shown in front of output lines at NORMAL verbosity
        token: Cancellation token observed by every wait

    Returns:
        The merged output transcript as raw lines

    Raises:
        ProcessStartError: If the program cannot be started
        CompileFailed: If the program exits unsuccessfully
        Interrupted: If cancellation is observed. The child is not killed;
            it is attached to the exception as its process attribute.
    """
    program = str(program)
    args = [str(arg) for arg in args]

    if console.verbosity >= Verbosity.VERBOSE:
        console.command_line(program, args)
    _log_debug(f"Running {program} {' '.join(args)} (cwd: {cwd})")

    try:
        child = subprocess.Popen(
            [program, *args],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise ProcessStartError(f"Could not run program {program!r}: {e}") from e

    ps_lines = ProcessLines(child.stdout, child.stderr, token)

    try:
        console.subprocess_output(ps_lines, status)
        returncode = child_wait(child, token)
    except Interrupted as e:
        _log_warning(f"Interrupted while running {program} (pid {child.pid})")
        e.process = child
        raise

    transcript = ps_lines.collected_lines()

    if returncode != 0:
        if console.verbosity == Verbosity.NORMAL:
            console.command_line(program, args)
            for line in transcript:
                console.raw(line)
        raise CompileFailed(program, args, returncode, transcript)

    return transcript
