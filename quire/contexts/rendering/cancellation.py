"""
Cooperative cancellation.

Child processes do not necessarily see the interrupt the host process
receives, so nothing here relies on signal delivery. Instead every blocking
wait is broken into short polls and the shared token is checked between them,
which bounds cancellation latency by POLL_INTERVAL_S.

Usage:
    from quire.contexts.rendering.cancellation import INTERRUPT, wait_on_channel

    item = wait_on_channel(channel, INTERRUPT)
"""

import queue
import signal
import subprocess
import threading
from typing import Any, Callable, Optional

from quire.contexts.rendering.exceptions import Interrupted
from quire.contexts.rendering.logger import _log_debug

POLL_INTERVAL_S = 0.05

# Returned by a wait step that timed out without a result
PENDING = object()

# Put on a channel by a producer that has no more values to send
CLOSED = object()


class CancellationToken:
    """
    Process-wide interrupt flag.

    Set at most once and never reset. Readable and settable from any thread.
    """

    def __init__(self):
        self._event = threading.Event()

    def signal(self) -> None:
        """Set the flag. Calling it again has no further effect."""
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise Interrupted if the flag is set."""
        if self._event.is_set():
            raise Interrupted()


# Shared by the whole process; the CLI routes SIGINT here
INTERRUPT = CancellationToken()


def install_interrupt_handler(token: CancellationToken = INTERRUPT) -> None:
    """Route SIGINT to the token instead of raising KeyboardInterrupt."""

    def _handler(signum, frame):
        _log_debug("SIGINT received, signalling cancellation")
        token.signal()

    signal.signal(signal.SIGINT, _handler)


def cancellable_wait(
    step: Callable[[float], Any],
    token: CancellationToken = INTERRUPT,
    interval: float = POLL_INTERVAL_S,
    max_polls: Optional[int] = None,
) -> Any:
    """
    Run a blocking step in short slices, checking the token before each slice.

    Args:
        step: Called with a timeout in seconds; returns a result, or PENDING
            if the timeout elapsed first
        token: Cancellation token to observe
        interval: Timeout handed to each call of step
        max_polls: Give up after this many timed-out slices (None = never)

    Returns:
        The first non-PENDING result of step, or PENDING once max_polls is reached

    Raises:
        Interrupted: If the token is set before a result arrives
    """
    polls = 0
    while True:
        token.check()
        result = step(interval)
        if result is not PENDING:
            return result

        polls += 1
        if max_polls is not None and polls >= max_polls:
            return PENDING


def wait_on_channel(channel: queue.Queue, token: CancellationToken = INTERRUPT) -> Any:
    """
    Receive one value from a queue without becoming uninterruptible.

    Returns:
        The received value, or CLOSED when the producer closed the channel

    Raises:
        Interrupted: If the token is set while waiting
    """

    def _get(timeout: float) -> Any:
        try:
            return channel.get(timeout=timeout)
        except queue.Empty:
            return PENDING

    return cancellable_wait(_get, token)


def child_wait(
    process: subprocess.Popen,
    token: CancellationToken = INTERRUPT,
    max_polls: Optional[int] = None,
) -> Optional[int]:
    """
    Wait for a child process to exit.

    Returns:
        The child's return code, or None if max_polls elapsed first

    Raises:
        Interrupted: If the token is set while waiting. The child is left running.
    """

    def _wait(timeout: float) -> Any:
        try:
            return process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return PENDING

    result = cancellable_wait(_wait, token, max_polls=max_polls)
    return None if result is PENDING else result
