"""Error taxonomy for the rendering context."""

from pathlib import Path
from typing import List, Optional, Sequence


class RenderError(Exception):
    """Base class for all rendering failures."""


class Interrupted(RenderError):
    """
    Raised by a wait loop once the cancellation token has been signalled.

    Attributes:
        process: The child process that was running, if any. It is left
            running; whoever catches this decides whether to terminate it.
    """

    def __init__(self, message: str = "Interrupted", process=None):
        self.process = process
        super().__init__(message)


class BackendUnresolvable(RenderError):
    """No usable TeX backend, or the configuration names an unknown kind."""


class ProbeFailed(RenderError):
    """
    A named TeX backend did not answer its version query usably.

    Attributes:
        program: The program that was probed
    """

    def __init__(self, message: str, program: Optional[str] = None):
        self.program = program
        super().__init__(message)


class ProcessStartError(RenderError):
    """The compiler program could not be spawned at all."""


class CompileFailed(RenderError):
    """
    A compiler invocation exited unsuccessfully.

    Attributes:
        program: Program that was run
        args: Arguments it was run with
        returncode: Exit status (negative when killed by a signal)
        transcript: Merged stdout/stderr lines as raw bytes
    """

    def __init__(
        self,
        program: str,
        args: Sequence[str],
        returncode: int,
        transcript: List[bytes],
    ):
        self.program = program
        self.args = list(args)
        self.returncode = returncode
        self.transcript = transcript

        if returncode < 0:
            status = f"terminated by signal {-returncode}"
        else:
            status = f"exit status {returncode}"
        super().__init__(f"Program {program!r} failed ({status})")

    def transcript_text(self) -> str:
        """Transcript decoded for display, invalid bytes replaced."""
        return b"".join(self.transcript).decode("utf-8", errors="replace")


class ReorderConfigInvalid(RenderError, ValueError):
    """The sort-key regular expression is invalid or lacks a capture group."""


class ArtifactNotProduced(RenderError):
    """
    The compiler reported success but the output file could not be moved into place.

    Attributes:
        path: Destination that could not be produced
    """

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Could not produce output file {str(path)!r}")


class RenderJobError(RenderError):
    """
    Per-job context wrapper; the underlying failure is chained as __cause__.

    Attributes:
        destination: Output file the job was producing
    """

    def __init__(self, destination: Path):
        self.destination = destination
        super().__init__(f"Could not render output file {destination.name!r}")


class CleanupFailed(RenderError):
    """
    Removal of a temporary path failed.

    Only ever constructed to be logged; cleanup failures never propagate.
    """

    def __init__(self, path: Path, reason: Exception):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not remove temporary path {str(path)!r}: {reason}")


def find_interrupted(error: BaseException) -> Optional[Interrupted]:
    """Walk the __cause__/__context__ chain and return the first Interrupted, if any."""
    seen = set()
    current = error
    while current is not None and id(current) not in seen:
        if isinstance(current, Interrupted):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None
