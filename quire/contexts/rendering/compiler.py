"""
Multi-pass TeX compilation.

A RenderJob compiles one generated .tex file into one PDF:

    pass 1 -> [sort .toc -> pass N]* -> move PDF into place

Every pass runs in a private scratch directory next to the destination. The
generated source and the scratch directory are released when the job ends,
whether it succeeded or not, according to the retention level.
"""

import shutil
import time
from pathlib import Path
from typing import Optional

from quire.contexts.rendering.cancellation import INTERRUPT, CancellationToken
from quire.contexts.rendering.console import Console
from quire.contexts.rendering.distro import TexConfig
from quire.contexts.rendering.exceptions import (
    ArtifactNotProduced,
    BackendUnresolvable,
    Interrupted,
    RenderError,
    RenderJobError,
)
from quire.contexts.rendering.logger import (
    _log_debug,
    log_render_result,
    log_render_start,
)
from quire.contexts.rendering.process import run_program
from quire.contexts.rendering.line_sort import sort_lines
from quire.contexts.rendering.temp_path import RetentionLevel, TempPath

TOC_EXTENSION = ".toc"
PDF_EXTENSION = ".pdf"


class RenderJob:
    """
    One generated TeX source to be compiled into one PDF.

    A job can be rendered only once; its temporary paths are released at
    the end of that render.

    Attributes:
        tex_file: Generated TeX source
        tmp_dir: Scratch directory for the engine's working files
        pdf_file: Destination of the finished PDF
        toc_sort_key: Regex whose capture group orders .toc entries, if any
        reruns: Number of passes after the first
    """

    def __init__(
        self,
        tex_file: TempPath,
        tmp_dir: TempPath,
        pdf_file: Path,
        toc_sort_key: Optional[str] = None,
        reruns: int = 0,
    ):
        if reruns < 0:
            raise ValueError(f"reruns must be non-negative, got {reruns}")
        self.tex_file = tex_file
        self.tmp_dir = tmp_dir
        self.pdf_file = Path(pdf_file)
        self.toc_sort_key = toc_sort_key
        self.reruns = reruns
        self._consumed = False

    @classmethod
    def create(
        cls,
        tex_file: Path,
        pdf_file: Path,
        keep: RetentionLevel = RetentionLevel.NONE,
        toc_sort_key: Optional[str] = None,
        reruns: int = 0,
    ) -> "RenderJob":
        """
        Build a job for an already written TeX source.

        Creates the scratch directory next to pdf_file. If that fails, the
        source is released under the retention level before the error
        propagates.

        Args:
            tex_file: Generated TeX source (must already exist)
            pdf_file: Destination PDF path
            keep: Retention level deciding what survives the job
            toc_sort_key: Regex with one capture group for sorting the .toc
            reruns: Number of passes after the first

        Raises:
            OSError: If the scratch directory cannot be created
        """
        if reruns < 0:
            raise ValueError(f"reruns must be non-negative, got {reruns}")
        keep = RetentionLevel.parse(keep)
        pdf_file = Path(pdf_file).resolve()
        source = TempPath.new_file(Path(tex_file).resolve(), remove=not keep.keeps_source())

        try:
            tmp_dir = TempPath.make_temp_dir(pdf_file, remove=not keep.keeps_scratch())
        except OSError:
            source.release()
            raise

        return cls(
            tex_file=source,
            tmp_dir=tmp_dir,
            pdf_file=pdf_file,
            toc_sort_key=toc_sort_key,
            reruns=reruns,
        )

    @property
    def cwd(self) -> Path:
        return self.pdf_file.parent

    @property
    def stem(self) -> str:
        return self.tex_file.stem

    def toc_path(self) -> Path:
        return self.tmp_dir.join_stem(self.stem, TOC_EXTENSION)

    def output_path(self) -> Path:
        """Where the engine leaves the PDF inside the scratch directory."""
        return self.tmp_dir.join_stem(self.stem, PDF_EXTENSION)

    def sort_toc(self) -> Optional[int]:
        """
        Sort the .toc file of the previous pass, if there is a key and a file.

        Returns:
            Number of sorted lines, or None if sorting was skipped
        """
        if self.toc_sort_key is None:
            return None

        toc = self.toc_path()
        if not toc.exists():
            _log_debug(f"No TOC file yet at {toc}, not sorting")
            return None

        return sort_lines(self.toc_sort_key, toc)

    def move_pdf(self) -> None:
        """
        Raises:
            ArtifactNotProduced: If the engine left no PDF or it can't be moved
        """
        out_pdf = self.output_path()
        try:
            shutil.move(str(out_pdf), str(self.pdf_file))
        except OSError as e:
            raise ArtifactNotProduced(self.pdf_file) from e

    def consume(self) -> None:
        if self._consumed:
            raise RuntimeError(f"Render job for {self.pdf_file} was already rendered")
        self._consumed = True

    def release(self) -> None:
        """Release temporary paths per their retention flags."""
        self.tex_file.release()
        self.tmp_dir.release()

    def __enter__(self) -> "RenderJob":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def render_pdf(
    config: TexConfig,
    job: RenderJob,
    console: Console,
    token: CancellationToken = INTERRUPT,
) -> Optional[Path]:
    """
    Compile a job's TeX source into its destination PDF.

    With the "none" backend nothing is compiled: the TeX source is kept for
    the caller and no PDF is produced.

    Args:
        config: Resolved TeX backend
        job: The job to render; consumed by this call
        console: Status console
        token: Cancellation token observed by every wait

    Returns:
        Path of the produced PDF, or None for the "none" backend

    Raises:
        RenderJobError: Wrapping the compile or finalize failure of this job
        Interrupted: If cancellation is observed (never wrapped)
    """
    job.consume()

    with job:
        if config.distro.is_none():
            job.tex_file.keep()
            _log_debug(f"TeX disabled, keeping {job.tex_file.path}")
            return None

        log_render_start(job.pdf_file, job.tex_file.path, job.reruns, str(config))
        start_time = time.time()

        try:
            _run_passes(config, job, console, token)
        except Interrupted:
            raise
        except (RenderError, OSError) as e:
            error = RenderJobError(job.pdf_file)
            error.__cause__ = e
            log_render_result(job.pdf_file, time.time() - start_time, error)
            raise error from e

        log_render_result(job.pdf_file, time.time() - start_time)
        return job.pdf_file


def _run_passes(
    config: TexConfig, job: RenderJob, console: Console, token: CancellationToken
) -> None:
    console.status("Running", "TeX...")
    config = config.with_default_program()
    if not config.program:
        raise BackendUnresolvable(f"TeX distribution '{config}' has no program to run")

    args = config.render_args(str(job.tmp_dir.path), str(job.tex_file.path))
    status = config.program_status()

    run_program(console, config.program, args, job.cwd, status, token)
    for _ in range(job.reruns):
        token.check()
        job.sort_toc()
        run_program(console, config.program, args, job.cwd, status, token)

    job.move_pdf()
