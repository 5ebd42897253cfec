#!/usr/bin/env python3
"""
TeX Rendering CLI

Renders TeX sources to PDF through the rendering context.

Commands:
    render     - Compile a TeX file to PDF with as many passes as configured
    locate     - Find and print the TeX distribution that would be used
    sort-lines - Sort runs of lines of a file in-place by a regex key

Examples:\n

    render_pdf.py render songbook.tex out/songbook.pdf              # Render with quire.yaml settings

    render_pdf.py render songbook.tex out/songbook.pdf -r 2 -v      # Three passes, verbose output

    render_pdf.py locate                                            # Show the TeX backend

    render_pdf.py sort-lines '^song: (.+)$' out/songbook.toc       # Sort a TOC file
"""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from typing_extensions import Annotated

from quire.contexts.rendering import (
    Console,
    RenderJob,
    RetentionLevel,
    TempPath,
    Verbosity,
    load_render_settings,
    render_pdf,
    resolve_backend,
    sort_lines,
)
from quire.contexts.rendering.cancellation import install_interrupt_handler
from quire.contexts.rendering.exceptions import Interrupted, RenderError, find_interrupted
from quire.contexts.rendering.logger import setup_rendering_logger
from quire.utils.timestamp import now

load_dotenv()
LOGS_PATH = os.getenv("QUIRE_LOGS_PATH")

# Conventional exit code of a process stopped by SIGINT
EXIT_INTERRUPTED = 130

CHILD_STOP_TIMEOUT_S = 5


app = typer.Typer(
    help="Render TeX sources to PDF with multi-pass compilation",
    add_completion=False,
    invoke_without_command=True,
)


@app.callback()
def main(ctx: typer.Context):
    """Show help by default when no command is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _fail(console: Console, error: BaseException) -> None:
    console.error(error)
    interrupted = find_interrupted(error)
    if interrupted is not None:
        _stop_child(interrupted)
    raise typer.Exit(code=EXIT_INTERRUPTED if interrupted is not None else 1)


def _stop_child(interrupted: Interrupted) -> None:
    """Terminate and reap the TeX engine an interrupt left running, if any."""
    child = interrupted.process
    if child is None or child.poll() is not None:
        return
    child.terminate()
    try:
        child.wait(timeout=CHILD_STOP_TIMEOUT_S)
    except subprocess.TimeoutExpired:
        child.kill()
        child.wait()


def _load_settings(console: Console, config: Optional[Path]):
    try:
        return load_render_settings(config)
    except (FileNotFoundError, ValueError) as e:
        _fail(console, e)


@app.command("render")
def render_command(
    source: Annotated[
        Path,
        typer.Argument(help="TeX source file", exists=True, dir_okay=False),
    ],
    destination: Annotated[
        Path,
        typer.Argument(help="Output PDF path"),
    ],
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Project settings file (default: quire.yaml)"),
    ] = None,
    keep: Annotated[
        Optional[str],
        typer.Option(
            "--keep",
            "-k",
            help="Keep intermediate files: none/0, tex_only/1, all/2 (default: from settings)",
        ),
    ] = None,
    reruns: Annotated[
        Optional[int],
        typer.Option(
            "--reruns",
            "-r",
            help="Number of TeX passes after the first (default: from settings)",
            min=0,
        ),
    ] = None,
    toc_sort_key: Annotated[
        Optional[str],
        typer.Option(
            "--toc-sort-key",
            help="Regex with one capture group used to sort the .toc between passes",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show the full TeX output"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress output"),
    ] = False,
    log_dir: Annotated[
        Optional[Path],
        typer.Option("--log-dir", help="Write a render log below this directory (default: $QUIRE_LOGS_PATH)"),
    ] = None,
):
    """
    Compile a TeX file to PDF.

    The source is copied next to the destination before compiling, so the
    original file is never removed by the retention policy.

    Examples:\n

        $ render_pdf.py render book.tex out/book.pdf                # Default settings

        $ render_pdf.py render book.tex out/book.pdf --keep all     # Keep the scratch directory

        $ render_pdf.py render book.tex out/book.pdf --reruns 2     # Three TeX passes
    """
    console = Console(Verbosity.from_flags(quiet=quiet, verbose=verbose))
    install_interrupt_handler()

    log_root = log_dir or (Path(LOGS_PATH) if LOGS_PATH else None)
    setup_rendering_logger(log_root / f"render_{now()}" if log_root else None)

    settings = _load_settings(console, config)

    try:
        retention = RetentionLevel.parse(keep) if keep is not None else settings.keep
    except ValueError as e:
        _fail(console, e)

    try:
        backend = resolve_backend(console, settings.tex)
    except RenderError as e:
        _fail(console, e)

    destination = destination.resolve()
    generated = destination.with_suffix(".tex")
    in_place = generated == source.resolve()
    if in_place:
        # Compiling the user's own file in place: never delete it
        retention = max(retention, RetentionLevel.TEX_ONLY)

    try:
        if not in_place:
            destination.parent.mkdir(parents=True, exist_ok=True)
            try:
                shutil.copy2(source, generated)
            except OSError:
                # A partial copy is released like any generated source
                TempPath.new_file(generated, remove=not retention.keeps_source()).release()
                raise

        console.status("Rendering", destination.name)
        job = RenderJob.create(
            tex_file=generated,
            pdf_file=destination,
            keep=retention,
            toc_sort_key=toc_sort_key if toc_sort_key is not None else settings.toc_sort_key,
            reruns=reruns if reruns is not None else settings.reruns,
        )
        pdf_path = render_pdf(backend, job, console)
    except (RenderError, OSError) as e:
        _fail(console, e)

    if pdf_path is None:
        console.warning(f"TeX is disabled, TeX source left at {generated}")
    else:
        console.success("Done")


@app.command("locate")
def locate_command(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Project settings file (default: quire.yaml)"),
    ] = None,
):
    """
    Find the TeX distribution and print it as "<kind>[:<program>]".

    Resolution order: QUIRE_TEX, the project "tex" setting, then probing.
    """
    console = Console()
    install_interrupt_handler()
    setup_rendering_logger(None)

    settings = _load_settings(console, config)
    try:
        backend = resolve_backend(console, settings.tex)
    except RenderError as e:
        _fail(console, e)

    typer.echo(str(backend))


@app.command("sort-lines")
def sort_lines_command(
    regex: Annotated[
        str,
        typer.Argument(
            help="Regular expression that extracts the sort key from each line via a capture group"
        ),
    ],
    file: Annotated[
        Path,
        typer.Argument(help="The file whose lines to sort, in-place", exists=True, dir_okay=False),
    ],
):
    """
    Alphabetically sort lines of a file in-place.

    Lines the regex does not match stay where they are; each run of matching
    lines between them is sorted by the captured key.
    """
    console = Console()
    setup_rendering_logger(None)

    try:
        count = sort_lines(regex, file)
    except (RenderError, OSError) as e:
        _fail(console, e)

    typer.echo(f"Sorted {count} lines")


if __name__ == "__main__":
    app()
