"""
Rendering Context

Responsibilities:
- Locates a usable TeX distribution
- Runs the TeX engine as many passes as a document needs
- Keeps auxiliary output deterministic between passes
- Manages scratch directories and retention of intermediate files

Owns: TeX engine invocation, PDF generation, build artifact lifetime
Never: Generates or modifies TeX source
"""

from quire.contexts.rendering.cancellation import INTERRUPT, CancellationToken
from quire.contexts.rendering.compiler import RenderJob, render_pdf
from quire.contexts.rendering.console import Console, Verbosity
from quire.contexts.rendering.distro import TEX_TOOLS, TexConfig, TexDistro, resolve_backend
from quire.contexts.rendering.settings import RenderSettings, load_render_settings
from quire.contexts.rendering.line_sort import sort_lines
from quire.contexts.rendering.temp_path import RetentionLevel, TempPath

__all__ = [
    "INTERRUPT",
    "CancellationToken",
    "Console",
    "RenderJob",
    "RenderSettings",
    "RetentionLevel",
    "TEX_TOOLS",
    "TempPath",
    "TexConfig",
    "TexDistro",
    "Verbosity",
    "load_render_settings",
    "render_pdf",
    "resolve_backend",
    "sort_lines",
]
