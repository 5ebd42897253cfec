"""Shared fixtures: a scriptable fake TeX engine and helpers."""

import stat
import sys
import textwrap
from pathlib import Path

import pytest
from loguru import logger

from quire.contexts.rendering.console import Console, Verbosity

# Behaves like xelatex/tectonic as far as the rendering context can tell:
# answers version queries, writes <stem>.pdf and <stem>.toc into the output
# directory, and copies the .toc it found at startup into the PDF so tests
# can check what the previous pass left behind. Controlled by FAKE_TEX_*
# environment variables.
FAKE_TEX_SOURCE = r'''
import os
import sys
from pathlib import Path

args = sys.argv[1:]
if args and args[0] in ("-version", "--version"):
    print("FakeTeX 3.14 (quire test engine)")
    sys.exit(0)

if "-output-directory" in args:
    out_dir = Path(args[args.index("-output-directory") + 1])
else:
    out_dir = Path(args[args.index("-o") + 1])
tex_file = Path(args[args.index("--") + 1])
stem = tex_file.stem

record = os.environ.get("FAKE_TEX_RECORD")
if record:
    with open(record, "a") as f:
        f.write(" ".join(args) + "\n")

print(f"This is FakeTeX, compiling {tex_file.name}", flush=True)
sys.stderr.write("fake warning on stderr\n")
sys.stderr.flush()

toc = out_dir / f"{stem}.toc"
previous_toc = toc.read_text() if toc.exists() else ""

if os.environ.get("FAKE_TEX_TOC", "1") == "1":
    toc.write_text("\\begin{toc}\nentry: Zebra\nentry: Apple\nentry: Mango\n\\end{toc}\n")

if os.environ.get("FAKE_TEX_PDF", "1") == "1":
    (out_dir / f"{stem}.pdf").write_text("%PDF-fake\n" + previous_toc)

sys.exit(int(os.environ.get("FAKE_TEX_EXIT", "0")))
'''


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script run by the current interpreter."""
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_script():
    """Factory writing executable Python scripts; skips where shebangs don't work."""
    if sys.platform == "win32":
        pytest.skip("relies on shebang scripts")
    return write_script


@pytest.fixture
def fake_tex(tmp_path, make_script) -> Path:
    """Path to an executable fake TeX engine."""
    return make_script(tmp_path / "fake-tex", FAKE_TEX_SOURCE)


@pytest.fixture
def tex_record(tmp_path, monkeypatch) -> Path:
    """File the fake engine appends one line to per pass."""
    record = tmp_path / "passes.txt"
    monkeypatch.setenv("FAKE_TEX_RECORD", str(record))
    return record


@pytest.fixture
def quiet_console() -> Console:
    return Console(Verbosity.QUIET)


@pytest.fixture
def tex_source(tmp_path) -> Path:
    """A generated TeX source in its own output directory."""
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    source = out_dir / "songbook.tex"
    source.write_text("\\documentclass{article}\n\\begin{document}\nHi\n\\end{document}\n")
    return source


@pytest.fixture(autouse=True)
def silence_loguru():
    """Drop loguru's default stderr sink so tests only see console output."""
    logger.remove()
    yield
    logger.remove()
