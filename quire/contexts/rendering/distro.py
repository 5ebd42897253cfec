"""
TeX distribution resolution.

Decides which TeX engine renders PDFs and checks that it actually runs before
committing to it. Sources are tried in priority order:

1. The QUIRE_TEX environment variable ("<kind>[:<program>]")
2. The "tex" key of the project settings (same syntax)
3. An embedded engine provided by the host executable
4. Probing texlive, then tectonic
"""

import os
import subprocess
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from quire.contexts.rendering.cancellation import INTERRUPT, CancellationToken, child_wait
from quire.contexts.rendering.console import Console
from quire.contexts.rendering.exceptions import BackendUnresolvable, ProbeFailed
from quire.contexts.rendering.logger import _log_debug, _log_info

load_dotenv()

TEX_ENV_VAR = "QUIRE_TEX"

# A version query has to answer within PROBE_POLLS * POLL_INTERVAL_S (1.5s)
PROBE_POLLS = 30


class TexDistro(Enum):
    """Kinds of TeX backends and their invocation conventions."""

    TEXLIVE = "texlive"
    TECTONIC = "tectonic"
    TECTONIC_EMBEDDED = "tectonicembedded"
    NONE = "none"

    @classmethod
    def parse(cls, name: str) -> "TexDistro":
        """
        Look up a kind by name, case-insensitively.

        Raises:
            BackendUnresolvable: If the name matches no kind
        """
        normalized = name.strip().lower()
        for distro in cls:
            if distro.value == normalized:
                return distro
        raise BackendUnresolvable(
            f"Unexpected TeX distro type: {name!r}, possible choices are: {cls.names()}."
        )

    @classmethod
    def names(cls) -> List[str]:
        return [distro.value for distro in cls]

    def default_program(self) -> Optional[str]:
        return {
            TexDistro.TEXLIVE: "xelatex",
            TexDistro.TECTONIC: "tectonic",
        }.get(self)

    def version_flag(self) -> Optional[str]:
        return {
            TexDistro.TEXLIVE: "-version",
            TexDistro.TECTONIC: "--version",
        }.get(self)

    def is_none(self) -> bool:
        return self is TexDistro.NONE

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TexConfig:
    """
    A TeX backend: its kind plus an optional explicit program.

    Once resolved it is shared read-only by every render job.
    """

    distro: TexDistro
    program: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "TexConfig":
        """
        Parse "<kind>[:<program>]". Only the first colon separates, so the
        program part may itself contain colons.

        Examples:
            TexConfig.parse("texlive")              # texlive, default program
            TexConfig.parse("tectonic:/opt/bin/t")  # tectonic at /opt/bin/t
        """
        kind, sep, program = str(value).partition(":")
        distro = TexDistro.parse(kind)
        return cls(distro, program if sep else None)

    def with_default_program(self) -> "TexConfig":
        if self.program is not None:
            return self
        return replace(self, program=self.distro.default_program())

    def render_args(self, scratch_dir: str, tex_file: str) -> List[str]:
        """
        Engine arguments for one pass.

        Args:
            scratch_dir: Output directory for the engine's working files
            tex_file: Source file to compile
        """
        if self.distro is TexDistro.TEXLIVE:
            args = ["-interaction=nonstopmode", "-output-directory", scratch_dir]
        elif self.distro is TexDistro.TECTONIC:
            # The output dir must also be on the search path, otherwise
            # tectonic does not pick up the .toc file of the previous pass
            # when run with -r 0.
            args = ["-k", "-r", "0", "-o", scratch_dir, "-Z", f"search-path={scratch_dir}"]
        elif self.distro is TexDistro.TECTONIC_EMBEDDED:
            args = ["tectonic", "-o", scratch_dir]
        else:
            raise ValueError(f"TeX distro {self.distro} does not render")

        return [*args, "--", tex_file]

    def program_status(self) -> str:
        """Label shown in front of streamed engine output."""
        if self.distro is TexDistro.TECTONIC_EMBEDDED:
            return "tectonic"
        return self.program or str(self.distro.default_program())

    def __str__(self) -> str:
        if self.program is None:
            return str(self.distro)
        return f"{self.distro}:{self.program}"


def query_version(
    program: str, flag: str, token: CancellationToken = INTERRUPT
) -> str:
    """
    Run a program with a version flag and return the first line it prints.

    The program gets PROBE_POLLS poll intervals to exit; a version query
    that takes longer than that means the installation is broken, so the
    child is killed.

    Raises:
        ProbeFailed: If the program can't be started, exits unsuccessfully,
            or prints nothing
        Interrupted: If cancellation is observed while waiting
    """
    try:
        child = subprocess.Popen(
            [program, flag],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
    except OSError as e:
        raise ProbeFailed(f"Could not run program {program!r}: {e}", program) from e

    try:
        returncode = child_wait(child, token, max_polls=PROBE_POLLS)
        if returncode is None:
            child.kill()
            child.wait()
            raise ProbeFailed(f"Program {program!r} did not respond in time", program)
        if returncode != 0:
            raise ProbeFailed(f"Program {program!r} failed with exit status {returncode}", program)

        first_line = child.stdout.readline().decode("utf-8", errors="replace")
    finally:
        if child.poll() is None:
            child.kill()
            child.wait()
        child.stdout.close()

    if not first_line.strip():
        raise ProbeFailed(f"No output from program {program!r}", program)
    return first_line.rstrip("\r\n")


def probe(
    config: TexConfig, console: Console, token: CancellationToken = INTERRUPT
) -> TexConfig:
    """
    Check that a backend is usable.

    The embedded engine is part of the host executable and is not probed,
    but it needs that executable as its program.

    Returns:
        The config with its default program filled in

    Raises:
        ProbeFailed: If the engine does not answer its version query
        BackendUnresolvable: If an embedded config has no program
    """
    if config.distro.is_none():
        return config

    if config.distro is TexDistro.TECTONIC_EMBEDDED:
        if not config.program:
            raise BackendUnresolvable(
                f"TeX distribution '{config.distro}' requires a program: "
                f"use '{config.distro}:<path to host executable>'"
            )
        console.indent("Using embedded Tectonic TeX.")
        return config

    config = config.with_default_program()
    version = query_version(config.program, config.distro.version_flag(), token)
    console.indent(version)
    return config


def resolve_backend(
    console: Console,
    from_settings: Optional[TexConfig] = None,
    env: Optional[Mapping[str, str]] = None,
    embedded_program: Optional[str] = None,
    token: CancellationToken = INTERRUPT,
) -> TexConfig:
    """
    Find the TeX backend to render with.

    Args:
        console: Status console
        from_settings: Backend from the project settings, if configured
        env: Environment to read QUIRE_TEX from (defaults to os.environ)
        embedded_program: Host executable that embeds tectonic, if any
        token: Cancellation token observed while probing

    Returns:
        The resolved, probed backend

    Raises:
        BackendUnresolvable: If QUIRE_TEX names an unknown kind, or nothing usable is found
        ProbeFailed: If an explicitly configured backend does not work
    """
    console.status("Locating", "TeX tools...")
    env = os.environ if env is None else env

    # 1. Environment variable
    from_env = env.get(TEX_ENV_VAR)
    if from_env:
        config = TexConfig.parse(from_env)
        try:
            config = probe(config, console, token)
        except ProbeFailed as e:
            raise ProbeFailed(
                f"Error using TeX distribution '{config}' configured from "
                f"the {TEX_ENV_VAR} environment variable.",
                e.program,
            ) from e
        _log_info(f"Using TeX distribution '{config}' from {TEX_ENV_VAR}")
        return config

    # 2. Project settings
    if from_settings is not None:
        try:
            config = probe(from_settings, console, token)
        except ProbeFailed as e:
            raise ProbeFailed(
                f"Error using TeX distribution '{from_settings}' configured from "
                "the project settings.",
                e.program,
            ) from e
        _log_info(f"Using TeX distribution '{config}' from project settings")
        return config

    # 3. Embedded engine
    if embedded_program is not None:
        console.indent("Using embedded Tectonic TeX.")
        return TexConfig(TexDistro.TECTONIC_EMBEDDED, str(embedded_program))

    # 4. Auto-probe
    for distro in (TexDistro.TEXLIVE, TexDistro.TECTONIC):
        try:
            config = probe(TexConfig(distro), console, token)
        except ProbeFailed as e:
            _log_debug(f"Probing {distro} failed: {e}")
            continue
        _log_info(f"Using TeX distribution '{config}' found by probing")
        return config

    raise BackendUnresolvable(
        f"No TeX distribution found. Install TeX Live or Tectonic, or set {TEX_ENV_VAR}."
    )


class BackendSlot:
    """
    Initialize-once holder for the process-wide backend.

    Render jobs take the backend as an argument; this slot only exists so a
    host can resolve once at startup and hand the same value to every job.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._value: Optional[TexConfig] = None

    def set(self, config: TexConfig) -> TexConfig:
        with self._lock:
            if self._value is not None:
                raise RuntimeError("TeX backend already initialized")
            self._value = config
        return config

    def get(self) -> TexConfig:
        with self._lock:
            if self._value is None:
                raise RuntimeError("TeX backend not initialized")
            return self._value

    def is_set(self) -> bool:
        with self._lock:
            return self._value is not None


TEX_TOOLS = BackendSlot()


def initialize(
    console: Console,
    from_settings: Optional[TexConfig] = None,
    slot: BackendSlot = TEX_TOOLS,
    **kwargs,
) -> TexConfig:
    """Resolve the backend and store it in the once-only slot."""
    return slot.set(resolve_backend(console, from_settings, **kwargs))
