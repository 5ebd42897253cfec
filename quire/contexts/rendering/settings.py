r"""
Render settings loaded from the project file.

The project file is YAML, e.g. quire.yaml:

    tex: "texlive:/usr/local/texlive/bin/xelatex"
    keep: tex_only
    reruns: 2
    toc_sort_key: '^\\tocsong\{(.+?)\}'

Every key is optional. The QUIRE_TEX environment variable, when set, takes
precedence over "tex" (see distro.resolve_backend).
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import OmegaConf

from quire.contexts.rendering.distro import TexConfig
from quire.contexts.rendering.exceptions import BackendUnresolvable
from quire.contexts.rendering.temp_path import RetentionLevel

load_dotenv()

DEFAULT_PROJECT_FILE = Path(os.getenv("QUIRE_PROJECT_FILE", "quire.yaml"))
DEFAULT_RERUNS = 1

KNOWN_KEYS = ("tex", "keep", "reruns", "toc_sort_key")


@dataclass
class RenderSettings:
    """
    Rendering configuration of a project.

    Attributes:
        tex: Explicitly configured TeX backend, if any
        keep: Which intermediate files survive a build
        reruns: Number of TeX passes after the first
        toc_sort_key: Regex with one capture group used to sort .toc lines
    """

    tex: Optional[TexConfig] = None
    keep: RetentionLevel = RetentionLevel.NONE
    reruns: int = DEFAULT_RERUNS
    toc_sort_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RenderSettings":
        """
        Build settings from a plain dict, validating each value.

        Raises:
            ValueError: If a key is unknown or a value is invalid
        """
        unknown = sorted(set(data) - set(KNOWN_KEYS))
        if unknown:
            raise ValueError(f"Unknown render settings: {unknown}. Allowed keys: {list(KNOWN_KEYS)}")

        settings = cls()

        if data.get("tex") is not None:
            try:
                settings.tex = TexConfig.parse(str(data["tex"]))
            except BackendUnresolvable as e:
                raise ValueError(f"Invalid 'tex' setting: {e}") from e

        if data.get("keep") is not None:
            settings.keep = RetentionLevel.parse(data["keep"])

        if data.get("reruns") is not None:
            reruns = data["reruns"]
            if isinstance(reruns, bool) or not isinstance(reruns, int) or reruns < 0:
                raise ValueError(f"Invalid 'reruns' setting: {reruns!r}, expected a non-negative integer")
            settings.reruns = reruns

        if data.get("toc_sort_key") is not None:
            settings.toc_sort_key = str(data["toc_sort_key"])

        return settings


def load_render_settings(config_path: Optional[Path] = None) -> RenderSettings:
    """
    Load render settings from a YAML project file.

    Args:
        config_path: Project file (defaults to QUIRE_PROJECT_FILE or ./quire.yaml).
            A missing default file yields default settings; a missing explicit
            file is an error.

    Returns:
        Parsed RenderSettings

    Raises:
        FileNotFoundError: If an explicitly given file does not exist
        ValueError: If the file contains invalid settings
    """
    if config_path is None:
        if not DEFAULT_PROJECT_FILE.exists():
            return RenderSettings()
        config_path = DEFAULT_PROJECT_FILE

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Project file not found: {config_path}")

    data = OmegaConf.to_container(OmegaConf.load(config_path), resolve=True) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Project file {config_path} must contain a mapping at root level")

    return RenderSettings.from_dict(data)
