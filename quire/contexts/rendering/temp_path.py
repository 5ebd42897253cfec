"""
Temporary build paths and the retention policy that governs them.

A TempPath owns one file or directory. Releasing it deletes the path unless
it was created (or later marked) to be kept. Cleanup is best-effort: failures
are logged as warnings and never raised, so a failed cleanup cannot mask the
outcome of the job that owned the path.
"""

import shutil
import tempfile
from enum import IntEnum
from pathlib import Path
from typing import Union

from quire.contexts.rendering.exceptions import CleanupFailed
from quire.contexts.rendering.logger import _log_debug, _log_warning


class RetentionLevel(IntEnum):
    """How many intermediate files survive a build."""

    NONE = 0
    TEX_ONLY = 1
    ALL = 2

    @classmethod
    def parse(cls, value: Union[int, str, "RetentionLevel"]) -> "RetentionLevel":
        """
        Parse a retention level from a config value.

        Accepts the integer level or its name, case-insensitively
        ("none", "tex_only", "all").

        Raises:
            ValueError: If the value names no level
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid retention level: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                pass
        elif isinstance(value, str):
            name = value.strip().upper().replace("-", "_")
            if name.isdigit():
                return cls.parse(int(name))
            if name in cls.__members__:
                return cls[name]

        choices = [level.name.lower() for level in cls]
        raise ValueError(
            f"Invalid retention level: {value!r}, expected 0-{len(cls) - 1} or one of {choices}"
        )

    def keeps_source(self) -> bool:
        return self >= RetentionLevel.TEX_ONLY

    def keeps_scratch(self) -> bool:
        return self >= RetentionLevel.ALL


class TempPath:
    """
    A file or directory removed on release unless marked to be kept.

    Attributes:
        path: The owned path
        is_dir: Whether the path is a directory (removed recursively)
        remove: Whether release deletes the path
    """

    def __init__(self, path: Path, is_dir: bool, remove: bool):
        self.path = Path(path)
        self.is_dir = is_dir
        self.remove = remove
        self._released = False

    @classmethod
    def new_file(cls, path: Path, remove: bool) -> "TempPath":
        return cls(path, is_dir=False, remove=remove)

    @classmethod
    def new_dir(cls, path: Path, remove: bool) -> "TempPath":
        return cls(path, is_dir=True, remove=remove)

    @classmethod
    def make_temp_dir(cls, near: Path, remove: bool) -> "TempPath":
        """
        Create a uniquely named hidden scratch directory next to a file.

        Args:
            near: File whose parent directory hosts the scratch directory
            remove: Whether release deletes the directory

        Returns:
            TempPath owning the new directory
        """
        near = Path(near)
        near.parent.mkdir(parents=True, exist_ok=True)
        path = tempfile.mkdtemp(prefix=f".{near.stem}.", suffix=".tmp", dir=near.parent)
        return cls.new_dir(Path(path), remove)

    @property
    def stem(self) -> str:
        return self.path.stem

    def join_stem(self, stem: str, extension: str) -> Path:
        """
        Path inside this directory built from a stem and an extension.

        Example:
            scratch.join_stem("songbook", ".toc")  # <scratch>/songbook.toc
        """
        return self.path / f"{stem}{extension}"

    def keep(self) -> None:
        """Reprieve the path: release will leave it on disk."""
        self.remove = False

    def release(self) -> None:
        """Delete the path if marked for removal. Safe to call more than once."""
        if self._released:
            return
        self._released = True

        if not self.remove:
            _log_debug(f"Keeping {self.path}")
            return

        try:
            if self.is_dir:
                shutil.rmtree(self.path)
            else:
                self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            _log_warning(str(CleanupFailed(self.path, e)))
        else:
            _log_debug(f"Removed {self.path}")

    def __enter__(self) -> "TempPath":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __fspath__(self) -> str:
        return str(self.path)

    def __repr__(self) -> str:
        kind = "dir" if self.is_dir else "file"
        return f"TempPath({str(self.path)!r}, {kind}, remove={self.remove})"
