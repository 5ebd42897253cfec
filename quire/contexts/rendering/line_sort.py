"""
In-place line sorting for TeX auxiliary files.

Multi-pass engines can append table-of-contents entries in whatever order the
document happened to produce them. sort_lines() puts them back into a stable
order: each maximal run of lines matching the key regex is sorted by the
captured key, while lines that do not match stay exactly where they are and
act as boundaries between runs.
"""

import re
from pathlib import Path
from typing import List, Optional, Tuple, Union

from quire.contexts.rendering.exceptions import ReorderConfigInvalid
from quire.contexts.rendering.logger import _log_debug, _log_warning


def _compile_key_regex(regex: Union[str, "re.Pattern"]) -> "re.Pattern":
    if isinstance(regex, re.Pattern):
        return regex
    try:
        return re.compile(regex)
    except re.error as e:
        raise ReorderConfigInvalid(f"Invalid regex: `{regex}`: {e}") from e


def _split_line(line: str) -> Tuple[str, str]:
    """Split a line into content and its terminator ("\\r\\n", "\\n" or "")."""
    if line.endswith("\r\n"):
        return line[:-2], "\r\n"
    if line.endswith("\n") or line.endswith("\r"):
        return line[:-1], line[-1]
    return line, ""


def _line_key(content: str, pattern: "re.Pattern") -> Optional[bytes]:
    """
    Sort key of a line, or None if the line is not sortable.

    Keys are compared as UTF-8 bytes so ordering never depends on locale.
    """
    match = pattern.search(content)
    if match is None:
        return None
    if pattern.groups < 1:
        raise ReorderConfigInvalid(
            f"No capture group in regex: `{pattern.pattern}`, "
            "the sort key has to be in a capture group"
        )
    key = match.group(1)
    if key is None:
        raise ReorderConfigInvalid(
            f"The capture group of regex `{pattern.pattern}` did not take part "
            f"in matching line {content!r}, the sort key has to be in a capture group"
        )
    return key.encode("utf-8", errors="surrogateescape")


def sort_keyed_runs(
    contents: List[str], keys: List[Optional[bytes]]
) -> Tuple[List[str], int]:
    """
    Stable-sort every maximal run of keyed lines, leaving keyless lines in place.

    Args:
        contents: Line contents (without terminators)
        keys: Sort key per line, None for keyless lines

    Returns:
        Tuple of (reordered contents, number of keyed lines)
    """
    result = []
    run: List[Tuple[bytes, str]] = []
    count = 0

    def flush():
        run.sort(key=lambda item: item[0])
        result.extend(content for _, content in run)
        run.clear()

    for content, key in zip(contents, keys):
        if key is None:
            flush()
            result.append(content)
        else:
            run.append((key, content))
            count += 1
    flush()

    return result, count


def sort_lines(regex: Union[str, "re.Pattern"], path: Union[str, Path]) -> int:
    """
    Sort runs of lines of a file in place by a key extracted with a regex.

    Args:
        regex: Regular expression whose first capture group is the sort key
        path: File to rewrite

    Returns:
        Number of lines that had a sort key

    Raises:
        ReorderConfigInvalid: If the regex is invalid, or matches a line
            without capturing a key. The file is left untouched.
        OSError: If the file cannot be read or written

    Example:
        >>> sort_lines("^song: (.+)$", "book.toc")
        12
    """
    pattern = _compile_key_regex(regex)
    path = Path(path)

    # newline="" keeps terminators as written so unchanged files stay byte-identical
    with path.open("r", encoding="utf-8", errors="surrogateescape", newline="") as f:
        lines = f.readlines()

    contents = []
    terminators = []
    for line in lines:
        content, terminator = _split_line(line)
        contents.append(content)
        terminators.append(terminator)

    keys = [_line_key(content, pattern) for content in contents]
    sorted_contents, count = sort_keyed_runs(contents, keys)

    if count == 0:
        _log_warning(f"sort-lines: No lines matched the regex in {path}")
        return 0

    # Terminators stay with positions, not with lines
    with path.open("w", encoding="utf-8", errors="surrogateescape", newline="") as f:
        for content, terminator in zip(sorted_contents, terminators):
            f.write(content)
            f.write(terminator)

    _log_debug(f"sort-lines: sorted {count} lines in {path}")
    return count
