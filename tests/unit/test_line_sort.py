"""Unit tests for in-place line sorting of TOC files."""

import re

import pytest

from quire.contexts.rendering.exceptions import ReorderConfigInvalid
from quire.contexts.rendering.line_sort import sort_keyed_runs, sort_lines

KEY = r"^entry: (.+)$"


def _keyed_runs(lines, pattern=KEY):
    """Maximal runs of lines matching the pattern."""
    regex = re.compile(pattern)
    runs, current = [], []
    for line in lines:
        if regex.search(line):
            current.append(line)
        elif current:
            runs.append(current)
            current = []
    if current:
        runs.append(current)
    return runs


TOC = (
    "\\begin{toc}\n"
    "entry: Zebra\n"
    "entry: apple\n"
    "entry: Mango\n"
    "% chapter break\n"
    "entry: b\n"
    "entry: a\n"
    "\\end{toc}\n"
)


@pytest.mark.unit
class TestSortLines:
    """Tests for sort_lines()."""

    def test_sorts_runs_between_fixed_lines(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_text(TOC)

        count = sort_lines(KEY, toc)

        assert count == 5
        assert toc.read_text() == (
            "\\begin{toc}\n"
            "entry: Mango\n"
            "entry: Zebra\n"
            "entry: apple\n"
            "% chapter break\n"
            "entry: a\n"
            "entry: b\n"
            "\\end{toc}\n"
        )

    def test_keyless_lines_keep_position_and_content(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_text(TOC)
        before = TOC.splitlines()

        sort_lines(KEY, toc)
        after = toc.read_text().splitlines()

        regex = re.compile(KEY)
        for i, line in enumerate(before):
            if not regex.search(line):
                assert after[i] == line

    def test_runs_are_non_decreasing_and_lines_preserved(self, tmp_path):
        lines = [f"entry: {word}" for word in ("q", "B", "é", "a", "Z", "b")]
        lines.insert(3, "separator")
        toc = tmp_path / "book.toc"
        toc.write_text("\n".join(lines) + "\n", encoding="utf-8")

        sort_lines(KEY, toc)
        after = toc.read_text(encoding="utf-8").splitlines()

        assert sorted(after) == sorted(lines)
        for run in _keyed_runs(after):
            keys = [re.match(KEY, line).group(1).encode("utf-8") for line in run]
            assert keys == sorted(keys)

    def test_sort_is_stable_for_equal_keys(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_text("b 2nd\na 1st\nb 1st\na 2nd\n")

        sort_lines(r"^(\w) ", toc)

        assert toc.read_text() == "a 1st\na 2nd\nb 2nd\nb 1st\n"

    def test_ordering_is_bytewise_not_locale(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_text("entry: b\nentry: B\nentry: á\nentry: a\n", encoding="utf-8")

        sort_lines(KEY, toc)

        assert toc.read_text(encoding="utf-8") == "entry: B\nentry: a\nentry: b\nentry: á\n"

    def test_idempotent(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_text(TOC)

        sort_lines(KEY, toc)
        once = toc.read_bytes()
        sort_lines(KEY, toc)

        assert toc.read_bytes() == once

    def test_no_match_returns_zero_and_leaves_file_identical(self, tmp_path):
        toc = tmp_path / "book.toc"
        content = b"nothing\r\nto see here\nno trailing newline"
        toc.write_bytes(content)

        assert sort_lines(KEY, toc) == 0
        assert toc.read_bytes() == content

    def test_regex_without_capture_group_fails(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_text(TOC)

        with pytest.raises(ReorderConfigInvalid, match="capture group"):
            sort_lines(r"^entry: .+$", toc)

        assert toc.read_text() == TOC

    def test_capture_group_outside_match_fails(self, tmp_path):
        toc = tmp_path / "book.toc"
        content = "b x\na\nc x\n"
        toc.write_text(content)

        with pytest.raises(ReorderConfigInvalid, match="capture group"):
            sort_lines(r"^(?:(\w) x|\w)$", toc)

        assert toc.read_text() == content

    def test_empty_capture_is_a_valid_key(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_text("entry: b\nentry:\n")

        assert sort_lines(r"^entry:\s?(.*)$", toc) == 2
        assert toc.read_text() == "entry:\nentry: b\n"

    def test_invalid_regex_fails(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_text(TOC)

        with pytest.raises(ReorderConfigInvalid, match="Invalid regex"):
            sort_lines(r"^entry: (.+$", toc)

    def test_missing_file_raises_oserror(self, tmp_path):
        with pytest.raises(OSError):
            sort_lines(KEY, tmp_path / "missing.toc")

    def test_line_endings_stay_in_place(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_bytes(b"entry: b\r\nentry: a\r\nlast")

        sort_lines(KEY, toc)

        assert toc.read_bytes() == b"entry: a\r\nentry: b\r\nlast"

    def test_unterminated_last_line_is_not_merged(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_bytes(b"entry: b\nentry: a")

        sort_lines(KEY, toc)

        assert toc.read_bytes() == b"entry: a\nentry: b"

    def test_invalid_utf8_survives(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_bytes(b"entry: \xff\nentry: a\n")

        assert sort_lines(KEY, toc) == 2
        assert toc.read_bytes() == b"entry: a\nentry: \xff\n"

    def test_accepts_compiled_pattern(self, tmp_path):
        toc = tmp_path / "book.toc"
        toc.write_text("entry: b\nentry: a\n")

        assert sort_lines(re.compile(KEY), toc) == 2
        assert toc.read_text() == "entry: a\nentry: b\n"


@pytest.mark.unit
def test_sort_keyed_runs_counts_keyed_lines():
    contents = ["x", "c", "a", "y", "b"]
    keys = [None, b"c", b"a", None, b"b"]

    result, count = sort_keyed_runs(contents, keys)

    assert result == ["x", "a", "c", "y", "b"]
    assert count == 3
