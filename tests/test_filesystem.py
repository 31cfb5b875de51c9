"""Tests for filesystem utilities."""

import asyncio
import os
from pathlib import Path

from volindex.database.models import FileType, ParsedFilename
from volindex.scanner.filesystem import (
    BreadthFirstWalker,
    classify_file_type,
    parse_filename,
    should_skip,
)
from volindex.scheduler.cancel import CancelToken


def collect(walker: BreadthFirstWalker, root: Path) -> list:
    async def run():
        return [entry async for entry in walker.walk(str(root))]

    return asyncio.run(run())


def make_tree(root: Path) -> None:
    (root / "b_dir" / "deep").mkdir(parents=True)
    (root / "a_dir").mkdir()
    (root / "top.mov").write_bytes(b"x" * 10)
    (root / "a_dir" / "clip.wav").write_bytes(b"y" * 3)
    (root / "b_dir" / "deep" / "notes.txt").write_text("hello")


class TestParseFilename:
    """Tests for parse_filename function."""

    def test_simple_extension(self):
        result = parse_filename("clip.MOV")
        assert result == ParsedFilename(full="clip.MOV", base="clip", extension="mov")

    def test_double_extension(self):
        result = parse_filename("archive.tar.gz")
        assert result == ParsedFilename(full="archive.tar.gz", base="archive.tar", extension="gz")

    def test_no_extension(self):
        result = parse_filename("README")
        assert result == ParsedFilename(full="README", base="README", extension=None)

    def test_dotfile_no_extension(self):
        result = parse_filename(".gitignore")
        assert result == ParsedFilename(full=".gitignore", base=".gitignore", extension=None)

    def test_trailing_dot(self):
        result = parse_filename("file.")
        assert result == ParsedFilename(full="file.", base="file", extension=None)

    def test_empty_string(self):
        result = parse_filename("")
        assert result == ParsedFilename(full="", base="", extension=None)

    def test_multiple_dots(self):
        result = parse_filename("A001.C002.braw")
        assert result == ParsedFilename(full="A001.C002.braw", base="A001.C002", extension="braw")


class TestClassifyFileType:
    def test_known_extensions(self):
        assert classify_file_type("mov") is FileType.VIDEO
        assert classify_file_type("R3D") is FileType.VIDEO
        assert classify_file_type("wav") is FileType.AUDIO
        assert classify_file_type("heic") is FileType.IMAGE
        assert classify_file_type("drp") is FileType.PROJECT

    def test_leading_dot_is_ignored(self):
        assert classify_file_type(".mp4") is FileType.VIDEO

    def test_unknown_and_missing(self):
        assert classify_file_type("txt") is FileType.OTHER
        assert classify_file_type(None) is FileType.OTHER

    def test_directory_wins(self):
        assert classify_file_type("mov", is_dir=True) is FileType.DIR


class TestShouldSkip:
    def test_system_names(self):
        assert should_skip(".Spotlight-V100")
        assert should_skip("$RECYCLE.BIN")
        assert should_skip("System Volume Information")
        assert should_skip("node_modules")
        assert should_skip(".DS_Store")

    def test_regular_names(self):
        assert not should_skip("Footage")
        assert not should_skip(".config")


class TestBreadthFirstWalker:
    def test_yields_level_by_level(self, tmp_path: Path):
        make_tree(tmp_path)

        entries = collect(BreadthFirstWalker(), tmp_path)

        assert [e.relative_path for e in entries] == [
            "a_dir",
            "b_dir",
            "top.mov",
            "a_dir/clip.wav",
            "b_dir/deep",
            "b_dir/deep/notes.txt",
        ]
        assert [e.depth for e in entries] == [1, 1, 1, 2, 2, 3]

    def test_stats_files_not_dirs(self, tmp_path: Path):
        make_tree(tmp_path)

        entries = {e.relative_path: e for e in collect(BreadthFirstWalker(), tmp_path)}

        assert entries["top.mov"].size == 10
        assert entries["top.mov"].mtime is not None
        assert entries["a_dir"].is_dir
        assert entries["a_dir"].size is None

    def test_skips_deny_list_and_contents(self, tmp_path: Path):
        (tmp_path / ".Trashes").mkdir()
        (tmp_path / ".Trashes" / "deleted.mov").write_bytes(b"")
        (tmp_path / "keep.txt").write_text("k")
        (tmp_path / ".DS_Store").write_bytes(b"")

        entries = collect(BreadthFirstWalker(), tmp_path)

        assert [e.relative_path for e in entries] == ["keep.txt"]

    def test_depth_limit_and_dirs_only(self, tmp_path: Path):
        make_tree(tmp_path)

        entries = collect(BreadthFirstWalker(depth_limit=2, dirs_only=True), tmp_path)

        assert [e.relative_path for e in entries] == ["a_dir", "b_dir", "b_dir/deep"]

    def test_symlinks_recorded_not_followed(self, tmp_path: Path):
        target = tmp_path / "real"
        target.mkdir()
        (target / "inside.txt").write_text("i")
        os.symlink(target, tmp_path / "link")

        entries = collect(BreadthFirstWalker(), tmp_path)
        paths = [e.relative_path for e in entries]

        assert "link" in paths
        assert "link/inside.txt" not in paths
        assert "real/inside.txt" in paths
        link = next(e for e in entries if e.relative_path == "link")
        assert link.is_dir is False

    def test_cancel_ends_walk(self, tmp_path: Path):
        for i in range(10):
            (tmp_path / f"file{i}.txt").write_text("x")
        token = CancelToken()
        walker = BreadthFirstWalker(cancel_token=token)

        async def run():
            seen = []
            async for entry in walker.walk(str(tmp_path)):
                seen.append(entry)
                if len(seen) == 3:
                    token.cancel()
            return seen

        assert len(asyncio.run(run())) == 3

    def test_unreadable_directory_is_counted_and_skipped(self, tmp_path: Path, monkeypatch):
        make_tree(tmp_path)
        real_scandir = os.scandir
        locked = str(tmp_path / "a_dir")

        def fake_scandir(path):
            if str(path) == locked:
                raise PermissionError(path)
            return real_scandir(path)

        monkeypatch.setattr(os, "scandir", fake_scandir)
        walker = BreadthFirstWalker()

        paths = [e.relative_path for e in collect(walker, tmp_path)]

        assert "a_dir" in paths
        assert "a_dir/clip.wav" not in paths
        assert "b_dir/deep/notes.txt" in paths
        assert walker.errors == 1
        assert walker.unreadable_dirs == ["a_dir"]

    def test_missing_root_yields_nothing(self, tmp_path: Path):
        walker = BreadthFirstWalker()

        assert collect(walker, tmp_path / "gone") == []
        assert walker.errors == 1
        assert walker.unreadable_dirs == []
