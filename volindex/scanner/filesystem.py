"""Filesystem traversal utilities for scanning targets."""

import logging
import os
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass

from volindex.database.models import FileType, ParsedFilename
from volindex.scanner.throttle import maybe_yield
from volindex.scheduler.cancel import CancelToken

logger = logging.getLogger(__name__)

SKIP_NAMES = frozenset(
    {
        ".Spotlight-V100",
        ".fseventsd",
        ".Trashes",
        ".Trash",
        ".Trash-1000",
        "$RECYCLE.BIN",
        "System Volume Information",
        ".DS_Store",
        ".git",
        ".svn",
        ".hg",
        "node_modules",
        "lost+found",
    }
)

FILE_TYPES_BY_EXTENSION = {
    FileType.VIDEO: {"mov", "mp4", "mxf", "mts", "m2ts", "avi", "mkv", "webm", "r3d", "braw"},
    FileType.AUDIO: {"wav", "aif", "aiff", "mp3", "m4a", "flac"},
    FileType.IMAGE: {"jpg", "jpeg", "png", "tif", "tiff", "heic", "bmp", "gif"},
    FileType.PROJECT: {"drp", "prproj", "aep", "fcpxml", "xml"},
}


@dataclass
class WalkEntry:
    path: str
    relative_path: str
    name: str
    is_dir: bool
    depth: int
    size: int | None = None
    mtime: int | None = None
    ctime: int | None = None


def parse_filename(filename: str) -> ParsedFilename:
    if not filename:
        return ParsedFilename(full=filename, base=filename, extension=None)

    dot_index = filename.rfind(".")

    if dot_index <= 0 or dot_index == len(filename) - 1:
        return ParsedFilename(full=filename, base=filename.rstrip("."), extension=None)

    extension = filename[dot_index + 1 :].lower()
    base = filename[:dot_index]

    return ParsedFilename(full=filename, base=base, extension=extension)


def classify_file_type(extension: str | None, is_dir: bool = False) -> FileType:
    if is_dir:
        return FileType.DIR
    if extension:
        ext = extension.lower().lstrip(".")
        for file_type, extensions in FILE_TYPES_BY_EXTENSION.items():
            if ext in extensions:
                return file_type
    return FileType.OTHER


def should_skip(name: str) -> bool:
    if not name:
        return True
    if name.startswith(".DS_Store"):
        return True
    return name in SKIP_NAMES


class BreadthFirstWalker:
    """Walks a tree level by level, stat-ing files as it goes.

    Per-entry I/O errors are logged and counted in ``errors``; they never
    stop the walk. Directories that could not be listed for a reason other
    than having vanished are collected in ``unreadable_dirs``. When the
    cancel token is set the walk simply ends.
    """

    def __init__(
        self,
        cancel_token: CancelToken | None = None,
        depth_limit: int | None = None,
        dirs_only: bool = False,
        yield_every: int = 500,
        yield_ms: int = 10,
        max_path_length: int = 4096,
    ):
        self.cancel_token = cancel_token or CancelToken()
        self.depth_limit = depth_limit
        self.dirs_only = dirs_only
        self.yield_every = yield_every
        self.yield_ms = yield_ms
        self.max_path_length = max_path_length
        self.processed = 0
        self.errors = 0
        # Relative paths of directories that exist but could not be listed; "" is the root.
        self.unreadable_dirs: list[str] = []

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    async def walk(self, root: str) -> AsyncIterator[WalkEntry]:
        pending: deque[tuple[str, str, int]] = deque([(root, "", 0)])

        while pending:
            if self.cancelled:
                return

            directory, relative_dir, depth = pending.popleft()
            entries = self._list_directory(directory, relative_dir)

            for entry in entries:
                if self.cancelled:
                    return

                if should_skip(entry.name):
                    logger.debug("Skipping %s", entry.path)
                    continue

                walk_entry = self._process_entry(entry, relative_dir, depth + 1)
                if walk_entry is None:
                    continue

                if walk_entry.is_dir and (
                    self.depth_limit is None or walk_entry.depth < self.depth_limit
                ):
                    pending.append((walk_entry.path, walk_entry.relative_path, walk_entry.depth))

                if not self.dirs_only or walk_entry.is_dir:
                    yield walk_entry

                self.processed += 1
                await maybe_yield(self.processed, self.yield_every, self.yield_ms)

    def _list_directory(self, directory: str, relative_dir: str) -> list[os.DirEntry]:
        try:
            with os.scandir(directory) as it:
                return sorted(it, key=lambda e: e.name)
        except FileNotFoundError:
            logger.warning("Directory disappeared during scan: %s", directory)
        except OSError as e:
            logger.warning("Could not list directory %s: %s", directory, e)
            self.unreadable_dirs.append(relative_dir)
        self.errors += 1
        return []

    def _process_entry(self, entry: os.DirEntry, relative_dir: str, depth: int) -> WalkEntry | None:
        relative_path = f"{relative_dir}/{entry.name}" if relative_dir else entry.name

        try:
            if len(entry.path) > self.max_path_length:
                logger.warning("Path too long, skipping: %s", entry.path)
                self.errors += 1
                return None

            is_dir = entry.is_dir(follow_symlinks=False)
            walk_entry = WalkEntry(
                path=entry.path,
                relative_path=relative_path,
                name=entry.name,
                is_dir=is_dir,
                depth=depth,
            )
            if not is_dir:
                stat_result = entry.stat(follow_symlinks=False)
                walk_entry.size = stat_result.st_size
                walk_entry.mtime = int(stat_result.st_mtime)
                walk_entry.ctime = int(stat_result.st_ctime)
            return walk_entry

        except PermissionError:
            logger.warning("Permission denied: %s", entry.path)
        except FileNotFoundError:
            logger.warning("File disappeared during scan: %s", entry.path)
        except OSError as e:
            logger.warning("Error processing %s: %s", entry.path, e)
        self.errors += 1
        return None
