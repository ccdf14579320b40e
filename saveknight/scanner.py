"""Detection of the games having saves on this machine"""
import concurrent.futures
import os
import stat
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Tuple

from saveknight import settings
from saveknight.exceptions import ManifestError
from saveknight.manifest import ManifestEntry
from saveknight.resolver import PathResolver, ResolvedPath
from saveknight.util.log import logger
from saveknight.util.system import is_within

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class DetectedSavePath:
    pattern: str
    resolved_path: str
    exists: bool
    file_count: int = 0
    total_size_bytes: int = 0
    last_modified: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "pattern": self.pattern,
            "resolved_path": self.resolved_path,
            "exists": self.exists,
            "file_count": self.file_count,
            "total_size_bytes": self.total_size_bytes,
        }


@dataclass(frozen=True)
class DetectedGame:
    """A game with at least one existing save location.

    Build instances with from_paths so that the totals always agree with the paths.
    """

    name: str
    paths: Tuple[DetectedSavePath, ...]
    total_size_bytes: int
    last_modified: Optional[datetime] = None

    @classmethod
    def from_paths(cls, name: str, paths: Iterable[DetectedSavePath]) -> "DetectedGame":
        paths = tuple(paths)
        timestamps = [path.last_modified for path in paths if path.exists and path.last_modified is not None]
        last_modified = datetime.fromtimestamp(max(timestamps), tz=timezone.utc) if timestamps else None
        return cls(
            name=name,
            paths=paths,
            total_size_bytes=sum(path.total_size_bytes for path in paths),
            last_modified=last_modified,
        )

    @property
    def existing_paths(self) -> List[DetectedSavePath]:
        return [path for path in self.paths if path.exists]

    @property
    def file_count(self) -> int:
        return sum(path.file_count for path in self.paths)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "paths": [path.to_dict() for path in self.paths],
            "total_size_bytes": self.total_size_bytes,
            "last_modified": self.last_modified.strftime(DATE_FORMAT) if self.last_modified else None,
        }


def iter_save_files(root: str, deadline: Optional[float] = None) -> Iterator[Tuple[str, os.stat_result]]:
    """Yield (path, stat) for every regular file below root.

    Symlinked directories are never entered and a symlinked file is only kept when its target
    is inside root. Files that can't be read are skipped. When deadline (a time.monotonic()
    value) passes, the walk stops and what was found so far stands.
    """
    real_root = os.path.realpath(root)
    pending = [root]
    while pending:
        if deadline is not None and time.monotonic() > deadline:
            logger.warning("Scan of %s timed out, totals are partial", root)
            return
        directory = pending.pop()
        try:
            with os.scandir(directory) as entries:
                entries = list(entries)
        except OSError as ex:
            logger.debug("Can't list %s: %s", directory, ex)
            continue
        for entry in entries:
            try:
                if entry.is_symlink():
                    if not is_within(os.path.realpath(entry.path), real_root):
                        logger.debug("Skipping %s, it links outside of %s", entry.path, root)
                        continue
                    if entry.is_dir():
                        continue
                    file_stat = entry.stat()
                elif entry.is_dir(follow_symlinks=False):
                    pending.append(entry.path)
                    continue
                else:
                    file_stat = entry.stat(follow_symlinks=False)
            except OSError as ex:
                logger.debug("Can't read %s: %s", entry.path, ex)
                continue
            if stat.S_ISREG(file_stat.st_mode):
                yield entry.path, file_stat


class Scanner:
    """Resolves the manifest entries and measures what they point to"""

    def __init__(
        self,
        resolver: PathResolver,
        max_workers: Optional[int] = None,
        path_timeout: Optional[float] = None,
    ) -> None:
        self.resolver = resolver
        self.max_workers = max_workers or settings.SCAN_WORKERS
        self.path_timeout = path_timeout if path_timeout is not None else settings.SCAN_PATH_TIMEOUT

    def scan_path(self, resolved: ResolvedPath) -> DetectedSavePath:
        missing = DetectedSavePath(pattern=resolved.pattern, resolved_path=resolved.absolute_path, exists=False)
        if not resolved.exists:
            return missing
        try:
            root_stat = os.stat(resolved.absolute_path)
        except OSError as ex:
            logger.debug("Can't stat %s: %s", resolved.absolute_path, ex)
            return missing

        if stat.S_ISREG(root_stat.st_mode):
            return DetectedSavePath(
                pattern=resolved.pattern,
                resolved_path=resolved.absolute_path,
                exists=True,
                file_count=1,
                total_size_bytes=root_stat.st_size,
                last_modified=root_stat.st_mtime,
            )
        if not stat.S_ISDIR(root_stat.st_mode):
            return missing

        deadline = time.monotonic() + self.path_timeout if self.path_timeout else None
        file_count = 0
        total_size = 0
        last_modified = None
        for _path, file_stat in iter_save_files(resolved.absolute_path, deadline):
            file_count += 1
            total_size += file_stat.st_size
            if last_modified is None or file_stat.st_mtime > last_modified:
                last_modified = file_stat.st_mtime
        return DetectedSavePath(
            pattern=resolved.pattern,
            resolved_path=resolved.absolute_path,
            exists=True,
            file_count=file_count,
            total_size_bytes=total_size,
            last_modified=last_modified,
        )

    def scan_entry(self, entry: ManifestEntry) -> Optional[DetectedGame]:
        """Measure the save locations of a game, None if none of them exists"""
        paths = [self.scan_path(resolved) for resolved in self.resolver.resolve_all(entry.path_patterns)]
        if not any(path.exists for path in paths):
            return None
        return DetectedGame.from_paths(entry.game_name, paths)

    def scan(self, entries: Iterable[ManifestEntry]) -> List[DetectedGame]:
        """Scan entries concurrently; the games are sorted by decreasing save size"""
        start_time = time.time()
        games = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_scans = {executor.submit(self.scan_entry, entry): entry for entry in entries}
            for future in concurrent.futures.as_completed(future_scans):
                entry = future_scans[future]
                try:
                    game = future.result()
                except ManifestError as ex:
                    logger.error("Invalid manifest entry for %s: %s", entry.game_name, ex)
                    continue
                if game:
                    games.append(game)
        games.sort(key=lambda game: (-game.total_size_bytes, game.name))
        logger.info(
            "Found saves for %d of %d games in %0.2fs", len(games), len(future_scans), time.time() - start_time
        )
        return games
