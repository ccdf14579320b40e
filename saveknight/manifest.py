"""Catalog of known game save locations, read from the Ludusavi manifest

The manifest is a YAML mapping of game names to their known files::

    Example Game:
      files:
        <winAppData>/ExampleGame/saves:
          tags: [save]
          when:
            - os: windows

Only the file patterns are used; registry locations are ignored.
"""

import os
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from saveknight import settings
from saveknight.exceptions import NetworkError
from saveknight.util import http
from saveknight.util.log import logger
from saveknight.util.system import get_os_name, path_exists
from saveknight.util.yaml import parse_yaml, read_yaml_from_file


@dataclass(frozen=True)
class ManifestEntry:
    """A game and the ordered path patterns where its saves may live"""

    game_name: str
    path_patterns: Tuple[str, ...]


def is_pattern_applicable(file_info: Optional[dict], os_name: str) -> bool:
    """Return whether a manifest file entry applies to the given OS.

    A pattern without 'when' clauses always applies; otherwise one clause must either
    not restrict the OS or name the current one.
    """
    if not isinstance(file_info, dict):
        return True
    clauses = file_info.get("when") or []
    if not clauses:
        return True
    for clause in clauses:
        if not isinstance(clause, dict):
            continue
        clause_os = clause.get("os")
        if not clause_os or clause_os == os_name:
            return True
    return False


class ManifestRegistry:
    """Index of manifest entries by game name"""

    def __init__(self, entries: Iterable[ManifestEntry] = ()) -> None:
        self._entries: Dict[str, ManifestEntry] = {}
        for entry in entries:
            self._entries[entry.game_name] = entry

    @classmethod
    def from_dict(cls, data: dict, os_name: Optional[str] = None) -> "ManifestRegistry":
        os_name = os_name or get_os_name()
        entries = []
        for game_name, game_info in data.items():
            if not isinstance(game_info, dict):
                continue
            files = game_info.get("files")
            if not isinstance(files, dict) or not files:
                continue
            patterns = tuple(
                str(pattern) for pattern, file_info in files.items() if is_pattern_applicable(file_info, os_name)
            )
            if patterns:
                entries.append(ManifestEntry(game_name=str(game_name), path_patterns=patterns))
        logger.debug("Loaded %d games from the manifest", len(entries))
        return cls(entries)

    @classmethod
    def from_yaml(cls, content: str, os_name: Optional[str] = None) -> "ManifestRegistry":
        return cls.from_dict(parse_yaml(content), os_name=os_name)

    @classmethod
    def from_file(cls, path: str, os_name: Optional[str] = None) -> "ManifestRegistry":
        return cls.from_dict(read_yaml_from_file(path), os_name=os_name)

    @classmethod
    def fetch_or_load(
        cls,
        cache_path: Optional[str] = None,
        url: Optional[str] = None,
        max_age: Optional[float] = None,
    ) -> "ManifestRegistry":
        """Return the manifest, downloading it again when the cached copy is missing or stale.

        A failed download falls back to the stale cache, or to an empty registry.
        """
        cache_path = cache_path or settings.MANIFEST_CACHE_PATH
        url = url or settings.MANIFEST_URL
        if max_age is None:
            max_age = settings.MANIFEST_MAX_AGE_DAYS * 24 * 60 * 60

        if is_stale(cache_path, max_age):
            try:
                http.download_file(url, cache_path)
            except (NetworkError, OSError) as ex:
                logger.warning("Failed to fetch manifest: %s", ex)
            else:
                logger.info("Manifest updated from %s", url)

        if path_exists(cache_path):
            return cls.from_file(cache_path)
        logger.warning("No manifest available, no game can be detected")
        return cls()

    def get(self, game_name: str) -> Optional[ManifestEntry]:
        return self._entries.get(game_name)

    def list_games(self) -> List[str]:
        return list(self._entries)

    def search_games(self, query: str) -> List[str]:
        """Return the names of the games containing query, ignoring case"""
        query = query.casefold()
        return [name for name in self._entries if query in name.casefold()]

    def add_custom_paths(self, game_name: str, patterns: Iterable[str]) -> ManifestEntry:
        """Add user defined patterns to a game, creating the game if the manifest lacks it"""
        existing = self._entries.get(game_name)
        merged = list(existing.path_patterns) if existing else []
        for pattern in patterns:
            if pattern not in merged:
                merged.append(pattern)
        entry = ManifestEntry(game_name=game_name, path_patterns=tuple(merged))
        self._entries[game_name] = entry
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, game_name) -> bool:
        return game_name in self._entries


def is_stale(path: str, max_age: float) -> bool:
    """True if path is missing or older than max_age seconds"""
    try:
        modified_at = os.path.getmtime(path)
    except OSError:
        return True
    return time.time() - modified_at > max_age


def load_manifest_registry() -> ManifestRegistry:
    """Load the manifest and merge in the save locations configured by the user"""
    registry = ManifestRegistry.fetch_or_load()
    for game_name, patterns in settings.get_custom_paths().items():
        registry.add_custom_paths(game_name, patterns)
    return registry
