"""Expansion of manifest path patterns into concrete save locations

Patterns use the manifest's variables, written as ``<name>``, and glob wildcards:

- ``*`` matches a single path segment, or part of one (``*.sav``); ``?`` matches one character
- ``**`` alone in a segment matches any number of nested directories

Variables are replaced by their value on the current platform before any matching. A variable
that has no value here (``<winPublic>`` on Linux, ``<root>`` without a known store library...)
makes the pattern resolve to nothing; this is expected for manifest entries written for
several platforms. Syntax errors and unknown variables raise ManifestError.
"""

import os
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from saveknight.exceptions import ManifestError
from saveknight.util.log import logger
from saveknight.util.system import fix_path_case, get_os_name, get_username

KNOWN_VARIABLES = (
    "home",
    "osUserName",
    "documents",
    "appData",
    "localAppData",
    "savedGames",
    "winAppData",
    "winLocalAppData",
    "winLocalAppDataLow",
    "winDocuments",
    "winPublic",
    "winProgramData",
    "winDir",
    "xdgData",
    "xdgConfig",
    "storeUserId",
    "storeGameId",
    "root",
    "game",
    "base",
)

DRIVE_RE = re.compile(r"^([A-Za-z]:)(?:/|$)")


@dataclass(frozen=True)
class ResolvedPath:
    """A concrete location produced by a pattern"""

    pattern: str
    absolute_path: str
    exists: bool


@dataclass(frozen=True)
class ResolverPolicy:
    """Matching rules of a resolver, fixed for its whole lifetime.

    Attributes:
        case_sensitive: Whether names are compared with their case.
        double_star_matches_zero: Whether ``**`` may match no directory at all.
        store_user_id: Value used for ``<storeUserId>``; None makes it a ``*`` wildcard so
            that every account directory (like Steam's numeric userdata folders) is found.
    """

    case_sensitive: bool = True
    double_star_matches_zero: bool = True
    store_user_id: Optional[str] = None

    @classmethod
    def for_platform(cls, os_name: Optional[str] = None, **kwargs) -> "ResolverPolicy":
        """Policy matching the filesystem conventions of an OS (the current one by default)"""
        os_name = os_name or get_os_name()
        return cls(case_sensitive=os_name not in ("windows", "mac"), **kwargs)


def get_platform_variables(os_name: Optional[str] = None) -> Dict[str, Optional[str]]:
    """Values of the manifest variables for an OS; None for those not available there"""
    os_name = os_name or get_os_name()
    home = os.path.expanduser("~")
    variables: Dict[str, Optional[str]] = dict.fromkeys(KNOWN_VARIABLES)
    variables["home"] = home
    variables["osUserName"] = get_username()

    if os_name == "windows":
        user_profile = os.environ.get("USERPROFILE") or home
        app_data = os.environ.get("APPDATA") or os.path.join(user_profile, "AppData", "Roaming")
        local_app_data = os.environ.get("LOCALAPPDATA") or os.path.join(user_profile, "AppData", "Local")
        documents = os.path.join(user_profile, "Documents")
        variables.update(
            appData=app_data,
            winAppData=app_data,
            localAppData=local_app_data,
            winLocalAppData=local_app_data,
            winLocalAppDataLow=os.path.join(user_profile, "AppData", "LocalLow"),
            documents=documents,
            winDocuments=documents,
            savedGames=os.path.join(user_profile, "Saved Games"),
            winPublic=os.environ.get("PUBLIC"),
            winProgramData=os.environ.get("PROGRAMDATA"),
            winDir=os.environ.get("WINDIR"),
        )
    elif os_name == "mac":
        application_support = os.path.join(home, "Library", "Application Support")
        variables.update(
            appData=application_support,
            localAppData=application_support,
            documents=os.path.join(home, "Documents"),
        )
    else:
        xdg_data = os.environ.get("XDG_DATA_HOME") or os.path.join(home, ".local", "share")
        xdg_config = os.environ.get("XDG_CONFIG_HOME") or os.path.join(home, ".config")
        variables.update(
            appData=xdg_data,
            localAppData=xdg_data,
            xdgData=xdg_data,
            xdgConfig=xdg_config,
            documents=os.path.join(home, "Documents"),
        )
    return variables


def is_glob(segment: str) -> bool:
    return "*" in segment or "?" in segment


class PathResolver:
    """Resolves manifest patterns for the current platform"""

    def __init__(
        self,
        policy: Optional[ResolverPolicy] = None,
        variables: Optional[Dict[str, Optional[str]]] = None,
    ) -> None:
        self.policy = policy or ResolverPolicy.for_platform()
        self.variables = get_platform_variables()
        if variables:
            self.variables.update(variables)
        self._variable_names = {name.casefold(): name for name in self.variables}
        self._regex_flags = 0 if self.policy.case_sensitive else re.IGNORECASE

    def resolve(self, pattern: str) -> List[ResolvedPath]:
        """Expand a single pattern.

        Returns an empty list if the pattern references a variable that has no value on this
        platform. A pattern without wildcards always gives exactly one result; a wildcard pattern
        gives one result per match, or a single non-existing result when nothing matches.

        Raises:
            ManifestError: if the pattern is malformed or uses an unknown variable.
        """
        self._check_wildcards(pattern)
        substituted = self._substitute(pattern)
        if substituted is None:
            logger.debug("Pattern %s uses a variable unavailable on this platform", pattern)
            return []

        root, segments = self._split(substituted)
        if root is None:
            logger.debug("Pattern %s doesn't resolve to an absolute path: %s", pattern, substituted)
            return []

        literal_path = os.path.normpath(os.path.join(root, *segments))
        if not any(is_glob(segment) for segment in segments):
            exists = os.path.exists(literal_path)
            if not exists and not self.policy.case_sensitive:
                fixed_path = fix_path_case(literal_path)
                if fixed_path != literal_path and os.path.exists(fixed_path):
                    return [ResolvedPath(pattern, fixed_path, True)]
            return [ResolvedPath(pattern, literal_path, exists)]

        matches = self._prune_nested(os.path.normpath(match) for match in self._expand(root, segments))
        if not matches:
            return [ResolvedPath(pattern, literal_path, False)]
        return [ResolvedPath(pattern, match, True) for match in matches]

    def resolve_all(self, patterns: Iterable[str]) -> List[ResolvedPath]:
        """Expand the ordered patterns of a game. A location produced by several patterns is
        only kept for the first one."""
        resolved = []
        seen = set()
        for pattern in patterns:
            for resolved_path in self.resolve(pattern):
                key = self._key(resolved_path.absolute_path)
                if key in seen:
                    logger.debug("%s already resolved by a previous pattern", resolved_path.absolute_path)
                    continue
                seen.add(key)
                resolved.append(resolved_path)
        return resolved

    def _key(self, path: str) -> str:
        if self.policy.case_sensitive:
            return path
        return path.casefold()

    @staticmethod
    def _check_wildcards(pattern: str) -> None:
        for segment in re.split(r"[/\\]", pattern):
            if "***" in segment:
                raise ManifestError("Unbalanced wildcard '%s' in pattern %s" % (segment, pattern), pattern)
            if "**" in segment and segment != "**":
                raise ManifestError("'**' must be a whole path segment in pattern %s" % pattern, pattern)

    def _parse_variables(self, pattern: str) -> List[Tuple[int, int, str]]:
        """Locate the variables of a pattern as (start, end, name) tuples"""
        variables = []
        start = None
        for index, char in enumerate(pattern):
            if char == "<":
                if start is not None:
                    raise ManifestError("Unbalanced '<' in pattern %s" % pattern, pattern)
                start = index
            elif char == ">":
                if start is None:
                    raise ManifestError("Unbalanced '>' in pattern %s" % pattern, pattern)
                name = pattern[start + 1:index]
                if not name:
                    raise ManifestError("Empty variable name in pattern %s" % pattern, pattern)
                canonical_name = self._variable_names.get(name.casefold())
                if not canonical_name:
                    raise ManifestError("Unknown variable <%s> in pattern %s" % (name, pattern), pattern)
                variables.append((start, index + 1, canonical_name))
                start = None
        if start is not None:
            raise ManifestError("Unbalanced '<' in pattern %s" % pattern, pattern)
        return variables

    def _get_variable(self, name: str) -> Optional[str]:
        if name == "storeUserId":
            return self.policy.store_user_id or "*"
        return self.variables.get(name)

    def _substitute(self, pattern: str) -> Optional[str]:
        parts = []
        position = 0
        for start, end, name in self._parse_variables(pattern):
            value = self._get_variable(name)
            if not value:
                return None
            parts.append(pattern[position:start])
            parts.append(value)
            position = end
        parts.append(pattern[position:])
        return "".join(parts)

    @staticmethod
    def _split(path: str) -> Tuple[Optional[str], List[str]]:
        """Split an absolute path in its root and its segments; (None, []) if it is relative"""
        path = path.replace("\\", "/")
        drive_match = DRIVE_RE.match(path)
        if drive_match:
            root = drive_match.group(1) + os.sep
            rest = path[drive_match.end():]
        elif path.startswith("/"):
            root = os.sep
            rest = path
        else:
            return None, []
        return root, [segment for segment in rest.split("/") if segment and segment != "."]

    def _segment_regex(self, segment: str):
        expression = "".join(
            ".*" if char == "*" else "." if char == "?" else re.escape(char) for char in segment
        )
        return re.compile(expression, self._regex_flags | re.DOTALL)

    @staticmethod
    def _list_dir(path: str) -> List[os.DirEntry]:
        try:
            with os.scandir(path) as entries:
                return sorted(entries, key=lambda entry: entry.name)
        except OSError as ex:
            logger.debug("Can't list %s: %s", path, ex)
            return []

    @staticmethod
    def _is_dir(entry: os.DirEntry, follow_symlinks: bool = True) -> bool:
        try:
            return entry.is_dir(follow_symlinks=follow_symlinks)
        except OSError:
            return False

    def _expand(self, base: str, segments: List[str]) -> Iterator[str]:
        """Yield the existing paths below base matching the remaining segments"""
        if not segments:
            yield base
            return
        head, rest = segments[0], segments[1:]

        if head == "**":
            yield from self._expand_globstar(base, rest, self.policy.double_star_matches_zero)
            return

        if is_glob(head):
            regex = self._segment_regex(head)
            for entry in self._list_dir(base):
                if regex.fullmatch(entry.name) and (not rest or self._is_dir(entry)):
                    yield from self._expand(entry.path, rest)
            return

        candidate = os.path.join(base, head)
        if os.path.lexists(candidate):
            yield from self._expand(candidate, rest)
        elif not self.policy.case_sensitive:
            folded = head.casefold()
            for entry in self._list_dir(base):
                if entry.name.casefold() == folded:
                    yield from self._expand(entry.path, rest)

    def _expand_globstar(self, base: str, rest: List[str], allow_zero: bool) -> Iterator[str]:
        if allow_zero:
            yield from self._expand(base, rest)
        for entry in self._list_dir(base):
            # Symlinked directories could loop forever
            if self._is_dir(entry, follow_symlinks=False):
                yield from self._expand_globstar(entry.path, rest, True)
            elif not rest and not allow_zero:
                yield entry.path

    def _prune_nested(self, matches: Iterable[str]) -> List[str]:
        """Deduplicate matches and drop those inside another match, whose files would be counted twice"""
        unique = {}
        for match in matches:
            unique.setdefault(self._key(match), match)
        return [unique[key] for key in sorted(unique) if not self._has_ancestor(key, unique)]

    @staticmethod
    def _has_ancestor(key: str, keys) -> bool:
        child, parent = key, os.path.dirname(key)
        while parent and parent != child:
            if parent in keys:
                return True
            child, parent = parent, os.path.dirname(parent)
        return False
