"""Backup of the selected games to the SaveKnight service"""

import threading
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Union

from saveknight.api import GameProfile, SaveKnightClient
from saveknight.auth import AuthSession
from saveknight.exceptions import SaveKnightError
from saveknight.scanner import DetectedGame
from saveknight.uploader import Uploader, UploadResult
from saveknight.util.log import logger


class ProfileCache:
    """Game profiles of the account, looked up by name regardless of case.

    Profiles are only ever added. When built from a list, that list is the storage, so callers
    holding it see the profiles created during a backup.
    """

    def __init__(self, profiles: Optional[List[GameProfile]] = None) -> None:
        self.profiles = profiles if profiles is not None else []
        self._lock = threading.Lock()

    def find(self, name: str) -> Optional[GameProfile]:
        folded = name.casefold()
        for profile in list(self.profiles):
            if profile.name.casefold() == folded:
                return profile
        return None

    def add(self, profile: GameProfile) -> GameProfile:
        """Add a profile unless one with the same name exists; return the cached one"""
        with self._lock:
            existing = self.find(profile.name)
            if existing:
                return existing
            self.profiles.append(profile)
            return profile

    def merge(self, profiles: Iterable[GameProfile]) -> None:
        for profile in profiles:
            self.add(profile)

    def __len__(self) -> int:
        return len(self.profiles)

    def __iter__(self) -> Iterator[GameProfile]:
        return iter(list(self.profiles))


@dataclass
class GameOutcome:
    game_name: str
    success: bool
    stage: Optional[str] = None
    error: Optional[str] = None
    result: Optional[UploadResult] = None


@dataclass
class BackupReport:
    outcomes: List[GameOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

    @property
    def failed_games(self) -> List[str]:
        return [outcome.game_name for outcome in self.outcomes if not outcome.success]

    def to_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "failed_games": self.failed_games,
        }


class SyncOrchestrator:
    """Uploads games one after the other; the failure of a game never stops the others"""

    PLATFORM = "PC"

    def __init__(
        self,
        session: AuthSession,
        client: SaveKnightClient,
        uploader: Optional[Uploader] = None,
    ) -> None:
        self.session = session
        self.client = client
        self.uploader = uploader or Uploader(client)

    def backup(
        self, selected: Iterable[DetectedGame], profiles: Union[ProfileCache, List[GameProfile]]
    ) -> BackupReport:
        if not isinstance(profiles, ProfileCache):
            profiles = ProfileCache(profiles)
        report = BackupReport()
        for game in selected:
            report.outcomes.append(self._backup_game(game, profiles))
        logger.info(
            "Backup finished: %d succeeded, %d failed", report.success_count, report.failure_count
        )
        return report

    def get_or_create_profile(self, game_name: str, profiles: ProfileCache) -> GameProfile:
        profile = profiles.find(game_name)
        if profile:
            return profile
        token = self.session.ensure_valid_token()
        profile = self.client.create_game_profile(token, game_name, self.PLATFORM)
        logger.info("Created game profile %s for %s", profile.id, game_name)
        return profiles.add(profile)

    def _backup_game(self, game: DetectedGame, profiles: ProfileCache) -> GameOutcome:
        try:
            profile = self.get_or_create_profile(game.name, profiles)
        except SaveKnightError as ex:
            logger.error("Unable to get a game profile for %s: %s", game.name, ex)
            return GameOutcome(game.name, False, stage="profile", error=str(ex))

        try:
            token = self.session.ensure_valid_token()
            result = self.uploader.upload_game(game, profile.id, token)
        except SaveKnightError as ex:
            logger.error("Backup of %s failed: %s", game.name, ex)
            return GameOutcome(game.name, False, stage="upload", error=str(ex))

        if not result.success:
            logger.error("Backup of %s failed: %s", game.name, result.message)
            return GameOutcome(game.name, False, stage="upload", error=result.message, result=result)
        return GameOutcome(game.name, True, result=result)
