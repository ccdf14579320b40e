"""Operations offered to the presentation layer"""

import threading
from typing import Callable, Iterable, List, Optional

from saveknight import settings
from saveknight.api import GameProfile, SaveKnightClient
from saveknight.auth import AuthSession, AuthState
from saveknight.exceptions import SaveKnightError, ScanInProgressError
from saveknight.manifest import ManifestRegistry, load_manifest_registry
from saveknight.resolver import PathResolver
from saveknight.scanner import DetectedGame, Scanner
from saveknight.sync import BackupReport, ProfileCache, SyncOrchestrator
from saveknight.uploader import Uploader, UploadResult
from saveknight.util.log import logger
from saveknight.util.signals import NotificationSource

SCAN_STARTED = NotificationSource()
SCAN_COMPLETED = NotificationSource()  # called with the list of detected games


class SaveKnightService:
    """Ties the session, the scanner and the uploads together and keeps the game selection"""

    def __init__(
        self,
        session: Optional[AuthSession] = None,
        client: Optional[SaveKnightClient] = None,
        registry_loader: Callable[[], ManifestRegistry] = load_manifest_registry,
        resolver: Optional[PathResolver] = None,
        scanner: Optional[Scanner] = None,
    ) -> None:
        self.client = client or SaveKnightClient()
        self.session = session or AuthSession(self.client)
        self.registry_loader = registry_loader
        self.scanner = scanner or Scanner(resolver or PathResolver())
        self.uploader = Uploader(self.client)
        self.orchestrator = SyncOrchestrator(self.session, self.client, self.uploader)
        self.profiles = ProfileCache()
        self._profiles_fetched = False
        self.detected_games: List[DetectedGame] = []
        self._registry: Optional[ManifestRegistry] = None
        self._selection: List[str] = []
        self._scan_lock = threading.Lock()
        self._selection_lock = threading.Lock()

    # Account

    def get_auth_status(self) -> AuthState:
        return self.session.get_auth_status()

    def restore_session(self) -> AuthState:
        state = self.session.restore()
        if state.is_authenticated:
            self._load_game_profiles()
        return state

    def login(self, session_cookie: str, device_name: Optional[str] = None) -> AuthState:
        state = self.session.login(session_cookie, device_name)
        if state.device_id:
            settings.write_setting("device_id", state.device_id)
        self._load_game_profiles()
        return state

    def _load_game_profiles(self) -> None:
        """Fill the profile cache once connected; a failure is retried by the next backup"""
        try:
            self.get_game_profiles()
        except SaveKnightError as ex:
            logger.warning("Unable to load the game profiles: %s", ex)

    def logout(self) -> None:
        self.session.logout()
        settings.write_setting("device_id", "")
        self.clear_selection()
        self.profiles = ProfileCache()
        self._profiles_fetched = False

    # Detection

    def get_registry(self) -> ManifestRegistry:
        if self._registry is None:
            self._registry = self.registry_loader()
        return self._registry

    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    def scan_games(self) -> List[DetectedGame]:
        """Scan the games of the manifest, or only the enabled ones when the user picked some.

        Raises:
            ScanInProgressError: if another scan hasn't finished yet.
        """
        if not self._scan_lock.acquire(blocking=False):
            raise ScanInProgressError()
        try:
            SCAN_STARTED.fire()
            registry = self.get_registry()
            enabled_games = settings.get_enabled_games()
            if enabled_games:
                entries = [registry.get(name) for name in enabled_games if name in registry]
            else:
                entries = list(registry)
            logger.info("Scanning %d games", len(entries))
            games = self.scanner.scan(entries)
        finally:
            self._scan_lock.release()

        self.detected_games = games
        detected_names = {game.name for game in games}
        with self._selection_lock:
            self._selection = [name for name in self._selection if name in detected_names]
        SCAN_COMPLETED.fire(games)
        return games

    def get_detected_game(self, name: str) -> Optional[DetectedGame]:
        for game in self.detected_games:
            if game.name == name:
                return game
        return None

    # Game profiles and uploads

    def get_game_profiles(self) -> List[GameProfile]:
        token = self.session.ensure_valid_token()
        profiles = self.client.list_game_profiles(token)
        self.profiles.merge(profiles)
        self._profiles_fetched = True
        return profiles

    def create_game_profile(self, name: str, platform: str = SyncOrchestrator.PLATFORM) -> GameProfile:
        token = self.session.ensure_valid_token()
        return self.profiles.add(self.client.create_game_profile(token, name, platform))

    def upload_saves(self, games: Iterable[DetectedGame], game_profile_id: str) -> List[UploadResult]:
        """Upload games to a single profile; a failure is reported in the result of its game"""
        results = []
        for game in games:
            try:
                token = self.session.ensure_valid_token()
                results.append(self.uploader.upload_game(game, game_profile_id, token))
            except SaveKnightError as ex:
                logger.error("Upload of %s failed: %s", game.name, ex)
                results.append(UploadResult(game_name=game.name, success=False, message=str(ex)))
        return results

    # Selection

    @property
    def selected_games(self) -> List[str]:
        with self._selection_lock:
            return list(self._selection)

    def select(self, name: str) -> None:
        with self._selection_lock:
            if name not in self._selection:
                self._selection.append(name)

    def deselect(self, name: str) -> None:
        with self._selection_lock:
            if name in self._selection:
                self._selection.remove(name)

    def select_all(self) -> None:
        with self._selection_lock:
            self._selection = [game.name for game in self.detected_games]

    def clear_selection(self) -> None:
        with self._selection_lock:
            self._selection = []

    def backup_selected(self) -> BackupReport:
        """Back up the selected games; the selection is cleared even when some of them fail.

        The profiles of the account are fetched first if they haven't been yet, so that games
        already known to the service keep their profile.
        """
        try:
            games = [game for game in self.detected_games if game.name in self.selected_games]
            if games and not self._profiles_fetched:
                self.get_game_profiles()
            return self.orchestrator.backup(games, self.profiles)
        finally:
            self.clear_selection()
