"""Device authentication against the SaveKnight service"""

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Tuple

from saveknight import settings
from saveknight.api import SaveKnightClient, parse_api_datetime
from saveknight.exceptions import AuthenticationError, NetworkError, SaveKnightError, TokenStoreError
from saveknight.util.http import UnauthorizedAccess
from saveknight.util.keyring import KeyringTokenStore
from saveknight.util.log import logger
from saveknight.util.signals import NotificationSource
from saveknight.util.system import get_device_name, get_machine_id, get_os_name

ACCOUNT_CONNECTED = NotificationSource()  # called with the new AuthState
ACCOUNT_DISCONNECTED = NotificationSource()


class AuthStatus(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    EXPIRED = "expired"


@dataclass
class AuthState:
    """What the presentation layer may know about the session; the token is never part of it"""

    is_authenticated: bool = False
    device_id: Optional[str] = None
    user_email: Optional[str] = None
    plan_name: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuthSession:
    """Holds the device token of the process.

    The token is persisted in the token store as a JSON record so that a session can be
    restored on the next start. Refreshing is serialized: concurrent callers of
    ensure_valid_token wait for the refresh in progress and reuse its token.
    """

    def __init__(
        self,
        client: Optional[SaveKnightClient] = None,
        token_store=None,
        refresh_threshold: Optional[float] = None,
        machine_id: Optional[str] = None,
        device_type: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.client = client or SaveKnightClient()
        self.token_store = token_store or KeyringTokenStore()
        if refresh_threshold is None:
            refresh_threshold = settings.REFRESH_THRESHOLD
        self.refresh_threshold = timedelta(seconds=refresh_threshold)
        self._machine_id = machine_id
        self.device_type = device_type or get_os_name()
        self.clock = clock

        self._lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self._status = AuthStatus.UNAUTHENTICATED
        self._state = AuthState()
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    @property
    def machine_id(self) -> str:
        if not self._machine_id:
            self._machine_id = get_machine_id()
        return self._machine_id

    @property
    def status(self) -> AuthStatus:
        return self._status

    @property
    def is_authenticated(self) -> bool:
        with self._lock:
            return self._state.is_authenticated

    def get_auth_status(self) -> AuthState:
        with self._lock:
            return AuthState(**asdict(self._state))

    def login(self, session_cookie: str, device_name: Optional[str] = None) -> AuthState:
        """Register this device with a web session cookie and store the device token.

        Raises:
            AuthenticationError: if any step fails; the session is then left unauthenticated.
        """
        if not session_cookie:
            raise AuthenticationError("A session cookie is required to log in")
        with self._lock:
            self._status = AuthStatus.AUTHENTICATING
        try:
            registration = self.client.register_device(
                session_cookie, device_name or get_device_name(), self.machine_id, self.device_type
            )
            account = self.client.fetch_me(registration.token)
            self.token_store.save(self._serialize(registration.token, registration.expires_at, registration.device_id))
        except SaveKnightError as ex:
            self._reset()
            logger.error("Login failed: %s", ex)
            raise AuthenticationError("Login failed: %s" % ex) from ex

        with self._lock:
            self._token = registration.token
            self._expires_at = registration.expires_at
            self._state = self._build_state(account, registration.device_id)
            self._status = AuthStatus.AUTHENTICATED
        logger.info("Device %s registered for %s", registration.device_id, self._state.user_email)
        ACCOUNT_CONNECTED.fire(self.get_auth_status())
        return self.get_auth_status()

    def restore(self) -> AuthState:
        """Restore the session from the token store.

        A missing, unreadable, expired or refused record leaves the session unauthenticated;
        this never raises.
        """
        record = self.token_store.load()
        if not record:
            return self.get_auth_status()
        token, expires_at, device_id = self._deserialize(record)
        if not token:
            logger.warning("Discarding an unreadable device token record")
            self.token_store.clear()
            return self.get_auth_status()
        if expires_at and expires_at <= self.clock():
            logger.info("Stored device token expired on %s", expires_at)
            self.token_store.clear()
            return self.get_auth_status()

        try:
            account = self.client.fetch_me(token)
        except UnauthorizedAccess:
            logger.info("Stored device token was refused, removing it")
            self.token_store.clear()
            return self.get_auth_status()
        except NetworkError as ex:
            logger.warning("Unable to validate the stored device token: %s", ex)
            return self.get_auth_status()

        with self._lock:
            self._token = token
            self._expires_at = expires_at
            self._state = self._build_state(account, device_id)
            self._status = AuthStatus.AUTHENTICATED
        ACCOUNT_CONNECTED.fire(self.get_auth_status())
        return self.get_auth_status()

    def ensure_valid_token(self) -> str:
        """Return a usable device token, refreshing it first when it is about to expire.

        Raises:
            AuthenticationError: when not logged in, or when the service revoked the token.
            NetworkError: when the refresh failed and the current token has already expired.
        """
        with self._lock:
            self._check_authenticated()
            if not self._needs_refresh():
                return self._token

        with self._refresh_lock:
            with self._lock:
                # Another caller may have refreshed while we waited
                self._check_authenticated()
                if not self._needs_refresh():
                    return self._token
                token = self._token
                expires_at = self._expires_at
                self._status = AuthStatus.REFRESHING

            try:
                registration = self.client.refresh_token(token)
            except UnauthorizedAccess as ex:
                with self._lock:
                    self._status = AuthStatus.EXPIRED
                logger.warning("Device token refresh refused, logging out")
                self.logout()
                raise AuthenticationError("The device session expired, please log in again") from ex
            except NetworkError as ex:
                with self._lock:
                    self._status = AuthStatus.AUTHENTICATED
                if expires_at is None or expires_at > self.clock():
                    logger.warning("Token refresh failed, using the current token: %s", ex)
                    return token
                raise

            with self._lock:
                self._token = registration.token
                self._expires_at = registration.expires_at
                if registration.device_id:
                    self._state.device_id = registration.device_id
                self._status = AuthStatus.AUTHENTICATED
                device_id = self._state.device_id
            try:
                self.token_store.save(self._serialize(registration.token, registration.expires_at, device_id))
            except TokenStoreError as ex:
                logger.error("The refreshed token couldn't be stored: %s", ex)
            logger.debug("Device token refreshed, valid until %s", registration.expires_at)
            return registration.token

    def logout(self) -> None:
        was_authenticated = self.is_authenticated
        self._reset()
        self.token_store.clear()
        if was_authenticated:
            logger.info("Logged out")
            ACCOUNT_DISCONNECTED.fire()

    def _check_authenticated(self) -> None:
        if not self._token or self._status not in (AuthStatus.AUTHENTICATED, AuthStatus.REFRESHING):
            raise AuthenticationError("Not authenticated")

    def _needs_refresh(self) -> bool:
        if self._expires_at is None:
            return False
        return self._expires_at - self.clock() <= self.refresh_threshold

    def _reset(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = None
            self._state = AuthState()
            self._status = AuthStatus.UNAUTHENTICATED

    @staticmethod
    def _build_state(account: dict, device_id: Optional[str]) -> AuthState:
        user = account.get("user") or {}
        subscription = account.get("subscription") or {}
        device = account.get("device") or {}
        return AuthState(
            is_authenticated=True,
            device_id=device_id or device.get("id"),
            user_email=user.get("email"),
            plan_name=subscription.get("planName") or subscription.get("plan_name"),
        )

    @staticmethod
    def _serialize(token: str, expires_at: Optional[datetime], device_id: Optional[str]) -> str:
        return json.dumps(
            {
                "token": token,
                "expires_at": expires_at.isoformat() if expires_at else None,
                "device_id": device_id,
            }
        )

    @staticmethod
    def _deserialize(record: str) -> Tuple[Optional[str], Optional[datetime], Optional[str]]:
        try:
            data = json.loads(record)
        except ValueError:
            # Bare token, as stored by early releases
            return record.strip() or None, None, None
        if not isinstance(data, dict):
            return None, None, None
        token = data.get("token")
        expires_at = data.get("expires_at")
        device_id = data.get("device_id")
        if not isinstance(token, str) or not isinstance(expires_at, (str, type(None))):
            return None, None, None
        return token, parse_api_datetime(expires_at), device_id if isinstance(device_id, str) else None
