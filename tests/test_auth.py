import json
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from saveknight.api import DeviceRegistration
from saveknight.auth import ACCOUNT_CONNECTED, ACCOUNT_DISCONNECTED, AuthSession, AuthStatus
from saveknight.exceptions import AuthenticationError, TokenStoreError
from saveknight.util.http import HTTPError, UnauthorizedAccess

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

ACCOUNT = {
    "device": {"id": "dev-1", "name": "My PC"},
    "user": {"id": "user-1", "email": "knight@example.com"},
    "subscription": {"plan_name": "Pro"},
}


class MemoryTokenStore:
    def __init__(self, token=None):
        self.token = token

    def save(self, token):
        self.token = token

    def load(self):
        return self.token

    def clear(self):
        self.token = None


class AuthTestCase(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.client.fetch_me.return_value = ACCOUNT
        self.store = MemoryTokenStore()
        self.session = AuthSession(
            self.client, self.store, refresh_threshold=300, machine_id="machine-1", device_type="linux", clock=lambda: NOW
        )

    def login(self, expires_in=timedelta(days=30)):
        self.client.register_device.return_value = DeviceRegistration("dev-1", "token-1", NOW + expires_in)
        return self.session.login("cookie", "My PC")

    def store_record(self, token="token-1", expires_at=None):
        self.store.token = json.dumps(
            {"token": token, "expires_at": expires_at.isoformat() if expires_at else None, "device_id": "dev-1"}
        )


class TestLogin(AuthTestCase):
    def test_success(self):
        state = self.login()
        self.assertTrue(state.is_authenticated)
        self.assertEqual(state.device_id, "dev-1")
        self.assertEqual(state.user_email, "knight@example.com")
        self.assertEqual(state.plan_name, "Pro")
        self.assertEqual(self.session.status, AuthStatus.AUTHENTICATED)
        self.client.register_device.assert_called_once_with("cookie", "My PC", "machine-1", "linux")
        self.client.fetch_me.assert_called_once_with("token-1")
        self.assertEqual(json.loads(self.store.token)["token"], "token-1")

    def test_registration_failure(self):
        self.client.register_device.side_effect = HTTPError("Registration failed", code=400)
        with self.assertRaises(AuthenticationError):
            self.session.login("cookie", "My PC")
        self.assertFalse(self.session.is_authenticated)
        self.assertEqual(self.session.status, AuthStatus.UNAUTHENTICATED)
        self.assertIsNone(self.store.token)

    def test_account_failure_is_not_partial(self):
        self.client.register_device.return_value = DeviceRegistration("dev-1", "token-1", None)
        self.client.fetch_me.side_effect = HTTPError("Malformed account response")
        with self.assertRaises(AuthenticationError):
            self.session.login("cookie", "My PC")
        self.assertFalse(self.session.is_authenticated)
        self.assertIsNone(self.store.token)

    def test_store_failure(self):
        self.store.save = MagicMock(side_effect=TokenStoreError("locked"))
        with self.assertRaises(AuthenticationError):
            self.login()
        self.assertFalse(self.session.is_authenticated)

    def test_empty_cookie(self):
        with self.assertRaises(AuthenticationError):
            self.session.login("", "My PC")
        self.client.register_device.assert_not_called()

    def test_notifications(self):
        connected = MagicMock()
        disconnected = MagicMock()
        registrations = [ACCOUNT_CONNECTED.register(connected), ACCOUNT_DISCONNECTED.register(disconnected)]
        try:
            self.login()
            self.session.logout()
        finally:
            for registration in registrations:
                registration.unregister()
        connected.assert_called_once()
        self.assertTrue(connected.call_args[0][0].is_authenticated)
        disconnected.assert_called_once_with()


class TestRestore(AuthTestCase):
    def test_no_record(self):
        self.assertFalse(self.session.restore().is_authenticated)
        self.client.fetch_me.assert_not_called()

    def test_valid_record(self):
        self.store_record(expires_at=NOW + timedelta(days=1))
        state = self.session.restore()
        self.assertTrue(state.is_authenticated)
        self.assertEqual(state.device_id, "dev-1")
        self.assertEqual(self.session.ensure_valid_token(), "token-1")

    def test_bare_token_record(self):
        self.store.token = "bare-token"
        self.assertTrue(self.session.restore().is_authenticated)
        self.client.fetch_me.assert_called_once_with("bare-token")

    def test_expired_record(self):
        self.store_record(expires_at=NOW - timedelta(minutes=1))
        self.assertFalse(self.session.restore().is_authenticated)
        self.assertIsNone(self.store.token)
        self.client.fetch_me.assert_not_called()

    def test_refused_record(self):
        self.store_record()
        self.client.fetch_me.side_effect = UnauthorizedAccess("denied", code=401)
        self.assertFalse(self.session.restore().is_authenticated)
        self.assertIsNone(self.store.token)

    def test_offline(self):
        self.store_record()
        self.client.fetch_me.side_effect = HTTPError("unreachable")
        with self.assertLogs("saveknight", level="WARNING"):
            self.assertFalse(self.session.restore().is_authenticated)
        self.assertIsNotNone(self.store.token)

    def test_unreadable_record(self):
        self.store.token = json.dumps({"unexpected": True})
        self.assertFalse(self.session.restore().is_authenticated)
        self.assertIsNone(self.store.token)

    def test_record_with_wrong_types(self):
        for record in (
            {"token": "token-1", "expires_at": 1700000000, "device_id": "dev-1"},
            {"token": ["token-1"], "expires_at": None, "device_id": "dev-1"},
        ):
            self.store.token = json.dumps(record)
            with self.assertLogs("saveknight", level="WARNING"):
                self.assertFalse(self.session.restore().is_authenticated)
            self.assertIsNone(self.store.token)
        self.client.fetch_me.assert_not_called()


class TestEnsureValidToken(AuthTestCase):
    def test_unauthenticated(self):
        with self.assertRaises(AuthenticationError):
            self.session.ensure_valid_token()

    def test_fresh_token(self):
        self.login()
        self.assertEqual(self.session.ensure_valid_token(), "token-1")
        self.client.refresh_token.assert_not_called()

    def test_refresh_near_expiry(self):
        self.login(expires_in=timedelta(minutes=2))
        self.client.refresh_token.return_value = DeviceRegistration("dev-1", "token-2", NOW + timedelta(days=30))
        self.assertEqual(self.session.ensure_valid_token(), "token-2")
        self.client.refresh_token.assert_called_once_with("token-1")
        self.assertEqual(json.loads(self.store.token)["token"], "token-2")
        self.assertEqual(self.session.ensure_valid_token(), "token-2")
        self.assertEqual(self.client.refresh_token.call_count, 1)

    def test_refresh_refused(self):
        self.login(expires_in=timedelta(minutes=2))
        self.client.refresh_token.side_effect = UnauthorizedAccess("revoked", code=401)
        with self.assertRaises(AuthenticationError):
            self.session.ensure_valid_token()
        self.assertFalse(self.session.is_authenticated)
        self.assertEqual(self.session.status, AuthStatus.UNAUTHENTICATED)
        self.assertIsNone(self.store.token)

    def test_transient_failure_with_usable_token(self):
        self.login(expires_in=timedelta(minutes=2))
        self.client.refresh_token.side_effect = HTTPError("unreachable")
        with self.assertLogs("saveknight", level="WARNING"):
            self.assertEqual(self.session.ensure_valid_token(), "token-1")
        self.assertTrue(self.session.is_authenticated)

    def test_transient_failure_with_expired_token(self):
        self.login(expires_in=-timedelta(minutes=1))
        self.client.refresh_token.side_effect = HTTPError("unreachable")
        with self.assertRaises(HTTPError):
            self.session.ensure_valid_token()
        self.assertTrue(self.session.is_authenticated)
        self.assertEqual(self.session.status, AuthStatus.AUTHENTICATED)

    def test_concurrent_callers_refresh_once(self):
        self.login(expires_in=timedelta(minutes=2))

        def refresh(token):
            time.sleep(0.2)
            return DeviceRegistration("dev-1", "token-2", NOW + timedelta(days=30))

        self.client.refresh_token.side_effect = refresh
        tokens = []
        threads = [
            threading.Thread(target=lambda: tokens.append(self.session.ensure_valid_token())) for _ in range(2)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(self.client.refresh_token.call_count, 1)
        self.assertEqual(tokens, ["token-2", "token-2"])


class TestLogout(AuthTestCase):
    def test_logout(self):
        self.login()
        self.session.logout()
        self.assertFalse(self.session.get_auth_status().is_authenticated)
        self.assertIsNone(self.store.token)
        with self.assertRaises(AuthenticationError):
            self.session.ensure_valid_token()

    def test_idempotent(self):
        self.session.logout()
        self.session.logout()
        self.assertEqual(self.session.status, AuthStatus.UNAUTHENTICATED)

    def test_status_is_a_copy(self):
        self.login()
        state = self.session.get_auth_status()
        state.user_email = "changed@example.com"
        self.assertEqual(self.session.get_auth_status().user_email, "knight@example.com")
        self.assertEqual(state.to_dict()["device_id"], "dev-1")
