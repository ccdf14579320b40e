"""Client for the SaveKnight REST API"""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from saveknight import settings
from saveknight.exceptions import IntegrityError
from saveknight.util.http import DEFAULT_TIMEOUT, HTTPError, UnauthorizedAccess, get_user_agent
from saveknight.util.log import logger


def parse_api_datetime(date_string: Optional[str]) -> Optional[datetime]:
    """Convert an ISO 8601 date from the API to an aware datetime, None if it can't be read"""
    if not date_string:
        return None
    if date_string.endswith("Z"):
        date_string = date_string[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(date_string)
    except ValueError:
        logger.error("Invalid date returned by the API: %s", date_string)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _get_field(data: dict, camel_name: str, snake_name: str, default=None):
    if camel_name in data:
        return data[camel_name]
    return data.get(snake_name, default)


@dataclass(frozen=True)
class DeviceRegistration:
    device_id: str
    token: str
    expires_at: Optional[datetime]

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceRegistration":
        token = data.get("token")
        if not token:
            raise ValueError("No token in device response")
        return cls(
            device_id=str(_get_field(data, "deviceId", "device_id", "")),
            token=token,
            expires_at=parse_api_datetime(_get_field(data, "expiresAt", "expires_at")),
        )


@dataclass(frozen=True)
class GameProfile:
    """A game known to the backup service, owning the uploaded save versions"""

    id: str
    name: str
    platform: str = "PC"

    @classmethod
    def from_dict(cls, data: dict) -> "GameProfile":
        return cls(id=str(data["id"]), name=data["name"], platform=data.get("platform") or "PC")

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "platform": self.platform}


class SaveKnightClient:
    """Talks to the device endpoints of the service.

    Failures surface as HTTPError, or UnauthorizedAccess when the credentials are refused.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = (api_url or settings.API_URL).rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": get_user_agent()})

    def _make_request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> Any:
        """Make a request to the API and return its decoded JSON body.

        Args:
            method: HTTP method (GET, POST).
            path: URL path after the API URL.
            token: Device token, sent as a bearer token.
            kwargs: Passed to requests.

        Raises:
            UnauthorizedAccess: If the service refuses the credentials.
            HTTPError: If the request fails or the response isn't JSON.
        """
        url = self.api_url + path
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = "Bearer %s" % token
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as ex:
            raise HTTPError("Request to %s timed out" % url) from ex
        except requests.RequestException as ex:
            raise HTTPError("Unable to connect to server %s: %s" % (url, ex)) from ex

        if response.status_code in (401, 403):
            raise UnauthorizedAccess(
                "Access to %s denied: %s" % (path, response.text or response.reason), code=response.status_code
            )
        if response.status_code > 299:
            raise HTTPError(
                "%s %s failed with status %s: %s" % (method, path, response.status_code, response.text),
                code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as ex:
            raise HTTPError("Invalid response from %s" % url, code=response.status_code) from ex

    def register_device(
        self, session_cookie: str, device_name: str, machine_id: str, device_type: str
    ) -> DeviceRegistration:
        """Exchange a web session cookie for a device token"""
        data = self._make_request(
            "POST",
            "/api/devices/register",
            headers={"Cookie": "connect.sid=%s" % session_cookie},
            json={"deviceName": device_name, "machineId": machine_id, "deviceType": device_type},
        )
        try:
            return DeviceRegistration.from_dict(data)
        except (AttributeError, TypeError, ValueError) as ex:
            raise HTTPError("Malformed device registration response: %s" % ex) from ex

    def refresh_token(self, token: str) -> DeviceRegistration:
        data = self._make_request("POST", "/api/devices/refresh", token=token)
        try:
            return DeviceRegistration.from_dict(data)
        except (AttributeError, TypeError, ValueError) as ex:
            raise HTTPError("Malformed token refresh response: %s" % ex) from ex

    def fetch_me(self, token: str) -> Dict[str, Any]:
        """Return the device, user and subscription the token belongs to"""
        data = self._make_request("GET", "/api/devices/me", token=token)
        if not isinstance(data, dict):
            raise HTTPError("Malformed account response")
        return data

    def list_game_profiles(self, token: str) -> List[GameProfile]:
        data = self._make_request("GET", "/api/devices/game-profiles", token=token)
        if isinstance(data, dict):
            data = _get_field(data, "gameProfiles", "game_profiles", data.get("profiles", []))
        try:
            return [GameProfile.from_dict(profile) for profile in data]
        except (KeyError, TypeError) as ex:
            raise HTTPError("Malformed game profile list: %s" % ex) from ex

    def create_game_profile(self, token: str, name: str, platform: str) -> GameProfile:
        data = self._make_request(
            "POST", "/api/devices/game-profiles", token=token, json={"name": name, "platform": platform}
        )
        try:
            return GameProfile.from_dict(data)
        except (KeyError, TypeError) as ex:
            raise HTTPError("Malformed game profile: %s" % ex) from ex

    def upload_save(
        self,
        token: str,
        profile_id: str,
        archive_path: str,
        checksum: str,
        slot_name: str,
        local_path: str,
    ) -> Dict[str, Any]:
        """Send a save archive as a new version of a game profile.

        Raises:
            IntegrityError: If the service computed another checksum for the archive.
        """
        form = {"slotName": slot_name, "localPath": local_path, "checksum": checksum}
        with open(archive_path, "rb") as archive_file:
            files = {"saveFile": (os.path.basename(archive_path), archive_file, "application/zip")}
            try:
                data = self._make_request(
                    "POST", "/api/devices/upload/%s" % profile_id, token=token, data=form, files=files
                )
            except UnauthorizedAccess:
                raise
            except HTTPError as ex:
                if ex.code in (409, 422) and "checksum" in str(ex).lower():
                    raise IntegrityError(
                        "The service rejected the archive checksum: %s" % ex, expected=checksum
                    ) from ex
                raise
        if not isinstance(data, dict):
            raise HTTPError("Malformed upload response")
        remote_checksum = data.get("checksum")
        if remote_checksum and remote_checksum != checksum:
            raise IntegrityError(
                "Checksum mismatch for %s" % archive_path, expected=checksum, actual=remote_checksum
            )
        return data
