"""Device token storage in the OS credential store"""
# Third Party Libraries
import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from saveknight import settings
from saveknight.exceptions import TokenStoreError
from saveknight.util.log import logger


class KeyringTokenStore:
    """Keeps the serialized device token in the system keyring, so it survives restarts"""

    def __init__(self, service_name=settings.KEYRING_SERVICE, username=settings.KEYRING_USER):
        self.service_name = service_name
        self.username = username

    def save(self, token: str) -> None:
        try:
            keyring.set_password(self.service_name, self.username, token)
        except KeyringError as ex:
            raise TokenStoreError("Failed to store token: %s" % ex) from ex

    def load(self):
        try:
            return keyring.get_password(self.service_name, self.username)
        except KeyringError as ex:
            logger.error("Unable to read the device token from the keyring: %s", ex)
            return None

    def clear(self) -> None:
        try:
            keyring.delete_password(self.service_name, self.username)
        except PasswordDeleteError:
            # Nothing stored
            pass
        except KeyringError as ex:
            logger.error("Unable to remove the device token from the keyring: %s", ex)
