"""Exception handling module"""

from gettext import gettext as _


class SaveKnightError(Exception):
    """Base exception for SaveKnight related errors"""

    def __init__(self, message, *args, **kwarg):
        super().__init__(message, *args, **kwarg)
        self.message = message
        self.is_expected = False


class ManifestError(SaveKnightError):
    """Raised for a malformed path pattern or an unknown variable in a manifest entry.
    This is fatal to the entry only, never to a whole scan."""

    def __init__(self, message, pattern=None, *args, **kwarg):
        super().__init__(message, *args, **kwarg)
        self.pattern = pattern


class FilesystemError(SaveKnightError):
    """Raised when save files can't be read"""

    def __init__(self, message=None, path=None, *args, **kwarg):
        if not message and path:
            message = _("The path {} could not be read").format(path)
        super().__init__(message, *args, **kwarg)
        self.path = path


class AuthenticationError(SaveKnightError):
    """Raised when authentication to the backup service fails or the device token is no
    longer usable"""

    def __init__(self, message, *args, **kwarg):
        super().__init__(message, *args, **kwarg)
        self.is_expected = True


class TokenStoreError(SaveKnightError):
    """Raised when the device token can't be written to the secure store"""


class NetworkError(SaveKnightError):
    """Raised on connectivity failures talking to a remote service"""


class IntegrityError(SaveKnightError):
    """Raised when the service reports that an uploaded archive doesn't match its checksum"""

    def __init__(self, message, expected=None, actual=None, *args, **kwarg):
        super().__init__(message, *args, **kwarg)
        self.expected = expected
        self.actual = actual


class ScanInProgressError(SaveKnightError):
    """Raised when a scan is requested while another one is still running"""

    def __init__(self, message=None, *args, **kwarg):
        super().__init__(message or _("Scan already in progress"), *args, **kwarg)
        self.is_expected = True
