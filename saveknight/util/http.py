"""HTTP utilities"""
import os

import requests

from saveknight.exceptions import NetworkError
from saveknight.settings import HTTP_TIMEOUT, PROJECT, VERSION
from saveknight.util.log import logger

DEFAULT_TIMEOUT = HTTP_TIMEOUT or 30


class HTTPError(NetworkError):
    """Exception raised on request failures"""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class UnauthorizedAccess(HTTPError):
    """Exception raised for 401 and 403 HTTP errors"""


def get_user_agent():
    return "{} {}".format(PROJECT, VERSION)


def download_file(url, dest, timeout=DEFAULT_TIMEOUT):
    """Save a remote resource locally, replacing dest only once the download is complete"""
    logger.debug("GET %s", url)
    temp_path = dest + ".tmp"
    dirname = os.path.dirname(dest)
    if dirname and not os.path.isdir(dirname):
        os.makedirs(dirname)
    try:
        with requests.get(url, headers={"User-Agent": get_user_agent()}, timeout=timeout, stream=True) as response:
            if response.status_code == 401:
                raise UnauthorizedAccess("Access to %s denied" % url, code=response.status_code)
            if response.status_code > 299:
                raise HTTPError("Request to %s responded with %s" % (url, response.status_code), code=response.status_code)
            with open(temp_path, "wb") as dest_file:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    dest_file.write(chunk)
        os.replace(temp_path, dest)
    except requests.Timeout as ex:
        raise HTTPError("Request to %s timed out" % url) from ex
    except requests.RequestException as ex:
        raise HTTPError("Unable to connect to server %s: %s" % (url, ex)) from ex
    finally:
        if os.path.isfile(temp_path):
            os.unlink(temp_path)
    return dest
