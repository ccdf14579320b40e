"""Packing and upload of detected saves"""

import hashlib
import os
import shutil
import tempfile
import zipfile
from dataclasses import dataclass
from typing import Optional

from saveknight.api import SaveKnightClient
from saveknight.exceptions import FilesystemError
from saveknight.scanner import DetectedGame, iter_save_files
from saveknight.util.http import HTTPError
from saveknight.util.log import logger
from saveknight.util.strings import human_size, sanitize_filename

CHUNK_SIZE = 8192


@dataclass
class UploadResult:
    game_name: str
    success: bool
    message: str
    upload_id: Optional[str] = None
    version_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "game_name": self.game_name,
            "success": self.success,
            "message": self.message,
            "upload_id": self.upload_id,
            "version_number": self.version_number,
        }


def create_save_archive(game: DetectedGame, archive_path: str) -> int:
    """Write the files of every existing path of game into a zip archive.

    Files are stored under the index of their path in the game, followed by their path
    relative to it, so that two locations holding the same file names don't collide.
    Returns the number of files written.
    """
    file_count = 0
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for index, save_path in enumerate(game.paths):
            if not save_path.exists:
                continue
            root = save_path.resolved_path
            if os.path.isfile(root):
                files = [(root, os.path.basename(root))]
            else:
                files = ((path, os.path.relpath(path, root)) for path, _stat in iter_save_files(root))
            for path, relative_path in files:
                try:
                    with open(path, "rb"):
                        pass
                except OSError as ex:
                    logger.warning("Skipping unreadable save file %s: %s", path, ex)
                    continue
                archive.write(path, "%d/%s" % (index, relative_path.replace(os.sep, "/")))
                file_count += 1
    return file_count


def calculate_checksum(path: str) -> str:
    """SHA-256 hex digest of a file"""
    hasher = hashlib.sha256()
    with open(path, "rb") as checksum_file:
        for chunk in iter(lambda: checksum_file.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


class Uploader:
    def __init__(self, client: SaveKnightClient) -> None:
        self.client = client

    def upload_game(self, game: DetectedGame, game_profile_id: str, token: str) -> UploadResult:
        """Archive the saves of game and upload them as a new version of a game profile.

        Raises:
            FilesystemError: if the game has no readable save file or the archive can't be written.
            NetworkError: if the upload fails or its response is malformed.
            IntegrityError: if the service doesn't agree on the archive checksum.
        """
        try:
            temp_dir = tempfile.mkdtemp(prefix="saveknight-")
        except OSError as ex:
            raise FilesystemError("Unable to create a temporary directory: %s" % ex) from ex
        try:
            archive_path = os.path.join(temp_dir, "%s.zip" % sanitize_filename(game.name))
            try:
                file_count = create_save_archive(game, archive_path)
                checksum = calculate_checksum(archive_path)
                archive_size = os.path.getsize(archive_path)
            except OSError as ex:
                raise FilesystemError("Unable to archive the saves of %s: %s" % (game.name, ex), path=temp_dir) from ex
            if not file_count:
                raise FilesystemError("No save file to upload for %s" % game.name)
            local_path = game.paths[0].resolved_path if game.paths else ""
            logger.info("Uploading %d files (%s) for %s", file_count, human_size(archive_size), game.name)
            try:
                response = self.client.upload_save(
                    token,
                    game_profile_id,
                    archive_path,
                    checksum,
                    slot_name="%s Auto-Backup" % game.name,
                    local_path=local_path,
                )
            except OSError as ex:
                raise FilesystemError(
                    "Unable to read the archive of %s: %s" % (game.name, ex), path=archive_path
                ) from ex
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        if response.get("success") is False:
            message = response.get("message") or response.get("error") or "Upload rejected"
            logger.error("Upload of %s rejected: %s", game.name, message)
            return UploadResult(game_name=game.name, success=False, message=str(message))

        save_version = response.get("saveVersion") or response.get("save_version") or {}
        if not isinstance(save_version, dict):
            raise HTTPError("Malformed upload response for %s: %r" % (game.name, save_version))
        return UploadResult(
            game_name=game.name,
            success=True,
            message="Uploaded %s successfully" % human_size(archive_size),
            upload_id=response.get("uploadId") or response.get("upload_id"),
            version_number=save_version.get("versionNumber", save_version.get("version_number")),
        )
