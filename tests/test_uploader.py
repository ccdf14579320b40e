import hashlib
import os
import shutil
import tempfile
import unittest
import zipfile
from unittest.mock import MagicMock, patch

from saveknight.exceptions import FilesystemError, IntegrityError
from saveknight.scanner import DetectedGame, DetectedSavePath
from saveknight.uploader import Uploader, calculate_checksum, create_save_archive
from saveknight.util.http import HTTPError


def write_file(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as save_file:
        save_file.write(content)


class UploaderTestCase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = os.path.realpath(tempfile.mkdtemp())
        self.saves = os.path.join(self.tmpdir, "saves")
        self.config = os.path.join(self.tmpdir, "config.ini")
        write_file(os.path.join(self.saves, "slot1.sav"), b"slot one")
        write_file(os.path.join(self.saves, "profiles", "slot2.sav"), b"slot two")
        write_file(self.config, b"[options]")
        self.game = DetectedGame.from_paths(
            "Game: Remastered",
            [
                DetectedSavePath("<home>/saves", self.saves, True, file_count=2, total_size_bytes=16),
                DetectedSavePath("<home>/missing", os.path.join(self.tmpdir, "missing"), False),
                DetectedSavePath("<home>/config.ini", self.config, True, file_count=1, total_size_bytes=9),
            ],
        )

    def tearDown(self):
        shutil.rmtree(self.tmpdir)


class TestArchive(UploaderTestCase):
    def test_create_save_archive(self):
        archive_path = os.path.join(self.tmpdir, "game.zip")
        self.assertEqual(create_save_archive(self.game, archive_path), 3)
        with zipfile.ZipFile(archive_path) as archive:
            self.assertEqual(
                sorted(archive.namelist()), ["0/profiles/slot2.sav", "0/slot1.sav", "2/config.ini"]
            )
            self.assertEqual(archive.read("0/profiles/slot2.sav"), b"slot two")
            self.assertEqual(archive.getinfo("0/slot1.sav").compress_type, zipfile.ZIP_DEFLATED)

    def test_calculate_checksum(self):
        content = os.urandom(20000)
        write_file(os.path.join(self.tmpdir, "blob"), content)
        self.assertEqual(calculate_checksum(os.path.join(self.tmpdir, "blob")), hashlib.sha256(content).hexdigest())


class TestUploadGame(UploaderTestCase):
    def setUp(self):
        super().setUp()
        self.client = MagicMock()
        self.uploaded = {}

        def upload_save(token, profile_id, archive_path, checksum, slot_name, local_path):
            self.uploaded.update(
                archive_path=archive_path,
                checksum=checksum,
                actual_checksum=calculate_checksum(archive_path),
                slot_name=slot_name,
                local_path=local_path,
            )
            return {"success": True, "upload_id": "upload-1", "save_version": {"id": "v", "version_number": 3}}

        self.client.upload_save.side_effect = upload_save
        self.uploader = Uploader(self.client)

    def test_upload(self):
        result = self.uploader.upload_game(self.game, "profile-1", "tok")
        self.assertTrue(result.success)
        self.assertEqual(result.game_name, "Game: Remastered")
        self.assertEqual(result.upload_id, "upload-1")
        self.assertEqual(result.version_number, 3)
        self.assertEqual(self.uploaded["slot_name"], "Game: Remastered Auto-Backup")
        self.assertEqual(self.uploaded["local_path"], self.saves)
        self.assertEqual(self.uploaded["checksum"], self.uploaded["actual_checksum"])
        self.assertEqual(os.path.basename(self.uploaded["archive_path"]), "Game_ Remastered.zip")
        self.assertFalse(os.path.exists(self.uploaded["archive_path"]))
        self.assertEqual(self.client.upload_save.call_args[0][:2], ("tok", "profile-1"))

    def test_camel_case_response(self):
        self.client.upload_save.side_effect = None
        self.client.upload_save.return_value = {"success": True, "uploadId": "u2", "saveVersion": {"versionNumber": 7}}
        result = self.uploader.upload_game(self.game, "profile-1", "tok")
        self.assertEqual((result.upload_id, result.version_number), ("u2", 7))

    def test_rejected_upload(self):
        self.client.upload_save.side_effect = None
        self.client.upload_save.return_value = {"success": False, "message": "Quota exceeded"}
        result = self.uploader.upload_game(self.game, "profile-1", "tok")
        self.assertFalse(result.success)
        self.assertEqual(result.message, "Quota exceeded")

    def test_no_files(self):
        game = DetectedGame.from_paths("Empty", [DetectedSavePath("<home>/missing", "/nonexistent", False)])
        with self.assertRaises(FilesystemError):
            self.uploader.upload_game(game, "profile-1", "tok")
        self.client.upload_save.assert_not_called()

    def test_archive_removed_on_error(self):
        self.client.upload_save.side_effect = IntegrityError("mismatch")
        temp_root = tempfile.gettempdir()
        before = {name for name in os.listdir(temp_root) if name.startswith("saveknight-")}
        with self.assertRaises(IntegrityError):
            self.uploader.upload_game(self.game, "profile-1", "tok")
        after = {name for name in os.listdir(temp_root) if name.startswith("saveknight-")}
        self.assertEqual(after, before)

    def test_malformed_save_version(self):
        self.client.upload_save.side_effect = None
        self.client.upload_save.return_value = {"success": True, "saveVersion": 3}
        with self.assertRaises(HTTPError):
            self.uploader.upload_game(self.game, "profile-1", "tok")

    def test_temporary_directory_failure(self):
        with patch("saveknight.uploader.tempfile.mkdtemp", side_effect=OSError(28, "No space left on device")):
            with self.assertRaises(FilesystemError):
                self.uploader.upload_game(self.game, "profile-1", "tok")
        self.client.upload_save.assert_not_called()

    def test_archive_write_failure(self):
        with patch.object(zipfile.ZipFile, "write", side_effect=OSError(28, "No space left on device")):
            with self.assertRaises(FilesystemError):
                self.uploader.upload_game(self.game, "profile-1", "tok")
        self.client.upload_save.assert_not_called()


class TestUnreadableSaveFile(UploaderTestCase):
    def test_unreadable_file_is_skipped(self):
        unreadable = os.path.join(self.saves, "slot1.sav")
        real_open = open

        def fake_open(path, *args, **kwargs):
            if path == unreadable:
                raise PermissionError(13, "Permission denied", path)
            return real_open(path, *args, **kwargs)

        archive_path = os.path.join(self.tmpdir, "game.zip")
        with patch("saveknight.uploader.open", fake_open, create=True):
            with self.assertLogs("saveknight", level="WARNING"):
                self.assertEqual(create_save_archive(self.game, archive_path), 2)
        with zipfile.ZipFile(archive_path) as archive:
            self.assertEqual(sorted(archive.namelist()), ["0/profiles/slot2.sav", "2/config.ini"])
