#!/usr/bin/env python3
"""
Test error handling scenarios for normalize.py.
"""

import logging
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import patch

# Add parent directory to path to import normalize module
sys.path.insert(0, str(Path(__file__).parent.parent))
import normalize  # pylint: disable=wrong-import-position
from normalize import FileResult, FileStatus  # pylint: disable=wrong-import-position
from transforms import TransformOptions  # pylint: disable=wrong-import-position

# Disable logging for tests
normalize.logger.setLevel(logging.CRITICAL)

CRLF_ONLY = TransformOptions(ensure_crlf=True)


class TestErrorHandling(unittest.TestCase):
    def setUp(self) -> None:
        self.test_dir = tempfile.mkdtemp()

        self.test_file = os.path.join(self.test_dir, "test.txt")
        with open(self.test_file, "wb") as f:
            f.write(b"Test content\n")

    def tearDown(self) -> None:
        shutil.rmtree(self.test_dir)

    def read_test_file(self) -> bytes:
        with open(self.test_file, "rb") as f:
            return f.read()

    def test_process_file_nonexistent_file(self) -> None:
        result = normalize.process_file("/nonexistent/file.txt", CRLF_ONLY)
        self.assertEqual(result.status, FileStatus.SKIPPED_UNREADABLE)

    def test_process_file_directory(self) -> None:
        result = normalize.process_file(self.test_dir, CRLF_ONLY)
        self.assertEqual(result.status, FileStatus.SKIPPED_UNREADABLE)

    def test_process_file_read_error(self) -> None:
        with patch("normalize.read_text", side_effect=PermissionError("denied")):
            result = normalize.process_file(self.test_file, CRLF_ONLY)
        self.assertEqual(result.status, FileStatus.SKIPPED_UNREADABLE)
        self.assertIn("denied", result.message)

    def test_bad_bytes_after_bom(self) -> None:
        """A BOM promises an encoding; contents that break it are unreadable."""
        with open(self.test_file, "wb") as f:
            f.write(b"\xef\xbb\xbfok\xff\xfe\n")
        result = normalize.process_file(self.test_file, CRLF_ONLY)
        self.assertEqual(result.status, FileStatus.SKIPPED_UNREADABLE)

    def test_process_file_write_error(self) -> None:
        """A failed write restores the original content from the backup."""
        real_open = open
        write_attempts = []

        def failing_open(file: Any, mode: str = "r", *args: Any, **kwargs: Any) -> Any:
            # Only the first write fails, so restoring the backup succeeds
            if "w" in mode and str(file) == self.test_file and not write_attempts:
                write_attempts.append(file)
                raise OSError("Write error")
            return real_open(file, mode, *args, **kwargs)

        with patch("builtins.open", side_effect=failing_open):
            result = normalize.process_file(self.test_file, CRLF_ONLY)

        self.assertEqual(result.status, FileStatus.FAILED)
        self.assertEqual(len(write_attempts), 1)
        self.assertIn("Write error", result.message)
        self.assertEqual(self.read_test_file(), b"Test content\n")
        # The temporary backup is gone once the original is back
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_existing_bak_file_survives(self) -> None:
        """A .bak file that belongs to the user is never reused or removed."""
        user_backup = self.test_file + ".bak"
        with open(user_backup, "wb") as f:
            f.write(b"USER DATA")

        result = normalize.process_file(self.test_file, CRLF_ONLY)

        self.assertEqual(result.status, FileStatus.UPDATED)
        self.assertEqual(self.read_test_file(), b"Test content\r\n")
        with open(user_backup, "rb") as f:
            self.assertEqual(f.read(), b"USER DATA")
        self.assertEqual(sorted(os.listdir(self.test_dir)), ["test.txt", "test.txt.bak"])

    def test_process_file_backup_creation_error(self) -> None:
        """The file is still rewritten when no backup could be made."""
        with patch("shutil.copy2", side_effect=OSError("Backup error")):
            result = normalize.process_file(self.test_file, CRLF_ONLY)
        self.assertEqual(result.status, FileStatus.UPDATED)
        self.assertEqual(self.read_test_file(), b"Test content\r\n")
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_process_file_restore_error(self) -> None:
        copy2_calls = []
        real_copy2 = shutil.copy2
        real_open = open

        def copy2_side_effect(src: str, dst: str) -> Any:
            copy2_calls.append((src, dst))
            if len(copy2_calls) == 2:
                raise OSError("Restore error")
            return real_copy2(src, dst)

        def failing_open(file: Any, mode: str = "r", *args: Any, **kwargs: Any) -> Any:
            if "w" in mode and str(file) == self.test_file:
                raise OSError("Write error")
            return real_open(file, mode, *args, **kwargs)

        with patch("shutil.copy2", side_effect=copy2_side_effect):
            with patch("builtins.open", side_effect=failing_open):
                result = normalize.process_file(self.test_file, CRLF_ONLY)

        self.assertEqual(result.status, FileStatus.FAILED)
        self.assertEqual(len(copy2_calls), 2)
        # The backup is left behind for the user when it could not be restored
        backup = copy2_calls[0][1]
        self.assertNotEqual(backup, self.test_file + ".bak")
        self.assertTrue(os.path.exists(backup))

    def test_unknown_encoding_override(self) -> None:
        result = normalize.process_file(
            self.test_file, CRLF_ONLY, encoding_name="no-such-codec"
        )
        self.assertEqual(result.status, FileStatus.FAILED)
        self.assertEqual(self.read_test_file(), b"Test content\n")

    def test_unencodable_text(self) -> None:
        with open(self.test_file, "wb") as f:
            f.write("snowman ☃\n".encode("utf-8"))
        result = normalize.process_file(self.test_file, CRLF_ONLY, encoding_name="ascii")
        self.assertEqual(result.status, FileStatus.FAILED)
        self.assertEqual(self.read_test_file(), "snowman ☃\n".encode("utf-8"))

    def test_find_files_bracket_pattern(self) -> None:
        """An unbalanced bracket is matched literally rather than crashing."""
        result = normalize.find_files(self.test_dir, ["[invalid"])
        self.assertEqual(result, [])

    def test_pattern_matching_error_in_find_files(self) -> None:
        with patch.object(Path, "match", side_effect=ValueError("Pattern error")):
            result = normalize.find_files(self.test_dir, [".txt"])
            self.assertEqual(result, [])

    def test_find_files_missing_root(self) -> None:
        self.assertEqual(normalize.find_files("/nonexistent/root", [".txt"]), [])

    def test_parallel_processing_exception_handling(self) -> None:
        test_files = []
        for i in range(3):
            test_file = os.path.join(self.test_dir, f"parallel_test_{i}.txt")
            with open(test_file, "w", encoding="utf-8") as f:
                f.write("test content\n")
            test_files.append(test_file)

        def mock_process_file(file_path: str, *args: Any, **kwargs: Any) -> FileResult:
            if "parallel_test_1" in file_path:
                raise RuntimeError("Process file error")
            return FileResult(file_path, FileStatus.UPDATED)

        with patch("normalize.process_file", side_effect=mock_process_file):
            tally = normalize.process_files_parallel(test_files, CRLF_ONLY, max_workers=2)

        self.assertEqual(tally[FileStatus.UPDATED], 2)
        self.assertEqual(tally[FileStatus.FAILED], 1)


if __name__ == "__main__":
    unittest.main()
