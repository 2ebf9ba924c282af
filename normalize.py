#!/usr/bin/env python3
"""
TextAndWhitespace

Walks a directory tree and rewrites text files in place to normalize line
endings, leading tabs and trailing whitespace.
"""

import argparse
import codecs
import concurrent.futures
import logging
import os
import shutil
import stat
import sys
import tempfile
import threading
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from transforms import TransformOptions, is_protected_text, process_text

# Define version
__version__ = "1.0.0"


# Set up logging with thread-safe handler
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler("textandwhitespace.log", mode="a"),
    ],
)
logger = logging.getLogger("TextAndWhitespace")
# Add a thread lock for logging
log_lock = threading.Lock()

# Extensions (without the dot, lower case) that are never treated as text
BINARY_EXTENSIONS = frozenset(
    {
        "exe",
        "dll",
        "pdb",
        "zip",
        "png",
        "jpg",
        "snk",
        "ico",
        "ani",
        "gif",
        "ttf",
        "pfx",
        "lex",
    }
)

ALL_FILES_PATTERN = "*.*"

DEFAULT_PATTERNS: List[str] = [ALL_FILES_PATTERN]

DEFAULT_IGNORE_DIRS: List[str] = [
    "__pycache__",
    "node_modules",
    "venv",
]

# Longest BOMs first: the UTF-32-LE mark starts with the UTF-16-LE one
BOMS: Tuple[Tuple[bytes, str], ...] = (
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)

FALLBACK_ENCODING = "latin-1"


class FileStatus(Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED_BINARY = "skipped (binary)"
    SKIPPED_UNREADABLE = "skipped (unreadable)"
    SKIPPED_GENERATED = "skipped (generated)"
    FAILED = "failed"


@dataclass(frozen=True)
class FileResult:
    """Outcome of processing a single file."""

    path: str
    status: FileStatus
    encoding: Optional[str] = None
    message: Optional[str] = None


def _is_hidden(path: str, name: str) -> bool:
    if name.startswith("."):
        return True
    # Windows keeps the hidden flag in the file attributes
    if os.name != "nt":
        return False
    attributes = getattr(os.lstat(path), "st_file_attributes", 0)
    return bool(attributes & getattr(stat, "FILE_ATTRIBUTE_HIDDEN", 0))


def is_binary_file(file_path: str) -> bool:
    """Check whether a file has one of the known binary extensions."""
    ext: str = os.path.splitext(file_path)[1].lstrip(".").lower()
    return ext in BINARY_EXTENSIONS


def detect_encoding(raw: bytes) -> Tuple[str, bytes]:
    """Return the codec name and byte-order mark found at the start of raw."""
    for bom, encoding in BOMS:
        if raw.startswith(bom):
            return encoding, bom
    return "utf-8", b""


def read_text(file_path: str) -> Tuple[str, str, bytes]:
    """
    Read and decode a file.

    Returns the text, the codec it was decoded with, and the BOM that
    preceded it (empty if none). Files without a BOM are read as UTF-8,
    falling back to latin-1 (which accepts any byte sequence).
    """
    with open(file_path, "rb") as f:
        raw: bytes = f.read()

    encoding, bom = detect_encoding(raw)
    payload = raw[len(bom) :]
    try:
        return payload.decode(encoding), encoding, bom
    except UnicodeDecodeError:
        if bom:
            raise
        with log_lock:
            logger.warning(
                "UTF-8 decoding failed for %s, falling back to %s",
                file_path,
                FALLBACK_ENCODING,
            )
        return payload.decode(FALLBACK_ENCODING), FALLBACK_ENCODING, b""


def _make_backup(file_path: str) -> Optional[str]:
    """
    Copy file_path to a new hidden ".<name>.*.bak" file beside it.

    The name is always fresh, so an existing backup of the user's is never
    touched. Returns None when no backup could be made.
    """
    directory, name = os.path.split(file_path)
    temp_backup: Optional[str] = None
    try:
        fd, temp_backup = tempfile.mkstemp(
            prefix=f".{name}.", suffix=".bak", dir=directory or None
        )
        os.close(fd)
        shutil.copy2(file_path, temp_backup)
        return temp_backup
    except OSError as e:
        with log_lock:
            logger.warning("Could not create backup of %s: %s", file_path, str(e))
        if temp_backup is not None and os.path.exists(temp_backup):
            os.remove(temp_backup)
        return None


def _write_with_backup(file_path: str, data: bytes) -> None:
    """Write data over file_path, restoring the original if the write fails."""
    temp_backup = _make_backup(file_path)

    try:
        with open(file_path, "wb") as f:
            f.write(data)
    except OSError:
        if temp_backup is not None and os.path.exists(temp_backup):
            try:
                shutil.copy2(temp_backup, file_path)
                os.remove(temp_backup)
                with log_lock:
                    logger.info(
                        "Restored original file from backup after write error: %s",
                        file_path,
                    )
            except OSError as restore_err:
                with log_lock:
                    logger.error(
                        "Failed to restore from backup for %s: %s",
                        file_path,
                        str(restore_err),
                    )
        raise

    if temp_backup is not None and os.path.exists(temp_backup):
        os.remove(temp_backup)


def process_file(
    file_path: str,
    options: TransformOptions,
    encoding_name: Optional[str] = None,
) -> FileResult:
    """
    Normalize one file in place.

    The file is rewritten when the transformed text differs from what was
    read, or when encoding_name asks for a different output encoding. Every
    problem is reported through the returned FileResult.
    """
    if not os.path.isfile(file_path):
        with log_lock:
            logger.error("File not found: %s", file_path)
        return FileResult(file_path, FileStatus.SKIPPED_UNREADABLE, message="not found")

    if is_binary_file(file_path):
        with log_lock:
            logger.debug("Skipping binary file: %s", file_path)
        return FileResult(file_path, FileStatus.SKIPPED_BINARY)

    try:
        text, encoding_used, bom = read_text(file_path)
    except (OSError, UnicodeDecodeError) as e:
        with log_lock:
            logger.error("Could not read %s: %s", file_path, str(e))
        return FileResult(file_path, FileStatus.SKIPPED_UNREADABLE, message=str(e))

    if is_protected_text(text):
        with log_lock:
            logger.debug("Skipping generated or binary content: %s", file_path)
        return FileResult(file_path, FileStatus.SKIPPED_GENERATED, encoding_used)

    extension = os.path.splitext(file_path)[1].lstrip(".").lower()
    new_text = process_text(text, extension, options)

    if new_text == text and encoding_name is None:
        with log_lock:
            logger.debug("No changes needed for file: %s", file_path)
        return FileResult(file_path, FileStatus.UNCHANGED, encoding_used)

    try:
        if encoding_name is not None:
            output_encoding = codecs.lookup(encoding_name).name
            data = new_text.encode(output_encoding)
        else:
            data = bom + new_text.encode(encoding_used)
    except (LookupError, UnicodeEncodeError) as e:
        with log_lock:
            logger.error("Cannot encode %s: %s", file_path, str(e))
        return FileResult(file_path, FileStatus.FAILED, encoding_used, str(e))

    try:
        _write_with_backup(file_path, data)
    except OSError as e:
        with log_lock:
            logger.error("Error writing to %s: %s", file_path, str(e))
        return FileResult(file_path, FileStatus.FAILED, encoding_used, str(e))

    with log_lock:
        logger.debug("Updated file: %s", file_path)
    return FileResult(file_path, FileStatus.UPDATED, encoding_used)


def _to_glob(pattern: str) -> str:
    # ".txt" is shorthand for "*.txt"
    if pattern.startswith(".") and "/" not in pattern and "\\" not in pattern:
        return f"*{pattern}"
    return pattern


def find_files(
    root_dir: str,
    file_patterns: Optional[Iterable[str]] = None,
    ignore_dirs: Optional[Iterable[str]] = None,
) -> List[str]:
    """
    Find all non-hidden files matching any of the patterns, recursively.

    Directories whose name starts with a dot are never entered.
    """
    if ignore_dirs is None:
        ignore_dirs = DEFAULT_IGNORE_DIRS
    ignore_dirs_set = set(ignore_dirs)

    globs: List[str] = [_to_glob(p.strip()) for p in (file_patterns or []) if p.strip()]
    if not globs:
        globs = list(DEFAULT_PATTERNS)

    all_files: List[str] = []
    for root, dirs, files in os.walk(root_dir):
        dirs[:] = sorted(
            d
            for d in dirs
            if d not in ignore_dirs_set and not _is_hidden(os.path.join(root, d), d)
        )

        for filename in files:
            file_path: str = os.path.join(root, filename)
            if _is_hidden(file_path, filename):
                continue
            for glob_pattern in globs:
                # "*.*" means every file, extensionless ones included
                if glob_pattern == ALL_FILES_PATTERN:
                    all_files.append(file_path)
                    break
                try:
                    matched = Path(filename).match(glob_pattern)
                except ValueError as e:
                    with log_lock:
                        logger.error(
                            "Error matching pattern '%s' to file '%s': %s",
                            glob_pattern,
                            filename,
                            str(e),
                        )
                    continue
                if matched:
                    all_files.append(file_path)
                    break

    return sorted(all_files)


def process_files_parallel(  # pylint: disable=too-many-locals
    files: Sequence[str],
    options: TransformOptions,
    encoding_name: Optional[str] = None,
    max_workers: Optional[int] = None,
) -> "Counter[FileStatus]":
    """Process files in parallel and tally the outcome of each one."""
    tally: "Counter[FileStatus]" = Counter()
    if not files:
        return tally

    # Calculate optimal number of workers if not specified
    if max_workers is None:
        cpu_count: Optional[int] = os.cpu_count()
        max_workers = min((cpu_count or 2) * 2, 32, len(files))
    else:
        max_workers = min(max_workers, 32, len(files))

    with log_lock:
        logger.debug(
            "Using %d worker threads for processing %d files", max_workers, len(files)
        )

    # Process files in batches to avoid excessive memory usage for large file lists
    batch_size = 1000
    for i in range(0, len(files), batch_size):
        batch_files = files[i : i + batch_size]

        with tqdm(
            total=len(batch_files),
            desc=f"Processing files (batch {i//batch_size + 1})",
            unit="file",
        ) as pbar:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=max_workers
            ) as executor:
                future_to_file = {
                    executor.submit(
                        process_file, file_path, options, encoding_name
                    ): file_path
                    for file_path in batch_files
                }

                for future in concurrent.futures.as_completed(future_to_file):
                    file_path = future_to_file[future]
                    try:
                        tally[future.result().status] += 1
                    except Exception as e:  # pylint: disable=broad-exception-caught
                        tally[FileStatus.FAILED] += 1
                        with log_lock:
                            logger.error(
                                "Unhandled error processing %s: %s", file_path, str(e)
                            )
                    finally:
                        pbar.update(1)

    with log_lock:
        if tally[FileStatus.FAILED] > 0:
            logger.warning(
                "Encountered errors while processing %d files",
                tally[FileStatus.FAILED],
            )
        logger.info(
            "Summary: %s",
            ", ".join(f"{status.value}: {tally[status]}" for status in FileStatus),
        )

    return tally


def format_duration(seconds: float) -> str:
    """Render an elapsed time as seconds, minutes or hours."""
    if seconds < 60:
        return f"{seconds:.2f} seconds"
    if seconds < 3600:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''} {seconds % 60:.2f} seconds"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    return (
        f"{hours} hour{'s' if hours != 1 else ''} "
        f"{minutes} minute{'s' if minutes != 1 else ''} "
        f"{seconds % 60:.2f} seconds"
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="textandwhitespace",
        description="Normalize line endings, leading tabs and trailing whitespace",
    )
    parser.add_argument(
        "root_dir",
        nargs="?",
        default=None,
        help="Root directory to process (default: current directory)",
    )
    parser.add_argument(
        "-p",
        "--pattern",
        nargs="+",
        default=list(DEFAULT_PATTERNS),
        help="File patterns to match, e.g. '*.cs' or '.txt' (default: *.*)",
    )
    parser.add_argument(
        "-s",
        "--spaces",
        type=int,
        default=4,
        help="Number of spaces per leading tab (default: 4)",
    )
    parser.add_argument(
        "--tabs-to-spaces",
        action="store_true",
        help="Replace leading tabs with spaces",
    )
    parser.add_argument(
        "--ensure-crlf",
        action="store_true",
        help="Convert every line ending to CRLF",
    )
    parser.add_argument(
        "--remove-consecutive-empty-lines",
        action="store_true",
        help="Collapse consecutive empty lines",
    )
    parser.add_argument(
        "--trim-trailing-whitespace",
        action="store_true",
        help="Remove trailing whitespace from every line",
    )
    parser.add_argument(
        "--encoding",
        default=None,
        help="Write files with this encoding (forces a rewrite of every file)",
    )
    parser.add_argument(
        "--ignore-dirs",
        nargs="+",
        default=[],
        help="Directories to ignore during processing "
        "(default: __pycache__ node_modules venv; dot-directories are always skipped)",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker threads for parallel processing "
        "(default: auto-detect based on CPU count)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"TextAndWhitespace v{__version__}",
        help="Show program version and exit",
    )
    return parser.parse_args(argv)


def options_from_args(args: argparse.Namespace) -> TransformOptions:
    return TransformOptions(
        ensure_crlf=args.ensure_crlf,
        tabs_to_spaces=args.tabs_to_spaces,
        trim_trailing_whitespace=args.trim_trailing_whitespace,
        remove_consecutive_empty_lines=args.remove_consecutive_empty_lines,
        tab_width=args.spaces,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        logger.info("TextAndWhitespace v%s", __version__)

        args = parse_args(argv)

        # Set logging level based on verbosity
        if args.verbose:
            logger.setLevel(logging.DEBUG)

        root_dir: str = args.root_dir if args.root_dir else os.getcwd()
        if not os.path.isdir(root_dir):
            logger.error("Error: '%s' is not a valid directory.", root_dir)
            return 1
        root_dir = os.path.abspath(root_dir)

        try:
            options = options_from_args(args)
        except ValueError as e:
            logger.error("Invalid options: %s", str(e))
            return 1

        ignore_dirs: List[str] = (
            args.ignore_dirs if args.ignore_dirs else DEFAULT_IGNORE_DIRS
        )

        if args.workers is not None and args.workers <= 0:
            logger.warning(
                "Invalid worker count (%d), using auto-detection instead", args.workers
            )
            args.workers = None

        logger.info(
            "Searching for files in %s matching patterns: %s",
            root_dir,
            " ".join(args.pattern),
        )
        logger.info("Ignoring directories: %s", ", ".join(ignore_dirs))
        logger.info("Options: %s", options)
        if args.encoding:
            logger.info("Output encoding: %s", args.encoding)

        start_time: float = time.time()

        files: List[str] = find_files(root_dir, args.pattern, ignore_dirs)

        if not files:
            logger.warning("No matching files found.")
            return 0

        logger.info("Found %d files to process.", len(files))

        tally = process_files_parallel(
            files, options, args.encoding, max_workers=args.workers
        )

        execution_time: float = time.time() - start_time
        logger.info(
            "Done! Updated %d of %d files in %s.",
            tally[FileStatus.UPDATED],
            len(files),
            format_duration(execution_time),
        )
        return 0
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 130
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        if logger.level <= logging.DEBUG:
            import traceback  # pylint: disable=import-outside-toplevel

            logger.debug("Traceback: %s", traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
