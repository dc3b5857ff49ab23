"""
EdgeWarden Log Tailer

Surfaces newly appended lines from access log files without re-emitting or
losing lines, tolerant of rotation and truncation.

Two triggers feed one idempotent operation, reconcile(path):
- watchdog filesystem events (inotify/kqueue) for low latency
- a fixed poll interval as a reliability backstop, since watch semantics
  vary by platform and across rotation

Per file, reconcile():
- compares the (st_dev, st_ino) identity with the previous pass; a change
  means rotation and the offset resets to 0
- if the size shrank below the offset, treats it as truncation and resets
- otherwise reads bytes [offset, size), emits every complete line, buffers
  the trailing partial line and advances the offset by the bytes consumed

Lines of one file are emitted in file order (per-file lock). No ordering is
guaranteed across files.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import glob
import os
import threading
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

# Bytes read per chunk when catching up on a large append
READ_CHUNK_SIZE = 1024 * 1024

DISCOVERY_GLOBS = (
    "/var/log/apache2/*access*.log",
    "/var/log/httpd/*access*",
    "/var/log/nginx/*access*.log",
)


def discover_default_logs() -> List[str]:
    """Find Apache and Nginx access logs in their usual locations."""
    seen = []
    for pattern in DISCOVERY_GLOBS:
        for path in sorted(glob.glob(pattern)):
            if os.path.isfile(path) and path not in seen:
                seen.append(path)
    return seen


@dataclass
class FileCursor:
    """Read position for one watched file."""
    identity: Optional[Tuple[int, int]] = None
    offset: int = 0
    partial: bytes = b""
    missing_logged: bool = False


class LogFileHandler(FileSystemEventHandler):
    """
    Event handler for log directory changes.

    Forwards modifications, creations and rename targets of watched files
    to the tailer. Debouncing is unnecessary because reconcile() is
    idempotent.
    """

    def __init__(self, callback: Callable[[str], None]):
        super().__init__()
        self.callback = callback
        self.logger = logging.getLogger(__name__)

    def _dispatch_path(self, path):
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        try:
            self.callback(path)
        except Exception as e:
            self.logger.error(f"Error processing file {path}: {e}")

    def on_modified(self, event):
        if not event.is_directory:
            self._dispatch_path(event.src_path)

    def on_created(self, event):
        if not event.is_directory:
            self._dispatch_path(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self._dispatch_path(event.dest_path)


class LogTailer:
    """
    Multi-file, byte-offset tailer.

    Thread-safe implementation with per-file locking. Emission happens on
    whichever thread triggered the reconcile (watchdog observer or poller).
    """

    def __init__(self, paths: List[str], on_line: Callable[[str, str], None],
                 poll_interval: float = 2.0, start_at_end: bool = True):
        """
        Initialize log tailer.

        Args:
            paths: Log files to follow (may not exist yet)
            on_line: Function(file_path, line) called for every complete line
            poll_interval: Seconds between backstop polls
            start_at_end: Skip content already present when a file is first seen
        """
        self.on_line = on_line
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(__name__)

        self.cursors: Dict[str, FileCursor] = {}
        self.file_locks: Dict[str, threading.Lock] = {}

        self.observer: Optional[Observer] = None
        self._poll_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        for path in paths:
            self.add_file(path, start_at_end=start_at_end)

    @property
    def watched_paths(self) -> List[str]:
        return list(self.cursors.keys())

    def add_file(self, file_path: str, start_at_end: bool = True):
        """
        Add a file to follow.

        When start_at_end is set and the file exists, only content appended
        from now on is emitted. A file that does not exist yet is read from
        its beginning once it appears.
        """
        file_path = os.path.abspath(file_path)
        if file_path in self.cursors:
            return

        cursor = FileCursor()
        try:
            st = os.stat(file_path)
            cursor.identity = (st.st_dev, st.st_ino)
            cursor.offset = st.st_size if start_at_end else 0
        except FileNotFoundError:
            self.logger.warning(f"File does not exist, will follow when created: {file_path}")
        except PermissionError as e:
            self.logger.error(f"Permission denied on {file_path}: {e}")

        self.cursors[file_path] = cursor
        self.file_locks[file_path] = threading.Lock()
        self.logger.info(f"Tailing log file: {file_path} (offset: {cursor.offset})")

    def start(self):
        """Start filesystem watching and the backstop poller."""
        if self.observer is not None:
            self.logger.warning("Tailer already running")
            return

        self._stop_event.clear()
        self.observer = Observer()

        # Watch parent directories so rotation (rename + create) is seen
        directories = sorted({os.path.dirname(p) for p in self.cursors})
        handler = LogFileHandler(callback=self.reconcile)
        for dir_path in directories:
            if not os.path.isdir(dir_path):
                self.logger.warning(f"Log directory missing, relying on polling: {dir_path}")
                continue
            try:
                self.observer.schedule(handler, dir_path, recursive=False)
                self.logger.info(f"Monitoring directory: {dir_path}")
            except OSError as e:
                self.logger.error(f"Failed to watch directory {dir_path}: {e}")

        self.observer.start()

        self._poll_thread = threading.Thread(
            target=self._poll_loop, name="log-poller", daemon=True
        )
        self._poll_thread.start()
        self.logger.info(f"Real-time log tailing started ({len(self.cursors)} files)")

    def stop(self):
        """Stop watching and polling."""
        self._stop_event.set()
        if self.observer is not None:
            self.observer.stop()
            self.observer.join(timeout=5)
            self.observer = None
        if self._poll_thread is not None:
            self._poll_thread.join(timeout=5)
            self._poll_thread = None
        self.logger.info("Log tailing stopped")

    def _poll_loop(self):
        while not self._stop_event.wait(timeout=self.poll_interval):
            self.reconcile_all()

    def reconcile_all(self):
        """Reconcile every watched file once."""
        for file_path in self.watched_paths:
            self.reconcile(file_path)

    def reconcile(self, file_path: str) -> int:
        """
        Bring one file's cursor up to date and emit its new lines.

        Safe to call from any thread, any number of times.

        Returns:
            Number of lines emitted
        """
        file_path = os.path.abspath(file_path)
        lock = self.file_locks.get(file_path)
        if lock is None:
            return 0

        with lock:
            cursor = self.cursors[file_path]
            try:
                return self._reconcile_locked(file_path, cursor)
            except FileNotFoundError:
                if not cursor.missing_logged:
                    self.logger.warning(f"Log file missing, will retry: {file_path}")
                    cursor.missing_logged = True
                # Whatever appears at this path next is a new file
                cursor.identity = None
                cursor.offset = 0
                cursor.partial = b""
                return 0
            except PermissionError as e:
                self.logger.error(f"Permission denied reading {file_path}: {e}")
                return 0
            except OSError as e:
                self.logger.error(f"Error reading {file_path}: {e}")
                return 0

    def _reconcile_locked(self, file_path: str, cursor: FileCursor) -> int:
        st = os.stat(file_path)
        identity = (st.st_dev, st.st_ino)

        if cursor.missing_logged:
            self.logger.info(f"Log file available again: {file_path}")
            cursor.missing_logged = False

        if cursor.identity is not None and identity != cursor.identity:
            self.logger.info(f"Log rotation detected: {file_path}")
            cursor.offset = 0
            cursor.partial = b""
        elif st.st_size < cursor.offset:
            self.logger.info(
                f"Log truncation detected: {file_path} "
                f"(offset {cursor.offset}, size {st.st_size})"
            )
            cursor.offset = 0
            cursor.partial = b""
        cursor.identity = identity

        if st.st_size == cursor.offset:
            return 0

        emitted = 0
        with open(file_path, 'rb') as f:
            f.seek(cursor.offset)
            remaining = st.st_size - cursor.offset
            while remaining > 0:
                chunk = f.read(min(remaining, READ_CHUNK_SIZE))
                if not chunk:
                    break
                remaining -= len(chunk)
                cursor.offset += len(chunk)
                emitted += self._emit_chunk(file_path, cursor, chunk)

        return emitted

    def _emit_chunk(self, file_path: str, cursor: FileCursor, chunk: bytes) -> int:
        data = cursor.partial + chunk
        lines = data.split(b"\n")
        cursor.partial = lines.pop()

        for raw in lines:
            line = raw.decode('utf-8', errors='replace').rstrip('\r')
            try:
                self.on_line(file_path, line)
            except Exception as e:
                self.logger.error(f"Line handler failed for {file_path}: {e}")

        return len(lines)

    def get_position(self, file_path: str) -> int:
        """Get current byte offset for a file (thread-safe)."""
        file_path = os.path.abspath(file_path)
        lock = self.file_locks.get(file_path)
        if lock is None:
            return 0
        with lock:
            return self.cursors[file_path].offset

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
