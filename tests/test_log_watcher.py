"""
Log tailer tests.

Drives reconcile() directly, without starting the observer or poller, so
each trigger is deterministic.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from warden_agent.core.log_watcher import LogFileHandler, LogTailer, discover_default_logs


class TailerTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.dir = Path(self._tmp.name)
        self.log = self.dir / "access.log"
        self.lines = []

    def collect(self, path, line):
        self.lines.append(line)

    def append(self, *lines, path=None):
        with open(path or self.log, 'a') as f:
            for line in lines:
                f.write(line + "\n")

    def make_tailer(self, start_at_end=True):
        return LogTailer([str(self.log)], on_line=self.collect, start_at_end=start_at_end)


class TestSteadyState(TailerTestCase):

    def test_existing_content_skipped_when_starting_at_end(self):
        self.append("old 1", "old 2")
        tailer = self.make_tailer()

        self.assertEqual(tailer.reconcile(str(self.log)), 0)
        self.append("new 1", "new 2", "new 3")

        self.assertEqual(tailer.reconcile(str(self.log)), 3)
        self.assertEqual(self.lines, ["new 1", "new 2", "new 3"])

    def test_existing_content_read_when_starting_at_beginning(self):
        self.append("old 1", "old 2")
        tailer = self.make_tailer(start_at_end=False)

        tailer.reconcile(str(self.log))
        self.assertEqual(self.lines, ["old 1", "old 2"])

    def test_reconcile_is_idempotent(self):
        self.append("seed")
        tailer = self.make_tailer()
        self.append("a", "b")

        tailer.reconcile(str(self.log))
        tailer.reconcile(str(self.log))
        tailer.reconcile_all()

        self.assertEqual(self.lines, ["a", "b"])

    def test_partial_line_buffered_until_complete(self):
        self.log.touch()
        tailer = self.make_tailer()

        with open(self.log, 'a') as f:
            f.write("GET /hal")
        self.assertEqual(tailer.reconcile(str(self.log)), 0)

        with open(self.log, 'a') as f:
            f.write("f HTTP/1.1\nsecond\n")
        tailer.reconcile(str(self.log))

        self.assertEqual(self.lines, ["GET /half HTTP/1.1", "second"])
        self.assertEqual(tailer.get_position(str(self.log)), self.log.stat().st_size)

    def test_crlf_and_invalid_utf8(self):
        self.log.touch()
        tailer = self.make_tailer()

        with open(self.log, 'ab') as f:
            f.write(b"windows\r\n\xffbad\n")
        tailer.reconcile(str(self.log))

        self.assertEqual(self.lines[0], "windows")
        self.assertEqual(self.lines[1], "�bad")

    def test_handler_exception_does_not_lose_following_lines(self):
        self.log.touch()
        seen = []

        def flaky(path, line):
            seen.append(line)
            if line == "boom":
                raise RuntimeError("handler failure")

        tailer = LogTailer([str(self.log)], on_line=flaky)
        self.append("one", "boom", "three")
        tailer.reconcile(str(self.log))

        self.assertEqual(seen, ["one", "boom", "three"])


class TestRotationAndTruncation(TailerTestCase):

    def test_rotation_resets_offset(self):
        self.append("seed line that makes the old file longer")
        tailer = self.make_tailer()

        self.append("before rotation")
        tailer.reconcile(str(self.log))

        os.rename(self.log, self.dir / "access.log.1")
        self.append("after rotation 1", "after rotation 2")
        tailer.reconcile(str(self.log))

        self.assertEqual(self.lines, ["before rotation", "after rotation 1", "after rotation 2"])

    def test_truncation_resets_offset(self):
        self.append("seed 1", "seed 2", "seed 3")
        tailer = self.make_tailer()

        self.append("x1", "x2")
        tailer.reconcile(str(self.log))

        with open(self.log, 'w'):
            pass
        tailer.reconcile(str(self.log))
        self.assertEqual(tailer.get_position(str(self.log)), 0)

        self.append("y1")
        tailer.reconcile(str(self.log))

        self.assertEqual(self.lines, ["x1", "x2", "y1"])

    def test_truncate_and_rewrite_before_poll(self):
        self.append("a fairly long seed line", "another fairly long seed line")
        tailer = self.make_tailer()

        with open(self.log, 'w') as f:
            f.write("short\n")
        tailer.reconcile(str(self.log))

        self.assertEqual(self.lines, ["short"])

    def test_n_lines_across_rotation_and_truncation(self):
        self.append("seed")
        tailer = self.make_tailer()
        expected = []

        for i in range(3):
            self.append(f"a{i}")
            expected.append(f"a{i}")
        tailer.reconcile(str(self.log))

        os.rename(self.log, self.dir / "access.log.1")
        for i in range(4):
            self.append(f"b{i}")
            expected.append(f"b{i}")
        tailer.reconcile(str(self.log))

        with open(self.log, 'w'):
            pass
        tailer.reconcile(str(self.log))
        for i in range(5):
            self.append(f"c{i}")
            expected.append(f"c{i}")
        tailer.reconcile(str(self.log))
        tailer.reconcile(str(self.log))

        self.assertEqual(self.lines, expected)


class TestMissingFiles(TailerTestCase):

    def test_missing_file_followed_from_start_once_created(self):
        tailer = self.make_tailer()
        self.assertEqual(tailer.reconcile(str(self.log)), 0)

        self.append("first", "second")
        tailer.reconcile(str(self.log))

        self.assertEqual(self.lines, ["first", "second"])

    def test_file_removed_then_recreated(self):
        self.log.touch()
        tailer = self.make_tailer()
        self.append("one")
        tailer.reconcile(str(self.log))

        os.unlink(self.log)
        self.assertEqual(tailer.reconcile(str(self.log)), 0)

        self.append("two")
        tailer.reconcile(str(self.log))
        self.assertEqual(self.lines, ["one", "two"])

    def test_unknown_path_ignored(self):
        tailer = self.make_tailer()
        self.assertEqual(tailer.reconcile(str(self.dir / "other.log")), 0)

    def test_permission_error_logged_and_skipped(self):
        self.log.touch()
        tailer = self.make_tailer()
        self.append("line")

        with patch('builtins.open', side_effect=PermissionError("denied")):
            self.assertEqual(tailer.reconcile(str(self.log)), 0)
        self.assertEqual(self.lines, [])


class TestEventHandler(unittest.TestCase):

    def test_forwards_file_events(self):
        callback = Mock()
        handler = LogFileHandler(callback)

        handler.on_modified(Mock(is_directory=False, src_path="/var/log/nginx/access.log"))
        handler.on_created(Mock(is_directory=False, src_path="/var/log/nginx/new.log"))
        handler.on_moved(Mock(is_directory=False, src_path="/a", dest_path="/var/log/nginx/access.log"))
        handler.on_modified(Mock(is_directory=True, src_path="/var/log/nginx"))

        self.assertEqual(
            [c.args[0] for c in callback.call_args_list],
            ["/var/log/nginx/access.log", "/var/log/nginx/new.log", "/var/log/nginx/access.log"]
        )

    def test_callback_errors_are_contained(self):
        handler = LogFileHandler(Mock(side_effect=OSError("gone")))
        handler.on_modified(Mock(is_directory=False, src_path=b"/var/log/x.log"))


class TestDiscovery(unittest.TestCase):

    def test_discovers_deduplicated_access_logs(self):
        def fake_glob(pattern):
            if pattern.startswith("/var/log/nginx"):
                return ["/var/log/nginx/access.log", "/var/log/nginx/site-access.log"]
            if pattern.startswith("/var/log/apache2"):
                return ["/var/log/apache2/access.log"]
            return []

        with patch('warden_agent.core.log_watcher.glob.glob', side_effect=fake_glob), \
                patch('warden_agent.core.log_watcher.os.path.isfile', return_value=True):
            found = discover_default_logs()

        self.assertEqual(found, [
            "/var/log/apache2/access.log",
            "/var/log/nginx/access.log",
            "/var/log/nginx/site-access.log",
        ])


if __name__ == '__main__':
    unittest.main()
