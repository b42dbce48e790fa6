#!/usr/bin/env python3
"""
Test suite for the print database and the fprint-tool command line.

The commands run against the mocked libfprint from test_pyfprint, so
enrollment, verification and identification go through the real wrapper
code without a sensor.

Usage:
    python -m unittest test_fprint_tool.py
"""

import json
import logging
import os
import tempfile
import unittest
from unittest import mock

from click.testing import CliRunner

from pyfprint import errors
from pyfprint.cli import _error_type, cli
from pyfprint.context import Context
from pyfprint.finger import Finger
from pyfprint.prints import Print
from pyfprint.storage import PrintStore, StorageError
from test_pyfprint import MockNative


logging.getLogger().setLevel(logging.CRITICAL)


def _reset_logging():
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.CRITICAL)


class TestPrintStore(unittest.TestCase):
    """Unit tests for the SQLite print database."""

    def setUp(self):
        self.mock = MockNative()
        self.ctx = Context(native=self.mock.lib)

        self.db_fd, self.db_path = tempfile.mkstemp()
        os.close(self.db_fd)
        self.store = PrintStore(self.db_path)

    def tearDown(self):
        self.ctx.close()
        os.unlink(self.db_path)

    def _print(self, username, finger=Finger.RIGHT_INDEX, sample="finger-a"):
        return Print(self.mock.lib, self.mock.new_print(username=username, finger=int(finger),
                                                        sample=sample))

    def test_save_and_load(self):
        """Stored bytes come back unchanged."""
        fp = self._print("alice")
        row_id = self.store.save(fp)
        self.assertIsNotNone(row_id)

        loaded = self.store.load(self.ctx, "alice", Finger.RIGHT_INDEX)
        self.assertEqual(loaded.serialize(), fp.serialize())
        self.assertEqual(loaded.username, "alice")

        # first stored finger when none is given
        self.assertIsNotNone(self.store.load(self.ctx, "alice"))
        self.assertIsNone(self.store.load(self.ctx, "alice", Finger.LEFT_THUMB))
        self.assertIsNone(self.store.load(self.ctx, "nobody"))

    def test_save_replaces_same_finger(self):
        self.store.save(self._print("alice", sample="finger-a"))
        self.store.save(self._print("alice", sample="finger-b"))
        entries = self.store.list_entries()
        self.assertEqual(len(entries), 1)

    def test_save_requires_username(self):
        with self.assertRaises(StorageError):
            self.store.save(self._print(None))

    def test_list_entries(self):
        self.store.save(self._print("bob", Finger.LEFT_INDEX))
        self.store.save(self._print("alice", Finger.RIGHT_THUMB))

        entries = self.store.list_entries()
        self.assertEqual([e['username'] for e in entries], ["alice", "bob"])
        self.assertEqual(entries[0]['finger'], Finger.RIGHT_THUMB)
        self.assertEqual(entries[0]['driver'], "virtual_image")
        self.assertIn('date_added', entries[0])

    def test_load_all_filters_by_driver(self):
        self.store.save(self._print("alice"))
        self.store.save(self._print("bob"))
        self.assertEqual(len(self.store.load_all(self.ctx, driver="virtual_image")), 2)
        self.assertEqual(self.store.load_all(self.ctx, driver="goodixmoc"), [])

    def test_delete(self):
        self.store.save(self._print("alice", Finger.LEFT_INDEX))
        self.store.save(self._print("alice", Finger.RIGHT_INDEX))

        self.assertEqual(self.store.delete("alice", Finger.LEFT_INDEX), 1)
        self.assertEqual(self.store.delete("alice"), 1)
        self.assertEqual(self.store.delete("alice"), 0)
        self.assertEqual(self.store.list_entries(), [])

    def test_corrupt_row_raises(self):
        """A row libfprint cannot parse surfaces as DataInvalidError."""
        self.store.save(self._print("alice"))
        conn = self.store._connect()
        with conn:
            conn.execute("UPDATE prints SET data = ?", (b"garbage",))
        conn.close()

        with self.assertRaises(errors.DataInvalidError):
            self.store.load(self.ctx, "alice")


class TestClickCommands(unittest.TestCase):
    """Functional tests for the fprint-tool commands."""

    def setUp(self):
        self.mock = MockNative()

        self.db_fd, self.db_path = tempfile.mkstemp()
        os.close(self.db_fd)

        # Every command builds its own Context; hand it the mocked library.
        self.context_patcher = mock.patch(
            'pyfprint.cli.Context',
            side_effect=lambda lib_path=None: Context(native=self.mock.lib)
        )
        self.context_patcher.start()
        self.addCleanup(self.context_patcher.stop)
        self.addCleanup(_reset_logging)

        self.runner = CliRunner()

    def tearDown(self):
        os.unlink(self.db_path)

    def invoke(self, *args, **kwargs):
        base = ['--log-file', '', '--db-path', self.db_path]
        return self.runner.invoke(cli, base + list(args), **kwargs)

    def enroll(self, username, sample, finger='right-index'):
        self.mock.next_sample = sample
        result = self.invoke('enroll', '--username', username, '--finger', finger, '--yes')
        self.assertEqual(result.exit_code, 0, result.output)
        return result

    def test_devices_command(self):
        result = self.invoke('devices')
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Virtual image device", result.output)

        result = self.invoke('--json', 'devices')
        response = json.loads(result.output)
        self.assertEqual(response['status'], "success")
        self.assertEqual(response['devices'][0]['driver'], "virtual_image")
        self.assertEqual(response['devices'][0]['features'], ["capture", "identify", "verify"])

    def test_enroll_command(self):
        """Enrollment reports progress and stores the print."""
        result = self.enroll("alice", "finger-a")
        self.assertIn("Stage 3/3 done", result.output)
        self.assertIn("enrolled successfully", result.output)

        entries = PrintStore(self.db_path).list_entries()
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]['username'], "alice")
        self.assertEqual(entries[0]['finger'], Finger.RIGHT_INDEX)
        # the device was closed again
        self.assertEqual(self.mock.open_devices, set())

    def test_enroll_asks_before_overwriting(self):
        self.enroll("alice", "finger-a")
        result = self.invoke('enroll', '--username', 'alice', input="n\n")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Overwrite?", result.output)
        self.assertEqual(self.mock.fprint.fp_device_enroll_sync.call_count, 1)

    def test_enroll_failure(self):
        self.mock.fail['open'] = (13, 14, b"Permission denied")
        result = self.invoke('--json', 'enroll', '--username', 'alice')
        self.assertEqual(result.exit_code, 1)
        response = json.loads(result.output)
        self.assertEqual(response['status'], "error")
        self.assertEqual(response['error_type'], "permission_denied_error")
        self.assertEqual(PrintStore(self.db_path).list_entries(), [])

    def test_verify_command(self):
        self.enroll("alice", "finger-a")

        self.mock.next_sample = "finger-a"
        result = self.invoke('verify', '--username', 'alice')
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Verification successful!", result.output)

        self.mock.next_sample = "finger-z"
        result = self.invoke('--json', 'verify', '--username', 'alice')
        response = json.loads(result.output)
        self.assertFalse(response['matched'])

    def test_verify_unknown_user(self):
        result = self.invoke('verify', '--username', 'nobody')
        self.assertEqual(result.exit_code, 1)
        self.assertIn("not found", result.output)
        self.mock.fprint.fp_device_verify_sync.assert_not_called()

    def test_identify_command(self):
        self.enroll("alice", "finger-a")
        self.enroll("bob", "finger-b", finger='left-thumb')

        self.mock.next_sample = "finger-b"
        result = self.invoke('--json', 'identify')
        self.assertEqual(result.exit_code, 0, result.output)
        response = json.loads(result.output)
        self.assertTrue(response['matched'])
        self.assertEqual(response['username'], "bob")
        self.assertEqual(response['finger'], "left_thumb")

        self.mock.next_sample = "finger-z"
        result = self.invoke('identify')
        self.assertIn("No matching fingerprint found", result.output)

    def test_identify_empty_database(self):
        result = self.invoke('--json', 'identify')
        self.assertEqual(result.exit_code, 1)
        self.assertEqual(json.loads(result.output)['error_type'], "data_not_found_error")

    def test_list_command(self):
        result = self.invoke('list')
        self.assertIn("No prints stored", result.output)

        self.enroll("alice", "finger-a")
        result = self.invoke('--json', 'list')
        response = json.loads(result.output)
        self.assertEqual(len(response['prints']), 1)
        self.assertEqual(response['prints'][0]['finger'], "right_index")

    def test_delete_command(self):
        self.enroll("alice", "finger-a")

        result = self.invoke('delete', '--username', 'alice')
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(PrintStore(self.db_path).list_entries(), [])

        result = self.invoke('--json', 'delete', '--username', 'alice')
        self.assertEqual(result.exit_code, 1)
        self.assertEqual(json.loads(result.output)['message'], "User 'alice' not found")

    def test_capture_command(self):
        fd, image_path = tempfile.mkstemp(suffix=".pgm")
        os.close(fd)
        self.addCleanup(os.unlink, image_path)

        result = self.invoke('capture', '--output', image_path)
        self.assertEqual(result.exit_code, 0, result.output)
        with open(image_path, 'rb') as f:
            self.assertEqual(f.read(), b"P5\n4 2\n255\n" + bytes(range(8)))

    def test_capture_unwritable_output(self):
        """An image that cannot be written is reported, not raised."""
        output_dir = tempfile.mkdtemp()
        self.addCleanup(os.rmdir, output_dir)
        image_path = os.path.join(output_dir, "missing", "finger.pgm")

        result = self.invoke('--json', 'capture', '--output', image_path)
        self.assertEqual(result.exit_code, 1)
        self.assertNotIsInstance(result.exception, OSError)
        response = json.loads(result.output)
        self.assertEqual(response['status'], "error")
        self.assertEqual(response['error_type'], "file_not_found_error")
        self.assertEqual(self.mock.open_devices, set())

    def test_error_type(self):
        self.assertEqual(_error_type(errors.DeviceNotOpenError("x")), "device_not_open_error")
        self.assertEqual(_error_type(errors.FprintError("x")), "fprint_error")
        self.assertEqual(_error_type(errors.NativeIOError("x")), "native_io_error")
        self.assertEqual(_error_type(OSError("x")), "os_error")
        self.assertEqual(_error_type(ValueError("x")), "value_error")


if __name__ == '__main__':
    unittest.main()
