"""
Tests for the local dual-tree storage backend.

Covers content round trips, public/private tree membership, URL generation and
failure handling. Every test works in a throwaway temp directory.

Run with: python tests/test_local_storage.py
"""

import io
import os
import sys
import tempfile
import unittest
from datetime import datetime, timedelta
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from objstore.storage.exceptions import (
    BackendError,
    ConfigurationError,
    InvalidVisibilityError,
    ObjectNotFoundError,
    UnsupportedOperationError,
)
from objstore.storage.interfaces import StorageCapability, StorageResize, Visibility
from objstore.storage.linking import HardlinkPublisher, SymlinkPublisher
from objstore.storage.local import LocalStorageBackend

PUBLIC_BASE_URL = 'http://localhost:8000/files'
SAMPLE = 'Hello, this is file content 😊 😅'


class FailingReader:
    """Returns one chunk of data, then raises."""

    def __init__(self, first=b'partial data'):
        self._first = first
        self._calls = 0

    def read(self, size=-1):
        self._calls += 1
        if self._calls == 1:
            return self._first
        raise IOError('source stream broke')


class LocalStorageTestCase(unittest.TestCase):
    publisher_class = SymlinkPublisher

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base = self._tmp.name
        self.private_root = os.path.join(self.base, 'private')
        self.public_root = os.path.join(self.base, 'public')
        self.storage = self.make_storage()

    def tearDown(self):
        self._tmp.cleanup()

    def make_storage(self, **kwargs):
        return LocalStorageBackend(
            self.private_root,
            self.public_root,
            PUBLIC_BASE_URL,
            publisher=self.publisher_class(),
            **kwargs,
        )

    def read_all(self, key):
        with self.storage.read(key) as f:
            return f.read()

    def public_entry(self, key):
        return os.path.join(self.public_root, *key.split('/'))


class TestLocalContent(LocalStorageTestCase):

    def test_create_read_delete(self):
        key = 'user-files/sample.txt'
        self.assertFalse(self.storage.exist(key))

        self.storage.put(key, io.BytesIO(SAMPLE.encode('utf-8')), Visibility.PUBLIC_READ)
        self.assertTrue(self.storage.exist(key))
        self.assertEqual(self.read_all(key).decode('utf-8'), SAMPLE)

        self.storage.delete(key)
        self.assertFalse(self.storage.exist(key))
        self.assertFalse(os.path.lexists(self.public_entry(key)))

    def test_put_accepts_str_and_bytes(self):
        self.storage.put('a.txt', 'hi')
        self.storage.put('b.bin', b'\x00\x01')
        self.assertEqual(self.read_all('a.txt'), b'hi')
        self.assertEqual(self.read_all('b.bin'), b'\x00\x01')

    def test_put_overwrites(self):
        self.storage.put('a.txt', 'first')
        self.storage.put('a.txt', 'second')
        self.assertEqual(self.read_all('a.txt'), b'second')

    def test_size_and_last_modified(self):
        self.storage.put('dir/a.bin', b'x' * 1234)
        self.assertEqual(self.storage.size('dir/a.bin'), 1234)
        modified = self.storage.last_modified('dir/a.bin')
        self.assertIsInstance(modified, datetime)
        self.assertIsNotNone(modified.tzinfo)

    def test_missing_object_errors(self):
        with self.assertRaises(ObjectNotFoundError):
            self.storage.read('nope.txt')
        with self.assertRaises(ObjectNotFoundError):
            self.storage.size('nope.txt')
        with self.assertRaises(ObjectNotFoundError):
            self.storage.last_modified('nope.txt')

    def test_error_is_tagged_with_operation_and_key(self):
        with self.assertRaises(ObjectNotFoundError) as ctx:
            self.storage.size('nope.txt')
        self.assertEqual(ctx.exception.op, 'size')
        self.assertEqual(ctx.exception.key, 'nope.txt')
        self.assertIsInstance(ctx.exception.__cause__, FileNotFoundError)

    def test_directory_is_not_an_object(self):
        self.storage.put('dir/a.bin', b'data')
        self.assertFalse(self.storage.exist('dir'))

    def test_delete_many_and_missing_is_not_error(self):
        self.storage.put('a.txt', 'a', Visibility.PUBLIC_READ)
        self.storage.put('b.txt', 'b')
        self.storage.delete('a.txt', 'b.txt', 'never-existed.txt')
        self.assertFalse(self.storage.exist('a.txt'))
        self.assertFalse(self.storage.exist('b.txt'))
        self.storage.delete()

    def test_escaping_key_stays_inside_private_root(self):
        self.storage.put('../../escape.txt', 'x')
        self.assertTrue(os.path.isfile(os.path.join(self.private_root, 'escape.txt')))
        self.assertFalse(os.path.exists(os.path.join(self.base, 'escape.txt')))
        self.assertTrue(self.storage.exist('escape.txt'))

    def test_empty_key_never_addresses_a_root(self):
        for key in ('', '.', '../..', '/'):
            with self.subTest(key=key):
                with self.assertRaises(ObjectNotFoundError) as ctx:
                    self.storage.put(key, 'x')
                self.assertEqual(ctx.exception.op, 'put')
                for op in (self.storage.read, self.storage.size, self.storage.last_modified,
                           self.storage.get_visibility):
                    with self.assertRaises(ObjectNotFoundError):
                        op(key)
                with self.assertRaises(ObjectNotFoundError):
                    self.storage.set_visibility(key, Visibility.PRIVATE)
                with self.assertRaises(ObjectNotFoundError):
                    self.storage.copy(key, 'dst.txt')
                self.assertFalse(self.storage.exist(key))
                self.storage.delete(key)

        self.assertEqual(sorted(os.listdir(self.base)), ['private', 'public'])
        self.assertTrue(os.path.isdir(self.public_root))
        self.assertEqual(os.listdir(self.private_root), [])

    def test_failed_source_leaves_nothing_behind(self):
        with self.assertRaises(BackendError):
            self.storage.put('broken.txt', FailingReader(), Visibility.PUBLIC_READ)
        self.assertFalse(self.storage.exist('broken.txt'))
        self.assertFalse(os.path.lexists(self.public_entry('broken.txt')))
        self.assertEqual(os.listdir(self.private_root), [])

    def test_failed_source_keeps_previous_content(self):
        self.storage.put('doc.txt', 'original')
        with self.assertRaises(BackendError):
            self.storage.put('doc.txt', FailingReader())
        self.assertEqual(self.read_all('doc.txt'), b'original')


class TestLocalCopy(LocalStorageTestCase):

    def test_copy_is_independent_of_source(self):
        self.storage.put('test-file-original.txt', SAMPLE, Visibility.PUBLIC_READ)
        self.storage.copy('test-file-original.txt', 'test-file-copied.txt')

        self.assertTrue(self.storage.exist('test-file-copied.txt'))
        self.assertEqual(self.read_all('test-file-copied.txt'), SAMPLE.encode('utf-8'))

        self.storage.put('test-file-original.txt', 'changed', Visibility.PUBLIC_READ)
        self.assertEqual(self.read_all('test-file-copied.txt'), SAMPLE.encode('utf-8'))

    def test_copy_destination_is_private(self):
        self.storage.put('src.txt', 'data', Visibility.PUBLIC_READ)
        self.storage.put('dst.txt', 'old', Visibility.PUBLIC_READ)
        self.storage.copy('src.txt', 'dst.txt')
        self.assertEqual(self.storage.get_visibility('src.txt'), Visibility.PUBLIC_READ)
        self.assertEqual(self.storage.get_visibility('dst.txt'), Visibility.PRIVATE)

    def test_copy_missing_source(self):
        with self.assertRaises(ObjectNotFoundError):
            self.storage.copy('missing.txt', 'dst.txt')
        self.assertFalse(self.storage.exist('dst.txt'))


class TestLocalVisibility(LocalStorageTestCase):

    def test_private_put_has_no_public_entry(self):
        self.storage.put('x.txt', 'hi', Visibility.PRIVATE)
        self.assertFalse(os.path.lexists(self.public_entry('x.txt')))
        self.assertEqual(self.storage.get_visibility('x.txt'), Visibility.PRIVATE)

    def test_public_put_links_public_tree(self):
        self.storage.put('img/a.png', b'png', Visibility.PUBLIC_READ)
        entry = self.public_entry('img/a.png')
        self.assertTrue(os.path.lexists(entry))
        with open(entry, 'rb') as f:
            self.assertEqual(f.read(), b'png')

    def test_public_read_write_reported_as_public_read(self):
        self.storage.put('a.txt', 'hi', 'public-read-write')
        self.assertEqual(self.storage.get_visibility('a.txt'), Visibility.PUBLIC_READ)

    def test_public_then_private_removes_public_artifact(self):
        self.storage.put('x.txt', 'hi')
        self.storage.set_visibility('x.txt', Visibility.PUBLIC_READ)
        self.assertEqual(self.storage.get_visibility('x.txt'), Visibility.PUBLIC_READ)

        self.storage.set_visibility('x.txt', Visibility.PRIVATE)
        self.assertEqual(self.storage.get_visibility('x.txt'), Visibility.PRIVATE)
        self.assertFalse(os.path.lexists(self.public_entry('x.txt')))
        self.assertEqual(self.read_all('x.txt'), b'hi')

    def test_set_public_twice_is_idempotent(self):
        self.storage.put('x.txt', 'hi')
        self.storage.set_visibility('x.txt', 'public-read')
        self.storage.set_visibility('x.txt', 'public-read')
        self.assertEqual(self.storage.get_visibility('x.txt'), Visibility.PUBLIC_READ)

    def test_private_put_over_public_object(self):
        self.storage.put('x.txt', 'one', Visibility.PUBLIC_READ)
        self.storage.put('x.txt', 'two', Visibility.PRIVATE)
        self.assertEqual(self.storage.get_visibility('x.txt'), Visibility.PRIVATE)

    def test_public_put_over_public_object_serves_new_content(self):
        self.storage.put('x.txt', 'one', Visibility.PUBLIC_READ)
        self.storage.put('x.txt', 'two', Visibility.PUBLIC_READ)
        with open(self.public_entry('x.txt'), 'rb') as f:
            self.assertEqual(f.read(), b'two')

    def test_invalid_visibility(self):
        self.storage.put('x.txt', 'hi')
        with self.assertRaises(InvalidVisibilityError):
            self.storage.set_visibility('x.txt', 'world-writable')
        with self.assertRaises(InvalidVisibilityError) as ctx:
            self.storage.put('./y.txt', 'hi', 'nonsense')
        self.assertEqual(ctx.exception.op, 'put')
        self.assertEqual(ctx.exception.key, 'y.txt')
        self.assertFalse(self.storage.exist('y.txt'))

    def test_directory_prefix_is_not_a_public_object(self):
        self.storage.put('a/b.txt', b'hi', Visibility.PUBLIC_READ)

        with self.assertRaises(ObjectNotFoundError):
            self.storage.get_visibility('a')
        with self.assertRaises(ObjectNotFoundError):
            self.storage.url('a')
        with self.assertRaises(ObjectNotFoundError):
            self.storage.set_visibility('a', Visibility.PUBLIC_READ)

        self.storage.delete('a')
        self.storage.set_visibility('a', Visibility.PRIVATE)
        self.assertTrue(os.path.isdir(self.public_entry('a')))
        self.assertEqual(self.storage.get_visibility('a/b.txt'), Visibility.PUBLIC_READ)
        self.assertEqual(self.read_all('a/b.txt'), b'hi')

    def test_get_visibility_missing(self):
        with self.assertRaises(ObjectNotFoundError):
            self.storage.get_visibility('missing.txt')

    def test_set_public_on_missing_object(self):
        with self.assertRaises(ObjectNotFoundError):
            self.storage.set_visibility('missing.txt', Visibility.PUBLIC_READ)
        self.assertFalse(os.path.lexists(self.public_entry('missing.txt')))

    def test_link_failure_keeps_private_write(self):
        publisher = MagicMock()
        publisher.name = 'broken'
        publisher.link.side_effect = PermissionError('link not permitted')
        storage = LocalStorageBackend(self.private_root, self.public_root, PUBLIC_BASE_URL, publisher=publisher)

        with self.assertRaises(BackendError):
            storage.put('x.txt', 'hi', Visibility.PUBLIC_READ)
        self.assertTrue(storage.exist('x.txt'))
        self.assertEqual(storage.get_visibility('x.txt'), Visibility.PRIVATE)


class TestLocalHardlinkVisibility(TestLocalVisibility):
    publisher_class = HardlinkPublisher

    def test_public_entry_shares_private_inode(self):
        self.storage.put('x.txt', 'hi', Visibility.PUBLIC_READ)
        private_path = os.path.join(self.private_root, 'x.txt')
        self.assertTrue(os.path.samefile(private_path, self.public_entry('x.txt')))
        self.assertFalse(os.path.islink(self.public_entry('x.txt')))


class TestLocalURLs(LocalStorageTestCase):

    def test_url_requires_public_entry(self):
        self.storage.put('x.txt', 'hi', Visibility.PRIVATE)
        with self.assertRaises(ObjectNotFoundError):
            self.storage.url('x.txt')

        self.storage.set_visibility('x.txt', Visibility.PUBLIC_READ)
        self.assertEqual(self.storage.url('x.txt'), f"{PUBLIC_BASE_URL}/x.txt")

    def test_url_nested_key_and_resize_ignored(self):
        self.storage.put('img/a b.png', b'png', Visibility.PUBLIC_READ)
        self.assertEqual(
            self.storage.url('img/a b.png', StorageResize(max_height=100)),
            f"{PUBLIC_BASE_URL}/img/a%20b.png",
        )

    def test_url_empty_key(self):
        self.assertEqual(self.storage.url(''), '')
        self.assertEqual(self.storage.temporary_url('', timedelta(minutes=5)), '')

    def test_temporary_url_without_builder_is_unsupported(self):
        self.storage.put('x.txt', 'hi')
        self.assertFalse(self.storage.supports(StorageCapability.SIGNED_URLS))
        with self.assertRaises(UnsupportedOperationError):
            self.storage.temporary_url('x.txt', timedelta(minutes=5))

    def test_temporary_url_uses_builder(self):
        builder = MagicMock(return_value='http://localhost:8000/signed?token=abc')
        storage = self.make_storage(signed_url_builder=builder)
        storage.put('x.txt', 'hi')

        url = storage.temporary_url('x.txt', timedelta(minutes=5))
        self.assertEqual(url, 'http://localhost:8000/signed?token=abc')
        builder.assert_called_once_with(
            os.path.join(os.path.abspath(self.private_root), 'x.txt'), 'x.txt', timedelta(minutes=5),
        )
        self.assertTrue(storage.supports(StorageCapability.SIGNED_URLS))

    def test_temporary_url_missing_everywhere(self):
        with self.assertRaises(ObjectNotFoundError):
            self.storage.temporary_url('missing.txt', timedelta(minutes=5))


class TestLocalConfig(unittest.TestCase):

    def test_same_roots_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ConfigurationError):
                LocalStorageBackend(tmp, tmp, PUBLIC_BASE_URL)

    def test_base_url_required(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ConfigurationError):
                LocalStorageBackend(os.path.join(tmp, 'a'), os.path.join(tmp, 'b'), '')

    def test_roots_created(self):
        with tempfile.TemporaryDirectory() as tmp:
            LocalStorageBackend(os.path.join(tmp, 'a'), os.path.join(tmp, 'b'), PUBLIC_BASE_URL)
            self.assertTrue(os.path.isdir(os.path.join(tmp, 'a')))
            self.assertTrue(os.path.isdir(os.path.join(tmp, 'b')))


if __name__ == '__main__':
    unittest.main()
