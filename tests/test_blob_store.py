import tempfile
from pathlib import Path
from unittest import TestCase

from ephemera.errors import BlobExistsError, BlobNotFoundError
from ephemera.storage.blobs import FileSystemBlobStore


class BlobStoreTests(TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name) / "files"
        self.store = FileSystemBlobStore(self.root)

    def _pending(self):
        return list((self.root / ".incoming").iterdir())

    def test_constructing_touches_nothing(self):
        FileSystemBlobStore(self.root)
        self.assertFalse(self.root.exists())

    def test_commit_then_open(self):
        w = self.store.create("abc_DEF-123")
        w.write(b"hello ")
        w.write(b"world")
        self.assertEqual(w.written, 11)
        self.assertFalse((self.root / "abc_DEF-123").exists())

        w.commit()
        self.assertTrue(w.committed)
        self.assertEqual(self._pending(), [])
        with self.store.open("abc_DEF-123") as fh:
            self.assertEqual(fh.read(), b"hello world")
            fh.seek(6)
            self.assertEqual(fh.read(), b"world")

    def test_collision_keeps_existing_and_pending_data(self):
        first = self.store.create("taken")
        first.write(b"first")
        first.commit()

        second = self.store.create("taken")
        second.write(b"second")
        with self.assertRaises(BlobExistsError):
            second.commit()
        self.assertFalse(second.committed)
        self.assertEqual(len(self._pending()), 1)

        second.commit("other")
        self.assertEqual(second.key, "other")
        self.assertEqual(self.store.open("taken").read(), b"first")
        self.assertEqual(self.store.open("other").read(), b"second")
        self.assertEqual(self._pending(), [])

    def test_abort_leaves_nothing(self):
        w = self.store.create("gone")
        w.write(b"partial")
        w.abort()
        w.abort()

        self.assertFalse((self.root / "gone").exists())
        self.assertEqual(self._pending(), [])
        with self.assertRaises(ValueError):
            w.write(b"more")

    def test_missing_blob(self):
        with self.assertRaises(BlobNotFoundError):
            self.store.open("nothere")

    def test_keys_cannot_escape_root(self):
        for key in ("../etc", "a/b", ".incoming", "", "x.y"):
            with self.assertRaises(ValueError):
                self.store.create(key)
            with self.assertRaises(BlobNotFoundError):
                self.store.open(key)
