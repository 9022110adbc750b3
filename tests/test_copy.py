import pathlib
import tempfile
import threading
import time
import unittest as ut

from bucketfs.base import BaseBucket, Capability
from bucketfs.copy import copy_all, destination_name
from bucketfs.exceptions import NotSupportedError, StorageError
from bucketfs.item import Item
from bucketfs.local import LocalBucket
from bucketfs.util import EventHaltFlag, HaltInterrupt
from bucketfs.azure_blob import AzureBlobContainerManager

from .azure_fakes import FakeAccount


class _NamedBucket(BaseBucket):

    def __init__(self, sep: str = "/", capabilities: Capability = Capability.NONE):
        super().__init__(capabilities)
        self._sep = sep

    def name(self) -> str:
        return "named"

    def path_separator(self) -> str:
        return self._sep


class _FailingBucket(LocalBucket):
    """Local bucket that refuses to receive files whose name contains 'fail'."""

    def copy(self, from_item, to_name, options=None, halt_flag=None):
        if "fail" in to_name:
            raise StorageError(f"Refusing to copy [{to_name}]", 9999)
        super().copy(from_item, to_name, options, halt_flag)


class _BrokenWalkBucket(LocalBucket):

    def walk(self, name, visitor, halt_flag=None):
        raise StorageError("Walk is broken", 9998)


class _RecordingBucket(LocalBucket):
    """Local bucket with a fixed worker count that records every copy it runs."""

    def __init__(self, root, workers: int):
        super().__init__(root)
        self._workers = workers
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.names = []

    def copy_workers(self) -> int:
        return self._workers

    def copy(self, from_item, to_name, options=None, halt_flag=None):
        with self._lock:
            self.names.append(to_name)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(0.005)
            super().copy(from_item, to_name, options, halt_flag)
        finally:
            with self._lock:
                self.active -= 1


class DestinationNameTest(ut.TestCase):

    def test_below_directory(self):
        src = _NamedBucket()
        dest = _NamedBucket()
        self.assertEqual(
            destination_name(Item(src, "a/", True), Item(dest, "x/y", True), Item(src, "a/b/c.txt")),
            "x/y/b/c.txt"
        )
        self.assertEqual(
            destination_name(Item(src, "a", True), Item(dest, "x/y/", True), Item(src, "a/b/")),
            "x/y/b/"
        )

    def test_from_root(self):
        src = _NamedBucket()
        dest = _NamedBucket()
        for root in ("", ".", "/"):
            with self.subTest(root=root):
                self.assertEqual(
                    destination_name(Item(src, root, True), Item(dest, "x", True), Item(src, "b/c.txt")),
                    "x/b/c.txt"
                )

    def test_to_root(self):
        src = _NamedBucket()
        dest = _NamedBucket()
        self.assertEqual(
            destination_name(Item(src, "a/", True), Item(dest, "", True), Item(src, "a/b/c.txt")),
            "b/c.txt"
        )

    def test_separator_translation(self):
        src = _NamedBucket("/")
        dest = _NamedBucket("\\")
        self.assertEqual(
            destination_name(Item(src, "a/", True), Item(dest, "x", True), Item(src, "a/b/c.txt")),
            "x\\b\\c.txt"
        )


class CopyAllTest(ut.TestCase):

    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.base_dir = pathlib.Path(self._temp_dir.name)
        self.source = LocalBucket(self.base_dir / "source")
        for i in range(0, 20):
            self.source.write(f"tree/{i:02}/file.txt", str(i).encode("ascii"))
        self.source.write("tree/05/fail.txt", b"x")

    def tearDown(self):
        self._temp_dir.cleanup()

    def assertNoCopyThreads(self):
        self.assertEqual([th.name for th in threading.enumerate() if th.name.startswith("bucketfs-copy")], [])

    def test_copy_all_between_local_buckets(self):
        dest = LocalBucket(self.base_dir / "dest")
        copy_all(self.source.stat("tree"), Item(dest, "copied", True), max_workers=4)
        for i in range(0, 20):
            self.assertEqual(dest.read(f"copied/{i:02}/file.txt"), str(i).encode("ascii"))
        self.assertNoCopyThreads()

    def test_first_failure_is_raised(self):
        dest = _FailingBucket(self.base_dir / "dest")
        with self.assertRaises(StorageError) as ctx:
            copy_all(self.source.stat("tree"), Item(dest, "copied", True), max_workers=4)
        self.assertEqual(ctx.exception.internal_code, "STORAGE-9999")
        self.assertNoCopyThreads()

    def test_queued_items_are_dropped_after_failure(self):
        dest = _FailingBucket(self.base_dir / "dest")
        self.assertRaises(StorageError, copy_all, self.source.stat("tree"), Item(dest, "copied", True), None, None, 1)
        for i in range(0, 5):
            self.assertEqual(dest.read(f"copied/{i:02}/file.txt"), str(i).encode("ascii"))
        self.assertFalse(dest.exists("copied/05/file.txt"))
        self.assertFalse(dest.exists("copied/06"))
        self.assertFalse(dest.exists("copied/19"))
        self.assertNoCopyThreads()

    def test_copies_limited_to_destination_workers(self):
        dest = _RecordingBucket(self.base_dir / "dest", 3)
        dest.copy_all(self.source.stat("tree"), "copied")
        self.assertLessEqual(dest.peak, 3)
        self.assertGreaterEqual(dest.peak, 1)
        self.assertEqual(len(dest.names), 42)
        self.assertEqual(dest.read("copied/05/fail.txt"), b"x")
        self.assertNoCopyThreads()

    def test_directory_destination_has_separator(self):
        dest = _RecordingBucket(self.base_dir / "dest", 2)
        dest.copy_all(self.source.stat("tree"), "copied")
        self.assertEqual(dest.names[0], "copied" + dest.path_separator())
        dest.copy_all(self.source.stat("tree/05/fail.txt"), "single.txt")
        self.assertEqual(dest.names[-1], "single.txt")
        self.assertEqual(dest.read("single.txt"), b"x")

    def test_walk_failure_is_raised(self):
        source = _BrokenWalkBucket(self.base_dir / "source")
        dest = LocalBucket(self.base_dir / "dest")
        with self.assertRaises(StorageError) as ctx:
            copy_all(source.stat("tree"), Item(dest, "copied", True))
        self.assertEqual(ctx.exception.internal_code, "STORAGE-9998")
        self.assertTrue(dest.stat("copied").is_dir())
        self.assertNoCopyThreads()

    def test_halted(self):
        dest = LocalBucket(self.base_dir / "dest")
        halt = EventHaltFlag()
        halt.halt()
        self.assertRaises(HaltInterrupt, copy_all, self.source.stat("tree"), Item(dest, "copied", True), None, halt)
        self.assertFalse(dest.exists("copied"))

    def test_directory_needs_walk(self):
        source = _NamedBucket()
        dest = LocalBucket(self.base_dir / "dest")
        self.assertRaises(NotSupportedError, copy_all, Item(source, "dir/", True), Item(dest, "copied", True))
        self.assertFalse(dest.exists("copied"))

    def test_local_to_azure_and_back(self):
        account = FakeAccount()
        remote = account.bucket("remote")
        AzureBlobContainerManager(remote).create()
        remote.copy_all(self.source.stat("tree"), "uploaded")
        self.assertEqual(remote.read("uploaded/07/file.txt"), b"7")
        self.assertTrue(remote.stat("uploaded/07").is_dir())
        self.assertEqual(account.copy_from_url_calls, 0)

        local = LocalBucket(self.base_dir / "downloaded")
        local.copy_all(remote.stat("uploaded"), "tree")
        for i in range(0, 20):
            self.assertEqual(local.read(f"tree/{i:02}/file.txt"), str(i).encode("ascii"))
        self.assertEqual(local.read("tree/05/fail.txt"), b"x")
        self.assertEqual(account.open_clients, 0)
