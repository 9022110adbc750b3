from __future__ import annotations
import datetime
import threading
import typing as t
import weakref
from concurrent.futures import Future

from .exceptions import StorageError

if t.TYPE_CHECKING:
    from .base import BaseBucket


class Item:
    """Descriptor of one entry (file or directory) stored in a bucket.

        Items hold only a weak reference to their bucket. Fields that are not
        known when the item is built (because it was created by the caller or
        by a listing that does not return them) are loaded on first access by
        a single stat() call against the bucket. Concurrent accessors share
        the same in-flight stat() and observe the same snapshot or the same
        error; a failed stat() is retried on the next access.
    """

    def __init__(self, bucket: BaseBucket, name: str, is_dir: t.Optional[bool] = None):
        self._bucket_ref = weakref.ref(bucket)
        self._name = name
        self._is_dir = is_dir if is_dir is not None else name.endswith(bucket.path_separator())
        self._size: t.Optional[int] = None
        self._mode: t.Optional[int] = None
        self._modified: t.Optional[datetime.datetime] = None
        self._etag: t.Optional[str] = None
        self._metadata: t.Optional[dict[str, str]] = None
        self._raw = None
        self._can_stat = True
        self._stat_done = False
        self._stat_lock = threading.Lock()
        self._stat_future: t.Optional[Future] = None

    def __str__(self):
        return self._name

    def __repr__(self):
        return f"<Item {self._name!r} dir={self._is_dir}>"

    def __eq__(self, other):
        if not isinstance(other, Item):
            return NotImplemented
        return self._name == other._name and self._is_dir == other._is_dir

    def __hash__(self):
        return hash((self._name, self._is_dir))

    def bucket(self) -> BaseBucket:
        """Get the bucket this item belongs to."""
        bucket = self._bucket_ref()
        if bucket is None:
            raise StorageError(f"Bucket for [{self._name}] is no longer available", 1030)
        return bucket

    def name(self) -> str:
        return self._name

    def is_dir(self) -> bool:
        return self._is_dir

    def size(self) -> int:
        if self._size is None:
            self._materialize()
        return self._size

    def mode(self) -> int:
        if self._mode is None:
            self._materialize()
        return self._mode

    def modified_datetime(self) -> t.Optional[datetime.datetime]:
        if self._modified is None:
            self._materialize()
        return self._modified

    def etag(self) -> t.Optional[str]:
        if self._etag is None:
            self._materialize()
        return self._etag

    def metadata(self) -> dict[str, str]:
        if self._metadata is None:
            self._materialize()
        return self._metadata if self._metadata is not None else {}

    def raw(self):
        """Backend-specific stat data (e.g. os.stat_result or blob properties)."""
        if self._raw is None:
            self._materialize()
        return self._raw

    def open(self, halt_flag=None) -> t.BinaryIO:
        """Open the item for reading."""
        return self.bucket().new_reader(self._name, halt_flag=halt_flag)

    def set_size(self, size: t.Optional[int]):
        self._size = size

    def set_mode(self, mode: t.Optional[int]):
        self._mode = mode

    def set_modified_datetime(self, modified: t.Optional[datetime.datetime]):
        self._modified = modified

    def set_dir(self, is_dir: bool):
        self._is_dir = is_dir

    def set_etag(self, etag: t.Optional[str]):
        self._etag = etag

    def set_metadata(self, metadata: t.Optional[dict[str, str]]):
        self._metadata = metadata

    def add_metadata(self, key: str, value: str):
        if self._metadata is None:
            self._metadata = {}
        self._metadata[key] = value

    def set_raw(self, raw):
        self._raw = raw

    def disable_stat(self):
        """Mark the item as complete so that missing fields are never fetched."""
        self._can_stat = False

    def _materialize(self):
        if not self._can_stat:
            return
        with self._stat_lock:
            if self._stat_done:
                return
            future = self._stat_future
            is_owner = future is None
            if is_owner:
                future = Future()
                self._stat_future = future
        if not is_owner:
            future.result()
            return
        try:
            self._copy_from(self.bucket().stat(self._name))
            with self._stat_lock:
                self._stat_done = True
            future.set_result(None)
        except BaseException as ex:
            future.set_exception(ex)
            raise
        finally:
            with self._stat_lock:
                self._stat_future = None

    def _copy_from(self, other: Item):
        self._metadata = dict(other._metadata) if other._metadata is not None else {}
        self._etag = other._etag
        self._modified = other._modified
        self._size = other._size
        self._mode = other._mode
        self._is_dir = other._is_dir
        self._raw = other._raw
