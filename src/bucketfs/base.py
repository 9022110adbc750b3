from __future__ import annotations
import enum
import functools
import typing as t

from . import paths
from .exceptions import (
    BucketFSError, StorageError, ItemNotFoundError, ItemExistsError, PermissionDeniedError,
    IsDirectoryError, NotDirectoryError, NotSupportedError
)
from .item import Item
from .util import HaltFlag

if t.TYPE_CHECKING:
    from .walk import WalkVisitor


DEFAULT_CHUNK_SIZE = 4194304

DEFAULT_COPY_WORKERS = 8


class Capability(enum.Flag):
    """Optional operations a bucket may support, fixed when it is constructed."""

    NONE = 0
    LIST = enum.auto()
    WALK = enum.auto()
    CHMOD = enum.auto()
    METADATA = enum.auto()


class WriteOptions:
    """Options for write(), new_writer(), mkdir() and mkdir_all().

        Mode defaults to the backend's file or directory mode when None. The
        buffer size is a hint that backends without buffering ignore.
    """

    def __init__(self,
                 metadata: t.Optional[dict[str, str]] = None,
                 mode: t.Optional[int] = None,
                 buffer_size: t.Optional[int] = None):
        self.metadata = metadata
        self.mode = mode
        self.buffer_size = buffer_size

    def mode_or(self, default_mode: int) -> int:
        return default_mode if self.mode is None else self.mode


class CopyOptions:
    """Options for copy() and copy_all()."""

    def __init__(self,
                 metadata: t.Optional[dict[str, str]] = None,
                 mode: t.Optional[int] = None):
        self.metadata = metadata
        self.mode = mode


def local_file_error_wrap(cb):
    """Converts typical local file-system errors into the appropriate StorageError with recoverable set properly."""

    @functools.wraps(cb)
    def _inner(*args, **kwargs):
        try:
            return cb(*args, **kwargs)
        except BucketFSError:
            raise
        except FileNotFoundError as ex:
            raise ItemNotFoundError(f"Local file [{ex.filename}] not found") from ex
        except FileExistsError as ex:
            raise ItemExistsError(f"Local file [{ex.filename}] already exists") from ex
        except PermissionError as ex:
            raise PermissionDeniedError(f"Access to local file [{ex.filename}] denied") from ex
        except IsADirectoryError as ex:
            raise IsDirectoryError(f"Local file [{ex.filename}] is a directory") from ex
        except NotADirectoryError as ex:
            raise NotDirectoryError(f"Local directory [{ex.filename}] is not a directory") from ex
        except Exception as ex:
            raise StorageError(f"Exception processing local file: {ex.__class__.__name__}: {str(ex)}", 1009) from ex

    return _inner


class BaseListIterator:
    """Lazy iterator over the items directly below one directory.

        Raising StopIteration is the only exhaustion signal; the backend session
        is released when the iterator is exhausted, fails, or is closed.
    """

    def __init__(self, bucket: BaseBucket, name: str, halt_flag: t.Optional[HaltFlag] = None):
        self._bucket = bucket
        self._name = name
        self._halt_flag = halt_flag
        self._closed = False

    def __iter__(self):
        return self

    def __next__(self) -> Item:
        if self._closed:
            raise StopIteration
        if self._halt_flag is not None:
            self._halt_flag.check_continue(True)
        try:
            item = self._next_item()
        except BaseException:
            self.close()
            raise
        if item is None:
            self.close()
            raise StopIteration
        return item

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        if not self._closed:
            self._closed = True
            self._release()

    def _next_item(self) -> t.Optional[Item]:
        """Return the next item, or None when the level is exhausted."""
        raise NotImplementedError

    def _release(self):
        pass


class BaseBucket:
    """Storage container exposing the same hierarchical operations on every backend.

        Names are always interpreted relative to the bucket root; they are
        sanitized so that no name can resolve outside of it. Directory names
        may be written with or without a trailing separator, but directory
        items returned by the bucket always carry one.

        Every operation accepts an optional halt flag which overrides the one
        given to the bucket; it is checked before each backend call.
    """

    def __init__(self, capabilities: Capability = Capability.NONE, halt_flag: t.Optional[HaltFlag] = None):
        self.capabilities = capabilities
        self._halt_flag = halt_flag

    def __str__(self):
        return self.name()

    def has_capability(self, capability: Capability) -> bool:
        return (self.capabilities & capability) == capability

    def _require(self, capability: Capability, operation: str):
        if not self.has_capability(capability):
            raise NotSupportedError(f"Operation [{operation}] is not supported by [{self.__class__.__name__}]")

    def _halt(self, halt_flag: t.Optional[HaltFlag] = None) -> t.Optional[HaltFlag]:
        return halt_flag if halt_flag is not None else self._halt_flag

    def _check_halt(self, halt_flag: t.Optional[HaltFlag] = None):
        halt_flag = self._halt(halt_flag)
        if halt_flag is not None:
            halt_flag.check_continue(True)

    def name(self) -> str:
        """Get the name of the bucket (root directory or container name)."""
        raise NotImplementedError

    def path_separator(self) -> str:
        raise NotImplementedError

    def copy_workers(self) -> int:
        """Number of concurrent copies copy_all() may run when writing to this bucket."""
        return DEFAULT_COPY_WORKERS

    def read(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> bytes:
        """Read the whole content of a file."""
        with self.new_reader(name, halt_flag=halt_flag) as reader:
            return reader.read()

    def new_reader(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> t.BinaryIO:
        """Open a file for reading. Raises IsDirectoryError for directories."""
        raise NotImplementedError

    def write(self, name: str, data: bytes, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None) -> int:
        """Write the data to the file, replacing it if it exists."""
        with self.new_writer(name, options, halt_flag=halt_flag) as writer:
            writer.write(data)
        return len(data)

    def new_writer(self, name: str, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None) -> t.BinaryIO:
        raise NotImplementedError

    def exists(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> bool:
        try:
            self.stat(name, halt_flag=halt_flag)
            return True
        except (ItemNotFoundError, NotDirectoryError):
            return False

    def stat(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> Item:
        """Load a fully populated item. Raises ItemNotFoundError if it does not exist."""
        raise NotImplementedError

    def remove(self, name: str, halt_flag: t.Optional[HaltFlag] = None):
        """Remove a single file or an empty directory."""
        raise NotImplementedError

    def remove_all(self, name: str, halt_flag: t.Optional[HaltFlag] = None):
        """Remove the file or directory and everything below it. Missing names are ignored."""
        raise NotImplementedError

    def mkdir(self, name: str, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        raise NotImplementedError

    def mkdir_all(self, name: str, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        """Create the directory and any missing parents. Existing directories are fine."""
        raise NotImplementedError

    def chmod(self, name: str, mode: int, halt_flag: t.Optional[HaltFlag] = None):
        self._require(Capability.CHMOD, "chmod")
        raise NotImplementedError

    def rename(self, from_name: str, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        raise NotImplementedError

    def copy(self, from_item: Item, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        """Copy a single item (from any bucket) to the given name in this bucket.

            Directories are copied as an empty directory.
        """
        raise NotImplementedError

    def copy_all(self, from_item: Item, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        """Copy an item and, for directories, everything below it into this bucket."""
        from .copy import copy_all
        if from_item.is_dir():
            destination = Item(self, paths.directorize(self, to_name), True)
        else:
            destination = Item(self, to_name, False)
        copy_all(from_item, destination, options, self._halt(halt_flag), self.copy_workers())

    def copy2(self, from_name: str, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        self.copy(self.stat(from_name, halt_flag=halt_flag), to_name, options, halt_flag=halt_flag)

    def copy_all2(self, from_name: str, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        self.copy_all(self.stat(from_name, halt_flag=halt_flag), to_name, options, halt_flag=halt_flag)

    def items(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> BaseListIterator:
        """List the items directly below the directory (or the file itself)."""
        self._require(Capability.LIST, "items")
        raise NotImplementedError

    def walk(self, name: str, visitor: WalkVisitor, halt_flag: t.Optional[HaltFlag] = None):
        """Visit every item below the given directory, parents before children."""
        self._require(Capability.WALK, "walk")
        raise NotImplementedError


class BaseBucketManager:
    """Lifecycle of the container that backs a bucket."""

    def __init__(self, bucket: BaseBucket):
        self.bucket = bucket

    def create(self):
        raise NotImplementedError

    def remove(self):
        raise NotImplementedError

    def clean(self):
        """Remove everything stored in the bucket but keep the container."""
        self.bucket.remove_all(self.bucket.path_separator())
