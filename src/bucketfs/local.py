"""Bucket stored in a directory on a local disk or accessible network drive."""
import collections
import datetime
import os
import pathlib
import shutil
import stat as st
import typing as t

import zrlog

from . import paths
from .base import BaseBucket, BaseBucketManager, BaseListIterator, Capability, CopyOptions, WriteOptions, local_file_error_wrap
from .exceptions import IsDirectoryError, ItemNotFoundError, NotDirectoryError, StorageError
from .item import Item
from .util import HaltFlag, copy_stream
from .walk import WalkSignal, WalkVisitor, visit

DEFAULT_DIR_MODE = 0o744
DEFAULT_FILE_MODE = 0o666


class LocalListIterator(BaseListIterator):
    """Lists one directory level; a file name lists just the file."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._queue: t.Optional[collections.deque] = None
        self._parent = ""

    def _next_item(self) -> t.Optional[Item]:
        if self._queue is None:
            try:
                item = self._bucket.stat(self._name, halt_flag=self._halt_flag)
            except (ItemNotFoundError, NotDirectoryError):
                return None
            if not item.is_dir():
                self._queue = collections.deque()
                return item
            key = paths.sanitize(self._bucket, self._name)
            self._parent = "" if key == self._bucket.path_separator() else key
            self._queue = collections.deque(self._bucket.scan_dir(self._bucket.real_path(self._name), False))
        if not self._queue:
            return None
        entry = self._queue.popleft()
        return self._bucket.entry_to_item(self._child_name(entry.name), entry)

    def _child_name(self, child: str) -> str:
        sep = self._bucket.path_separator()
        return paths.join(self._bucket, self._parent, child).lstrip(sep)

    def _release(self):
        self._queue = None


class LocalBucket(BaseBucket):
    """Bucket rooted at a local directory.

        The directory tree is the bucket: names map to paths below the root
        after sanitizing, and directories are real directories.
    """

    def __init__(self, root: t.Union[str, pathlib.Path], halt_flag: t.Optional[HaltFlag] = None):
        super().__init__(Capability.LIST | Capability.WALK | Capability.CHMOD, halt_flag=halt_flag)
        self._root = pathlib.Path(root).expanduser().absolute()
        self._log = zrlog.get_logger("bucketfs.local")

    def name(self) -> str:
        return str(self._root)

    def path_separator(self) -> str:
        return os.sep

    def real_path(self, name: str) -> pathlib.Path:
        """Get the local path of the named item."""
        key = paths.sanitize(self, name)
        if key == self.path_separator():
            return self._root
        return self._root / key

    def _key(self, name: str) -> str:
        key = paths.sanitize(self, name)
        return "" if key == self.path_separator() else key

    def stat_to_item(self, name: str, info: os.stat_result) -> Item:
        is_dir = st.S_ISDIR(info.st_mode)
        if is_dir:
            name = paths.directorize(self, name)
        item = Item(self, name, is_dir)
        item.set_mode(st.S_IMODE(info.st_mode))
        item.set_size(info.st_size)
        item.set_modified_datetime(datetime.datetime.fromtimestamp(info.st_mtime, datetime.timezone.utc))
        item.set_etag(f'"{info.st_mtime_ns:x}-{info.st_size:x}"')
        item.set_metadata({})
        item.set_raw(info)
        item.disable_stat()
        return item

    @local_file_error_wrap
    def entry_to_item(self, name: str, entry: os.DirEntry) -> Item:
        return self.stat_to_item(name, entry.stat(follow_symlinks=False))

    @local_file_error_wrap
    def scan_dir(self, path: t.Union[str, pathlib.Path], sort: bool = True) -> list:
        """Read the entries of a directory, optionally sorted by name."""
        with os.scandir(path) as it:
            entries = list(it)
        if sort:
            entries.sort(key=lambda e: e.name)
        return entries

    @local_file_error_wrap
    def stat(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> Item:
        self._check_halt(halt_flag)
        key = paths.sanitize(self, name)
        item = self.stat_to_item(key, self.real_path(name).stat())
        if paths.is_dir_path(self, name) and not item.is_dir():
            raise NotDirectoryError(f"[{name}] is not a directory")
        return item

    @local_file_error_wrap
    def new_reader(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> t.BinaryIO:
        if self.stat(name, halt_flag=halt_flag).is_dir():
            raise IsDirectoryError(f"[{name}] is a directory")
        return open(self.real_path(name), "rb")

    def _check_file_name(self, name: str):
        if paths.is_dir_path(self, name):
            raise IsDirectoryError(f"[{name}] names a directory")

    def write(self, name: str, data: bytes, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None) -> int:
        self._check_file_name(name)
        self.mkdir_all(paths.dir_name(self, self._key(name)), halt_flag=halt_flag)
        return super().write(name, data, options, halt_flag=halt_flag)

    @local_file_error_wrap
    def new_writer(self, name: str, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None) -> t.BinaryIO:
        self._check_halt(halt_flag)
        self._check_file_name(name)
        options = options or WriteOptions()
        fd = os.open(self.real_path(name), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, options.mode_or(DEFAULT_FILE_MODE))
        return os.fdopen(fd, "wb", buffering=options.buffer_size or -1)

    @local_file_error_wrap
    def remove(self, name: str, halt_flag: t.Optional[HaltFlag] = None):
        self._check_halt(halt_flag)
        path = self.real_path(name)
        if path.is_dir() and not path.is_symlink():
            path.rmdir()
        elif paths.is_dir_path(self, name) and path.exists():
            raise NotDirectoryError(f"[{name}] is not a directory")
        else:
            path.unlink()

    @local_file_error_wrap
    def remove_all(self, name: str, halt_flag: t.Optional[HaltFlag] = None):
        self._check_halt(halt_flag)
        path = self.real_path(name)
        if path == self._root:
            self._log.debug(f"Removing all content of [{self._root}]")
            if path.exists():
                for entry in self.scan_dir(path):
                    self._remove_path(pathlib.Path(entry.path))
        else:
            self._remove_path(path)

    def _remove_path(self, path: pathlib.Path):
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()

    @local_file_error_wrap
    def mkdir(self, name: str, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        self._check_halt(halt_flag)
        options = options or WriteOptions()
        path = self.real_path(name)
        try:
            path.mkdir(options.mode_or(DEFAULT_DIR_MODE))
        except FileExistsError:
            if not path.is_dir():
                raise NotDirectoryError(f"[{name}] exists and is not a directory")
            if options.mode is not None:
                path.chmod(options.mode)

    @local_file_error_wrap
    def mkdir_all(self, name: str, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        self._check_halt(halt_flag)
        options = options or WriteOptions()
        os.makedirs(self.real_path(name), options.mode_or(DEFAULT_DIR_MODE), exist_ok=True)

    @local_file_error_wrap
    def chmod(self, name: str, mode: int, halt_flag: t.Optional[HaltFlag] = None):
        self._check_halt(halt_flag)
        os.chmod(self.real_path(name), mode)

    @local_file_error_wrap
    def rename(self, from_name: str, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        self._check_halt(halt_flag)
        source = self.real_path(from_name)
        if not source.exists():
            raise ItemNotFoundError(f"Local file [{from_name}] not found")
        self.mkdir_all(paths.dir_name(self, self._key(to_name)))
        os.replace(source, self.real_path(to_name))
        self._log.debug(f"Renamed [{from_name}] to [{to_name}]")

    @local_file_error_wrap
    def copy(self, from_item: Item, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        halt_flag = self._halt(halt_flag)
        self._check_halt(halt_flag)
        options = options or CopyOptions()
        if from_item.is_dir():
            self.mkdir_all(to_name, WriteOptions(mode=options.mode), halt_flag=halt_flag)
            return
        self.mkdir_all(paths.dir_name(self, self._key(to_name)), halt_flag=halt_flag)
        mode = options.mode if options.mode is not None else from_item.mode()
        with from_item.open(halt_flag=halt_flag) as src:
            with self.new_writer(to_name, WriteOptions(mode=mode or DEFAULT_FILE_MODE), halt_flag=halt_flag) as dest:
                copy_stream(src, dest, halt_flag)

    def copy_all(self, from_item: Item, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        self.mkdir_all(paths.dir_name(self, self._key(to_name)), halt_flag=halt_flag)
        super().copy_all(from_item, to_name, options, halt_flag=halt_flag)

    def items(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> LocalListIterator:
        return LocalListIterator(self, name, self._halt(halt_flag))

    def walk(self, name: str, visitor: WalkVisitor, halt_flag: t.Optional[HaltFlag] = None):
        halt_flag = self._halt(halt_flag)
        try:
            root = self.stat(name, halt_flag=halt_flag)
        except (ItemNotFoundError, NotDirectoryError):
            return
        if not root.is_dir():
            visit(visitor, root)
            return
        self._walk_entries(self.scan_dir(self.real_path(name)), self._key(name), visitor, halt_flag)

    def _walk_entries(self, entries: list, parent: str, visitor: WalkVisitor, halt_flag: t.Optional[HaltFlag]) -> bool:
        """Visit the entries of one directory in order, returning True if the visitor asked to stop."""
        for entry in entries:
            if halt_flag is not None:
                halt_flag.check_continue(True)
            item = self.entry_to_item(paths.join(self, parent, entry.name), entry)
            signal = visit(visitor, item)
            if signal is WalkSignal.STOP:
                return True
            if signal is WalkSignal.SKIP_SUBTREE or not item.is_dir():
                continue
            try:
                children = self.scan_dir(entry.path)
            except StorageError as ex:
                signal = visit(visitor, item, ex)
                if signal is WalkSignal.STOP:
                    return True
                if signal is WalkSignal.SKIP_SUBTREE:
                    continue
                raise ex
            if self._walk_entries(children, item.name().rstrip(self.path_separator()), visitor, halt_flag):
                return True
        return False


class LocalBucketManager(BaseBucketManager):

    def __init__(self, bucket: LocalBucket):
        super().__init__(bucket)

    @local_file_error_wrap
    def create(self):
        os.makedirs(self.bucket.name(), DEFAULT_DIR_MODE, exist_ok=True)

    @local_file_error_wrap
    def remove(self):
        if os.path.exists(self.bucket.name()):
            shutil.rmtree(self.bucket.name())
